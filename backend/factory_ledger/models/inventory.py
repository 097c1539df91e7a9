from __future__ import annotations

from ..extensions import db
from ..quantities import qty_to_str
from ..time_utils import to_iso_date, to_utc_z


TX_TYPE_IN = "IN"
TX_TYPE_OUT = "OUT"
TX_TYPES = (TX_TYPE_IN, TX_TYPE_OUT)


class InventoryItem(db.Model):
    """
    Raw material or consumable held in stock.

    current_stock is a cached projection of the inventory journal:
    SUM(IN quantities) - SUM(OUT quantities) over InventoryTransaction rows.
    It is only ever changed by inventory_service.apply_transaction (atomic
    SQL increment) and by an audited reconcile repair. It may go negative;
    negative stock is reported, never hidden.

    cost_per_unit_cents follows a last-cost policy: every IN with a unit
    cost overwrites it.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_inventory_items_name"),
        db.Index("ix_inventory_items_category", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False, default="General")
    unit = db.Column(db.String(32), nullable=False, default="pcs")

    current_stock = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    cost_per_unit_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} stock={self.current_stock}>"

    @property
    def is_negative(self) -> bool:
        return (self.current_stock or 0) < 0

    @property
    def is_below_minimum(self) -> bool:
        return (self.current_stock or 0) < (self.min_stock_level or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_stock": qty_to_str(self.current_stock),
            "min_stock_level": qty_to_str(self.min_stock_level),
            "cost_per_unit_cents": self.cost_per_unit_cents,
            "is_active": self.is_active,
            "is_negative": self.is_negative,
            "is_below_minimum": self.is_below_minimum,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Inventory journal entry. Append-only: never updated, never deleted.

    quantity is always positive; direction is carried by type (IN / OUT).
    Corrections are new entries pointing at the corrected one through
    compensates_transaction_id.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invtx_quantity_positive"),
        db.Index("ix_invtx_item_created", "item_id", "created_at"),
        db.Index("ix_invtx_item_type", "item_id", "type"),
        db.UniqueConstraint("compensates_transaction_id", name="uq_invtx_compensates"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    type = db.Column(db.String(8), nullable=False, index=True)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)

    # IN only (last purchase price)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    # Projection value right after this entry was applied
    balance_after = db.Column(db.Numeric(14, 3), nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    # Plain reference: survives a hard-deleted log so the consumption stays traceable
    worker_log_id = db.Column(db.Integer, nullable=True, index=True)
    compensates_transaction_id = db.Column(db.Integer, db.ForeignKey("inventory_transactions.id"), nullable=True)

    entry_date = db.Column(db.Date, nullable=False, index=True)
    performed_by = db.Column(db.String(255), nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    item = db.relationship("InventoryItem", backref=db.backref("transactions", lazy="dynamic"))

    @property
    def signed_quantity(self):
        return self.quantity if self.type == TX_TYPE_IN else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "type": self.type,
            "quantity": qty_to_str(self.quantity),
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "balance_after": qty_to_str(self.balance_after),
            "reason": self.reason,
            "worker_log_id": self.worker_log_id,
            "compensates_transaction_id": self.compensates_transaction_id,
            "entry_date": to_iso_date(self.entry_date),
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }
