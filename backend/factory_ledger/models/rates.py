from __future__ import annotations

from ..extensions import db
from ..quantities import qty_to_str
from ..time_utils import to_utc_z


RATE_STATUS_ACTIVE = "ACTIVE"
RATE_STATUS_ARCHIVED = "ARCHIVED"


class Rate(db.Model):
    """
    A piece-rate task ("Sewing Grade A", "Weaving A") and its price.

    Production logs copy task_name and price_per_unit_cents at write time,
    so editing a rate never changes historical pay.

    The optional bill of materials lives in RateMaterial rows.
    """
    __tablename__ = "rates"
    __table_args__ = (
        db.Index("ix_rates_status_task", "status", "task_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    task_name = db.Column(db.String(255), nullable=False)
    price_per_unit_cents = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="pcs")
    currency = db.Column(db.String(8), nullable=False, default="MMK")
    status = db.Column(db.String(16), nullable=False, default=RATE_STATUS_ACTIVE, index=True)
    description = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    materials = db.relationship(
        "RateMaterial",
        backref="rate",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="RateMaterial.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Rate id={self.id} task={self.task_name!r} price_cents={self.price_per_unit_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_name": self.task_name,
            "price_per_unit_cents": self.price_per_unit_cents,
            "unit": self.unit,
            "currency": self.currency,
            "status": self.status,
            "description": self.description,
            "required_materials": [m.to_dict() for m in self.materials],
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RateMaterial(db.Model):
    """One bill-of-materials row: quantity of an item consumed per output unit."""
    __tablename__ = "rate_materials"
    __table_args__ = (
        db.UniqueConstraint("rate_id", "item_id", name="uq_rate_materials_rate_item"),
        db.CheckConstraint("quantity_per_unit > 0", name="ck_rate_materials_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    rate_id = db.Column(db.Integer, db.ForeignKey("rates.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)
    quantity_per_unit = db.Column(db.Numeric(14, 3), nullable=False)

    item = db.relationship("InventoryItem")

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity_per_unit": qty_to_str(self.quantity_per_unit),
        }
