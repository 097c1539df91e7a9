# Overview: Service-layer operations for the inventory journal and its stock projection.

# backend/factory_ledger/services/inventory_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConcurrencyConflict,
    InsufficientDataError,
    InsufficientStockError,
    InvalidStateError,
    LowStockWarning,
    ValidationError,
)
from ..extensions import db
from ..models import InventoryItem, InventoryTransaction
from ..models.inventory import TX_TYPE_IN, TX_TYPE_OUT, TX_TYPES
from ..quantities import ZERO, quantize_qty, round_cents, to_quantity
from ..time_utils import parse_business_date, today, utcnow
from .audit_service import append_ledger_event, resolve_actor
from .concurrency import run_in_transaction
"""
Inventory Journal Invariants (authoritative)

Journal:
- InventoryTransaction rows are append-only; quantity > 0, direction in type (IN/OUT).
- Corrections are compensating entries (opposite type, compensates_transaction_id set).
  An entry is compensated at most once; compensating entries are final.

Projection:
- InventoryItem.current_stock == SUM(IN.quantity) - SUM(OUT.quantity) at all times.
- The hot path never replays the journal; it applies a SQL-level atomic
  increment (current_stock = current_stock + delta) in the same DB
  transaction as the journal insert, so concurrent writers commute.
- reconcile_stock() recomputes the projection from the journal for audit/recovery.

Policy:
- OUT is never blocked for production; projected negative stock yields a
  LowStockWarning (INSUFFICIENT). Stock left under min_stock_level yields
  a BELOW_MINIMUM warning.
- Manual OUT honours ALLOW_NEGATIVE_MANUAL_OUT.
- IN with a unit cost overwrites cost_per_unit_cents (last-cost, not WAC).
"""

logger = logging.getLogger(__name__)


@dataclass
class AppliedTransaction:
    transaction: InventoryTransaction
    new_balance: Decimal
    warning: LowStockWarning | None = None

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "new_balance": str(self.new_balance),
            "warnings": [self.warning.to_dict()] if self.warning else [],
        }


@dataclass(frozen=True)
class StockDrift:
    item_id: int
    item_name: str
    cached: Decimal
    journal: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached - self.journal

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "cached_stock": str(self.cached),
            "journal_stock": str(self.journal),
            "difference": str(self.difference),
        }


def get_item(item_id: int) -> InventoryItem:
    item = db.session.get(InventoryItem, item_id)
    if item is None:
        raise InsufficientDataError(f"inventory item {item_id} not found")
    return item


def _validate_cost(unit_cost_cents) -> int | None:
    if unit_cost_cents is None:
        return None
    if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int):
        raise ValidationError("unit_cost_cents must be an integer")
    if unit_cost_cents < 0:
        raise ValidationError("unit_cost_cents cannot be negative")
    return unit_cost_cents


def check_stock_warning(item: InventoryItem, quantity: Decimal, new_balance: Decimal) -> LowStockWarning | None:
    """Advisory signal for an OUT that left new_balance behind."""
    available = quantize_qty(new_balance + quantity)
    if new_balance < ZERO:
        return LowStockWarning(
            item_id=item.id,
            item_name=item.name,
            required=quantity,
            available=available,
            projected=new_balance,
        )
    minimum = quantize_qty(item.min_stock_level)
    if new_balance < minimum:
        return LowStockWarning(
            item_id=item.id,
            item_name=item.name,
            required=quantity,
            available=available,
            projected=new_balance,
            kind="BELOW_MINIMUM",
        )
    return None


def apply_transaction(
    *,
    item_id: int,
    tx_type: str,
    quantity,
    reason: str,
    actor: str | None = None,
    unit_cost_cents: int | None = None,
    entry_date=None,
    worker_log_id: int | None = None,
    compensates_transaction_id: int | None = None,
) -> AppliedTransaction:
    """
    Write one journal entry and move the stock projection with it.

    Flushes only: must run inside the caller's unit of work, which makes
    the journal insert and the balance change durable together or not at all.
    """
    if tx_type not in TX_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TX_TYPES)}")
    qty = to_quantity(quantity)
    if qty <= ZERO:
        raise ValidationError("quantity must be greater than 0")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    unit_cost_cents = _validate_cost(unit_cost_cents)
    if tx_type == TX_TYPE_OUT and unit_cost_cents is not None:
        raise ValidationError("unit_cost_cents is only accepted on IN transactions")
    try:
        business_date = parse_business_date(entry_date) or today()
    except ValueError:
        raise ValidationError("entry_date must be an ISO-8601 date")

    item = get_item(item_id)
    actor = resolve_actor(actor)

    delta = qty if tx_type == TX_TYPE_IN else -qty
    values = {
        "current_stock": InventoryItem.current_stock + delta,
        "updated_at": utcnow(),
    }
    if tx_type == TX_TYPE_IN and unit_cost_cents is not None:
        values["cost_per_unit_cents"] = unit_cost_cents

    # Commutative adjustment; never read-compute-write
    db.session.execute(
        update(InventoryItem)
        .where(InventoryItem.id == item.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    new_balance = quantize_qty(
        db.session.execute(
            select(InventoryItem.current_stock).where(InventoryItem.id == item.id)
        ).scalar_one()
    )
    db.session.expire(item, ["current_stock", "cost_per_unit_cents", "updated_at"])

    tx = InventoryTransaction(
        item_id=item.id,
        type=tx_type,
        quantity=qty,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=round_cents(qty * unit_cost_cents) if unit_cost_cents is not None else None,
        balance_after=new_balance,
        reason=str(reason).strip()[:255],
        worker_log_id=worker_log_id,
        compensates_transaction_id=compensates_transaction_id,
        entry_date=business_date,
        performed_by=actor,
    )
    db.session.add(tx)
    try:
        db.session.flush()
    except IntegrityError as exc:
        if compensates_transaction_id is not None:
            raise ConcurrencyConflict(
                f"inventory transaction {compensates_transaction_id} was already compensated"
            ) from exc
        raise

    warning = check_stock_warning(item, qty, new_balance) if tx_type == TX_TYPE_OUT else None
    if warning is not None:
        logger.warning("Low stock: %s", warning.message)

    append_ledger_event(
        event_type="inventory.stock_in" if tx_type == TX_TYPE_IN else "inventory.stock_out",
        event_category="inventory",
        entity_type="inventory_transaction",
        entity_id=tx.id,
        actor=actor,
        note=tx.reason,
        payload={
            "item_id": item.id,
            "quantity": str(qty),
            "balance_after": str(new_balance),
            "worker_log_id": worker_log_id,
            "compensates_transaction_id": compensates_transaction_id,
        },
    )
    return AppliedTransaction(transaction=tx, new_balance=new_balance, warning=warning)


def adjust_stock(
    *,
    item_id: int,
    tx_type: str,
    quantity,
    reason: str,
    actor: str | None = None,
    unit_cost_cents: int | None = None,
    entry_date=None,
) -> AppliedTransaction:
    """
    Manual stock-in / stock-out outside production (purchases, usage, shrink).

    With ALLOW_NEGATIVE_MANUAL_OUT disabled an OUT that would leave stock
    negative raises InsufficientStockError and nothing is written.
    """
    def _op():
        applied = apply_transaction(
            item_id=item_id,
            tx_type=tx_type,
            quantity=quantity,
            reason=reason,
            actor=actor,
            unit_cost_cents=unit_cost_cents,
            entry_date=entry_date,
        )
        if (
            tx_type == TX_TYPE_OUT
            and applied.new_balance < ZERO
            and not current_app.config.get("ALLOW_NEGATIVE_MANUAL_OUT", True)
        ):
            available = applied.new_balance + applied.transaction.quantity
            raise InsufficientStockError(
                f"Insufficient stock. Available: {available:.2f}, Requested: {applied.transaction.quantity:.2f}"
            )
        return applied

    applied = run_in_transaction(_op)
    logger.info(
        "Stock %s of %s for item %s; balance %s",
        tx_type, applied.transaction.quantity, item_id, applied.new_balance,
    )
    return applied


def compensate_inner(
    original: InventoryTransaction,
    *,
    reason: str,
    actor: str | None = None,
) -> AppliedTransaction:
    """Opposite-direction entry for original; flushes only."""
    if original.compensates_transaction_id is not None:
        raise InvalidStateError("compensating entries cannot themselves be compensated")
    already = db.session.query(InventoryTransaction.id).filter_by(
        compensates_transaction_id=original.id
    ).first()
    if already is not None:
        raise InvalidStateError(f"inventory transaction {original.id} is already compensated")

    return apply_transaction(
        item_id=original.item_id,
        tx_type=TX_TYPE_IN if original.type == TX_TYPE_OUT else TX_TYPE_OUT,
        quantity=original.quantity,
        reason=reason or f"Compensation of transaction {original.id}",
        actor=actor,
        worker_log_id=original.worker_log_id,
        compensates_transaction_id=original.id,
    )


def compensate_transaction(*, transaction_id: int, reason: str | None = None, actor: str | None = None) -> AppliedTransaction:
    """
    Reverse a journal entry by appending its mirror image.

    The original stays untouched; the pair nets to zero in the journal.
    """
    def _op():
        original = db.session.get(InventoryTransaction, transaction_id)
        if original is None:
            raise InsufficientDataError(f"inventory transaction {transaction_id} not found")
        return compensate_inner(
            original,
            reason=reason or f"Compensation of transaction {transaction_id}",
            actor=actor,
        )

    return run_in_transaction(_op)


def _signed_quantity_expr():
    return case(
        (InventoryTransaction.type == TX_TYPE_IN, InventoryTransaction.quantity),
        else_=-InventoryTransaction.quantity,
    )


def journal_balance(item_id: int) -> Decimal:
    """Stock recomputed from the journal alone."""
    total = db.session.query(
        func.coalesce(func.sum(_signed_quantity_expr()), 0)
    ).filter(InventoryTransaction.item_id == item_id).scalar()
    return quantize_qty(total)


def journal_balances() -> dict[int, Decimal]:
    rows = db.session.query(
        InventoryTransaction.item_id,
        func.coalesce(func.sum(_signed_quantity_expr()), 0),
    ).group_by(InventoryTransaction.item_id).all()
    return {item_id: quantize_qty(total) for item_id, total in rows}


def find_stock_drifts(item_id: int | None = None) -> list[StockDrift]:
    q = InventoryItem.query
    if item_id is not None:
        get_item(item_id)
        q = q.filter(InventoryItem.id == item_id)
    balances = journal_balances()

    drifts = []
    for item in q.order_by(InventoryItem.id).all():
        cached = quantize_qty(item.current_stock)
        journal = balances.get(item.id, quantize_qty(ZERO))
        if cached != journal:
            drifts.append(StockDrift(item_id=item.id, item_name=item.name, cached=cached, journal=journal))
    return drifts


def reconcile_stock(*, item_id: int | None = None, repair: bool = False, actor: str | None = None) -> list[StockDrift]:
    """
    Compare every cached balance with its journal sum.

    repair=True rewrites drifted projections from the journal (the journal
    wins) and audits each repair. Returns the drifts found.
    """
    drifts = find_stock_drifts(item_id)
    if not drifts or not repair:
        for drift in drifts:
            logger.warning(
                "Stock drift on %s: cached %s, journal %s", drift.item_name, drift.cached, drift.journal
            )
        return drifts

    def _op():
        repaired = []
        for drift in find_stock_drifts(item_id):
            # journal sum is evaluated by the UPDATE itself, so movements
            # committed after the scan are included
            journal_sum = (
                select(func.coalesce(func.sum(_signed_quantity_expr()), 0))
                .where(InventoryTransaction.item_id == InventoryItem.id)
                .scalar_subquery()
            )
            db.session.execute(
                update(InventoryItem)
                .where(InventoryItem.id == drift.item_id)
                .values(current_stock=journal_sum, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            rebuilt = quantize_qty(
                db.session.execute(
                    select(InventoryItem.current_stock).where(InventoryItem.id == drift.item_id)
                ).scalar_one()
            )
            append_ledger_event(
                event_type="inventory.reconciled",
                event_category="inventory",
                entity_type="inventory_item",
                entity_id=drift.item_id,
                actor=actor,
                note="Projection rebuilt from journal",
                payload={"cached": str(drift.cached), "journal": str(rebuilt)},
            )
            repaired.append(
                StockDrift(item_id=drift.item_id, item_name=drift.item_name, cached=drift.cached, journal=rebuilt)
            )
        return repaired

    repaired = run_in_transaction(_op)
    db.session.expire_all()
    for drift in repaired:
        logger.warning("Repaired stock drift on %s: %s -> %s", drift.item_name, drift.cached, drift.journal)
    return repaired


def get_item_summary(item_id: int) -> dict:
    item = get_item(item_id)
    journal = journal_balance(item_id)
    cached = quantize_qty(item.current_stock)
    tx_count = db.session.query(func.count(InventoryTransaction.id)).filter(
        InventoryTransaction.item_id == item_id
    ).scalar()
    return {
        **item.to_dict(),
        "journal_stock": str(journal),
        "in_sync": cached == journal,
        "transaction_count": int(tx_count or 0),
        "stock_value_cents": round_cents(cached * item.cost_per_unit_cents),
    }


def list_transactions(
    *,
    item_id: int | None = None,
    worker_log_id: int | None = None,
    limit: int = 200,
) -> list[InventoryTransaction]:
    q = InventoryTransaction.query
    if item_id is not None:
        get_item(item_id)
        q = q.filter(InventoryTransaction.item_id == item_id)
    if worker_log_id is not None:
        q = q.filter(InventoryTransaction.worker_log_id == worker_log_id)
    limit = max(1, min(limit, 1000))
    return q.order_by(
        InventoryTransaction.created_at.desc(),
        InventoryTransaction.id.desc(),
    ).limit(limit).all()


def list_low_stock_items() -> list[InventoryItem]:
    """Items whose stock is under their reorder threshold (negative included)."""
    return InventoryItem.query.filter(
        InventoryItem.is_active.is_(True),
        InventoryItem.current_stock < InventoryItem.min_stock_level,
    ).order_by(InventoryItem.name).all()


def get_inventory_value_cents() -> int:
    total = Decimal("0")
    for item in InventoryItem.query.filter(InventoryItem.is_active.is_(True)).all():
        total += quantize_qty(item.current_stock) * item.cost_per_unit_cents
    return round_cents(total)
