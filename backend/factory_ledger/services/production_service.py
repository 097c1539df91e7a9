# Overview: Service-layer operations for production logs; pay computation and BOM consumption.

"""
Production Log Engine

WHY: A log is the only place where one unit of work touches several
independent records at once: the WorkerLog row, one journal entry per BOM
material and the matching stock balances. record_production() writes them
as a single unit of work; if anything fails nothing is visible.

Pay:
- total_pay_cents = (quantity - defect_qty) * price_per_unit_cents,
  rounded half-up to a whole minor unit.
- task_name and price are snapshotted from the rate at write time.

Materials:
- Consumed on gross quantity by default (defective units used material
  too); BOM_CONSUMPTION_BASIS="net" consumes on good units only.
- Low stock never blocks production; warnings are returned with the result.

Corrections:
- Editing a log recomputes pay but never touches inventory.
- Deleting a log does not restore inventory.
- reverse_log_materials() is the explicit, one-time compensation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import InsufficientDataError, InvalidStateError, LowStockWarning, ValidationError
from ..extensions import db
from ..models import InventoryTransaction, WorkerLog
from ..models.inventory import TX_TYPE_OUT
from ..models.production import (
    LOG_STATUS_APPROVED,
    LOG_STATUS_LOCKED,
    LOG_STATUS_PENDING,
    SHIFT_DAY,
    SHIFTS,
)
from ..models.rates import RATE_STATUS_ARCHIVED
from ..quantities import ZERO, round_cents, to_quantity
from ..time_utils import parse_business_date, today, utcnow
from ..validation import coerce_date
from . import bom_service
from .audit_service import append_ledger_event, resolve_actor
from .catalog_service import get_rate, get_worker
from .concurrency import lock_for_update, run_in_transaction
from .inventory_service import AppliedTransaction, apply_transaction, compensate_inner

logger = logging.getLogger(__name__)

CONSUMPTION_BASIS_GROSS = "gross"
CONSUMPTION_BASIS_NET = "net"


@dataclass
class ProductionResult:
    log: WorkerLog
    total_pay_cents: int
    transactions: list[InventoryTransaction] = field(default_factory=list)
    warnings: list[LowStockWarning] = field(default_factory=list)

    @property
    def log_id(self) -> int:
        return self.log.id

    @property
    def materials_deducted(self) -> int:
        return len(self.transactions)

    def to_dict(self) -> dict:
        return {
            "log_id": self.log.id,
            "log": self.log.to_dict(),
            "total_pay_cents": self.total_pay_cents,
            "materials_deducted": self.materials_deducted,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "warnings": [w.message for w in self.warnings],
            "stock_warnings": [w.to_dict() for w in self.warnings],
        }


def _validate_quantities(quantity, defect_qty) -> tuple[Decimal, Decimal]:
    qty = to_quantity(quantity, "quantity")
    if qty <= ZERO:
        raise ValidationError("quantity must be greater than 0")
    defect = to_quantity(defect_qty if defect_qty is not None else 0, "defect_qty")
    if defect < ZERO:
        raise ValidationError("defect_qty cannot be negative")
    if defect > qty:
        raise ValidationError("defect_qty cannot exceed quantity")
    return qty, defect


def compute_total_pay_cents(quantity: Decimal, defect_qty: Decimal, price_per_unit_cents: int) -> int:
    return round_cents((quantity - defect_qty) * price_per_unit_cents)


def _consumption_quantity(quantity: Decimal, defect_qty: Decimal) -> Decimal:
    basis = current_app.config.get("BOM_CONSUMPTION_BASIS", CONSUMPTION_BASIS_GROSS)
    if basis == CONSUMPTION_BASIS_NET:
        return quantity - defect_qty
    if basis != CONSUMPTION_BASIS_GROSS:
        raise ValidationError(f"unknown BOM_CONSUMPTION_BASIS {basis!r}")
    return quantity


def get_log(log_id: int, *, lock: bool = False) -> WorkerLog:
    query = db.session.query(WorkerLog).filter_by(id=log_id)
    if lock:
        query = lock_for_update(query)
    log = query.first()
    if log is None:
        raise InsufficientDataError(f"worker log {log_id} not found")
    return log


def record_production(
    *,
    worker_id: int,
    rate_id: int,
    quantity,
    defect_qty=0,
    shift: str = SHIFT_DAY,
    work_date=None,
    actor: str | None = None,
) -> ProductionResult:
    """
    Record completed work, compute pay and consume BOM materials atomically.

    Fails fast (nothing written) on invalid quantities, an unknown or
    inactive worker, an unknown or archived rate, or a non-positive price.
    """
    qty, defect = _validate_quantities(quantity, defect_qty)
    shift = shift or SHIFT_DAY
    if shift not in SHIFTS:
        raise ValidationError(f"shift must be one of {', '.join(SHIFTS)}")
    try:
        log_date = parse_business_date(work_date) or today()
    except ValueError:
        raise ValidationError("work_date must be an ISO-8601 date")

    def _op():
        actor_name = resolve_actor(actor)
        worker = get_worker(worker_id)
        if not worker.is_active:
            raise ValidationError(f"worker {worker_id} is inactive")
        rate = get_rate(rate_id)
        if rate.status == RATE_STATUS_ARCHIVED:
            raise ValidationError(f"rate {rate_id} is archived")
        price = rate.price_per_unit_cents
        if price is None or price <= 0:
            raise ValidationError("price_per_unit_cents must be greater than 0")

        total_pay = compute_total_pay_cents(qty, defect, price)
        requirements = [
            req for req in bom_service.resolve(rate, _consumption_quantity(qty, defect))
            if req.required_quantity > ZERO
        ]

        log = WorkerLog(
            worker_id=worker.id,
            rate_id=rate.id,
            worker_name=worker.name,
            task_name=rate.task_name,
            price_per_unit_cents=price,
            quantity=qty,
            defect_qty=defect,
            total_pay_cents=total_pay,
            work_date=log_date,
            shift=shift,
            status=LOG_STATUS_PENDING,
            created_by=actor_name,
        )
        db.session.add(log)
        db.session.flush()

        result = ProductionResult(log=log, total_pay_cents=total_pay)
        for req in requirements:
            applied = apply_transaction(
                item_id=req.item_id,
                tx_type=TX_TYPE_OUT,
                quantity=req.required_quantity,
                reason=f"Production: {rate.task_name} ({qty.normalize():f} units)",
                actor=actor_name,
                entry_date=log_date,
                worker_log_id=log.id,
            )
            result.transactions.append(applied.transaction)
            if applied.warning is not None:
                result.warnings.append(applied.warning)

        append_ledger_event(
            event_type="production.recorded",
            event_category="production",
            entity_type="worker_log",
            entity_id=log.id,
            actor=actor_name,
            payload={
                "worker_id": worker.id,
                "rate_id": rate.id,
                "quantity": str(qty),
                "defect_qty": str(defect),
                "total_pay_cents": total_pay,
                "transaction_ids": [tx.id for tx in result.transactions],
            },
        )
        return result

    result = run_in_transaction(_op)
    logger.info(
        "Production log %s recorded: pay %s, %d material(s) deducted, %d warning(s)",
        result.log_id, result.total_pay_cents, result.materials_deducted, len(result.warnings),
    )
    return result


def update_log(
    *,
    log_id: int,
    quantity=None,
    defect_qty=None,
    shift: str | None = None,
    actor: str | None = None,
) -> WorkerLog:
    """
    Edit quantities/shift of an unsettled log and recompute its pay.

    Inventory is not re-touched: material already consumed stays consumed.
    Use reverse_log_materials() or a manual adjustment to correct stock.
    """
    if shift is not None and shift not in SHIFTS:
        raise ValidationError(f"shift must be one of {', '.join(SHIFTS)}")

    def _op():
        log = get_log(log_id, lock=True)
        if log.status == LOG_STATUS_LOCKED:
            raise InvalidStateError(f"worker log {log_id} is settled and cannot be edited")

        before = log.to_snapshot()
        qty, defect = _validate_quantities(
            quantity if quantity is not None else log.quantity,
            defect_qty if defect_qty is not None else log.defect_qty,
        )
        log.quantity = qty
        log.defect_qty = defect
        log.total_pay_cents = compute_total_pay_cents(qty, defect, log.price_per_unit_cents)
        if shift is not None:
            log.shift = shift
        db.session.flush()

        append_ledger_event(
            event_type="production.updated",
            event_category="production",
            entity_type="worker_log",
            entity_id=log.id,
            actor=actor,
            note="Inventory not adjusted",
            payload={"before": before, "after": log.to_snapshot()},
        )
        return log

    return run_in_transaction(_op)


def approve_log(*, log_id: int, actor: str | None = None) -> WorkerLog:
    """PENDING -> APPROVED. Approving an approved log is a no-op."""
    def _op():
        log = get_log(log_id, lock=True)
        if log.status == LOG_STATUS_LOCKED:
            raise InvalidStateError(f"worker log {log_id} is already settled")
        if log.status == LOG_STATUS_APPROVED:
            return log

        log.status = LOG_STATUS_APPROVED
        log.approved_by = resolve_actor(actor)
        log.approved_at = utcnow()
        db.session.flush()

        append_ledger_event(
            event_type="production.approved",
            event_category="production",
            entity_type="worker_log",
            entity_id=log.id,
            actor=actor,
        )
        return log

    return run_in_transaction(_op)


def delete_log(*, log_id: int, actor: str | None = None) -> dict:
    """
    Hard delete an unsettled log.

    Journal entries it produced remain (they keep worker_log_id), and stock
    is not restored.
    """
    def _op():
        log = get_log(log_id, lock=True)
        if log.status == LOG_STATUS_LOCKED:
            raise InvalidStateError(f"worker log {log_id} is settled and cannot be deleted")
        snapshot = log.to_snapshot()
        snapshot["worker_id"] = log.worker_id
        db.session.delete(log)
        db.session.flush()

        append_ledger_event(
            event_type="production.deleted",
            event_category="production",
            entity_type="worker_log",
            entity_id=log_id,
            actor=actor,
            note="Inventory consumption not reversed",
            payload=snapshot,
        )
        return snapshot

    snapshot = run_in_transaction(_op)
    logger.info("Production log %s deleted", log_id)
    return snapshot


def reverse_log_materials(*, log_id: int, reason: str | None = None, actor: str | None = None) -> list[AppliedTransaction]:
    """
    Compensate every outstanding OUT entry produced by a log.

    Works for deleted logs too, since journal entries keep worker_log_id.
    Each entry is reversed at most once.
    """
    def _op():
        consumed = InventoryTransaction.query.filter(
            InventoryTransaction.worker_log_id == log_id,
            InventoryTransaction.type == TX_TYPE_OUT,
            InventoryTransaction.compensates_transaction_id.is_(None),
        ).order_by(InventoryTransaction.id).all()
        if not consumed and db.session.get(WorkerLog, log_id) is None:
            raise InsufficientDataError(f"worker log {log_id} not found")

        compensated_ids = {
            row.compensates_transaction_id
            for row in InventoryTransaction.query.filter(
                InventoryTransaction.compensates_transaction_id.in_([tx.id for tx in consumed])
            ).all()
        } if consumed else set()
        outstanding = [tx for tx in consumed if tx.id not in compensated_ids]
        if not outstanding:
            raise InvalidStateError(f"worker log {log_id} has no outstanding material consumption")

        return [
            compensate_inner(
                tx,
                reason=reason or f"Reversal of production log {log_id}",
                actor=actor,
            )
            for tx in outstanding
        ]

    reversed_entries = run_in_transaction(_op)
    logger.info("Reversed %d material entr(ies) of production log %s", len(reversed_entries), log_id)
    return reversed_entries


def list_logs(
    *,
    work_date=None,
    worker_id: int | None = None,
    status: str | None = None,
    limit: int = 500,
) -> list[WorkerLog]:
    q = WorkerLog.query
    if work_date is not None:
        q = q.filter(WorkerLog.work_date == coerce_date(work_date, "date"))
    if worker_id is not None:
        q = q.filter(WorkerLog.worker_id == worker_id)
    if status is not None:
        q = q.filter(WorkerLog.status == status)
    limit = max(1, min(limit, 1000))
    return q.order_by(WorkerLog.created_at.desc(), WorkerLog.id.desc()).limit(limit).all()


def daily_stats(work_date) -> dict:
    """Output, wages, defects and approvals for one business day."""
    log_date = coerce_date(work_date, "date") or today()
    row = db.session.query(
        func.coalesce(func.sum(WorkerLog.quantity), 0),
        func.coalesce(func.sum(WorkerLog.total_pay_cents), 0),
        func.coalesce(func.sum(WorkerLog.defect_qty), 0),
        func.count(WorkerLog.id),
    ).filter(WorkerLog.work_date == log_date).one()
    approved = db.session.query(func.count(WorkerLog.id)).filter(
        WorkerLog.work_date == log_date,
        WorkerLog.status == LOG_STATUS_APPROVED,
    ).scalar()
    total_output, total_wages, total_defects, log_count = row
    return {
        "work_date": log_date.isoformat(),
        "total_output": str(to_quantity(total_output)),
        "total_wages_cents": int(total_wages or 0),
        "total_defects": str(to_quantity(total_defects)),
        "total_approved": int(approved or 0),
        "log_count": int(log_count or 0),
    }
