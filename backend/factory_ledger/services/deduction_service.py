# Overview: Service-layer operations for the deduction ledger.

from __future__ import annotations

import logging

from ..errors import ValidationError
from ..extensions import db
from ..models import Deduction
from ..models.payroll import DEDUCTION_TYPES
from ..time_utils import parse_business_date, today
from ..validation import coerce_date
from .audit_service import append_ledger_event, resolve_actor
from .catalog_service import get_worker
from .concurrency import run_in_transaction

logger = logging.getLogger(__name__)


def add_deduction(
    *,
    worker_id: int,
    deduction_type: str,
    amount_cents: int,
    reason: str | None = None,
    deduction_date=None,
    is_recurring: bool = False,
    actor: str | None = None,
) -> Deduction:
    """
    Insert an advance/loan/penalty/tax/other against a worker.

    Pure insert: production logs and payroll runs are not touched; the
    deduction is picked up by the next payroll preview covering its date.
    """
    deduction_type = (deduction_type or "").upper()
    if deduction_type not in DEDUCTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(DEDUCTION_TYPES)}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer amount in minor units")
    if amount_cents <= 0:
        raise ValidationError("amount_cents must be greater than 0")
    try:
        when = parse_business_date(deduction_date) or today()
    except ValueError:
        raise ValidationError("date must be an ISO-8601 date")

    def _op():
        worker = get_worker(worker_id)
        deduction = Deduction(
            worker_id=worker.id,
            type=deduction_type,
            amount_cents=amount_cents,
            deduction_date=when,
            reason=reason.strip()[:255] if reason else None,
            is_recurring=bool(is_recurring),
            created_by=resolve_actor(actor),
        )
        db.session.add(deduction)
        db.session.flush()
        append_ledger_event(
            event_type="deduction.added",
            event_category="payroll",
            entity_type="deduction",
            entity_id=deduction.id,
            actor=actor,
            note=deduction.reason,
            payload={
                "worker_id": worker.id,
                "type": deduction_type,
                "amount_cents": amount_cents,
                "is_recurring": deduction.is_recurring,
            },
        )
        return deduction

    deduction = run_in_transaction(_op)
    logger.info("Deduction %s (%s, %s) added for worker %s", deduction.id, deduction_type, amount_cents, worker_id)
    return deduction


def list_deductions(
    *,
    worker_id: int | None = None,
    start=None,
    end=None,
    include_settled: bool = True,
) -> list[Deduction]:
    """
    Deductions by worker and deduction_date.

    include_settled=False lists the outstanding ones (no payroll_run_id).
    A one-off deduction is only withheld by a run whose period contains
    its date and in which the worker has production; one dated in a period
    the worker did not produce stays outstanding here and needs re-entry.
    """
    q = Deduction.query
    if worker_id is not None:
        q = q.filter(Deduction.worker_id == worker_id)
    start_date = coerce_date(start, "start")
    end_date = coerce_date(end, "end")
    if start_date is not None:
        q = q.filter(Deduction.deduction_date >= start_date)
    if end_date is not None:
        q = q.filter(Deduction.deduction_date <= end_date)
    if not include_settled:
        q = q.filter(Deduction.payroll_run_id.is_(None))
    return q.order_by(Deduction.deduction_date, Deduction.id).all()
