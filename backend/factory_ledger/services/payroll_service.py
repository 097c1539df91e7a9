# Overview: Service-layer operations for payroll preview and settlement.

"""
Payroll Settlement Engine

Preview (generate_payroll) is a read-only projection: unsettled logs in
[start, end] grouped per worker, plus that worker's unconsumed one-off
deductions in the period and every recurring deduction dated on or before
the period end.

    net = gross + base_salary + bonus - deductions - statutory

Settlement (finalize_payroll / finalize_payroll_run) is one unit of work:
- every figure is re-derived from the referenced rows; a preview that no
  longer matches the store is rejected with ConcurrencyConflict
- logs go to LOCKED and one-off deductions get payroll_run_id through a
  conditional UPDATE matching each log at the version it was re-derived
  from; if fewer rows match than expected the log was edited or another
  finalize won the race, and everything rolls back
- the run and its per-worker entries snapshot what was consumed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, or_, tuple_

from ..errors import (
    AlreadyFinalized,
    ConcurrencyConflict,
    InsufficientDataError,
    ValidationError,
)
from ..extensions import db
from ..models import Deduction, PayrollRun, PayrollRunEntry, Worker, WorkerLog
from ..models.payroll import RUN_STATUS_CALCULATED, RUN_STATUS_FINALIZED
from ..models.production import LOG_STATUS_APPROVED, LOG_STATUS_LOCKED
from ..quantities import ZERO, qty_to_str, quantize_qty, round_cents, to_quantity
from ..time_utils import parse_business_date, utcnow
from .audit_service import append_ledger_event, resolve_actor
from .concurrency import run_in_transaction

logger = logging.getLogger(__name__)


@dataclass
class PayrollItem:
    worker_id: int
    worker_name: str
    total_production_qty: Decimal = ZERO
    gross_pay_cents: int = 0
    base_salary_cents: int = 0
    bonus_cents: int = 0
    deductions_cents: int = 0
    statutory_deductions_cents: int = 0
    net_pay_cents: int = 0
    log_ids: list[int] = field(default_factory=list)
    deduction_ids: list[int] = field(default_factory=list)
    logs: list[dict] = field(default_factory=list)
    deductions: list[dict] = field(default_factory=list)
    # log id -> version_id the figures were derived from; never serialized
    log_versions: dict[int, int] = field(default_factory=dict)

    def recompute_net(self) -> None:
        self.net_pay_cents = (
            self.gross_pay_cents
            + self.base_salary_cents
            + self.bonus_cents
            - self.deductions_cents
            - self.statutory_deductions_cents
        )

    def to_dict(self) -> dict:
        return {
            "worker_id": self.worker_id,
            "worker_name": self.worker_name,
            "total_production_qty": qty_to_str(self.total_production_qty),
            "gross_pay_cents": self.gross_pay_cents,
            "base_salary_cents": self.base_salary_cents,
            "bonus_cents": self.bonus_cents,
            "deductions_cents": self.deductions_cents,
            "statutory_deductions_cents": self.statutory_deductions_cents,
            "net_pay_cents": self.net_pay_cents,
            "log_ids": list(self.log_ids),
            "deduction_ids": list(self.deduction_ids),
            "logs": list(self.logs),
            "deductions": list(self.deductions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PayrollItem":
        """Rebuild a preview item sent back by a caller."""
        if not isinstance(data, dict):
            raise ValidationError("payroll items must be objects")
        try:
            worker_id = int(data["worker_id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("payroll item requires an integer worker_id")

        def _ids(key):
            raw = data.get(key) or []
            if not isinstance(raw, (list, tuple)):
                raise ValidationError(f"{key} must be a list of ids")
            try:
                return [int(v) for v in raw]
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a list of ids")

        def _cents(key):
            value = data.get(key, 0)
            if value is None:
                return 0
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{key} must be an integer amount in minor units")
            return value

        return cls(
            worker_id=worker_id,
            worker_name=str(data.get("worker_name") or ""),
            total_production_qty=to_quantity(data.get("total_production_qty") or 0, "total_production_qty"),
            gross_pay_cents=_cents("gross_pay_cents"),
            base_salary_cents=_cents("base_salary_cents"),
            bonus_cents=_cents("bonus_cents"),
            deductions_cents=_cents("deductions_cents"),
            statutory_deductions_cents=_cents("statutory_deductions_cents"),
            net_pay_cents=_cents("net_pay_cents"),
            log_ids=_ids("log_ids"),
            deduction_ids=_ids("deduction_ids"),
        )


def _parse_period(start, end):
    try:
        start_date = parse_business_date(start)
        end_date = parse_business_date(end)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 dates")
    if start_date is None or end_date is None:
        raise ValidationError("start and end are required")
    if start_date > end_date:
        raise ValidationError("start must be on or before end")
    return start_date, end_date


def _statutory_cents(worker: Worker, gross_pay_cents: int) -> int:
    if not worker.is_ssb or gross_pay_cents <= 0:
        return 0
    bps = int(current_app.config.get("SSB_RATE_BPS", 0) or 0)
    return round_cents(Decimal(gross_pay_cents) * bps / Decimal(10000))


def _settleable_log_filter():
    """Logs a preview may pick up."""
    criteria = [WorkerLog.status != LOG_STATUS_LOCKED, WorkerLog.payroll_run_id.is_(None)]
    if current_app.config.get("PAYROLL_REQUIRE_APPROVAL", False):
        criteria.append(WorkerLog.status == LOG_STATUS_APPROVED)
    return and_(*criteria)


def _applicable_deduction_filter(start_date, end_date):
    one_off = and_(
        Deduction.is_recurring.is_(False),
        Deduction.payroll_run_id.is_(None),
        Deduction.deduction_date >= start_date,
        Deduction.deduction_date <= end_date,
    )
    recurring = and_(
        Deduction.is_recurring.is_(True),
        Deduction.deduction_date <= end_date,
    )
    return or_(one_off, recurring)


def _build_item(worker: Worker, logs: list[WorkerLog], deductions: list[Deduction], bonus_cents: int = 0) -> PayrollItem:
    gross = sum(log.total_pay_cents for log in logs)
    item = PayrollItem(
        worker_id=worker.id,
        worker_name=worker.name,
        total_production_qty=quantize_qty(sum((log.net_qty for log in logs), ZERO)),
        gross_pay_cents=gross,
        base_salary_cents=worker.effective_base_salary_cents,
        bonus_cents=bonus_cents,
        deductions_cents=sum(d.amount_cents for d in deductions),
        statutory_deductions_cents=_statutory_cents(worker, gross),
        log_ids=[log.id for log in logs],
        deduction_ids=[d.id for d in deductions],
        logs=[log.to_snapshot() for log in logs],
        deductions=[d.to_snapshot() for d in deductions],
        log_versions={log.id: log.version_id for log in logs},
    )
    item.recompute_net()
    return item


def generate_payroll(start, end) -> list[PayrollItem]:
    """
    Read-only preview of what settling [start, end] would pay.

    Only workers with unsettled production in the period get an item.
    Calling it twice with no writes in between returns identical figures.
    """
    start_date, end_date = _parse_period(start, end)

    logs = WorkerLog.query.filter(
        _settleable_log_filter(),
        WorkerLog.work_date >= start_date,
        WorkerLog.work_date <= end_date,
    ).order_by(WorkerLog.worker_id, WorkerLog.work_date, WorkerLog.id).all()
    if not logs:
        return []

    logs_by_worker: dict[int, list[WorkerLog]] = {}
    for log in logs:
        logs_by_worker.setdefault(log.worker_id, []).append(log)

    deductions_by_worker: dict[int, list[Deduction]] = {}
    deductions = Deduction.query.filter(
        Deduction.worker_id.in_(list(logs_by_worker)),
        _applicable_deduction_filter(start_date, end_date),
    ).order_by(Deduction.deduction_date, Deduction.id).all()
    for deduction in deductions:
        deductions_by_worker.setdefault(deduction.worker_id, []).append(deduction)

    workers = {w.id: w for w in Worker.query.filter(Worker.id.in_(list(logs_by_worker))).all()}
    return [
        _build_item(workers[worker_id], worker_logs, deductions_by_worker.get(worker_id, []))
        for worker_id, worker_logs in sorted(logs_by_worker.items())
    ]


def _rederive(item: PayrollItem, start_date, end_date) -> PayrollItem:
    """
    Recompute an item from the rows it references.

    Raises ConcurrencyConflict when a referenced row vanished, was settled
    elsewhere, moved out of the period or no longer adds up to the figures
    the caller was shown.
    """
    if not item.log_ids:
        raise ValidationError(f"payroll item for worker {item.worker_id} has no production logs")
    if item.bonus_cents < 0:
        raise ValidationError("bonus_cents cannot be negative")

    worker = db.session.get(Worker, item.worker_id)
    if worker is None:
        raise InsufficientDataError(f"worker {item.worker_id} not found")

    logs = WorkerLog.query.filter(WorkerLog.id.in_(item.log_ids)).order_by(WorkerLog.work_date, WorkerLog.id).all()
    if len(logs) != len(set(item.log_ids)):
        raise ConcurrencyConflict(f"production logs of worker {item.worker_id} changed since preview")
    require_approval = current_app.config.get("PAYROLL_REQUIRE_APPROVAL", False)
    for log in logs:
        if log.status == LOG_STATUS_LOCKED or log.payroll_run_id is not None:
            raise ConcurrencyConflict(f"worker log {log.id} is already settled")
        if log.worker_id != item.worker_id or not (start_date <= log.work_date <= end_date):
            raise ConcurrencyConflict(f"worker log {log.id} does not belong to this payroll item")
        if require_approval and log.status != LOG_STATUS_APPROVED:
            raise ConcurrencyConflict(f"worker log {log.id} is no longer approved")

    deductions = []
    if item.deduction_ids:
        deductions = Deduction.query.filter(
            Deduction.id.in_(item.deduction_ids),
            Deduction.worker_id == item.worker_id,
            _applicable_deduction_filter(start_date, end_date),
        ).order_by(Deduction.deduction_date, Deduction.id).all()
        if len(deductions) != len(set(item.deduction_ids)):
            raise ConcurrencyConflict(f"deductions of worker {item.worker_id} changed since preview")

    fresh = _build_item(worker, logs, deductions, bonus_cents=item.bonus_cents)
    if fresh.gross_pay_cents != item.gross_pay_cents or fresh.deductions_cents != item.deductions_cents:
        raise ConcurrencyConflict(f"payroll preview for worker {item.worker_id} is stale; re-run the preview")
    return fresh


def _lock_consumed_rows(run: PayrollRun, items: list[PayrollItem], locked_at) -> None:
    """
    Compare-and-swap: only rows still unsettled, and still at the version
    the figures were derived from, are stamped with the run.
    """
    log_ids = [log_id for item in items for log_id in item.log_ids]
    if len(log_ids) != len(set(log_ids)):
        raise ValidationError("a production log appears in more than one payroll item")
    seen_pairs = [
        (log_id, item.log_versions[log_id])
        for item in items
        for log_id in item.log_ids
        if log_id in item.log_versions
    ]
    if len(seen_pairs) != len(log_ids):
        raise ValidationError("payroll items must be re-derived before locking")

    updated = db.session.query(WorkerLog).filter(
        tuple_(WorkerLog.id, WorkerLog.version_id).in_(seen_pairs),
        WorkerLog.status != LOG_STATUS_LOCKED,
        WorkerLog.payroll_run_id.is_(None),
    ).update(
        {
            WorkerLog.status: LOG_STATUS_LOCKED,
            WorkerLog.payroll_run_id: run.id,
            WorkerLog.locked_at: locked_at,
            WorkerLog.version_id: WorkerLog.version_id + 1,
        },
        synchronize_session=False,
    )
    if updated != len(log_ids):
        raise ConcurrencyConflict(
            f"{len(log_ids) - updated} production log(s) were edited or settled since they were re-derived"
        )

    one_off_ids = [
        d["deduction_id"]
        for item in items
        for d in item.deductions
        if not d["is_recurring"]
    ]
    if not one_off_ids:
        return
    if len(one_off_ids) != len(set(one_off_ids)):
        raise ValidationError("a deduction appears in more than one payroll item")
    updated = db.session.query(Deduction).filter(
        Deduction.id.in_(one_off_ids),
        Deduction.payroll_run_id.is_(None),
    ).update({Deduction.payroll_run_id: run.id}, synchronize_session=False)
    if updated != len(one_off_ids):
        raise ConcurrencyConflict(
            f"{len(one_off_ids) - updated} deduction(s) were consumed by another payroll run"
        )


def _entry_from_item(item: PayrollItem) -> PayrollRunEntry:
    return PayrollRunEntry(
        worker_id=item.worker_id,
        worker_name=item.worker_name,
        total_production_qty=item.total_production_qty,
        gross_pay_cents=item.gross_pay_cents,
        base_salary_cents=item.base_salary_cents,
        bonus_cents=item.bonus_cents,
        deductions_cents=item.deductions_cents,
        statutory_deductions_cents=item.statutory_deductions_cents,
        net_pay_cents=item.net_pay_cents,
        logs_snapshot=item.logs,
        deductions_snapshot=item.deductions,
    )


def _item_from_entry(entry: PayrollRunEntry) -> PayrollItem:
    return PayrollItem(
        worker_id=entry.worker_id,
        worker_name=entry.worker_name,
        total_production_qty=quantize_qty(entry.total_production_qty),
        gross_pay_cents=entry.gross_pay_cents,
        base_salary_cents=entry.base_salary_cents,
        bonus_cents=entry.bonus_cents,
        deductions_cents=entry.deductions_cents,
        statutory_deductions_cents=entry.statutory_deductions_cents,
        net_pay_cents=entry.net_pay_cents,
        log_ids=entry.log_ids,
        deduction_ids=entry.deduction_ids,
    )


def _apply_totals(run: PayrollRun, items: list[PayrollItem]) -> None:
    run.total_gross_cents = sum(i.gross_pay_cents + i.base_salary_cents + i.bonus_cents for i in items)
    run.total_deductions_cents = sum(i.deductions_cents + i.statutory_deductions_cents for i in items)
    run.total_net_cents = sum(i.net_pay_cents for i in items)
    run.worker_count = len(items)


def _coerce_items(items) -> list[PayrollItem]:
    if not items:
        raise ValidationError("no payroll items to finalize")
    coerced = [item if isinstance(item, PayrollItem) else PayrollItem.from_dict(item) for item in items]
    worker_ids = [item.worker_id for item in coerced]
    if len(worker_ids) != len(set(worker_ids)):
        raise ValidationError("each worker may appear only once in a payroll run")
    return coerced


def finalize_payroll(items, start, end, actor: str | None = None) -> PayrollRun:
    """
    Settle previewed items into an immutable FINALIZED run.

    Items come from generate_payroll (objects or their to_dict form); the
    only caller-entered figure honoured is bonus_cents.
    """
    start_date, end_date = _parse_period(start, end)
    requested = _coerce_items(items)

    def _op():
        actor_name = resolve_actor(actor)
        fresh = [_rederive(item, start_date, end_date) for item in requested]
        now = utcnow()

        run = PayrollRun(
            period_start=start_date,
            period_end=end_date,
            status=RUN_STATUS_FINALIZED,
            created_by=actor_name,
            finalized_by=actor_name,
            finalized_at=now,
        )
        _apply_totals(run, fresh)
        db.session.add(run)
        db.session.flush()

        _lock_consumed_rows(run, fresh, now)
        for item in fresh:
            run.entries.append(_entry_from_item(item))
        db.session.flush()

        append_ledger_event(
            event_type="payroll.finalized",
            event_category="payroll",
            entity_type="payroll_run",
            entity_id=run.id,
            actor=actor_name,
            payload={
                "period_start": start_date.isoformat(),
                "period_end": end_date.isoformat(),
                "worker_count": run.worker_count,
                "total_net_cents": run.total_net_cents,
                "log_ids": [log_id for item in fresh for log_id in item.log_ids],
            },
        )
        return run

    run = run_in_transaction(_op)
    # bulk UPDATEs bypassed the identity map
    db.session.expire_all()
    logger.info(
        "Payroll run %s finalized for %s..%s: %d worker(s), net %s",
        run.id, start_date, end_date, run.worker_count, run.total_net_cents,
    )
    return run


def calculate_payroll_run(start, end, actor: str | None = None) -> PayrollRun:
    """Persist the current preview as a CALCULATED draft. Nothing is locked."""
    start_date, end_date = _parse_period(start, end)

    def _op():
        items = generate_payroll(start_date, end_date)
        if not items:
            raise ValidationError("no unsettled production in the period")
        run = PayrollRun(
            period_start=start_date,
            period_end=end_date,
            status=RUN_STATUS_CALCULATED,
            created_by=resolve_actor(actor),
        )
        _apply_totals(run, items)
        for item in items:
            run.entries.append(_entry_from_item(item))
        db.session.add(run)
        db.session.flush()

        append_ledger_event(
            event_type="payroll.calculated",
            event_category="payroll",
            entity_type="payroll_run",
            entity_id=run.id,
            actor=actor,
            payload={
                "period_start": start_date.isoformat(),
                "period_end": end_date.isoformat(),
                "worker_count": run.worker_count,
                "total_net_cents": run.total_net_cents,
            },
        )
        return run

    run = run_in_transaction(_op)
    logger.info("Draft payroll run %s calculated for %s..%s", run.id, start_date, end_date)
    return run


def finalize_payroll_run(run_id: int, actor: str | None = None) -> PayrollRun:
    """
    CALCULATED -> FINALIZED for a saved draft.

    The status flip is itself a compare-and-swap, so a second finalize of
    the same run fails with AlreadyFinalized even when both race.
    """
    def _op():
        actor_name = resolve_actor(actor)
        run = get_payroll_run(run_id)
        if run.is_finalized:
            raise AlreadyFinalized(f"payroll run {run_id} is already finalized")

        now = utcnow()
        flipped = db.session.query(PayrollRun).filter(
            PayrollRun.id == run_id,
            PayrollRun.status == RUN_STATUS_CALCULATED,
        ).update(
            {
                PayrollRun.status: RUN_STATUS_FINALIZED,
                PayrollRun.finalized_by: actor_name,
                PayrollRun.finalized_at: now,
                PayrollRun.version_id: PayrollRun.version_id + 1,
            },
            synchronize_session=False,
        )
        if flipped != 1:
            raise AlreadyFinalized(f"payroll run {run_id} is already finalized")

        fresh = []
        for entry in run.entries:
            item = _rederive(_item_from_entry(entry), run.period_start, run.period_end)
            if item.net_pay_cents != entry.net_pay_cents:
                raise ConcurrencyConflict(f"draft entry for worker {entry.worker_id} is stale; recalculate the run")
            fresh.append(item)
        _lock_consumed_rows(run, fresh, now)

        append_ledger_event(
            event_type="payroll.finalized",
            event_category="payroll",
            entity_type="payroll_run",
            entity_id=run.id,
            actor=actor_name,
            payload={
                "worker_count": run.worker_count,
                "total_net_cents": run.total_net_cents,
                "log_ids": [log_id for item in fresh for log_id in item.log_ids],
            },
        )
        return run.id

    finalized_id = run_in_transaction(_op)
    db.session.expire_all()
    run = get_payroll_run(finalized_id)
    logger.info("Draft payroll run %s finalized: net %s", run.id, run.total_net_cents)
    return run


def get_payroll_run(run_id: int) -> PayrollRun:
    run = db.session.get(PayrollRun, run_id)
    if run is None:
        raise InsufficientDataError(f"payroll run {run_id} not found")
    return run


def list_payroll_runs(*, status: str | None = None, limit: int = 100) -> list[PayrollRun]:
    q = PayrollRun.query
    if status is not None:
        q = q.filter(PayrollRun.status == status)
    limit = max(1, min(limit, 500))
    return q.order_by(PayrollRun.period_start.desc(), PayrollRun.id.desc()).limit(limit).all()
