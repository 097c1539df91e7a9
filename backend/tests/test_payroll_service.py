# Overview: Pytest coverage for payroll preview, settlement and draft runs.

"""
Payroll Settlement Tests

- Preview is a read-only, repeatable projection
- Finalize locks exactly the logs (and one-off deductions) it pays
- Nothing is ever settled twice; stale previews are rejected
- Draft runs finalize once
"""

import pytest
from sqlalchemy import update

from factory_ledger.errors import (
    AlreadyFinalized,
    ConcurrencyConflict,
    InsufficientDataError,
    ValidationError,
)
from factory_ledger.extensions import db
from factory_ledger.models import Deduction, LedgerEvent, PayrollRun, WorkerLog
from factory_ledger.services import (
    catalog_service,
    deduction_service,
    payroll_service,
    production_service,
)

JAN = ("2025-01-01", "2025-01-31")
FEB = ("2025-02-01", "2025-02-28")


@pytest.fixture
def per_unit_rate(db_session):
    """100 minor units per piece, no materials."""
    return catalog_service.create_rate(task_name="Knotting", price_per_unit_cents=100)


def _log(worker, rate, quantity, work_date="2025-01-15", **kwargs):
    return production_service.record_production(
        worker_id=worker.id, rate_id=rate.id, quantity=quantity, work_date=work_date, **kwargs
    )


def _deduct(worker, amount, deduction_date="2025-01-20", **kwargs):
    kwargs.setdefault("deduction_type", "ADVANCE")
    return deduction_service.add_deduction(
        worker_id=worker.id, amount_cents=amount, deduction_date=deduction_date, **kwargs
    )


@pytest.fixture
def january_payroll(db_session, worker, per_unit_rate):
    """Two pending logs (1000 and 2000) and one 300 deduction for the same worker."""
    first = _log(worker, per_unit_rate, 10, work_date="2025-01-05")
    second = _log(worker, per_unit_rate, 20, work_date="2025-01-25")
    deduction = _deduct(worker, 300)
    return {"log_ids": [first.log_id, second.log_id], "deduction_id": deduction.id}


class TestPreview:
    def test_gross_deductions_net(self, db_session, worker, january_payroll):
        items = payroll_service.generate_payroll(*JAN)

        assert len(items) == 1
        item = items[0]
        assert item.worker_id == worker.id
        assert item.gross_pay_cents == 3000
        assert item.deductions_cents == 300
        assert item.base_salary_cents == 0
        assert item.statutory_deductions_cents == 0
        assert item.net_pay_cents == 2700
        assert sorted(item.log_ids) == sorted(january_payroll["log_ids"])
        assert item.deduction_ids == [january_payroll["deduction_id"]]

    def test_preview_is_idempotent_and_read_only(self, db_session, january_payroll):
        events_before = LedgerEvent.query.count()

        first = [i.to_dict() for i in payroll_service.generate_payroll(*JAN)]
        second = [i.to_dict() for i in payroll_service.generate_payroll(*JAN)]

        assert first == second
        assert LedgerEvent.query.count() == events_before
        assert PayrollRun.query.count() == 0
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}

    def test_logs_outside_period_excluded(self, db_session, worker, per_unit_rate):
        _log(worker, per_unit_rate, 10, work_date="2024-12-31")
        _log(worker, per_unit_rate, 10, work_date="2025-02-01")
        assert payroll_service.generate_payroll(*JAN) == []

    def test_deductions_outside_period_excluded(self, db_session, worker, january_payroll):
        _deduct(worker, 999, deduction_date="2025-02-02")
        assert payroll_service.generate_payroll(*JAN)[0].deductions_cents == 300

    def test_worker_without_production_has_no_item(self, db_session, worker, salaried_worker, january_payroll):
        _deduct(salaried_worker, 100)
        assert [i.worker_id for i in payroll_service.generate_payroll(*JAN)] == [worker.id]

    def test_salaried_worker_with_ssb(self, db_session, salaried_worker, per_unit_rate):
        _log(salaried_worker, per_unit_rate, 10)
        item = payroll_service.generate_payroll(*JAN)[0]

        assert item.gross_pay_cents == 1000
        assert item.base_salary_cents == 50000
        # 2% of production earnings
        assert item.statutory_deductions_cents == 20
        assert item.net_pay_cents == 1000 + 50000 - 20

    def test_require_approval(self, db_session, app, worker, per_unit_rate, monkeypatch):
        monkeypatch.setitem(app.config, "PAYROLL_REQUIRE_APPROVAL", True)
        approved = _log(worker, per_unit_rate, 10)
        _log(worker, per_unit_rate, 20)
        production_service.approve_log(log_id=approved.log_id)

        items = payroll_service.generate_payroll(*JAN)
        assert items[0].log_ids == [approved.log_id]
        assert items[0].gross_pay_cents == 1000

    def test_period_validation(self, db_session):
        with pytest.raises(ValidationError):
            payroll_service.generate_payroll("2025-02-01", "2025-01-01")
        with pytest.raises(ValidationError):
            payroll_service.generate_payroll(None, "2025-01-01")
        with pytest.raises(ValidationError):
            payroll_service.generate_payroll("first of jan", "2025-01-31")


class TestFinalize:
    def test_finalize_locks_logs_and_clears_preview(self, db_session, worker, january_payroll):
        items = payroll_service.generate_payroll(*JAN)
        run = payroll_service.finalize_payroll(items, *JAN, actor="owner")

        assert run.status == "FINALIZED"
        assert run.finalized_by == "owner"
        assert run.total_net_cents == 2700
        assert run.worker_count == 1
        for log_id in january_payroll["log_ids"]:
            log = db.session.get(WorkerLog, log_id)
            assert log.status == "LOCKED"
            assert log.payroll_run_id == run.id
            assert log.locked_at is not None

        deduction = db.session.get(Deduction, january_payroll["deduction_id"])
        assert deduction.payroll_run_id == run.id

        assert payroll_service.generate_payroll(*JAN) == []

    def test_run_snapshots_consumed_rows(self, db_session, january_payroll):
        run = payroll_service.finalize_payroll(payroll_service.generate_payroll(*JAN), *JAN)

        entry = run.to_dict()["entries"][0]
        assert sorted(row["log_id"] for row in entry["logs"]) == sorted(january_payroll["log_ids"])
        assert [row["deduction_id"] for row in entry["deductions"]] == [january_payroll["deduction_id"]]
        assert entry["total_production_qty"] == "30.000"

        event = LedgerEvent.query.filter_by(event_type="payroll.finalized").one()
        assert event.entity_id == run.id

    def test_same_preview_cannot_settle_twice(self, db_session, january_payroll):
        items = payroll_service.generate_payroll(*JAN)
        payroll_service.finalize_payroll(items, *JAN)

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll(items, *JAN)
        assert PayrollRun.query.count() == 1

    def test_overlapping_period_excludes_settled_logs(self, db_session, worker, per_unit_rate, january_payroll):
        payroll_service.finalize_payroll(payroll_service.generate_payroll(*JAN), *JAN)
        late = _log(worker, per_unit_rate, 5, work_date="2025-02-03")

        items = payroll_service.generate_payroll("2025-01-15", "2025-02-15")
        assert items[0].log_ids == [late.log_id]
        assert items[0].deductions_cents == 0

    def test_stale_preview_rejected(self, db_session, january_payroll):
        items = payroll_service.generate_payroll(*JAN)
        production_service.update_log(log_id=january_payroll["log_ids"][0], quantity=11)

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll(items, *JAN)
        assert PayrollRun.query.count() == 0
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}

    def test_deleted_log_rejects_preview(self, db_session, january_payroll):
        items = payroll_service.generate_payroll(*JAN)
        production_service.delete_log(log_id=january_payroll["log_ids"][1])

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll(items, *JAN)
        assert db.session.get(WorkerLog, january_payroll["log_ids"][0]).status == "PENDING"

    def test_tampered_figures_rejected(self, db_session, january_payroll):
        payload = [i.to_dict() for i in payroll_service.generate_payroll(*JAN)]
        payload[0]["gross_pay_cents"] = 999999

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll(payload, *JAN)

    def test_caller_bonus_is_honoured(self, db_session, january_payroll):
        payload = [i.to_dict() for i in payroll_service.generate_payroll(*JAN)]
        payload[0]["bonus_cents"] = 500

        run = payroll_service.finalize_payroll(payload, *JAN)
        assert run.entries[0].bonus_cents == 500
        assert run.entries[0].net_pay_cents == 3200

    def test_negative_bonus_rejected(self, db_session, january_payroll):
        payload = [i.to_dict() for i in payroll_service.generate_payroll(*JAN)]
        payload[0]["bonus_cents"] = -1
        with pytest.raises(ValidationError):
            payroll_service.finalize_payroll(payload, *JAN)

    def test_empty_items_rejected(self, db_session):
        with pytest.raises(ValidationError):
            payroll_service.finalize_payroll([], *JAN)

    def test_recurring_deduction_applies_every_run(self, db_session, worker, per_unit_rate):
        recurring = _deduct(worker, 100, deduction_date="2024-12-01", deduction_type="LOAN", is_recurring=True)
        _log(worker, per_unit_rate, 10)
        jan = payroll_service.finalize_payroll(payroll_service.generate_payroll(*JAN), *JAN)
        assert jan.entries[0].deductions_cents == 100
        assert db.session.get(Deduction, recurring.id).payroll_run_id is None

        _log(worker, per_unit_rate, 10, work_date="2025-02-10")
        feb_items = payroll_service.generate_payroll(*FEB)
        assert feb_items[0].deduction_ids == [recurring.id]
        assert feb_items[0].net_pay_cents == 900


class TestDraftRuns:
    def test_calculate_locks_nothing(self, db_session, january_payroll):
        run = payroll_service.calculate_payroll_run(*JAN, actor="clerk")

        assert run.status == "CALCULATED"
        assert run.total_net_cents == 2700
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}
        assert db.session.get(Deduction, january_payroll["deduction_id"]).payroll_run_id is None

    def test_finalize_draft_once(self, db_session, january_payroll):
        draft = payroll_service.calculate_payroll_run(*JAN)

        run = payroll_service.finalize_payroll_run(draft.id, actor="owner")
        assert run.status == "FINALIZED"
        assert run.finalized_by == "owner"
        for log_id in january_payroll["log_ids"]:
            assert db.session.get(WorkerLog, log_id).payroll_run_id == draft.id

        with pytest.raises(AlreadyFinalized):
            payroll_service.finalize_payroll_run(draft.id)

    def test_already_finalized_is_a_conflict(self, db_session, january_payroll):
        draft = payroll_service.calculate_payroll_run(*JAN)
        payroll_service.finalize_payroll_run(draft.id)

        with pytest.raises(ConcurrencyConflict) as excinfo:
            payroll_service.finalize_payroll_run(draft.id)
        assert excinfo.value.http_status == 409

    def test_overlapping_drafts_settle_once(self, db_session, january_payroll):
        first = payroll_service.calculate_payroll_run(*JAN)
        second = payroll_service.calculate_payroll_run("2025-01-01", "2025-01-15")

        payroll_service.finalize_payroll_run(first.id)
        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll_run(second.id)
        assert payroll_service.get_payroll_run(second.id).status == "CALCULATED"

    def test_stale_draft_rejected(self, db_session, january_payroll):
        draft = payroll_service.calculate_payroll_run(*JAN)
        production_service.update_log(log_id=january_payroll["log_ids"][0], defect_qty=1)

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll_run(draft.id)
        assert payroll_service.get_payroll_run(draft.id).status == "CALCULATED"
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}

    def test_calculate_empty_period(self, db_session):
        with pytest.raises(ValidationError):
            payroll_service.calculate_payroll_run(*FEB)

    def test_unknown_run(self, db_session):
        with pytest.raises(InsufficientDataError):
            payroll_service.get_payroll_run(99999)
        with pytest.raises(InsufficientDataError):
            payroll_service.finalize_payroll_run(99999)

    def test_list_runs(self, db_session, january_payroll):
        draft = payroll_service.calculate_payroll_run(*JAN)
        assert [r.id for r in payroll_service.list_payroll_runs()] == [draft.id]
        assert payroll_service.list_payroll_runs(status="FINALIZED") == []


class TestEditLandingBeforeLock:
    """An edit that commits after the re-derive but before the lock must not be settled at the old pay."""

    @pytest.fixture
    def edit_after_rederive(self, monkeypatch):
        original = payroll_service._rederive
        edited = []

        def _rederive_then_edit(item, start_date, end_date):
            fresh = original(item, start_date, end_date)
            if not edited:
                log_id = fresh.log_ids[0]
                db.session.execute(
                    update(WorkerLog)
                    .where(WorkerLog.id == log_id)
                    .values(
                        total_pay_cents=WorkerLog.total_pay_cents * 2,
                        version_id=WorkerLog.version_id + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                edited.append(log_id)
            return fresh

        monkeypatch.setattr(payroll_service, "_rederive", _rederive_then_edit)
        return edited

    def test_finalize_rejects_edited_log(self, db_session, january_payroll, edit_after_rederive):
        items = payroll_service.generate_payroll(*JAN)

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll(items, *JAN)

        assert edit_after_rederive == [january_payroll["log_ids"][0]]
        assert PayrollRun.query.count() == 0
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}
        assert {log.payroll_run_id for log in WorkerLog.query.all()} == {None}

    def test_draft_finalize_rejects_edited_log(self, db_session, january_payroll, edit_after_rederive):
        draft = payroll_service.calculate_payroll_run(*JAN)

        with pytest.raises(ConcurrencyConflict):
            payroll_service.finalize_payroll_run(draft.id)

        assert payroll_service.get_payroll_run(draft.id).status == "CALCULATED"
        assert {log.status for log in WorkerLog.query.all()} == {"PENDING"}

    def test_unedited_logs_still_settle(self, db_session, january_payroll):
        run = payroll_service.finalize_payroll(payroll_service.generate_payroll(*JAN), *JAN)

        locked = WorkerLog.query.order_by(WorkerLog.id).all()
        assert [log.payroll_run_id for log in locked] == [run.id, run.id]
        assert sum(log.total_pay_cents for log in locked) == run.entries[0].gross_pay_cents


class TestOutstandingDeductions:
    def test_one_off_in_idle_period_stays_outstanding(self, db_session, worker, per_unit_rate):
        advance = _deduct(worker, 400, deduction_date="2025-02-10")
        _log(worker, per_unit_rate, 10, work_date="2025-03-05")

        assert payroll_service.generate_payroll(*FEB) == []
        march = payroll_service.generate_payroll("2025-03-01", "2025-03-31")
        assert march[0].deduction_ids == []
        payroll_service.finalize_payroll(march, "2025-03-01", "2025-03-31")

        outstanding = deduction_service.list_deductions(worker_id=worker.id, include_settled=False)
        assert [d.id for d in outstanding] == [advance.id]
