# Overview: Threaded concurrency coverage for stock consumption and payroll settlement.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread gets its own app context (and so its own session), the
way concurrent requests do.
"""
import os
import tempfile
import threading
import unittest
from decimal import Decimal
from unittest import mock

from sqlalchemy import update

from factory_ledger import create_app
from factory_ledger.errors import ConcurrencyConflict
from factory_ledger.extensions import db
from factory_ledger.models import InventoryItem, InventoryTransaction, PayrollRun, WorkerLog
from factory_ledger.services import catalog_service, inventory_service, payroll_service, production_service


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LEDGER_RETRY_ATTEMPTS": 20,
            "LEDGER_RETRY_BACKOFF": 0.02,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            self.worker_ids = [
                catalog_service.create_worker(name=f"Weaver {n}").id
                for n in range(2)
            ]
            self.yarn_id = catalog_service.create_inventory_item(
                name="Cotton Yarn",
                unit="kg",
                opening_stock=10,
            ).id
            self.rate_id = catalog_service.create_rate(
                task_name="Weaving A",
                price_per_unit_cents=500,
                materials=[{"item_id": self.yarn_id, "quantity_per_unit": "0.5"}],
            ).id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, targets):
        threads = [threading.Thread(target=t) for t in targets]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def test_concurrent_production_consumes_exactly(self):
        """Two logs each needing 5 of 10 units leave exactly 0, not a lost update."""
        results = []
        errors = []
        lock = threading.Lock()

        def record(worker_id):
            def _target():
                with self.app.app_context():
                    try:
                        result = production_service.record_production(
                            worker_id=worker_id,
                            rate_id=self.rate_id,
                            quantity=10,
                            work_date="2025-01-15",
                        )
                        with lock:
                            results.append(result.log_id)
                    except Exception as exc:
                        with lock:
                            errors.append(exc)
                    finally:
                        db.session.remove()
            return _target

        self._run_threads([record(worker_id) for worker_id in self.worker_ids])

        self.assertFalse(errors)
        self.assertEqual(len(results), 2)
        with self.app.app_context():
            item = inventory_service.get_item(self.yarn_id)
            self.assertEqual(Decimal(item.current_stock), Decimal("0"))
            self.assertEqual(str(inventory_service.journal_balance(self.yarn_id)), "0.000")
            self.assertEqual(inventory_service.reconcile_stock(), [])
            outs = InventoryTransaction.query.filter_by(item_id=self.yarn_id, type="OUT").count()
            self.assertEqual(outs, 2)

    def test_concurrent_finalize_settles_once(self):
        with self.app.app_context():
            for worker_id in self.worker_ids:
                production_service.record_production(
                    worker_id=worker_id,
                    rate_id=self.rate_id,
                    quantity=2,
                    work_date="2025-01-15",
                )
            preview = [item.to_dict() for item in payroll_service.generate_payroll("2025-01-01", "2025-01-31")]

        runs = []
        conflicts = []
        others = []
        lock = threading.Lock()

        def finalize():
            with self.app.app_context():
                try:
                    run = payroll_service.finalize_payroll(preview, "2025-01-01", "2025-01-31")
                    with lock:
                        runs.append(run.id)
                except ConcurrencyConflict as exc:
                    with lock:
                        conflicts.append(exc)
                except Exception as exc:
                    with lock:
                        others.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([finalize, finalize])

        self.assertFalse(others)
        self.assertEqual(len(runs), 1)
        self.assertEqual(len(conflicts), 1)
        with self.app.app_context():
            self.assertEqual(PayrollRun.query.count(), 1)
            stamps = {log.payroll_run_id for log in WorkerLog.query.all()}
            self.assertEqual(stamps, {runs[0]})
            self.assertEqual(payroll_service.generate_payroll("2025-01-01", "2025-01-31"), [])

    def test_concurrent_draft_finalize_settles_once(self):
        with self.app.app_context():
            production_service.record_production(
                worker_id=self.worker_ids[0],
                rate_id=self.rate_id,
                quantity=2,
                work_date="2025-01-15",
            )
            run_id = payroll_service.calculate_payroll_run("2025-01-01", "2025-01-31").id

        outcomes = []
        lock = threading.Lock()

        def finalize():
            with self.app.app_context():
                try:
                    payroll_service.finalize_payroll_run(run_id)
                    outcome = "ok"
                except ConcurrencyConflict:
                    outcome = "conflict"
                except Exception as exc:
                    outcome = exc
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(outcome)

        self._run_threads([finalize, finalize])

        self.assertEqual(sorted(outcomes, key=str), ["conflict", "ok"])
        with self.app.app_context():
            self.assertEqual(payroll_service.get_payroll_run(run_id).status, "FINALIZED")


    def _in_thread(self, func):
        """Run func to completion on another thread with its own app context."""
        errors = []

        def _target():
            with self.app.app_context():
                try:
                    func()
                except Exception as exc:
                    errors.append(exc)
                finally:
                    db.session.remove()

        self._run_threads([_target])
        self.assertFalse(errors)

    def test_log_edited_between_rederive_and_lock_is_not_settled(self):
        with self.app.app_context():
            log_id = production_service.record_production(
                worker_id=self.worker_ids[0],
                rate_id=self.rate_id,
                quantity=2,
                work_date="2025-01-15",
            ).log_id
            preview = [item.to_dict() for item in payroll_service.generate_payroll("2025-01-01", "2025-01-31")]

        original = payroll_service._rederive
        edits = []

        def _rederive_then_edit(item, start_date, end_date):
            fresh = original(item, start_date, end_date)
            if not edits:
                edits.append(log_id)
                self._in_thread(lambda: production_service.update_log(log_id=log_id, quantity=4))
            return fresh

        with self.app.app_context():
            with mock.patch.object(payroll_service, "_rederive", _rederive_then_edit):
                with self.assertRaises(ConcurrencyConflict):
                    payroll_service.finalize_payroll(preview, "2025-01-01", "2025-01-31")
            db.session.remove()

            self.assertEqual(edits, [log_id])
            self.assertEqual(PayrollRun.query.count(), 0)
            log = db.session.get(WorkerLog, log_id)
            self.assertEqual(log.status, "PENDING")
            self.assertEqual(log.total_pay_cents, 2000)

            fresh_preview = payroll_service.generate_payroll("2025-01-01", "2025-01-31")
            run = payroll_service.finalize_payroll(fresh_preview, "2025-01-01", "2025-01-31")
            self.assertEqual(run.total_gross_cents, 2000)
            self.assertEqual(run.entries[0].logs_snapshot[0]["total_pay_cents"], 2000)

    def test_stock_movement_during_repair_is_kept(self):
        with self.app.app_context():
            db.session.execute(
                update(InventoryItem).where(InventoryItem.id == self.yarn_id).values(current_stock=Decimal("12"))
            )
            db.session.commit()

        original = inventory_service.find_stock_drifts
        calls = []

        def _scan_then_move(item_id=None):
            drifts = original(item_id)
            calls.append(item_id)
            # the second scan is the one inside the repair transaction
            if len(calls) == 2:
                self._in_thread(lambda: inventory_service.adjust_stock(
                    item_id=self.yarn_id, tx_type="IN", quantity=5, reason="delivery",
                ))
            return drifts

        with self.app.app_context():
            with mock.patch.object(inventory_service, "find_stock_drifts", _scan_then_move):
                repaired = inventory_service.reconcile_stock(repair=True, actor="auditor")
            db.session.remove()

            self.assertEqual(len(calls), 2)
            self.assertEqual([d.journal for d in repaired], [Decimal("15")])
            self.assertEqual(Decimal(inventory_service.get_item(self.yarn_id).current_stock), Decimal("15"))
            self.assertEqual(inventory_service.find_stock_drifts(), [])


if __name__ == "__main__":
    unittest.main()
