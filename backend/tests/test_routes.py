# Overview: Pytest coverage for the HTTP surface and its error rendering.

from factory_ledger.models import LedgerEvent


def _log_payload(worker, rate, **overrides):
    payload = {
        "worker_id": worker.id,
        "rate_id": rate.id,
        "quantity": 30,
        "work_date": "2025-01-15",
    }
    payload.update(overrides)
    return payload


class TestSystemRoutes:
    def test_health(self, client, db_session, yarn):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert response.json["checks"]["database"]["details"]["inventory_items"] == 1

    def test_version(self, client, db_session):
        response = client.get("/version")
        assert response.status_code == 200
        assert "api_version" in response.json


class TestProductionRoutes:
    def test_create_log_returns_warnings(self, client, db_session, worker, weaving_rate, yarn):
        response = client.post(
            "/api/production/logs",
            json=_log_payload(worker, weaving_rate),
            headers={"X-Actor": "supervisor-1"},
        )

        assert response.status_code == 201
        body = response.json
        assert body["total_pay_cents"] == 15000
        assert body["materials_deducted"] == 1
        assert body["warnings"] == ["Cotton Yarn: need 15.00, only 10.00 available"]
        assert body["log"]["created_by"] == "supervisor-1"

        item = client.get(f"/api/inventory/items/{yarn.id}").json
        assert item["current_stock"] == "-5.000"
        assert item["in_sync"] is True

    def test_actor_in_body(self, client, db_session, worker, weaving_rate):
        response = client.post(
            "/api/production/logs",
            json=_log_payload(worker, weaving_rate, quantity=1, actor="line-lead"),
        )
        assert response.status_code == 201
        assert response.json["log"]["created_by"] == "line-lead"

    def test_validation_error_shape(self, client, db_session, worker, weaving_rate):
        response = client.post(
            "/api/production/logs",
            json=_log_payload(worker, weaving_rate, quantity=5, defect_qty=6),
        )
        assert response.status_code == 400
        assert response.json["code"] == "validation_error"
        assert response.json["retryable"] is False

    def test_missing_and_unknown_fields(self, client, db_session, worker):
        response = client.post("/api/production/logs", json={"worker_id": worker.id})
        assert response.status_code == 400
        assert "Missing required fields" in response.json["error"]

        response = client.post(
            "/api/production/logs",
            json={"worker_id": worker.id, "rate_id": 1, "quantity": 1, "total_pay_cents": 1},
        )
        assert response.status_code == 400
        assert response.json["error"] == "Field not allowed: total_pay_cents"

    def test_unknown_rate_is_404(self, client, db_session, worker):
        response = client.post(
            "/api/production/logs",
            json={"worker_id": worker.id, "rate_id": 99999, "quantity": 1},
        )
        assert response.status_code == 404
        assert response.json["code"] == "not_found"

    def test_update_approve_delete(self, client, db_session, worker, plain_rate):
        log_id = client.post("/api/production/logs", json=_log_payload(worker, plain_rate, quantity=5)).json["log_id"]

        response = client.patch(f"/api/production/logs/{log_id}", json={"quantity": "6"})
        assert response.status_code == 200
        assert response.json["log"]["total_pay_cents"] == 600

        response = client.post(f"/api/production/logs/{log_id}/approve")
        assert response.json["log"]["status"] == "APPROVED"

        response = client.delete(f"/api/production/logs/{log_id}")
        assert response.status_code == 200
        assert response.json["inventory_reversed"] is False
        assert client.get(f"/api/production/logs/{log_id}").status_code == 404

    def test_reverse_materials(self, client, db_session, worker, weaving_rate, yarn):
        log_id = client.post("/api/production/logs", json=_log_payload(worker, weaving_rate, quantity=4)).json["log_id"]

        response = client.post(f"/api/production/logs/{log_id}/reverse-materials", json={"reason": "wrong rate"})
        assert response.status_code == 201
        assert response.json["items"][0]["transaction"]["type"] == "IN"

        response = client.post(f"/api/production/logs/{log_id}/reverse-materials")
        assert response.status_code == 409
        assert response.json["code"] == "invalid_state"

    def test_stats_and_list(self, client, db_session, worker, plain_rate):
        client.post("/api/production/logs", json=_log_payload(worker, plain_rate, quantity=3))

        stats = client.get("/api/production/stats?date=2025-01-15").json
        assert stats["log_count"] == 1
        assert stats["total_wages_cents"] == 300

        listing = client.get(f"/api/production/logs?worker_id={worker.id}").json
        assert len(listing["items"]) == 1

        assert client.get("/api/production/logs?date=not-a-date").status_code == 400


class TestInventoryRoutes:
    def test_adjust_and_list(self, client, db_session, yarn):
        response = client.post(
            "/api/inventory/adjust",
            json={"item_id": yarn.id, "type": "in", "quantity": "2.5", "reason": "purchase", "unit_cost_cents": 600},
        )
        assert response.status_code == 201
        assert response.json["new_balance"] == "12.500"

        transactions = client.get(f"/api/inventory/transactions?item_id={yarn.id}").json["items"]
        assert [tx["type"] for tx in transactions] == ["IN", "IN"]

    def test_adjust_rejects_cost_on_out(self, client, db_session, yarn):
        response = client.post(
            "/api/inventory/adjust",
            json={"item_id": yarn.id, "type": "OUT", "quantity": 1, "reason": "usage", "unit_cost_cents": 600},
        )
        assert response.status_code == 400

    def test_compensate_route(self, client, db_session, yarn):
        tx_id = client.post(
            "/api/inventory/adjust",
            json={"item_id": yarn.id, "type": "OUT", "quantity": 3, "reason": "usage"},
        ).json["transaction"]["id"]

        response = client.post(f"/api/inventory/transactions/{tx_id}/compensate", json={"reason": "typo"})
        assert response.status_code == 201
        assert response.json["new_balance"] == "10.000"

    def test_low_stock_and_reconcile(self, client, db_session, dye):
        client.post("/api/inventory/adjust", json={"item_id": dye.id, "type": "OUT", "quantity": 38, "reason": "usage"})

        low = client.get("/api/inventory/low-stock").json["items"]
        assert [item["name"] for item in low] == ["Indigo Dye"]

        report = client.get("/api/inventory/reconcile").json
        assert report == {"in_sync": True, "drifts": []}

    def test_repair_rejects_non_integer_item(self, client, db_session, yarn):
        response = client.post("/api/inventory/reconcile", json={"item_id": "1"})
        assert response.status_code == 400
        assert response.json == {
            "error": "item_id must be an integer",
            "code": "validation_error",
            "retryable": False,
        }

        response = client.post("/api/inventory/reconcile", json={"item_id": yarn.id})
        assert response.status_code == 200
        assert response.json == {"repaired": []}


class TestDeductionRoutes:
    def test_add_and_list(self, client, db_session, worker):
        response = client.post(
            "/api/deductions",
            json={"worker_id": worker.id, "type": "LOAN", "amount_cents": 300, "deduction_date": "2025-01-10"},
        )
        assert response.status_code == 201
        assert response.json["deduction"]["amount_cents"] == 300

        listing = client.get(f"/api/deductions?worker_id={worker.id}").json["items"]
        assert len(listing) == 1

    def test_amount_must_be_positive(self, client, db_session, worker):
        response = client.post("/api/deductions", json={"worker_id": worker.id, "type": "LOAN", "amount_cents": 0})
        assert response.status_code == 400


class TestPayrollRoutes:
    def _seed(self, client, worker, rate):
        client.post("/api/production/logs", json=_log_payload(worker, rate, quantity=10))
        client.post("/api/production/logs", json=_log_payload(worker, rate, quantity=20, work_date="2025-01-20"))
        client.post(
            "/api/deductions",
            json={"worker_id": worker.id, "type": "ADVANCE", "amount_cents": 300, "deduction_date": "2025-01-10"},
        )

    def test_preview_finalize_flow(self, client, db_session, worker, plain_rate):
        self._seed(client, worker, plain_rate)

        preview = client.get("/api/payroll/preview?start=2025-01-01&end=2025-01-31").json
        assert preview["total_net_cents"] == 2700

        response = client.post(
            "/api/payroll/finalize",
            json={"start": "2025-01-01", "end": "2025-01-31", "items": preview["items"]},
            headers={"X-Actor": "owner"},
        )
        assert response.status_code == 201
        run = response.json["run"]
        assert run["status"] == "FINALIZED"
        assert run["finalized_by"] == "owner"

        again = client.post(
            "/api/payroll/finalize",
            json={"start": "2025-01-01", "end": "2025-01-31", "items": preview["items"]},
        )
        assert again.status_code == 409
        assert again.json["code"] == "concurrency_conflict"
        assert again.json["retryable"] is True

        assert client.get("/api/payroll/preview?start=2025-01-01&end=2025-01-31").json["items"] == []
        assert LedgerEvent.query.filter_by(event_type="payroll.finalized").count() == 1

    def test_draft_run_flow(self, client, db_session, worker, plain_rate):
        self._seed(client, worker, plain_rate)

        draft = client.post("/api/payroll/runs", json={"start": "2025-01-01", "end": "2025-01-31"}).json["run"]
        assert draft["status"] == "CALCULATED"

        response = client.post(f"/api/payroll/runs/{draft['id']}/finalize")
        assert response.status_code == 200
        assert response.json["run"]["status"] == "FINALIZED"

        again = client.post(f"/api/payroll/runs/{draft['id']}/finalize")
        assert again.status_code == 409
        assert again.json["code"] == "already_finalized"

        runs = client.get("/api/payroll/runs").json["items"]
        assert [r["id"] for r in runs] == [draft["id"]]
        assert client.get(f"/api/payroll/runs/{draft['id']}").json["run"]["entries"][0]["net_pay_cents"] == 2700

    def test_preview_requires_period(self, client, db_session):
        response = client.get("/api/payroll/preview?start=2025-01-01")
        assert response.status_code == 400
