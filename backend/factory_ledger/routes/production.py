# Overview: Flask API routes for production logs; parses input and returns JSON responses.

"""
Production log routes.

Time semantics:
- work_date is a business date (YYYY-MM-DD); omitted means today (UTC).
- Responses carry money in minor units (*_cents) and quantities as strings.
"""

from flask import Blueprint, request

from ..errors import ValidationError
from ..models import WorkerLog
from ..services import production_service
from ..time_utils import today
from ..validation import ModelValidationPolicy, validate_payload
from . import request_actor

production_bp = Blueprint("production", __name__, url_prefix="/api/production")

LOG_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"worker_id", "rate_id", "quantity", "defect_qty", "shift", "work_date"},
    required_on_create={"worker_id", "rate_id", "quantity"},
)

LOG_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "defect_qty", "shift"},
)


@production_bp.post("/logs")
def create_log_route():
    """
    Record production and consume its bill of materials in one unit of work.

    Low stock never blocks the log; warnings come back in the response.
    """
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    patch = validate_payload(model=WorkerLog, payload=payload, policy=LOG_CREATE_POLICY, partial=False)

    result = production_service.record_production(
        worker_id=patch["worker_id"],
        rate_id=patch["rate_id"],
        quantity=patch["quantity"],
        defect_qty=patch.get("defect_qty") or 0,
        shift=patch.get("shift") or "DAY",
        work_date=patch.get("work_date"),
        actor=actor,
    )
    return result.to_dict(), 201


@production_bp.get("/logs")
def list_logs_route():
    limit = request.args.get("limit", default=500, type=int)
    logs = production_service.list_logs(
        work_date=request.args.get("date") or None,
        worker_id=request.args.get("worker_id", type=int),
        status=request.args.get("status") or None,
        limit=limit,
    )
    return {"items": [log.to_dict() for log in logs]}


@production_bp.get("/logs/<int:log_id>")
def get_log_route(log_id: int):
    from ..services.inventory_service import list_transactions

    log = production_service.get_log(log_id)
    return {
        "log": log.to_dict(),
        "transactions": [tx.to_dict() for tx in list_transactions(worker_log_id=log_id)],
    }


@production_bp.patch("/logs/<int:log_id>")
def update_log_route(log_id: int):
    """Edit an unsettled log; pay is recomputed, inventory is not touched."""
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    patch = validate_payload(model=WorkerLog, payload=payload, policy=LOG_UPDATE_POLICY, partial=True)
    if not patch:
        raise ValidationError("Nothing to update")

    log = production_service.update_log(
        log_id=log_id,
        quantity=patch.get("quantity"),
        defect_qty=patch.get("defect_qty"),
        shift=patch.get("shift"),
        actor=actor,
    )
    return {"log": log.to_dict()}


@production_bp.post("/logs/<int:log_id>/approve")
def approve_log_route(log_id: int):
    log = production_service.approve_log(log_id=log_id, actor=request_actor())
    return {"log": log.to_dict()}


@production_bp.delete("/logs/<int:log_id>")
def delete_log_route(log_id: int):
    snapshot = production_service.delete_log(log_id=log_id, actor=request_actor())
    return {"deleted": snapshot, "inventory_reversed": False}


@production_bp.post("/logs/<int:log_id>/reverse-materials")
def reverse_materials_route(log_id: int):
    """Compensate the material consumption of a log (deleted logs included)."""
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    reversed_entries = production_service.reverse_log_materials(
        log_id=log_id,
        reason=payload.get("reason"),
        actor=actor,
    )
    return {"items": [entry.to_dict() for entry in reversed_entries]}, 201


@production_bp.get("/stats")
def daily_stats_route():
    return production_service.daily_stats(request.args.get("date") or today())
