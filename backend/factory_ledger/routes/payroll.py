# Overview: Flask API routes for payroll preview and settlement.

"""
Payroll routes.

State machine per period:
- preview: read-only projection, repeatable
- runs (POST): saved CALCULATED draft, locks nothing
- finalize: one-shot; locks the consumed logs and deductions

A finalize that lost a race answers 409 with retryable=true; re-run the
preview and finalize again with fresh items.
"""

from flask import Blueprint, request

from ..errors import ValidationError
from ..services import payroll_service
from . import request_actor

payroll_bp = Blueprint("payroll", __name__, url_prefix="/api/payroll")


def _period(source: dict) -> tuple:
    start = source.get("start")
    end = source.get("end")
    if not start or not end:
        raise ValidationError("start and end are required")
    return start, end


def _preview_response(start, end, items) -> dict:
    return {
        "period_start": str(start),
        "period_end": str(end),
        "items": [item.to_dict() for item in items],
        "total_gross_cents": sum(i.gross_pay_cents for i in items),
        "total_deductions_cents": sum(i.deductions_cents + i.statutory_deductions_cents for i in items),
        "total_net_cents": sum(i.net_pay_cents for i in items),
    }


@payroll_bp.get("/preview")
def preview_payroll_route():
    start, end = _period(request.args)
    return _preview_response(start, end, payroll_service.generate_payroll(start, end))


@payroll_bp.post("/finalize")
def finalize_payroll_route():
    """
    Settle items returned by /preview.

    Body: {"start", "end", "items": [...]}; items may add bonus_cents.
    """
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    start, end = _period(payload)
    items = payload.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list of payroll items")

    run = payroll_service.finalize_payroll(items, start, end, actor=actor)
    return {"run": run.to_dict()}, 201


@payroll_bp.post("/runs")
def calculate_run_route():
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    start, end = _period(payload)
    run = payroll_service.calculate_payroll_run(start, end, actor=actor)
    return {"run": run.to_dict()}, 201


@payroll_bp.get("/runs")
def list_runs_route():
    runs = payroll_service.list_payroll_runs(
        status=request.args.get("status") or None,
        limit=request.args.get("limit", default=100, type=int),
    )
    return {"items": [run.to_dict(include_entries=False) for run in runs]}


@payroll_bp.get("/runs/<int:run_id>")
def get_run_route(run_id: int):
    return {"run": payroll_service.get_payroll_run(run_id).to_dict()}


@payroll_bp.post("/runs/<int:run_id>/finalize")
def finalize_run_route(run_id: int):
    run = payroll_service.finalize_payroll_run(run_id, actor=request_actor())
    return {"run": run.to_dict()}
