# Overview: Flask API routes for the deduction ledger.

from flask import Blueprint, request

from ..models import Deduction
from ..services import deduction_service
from ..validation import ModelValidationPolicy, enforce_rules_amount, validate_payload
from . import request_actor

deductions_bp = Blueprint("deductions", __name__, url_prefix="/api/deductions")

DEDUCTION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"worker_id", "type", "amount_cents", "reason", "deduction_date", "is_recurring"},
    required_on_create={"worker_id", "type", "amount_cents"},
)


@deductions_bp.post("")
def add_deduction_route():
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    patch = validate_payload(model=Deduction, payload=payload, policy=DEDUCTION_CREATE_POLICY, partial=False)
    enforce_rules_amount(patch)

    deduction = deduction_service.add_deduction(
        worker_id=patch["worker_id"],
        deduction_type=patch["type"],
        amount_cents=patch["amount_cents"],
        reason=patch.get("reason"),
        deduction_date=patch.get("deduction_date"),
        is_recurring=bool(patch.get("is_recurring")),
        actor=actor,
    )
    return {"deduction_id": deduction.id, "deduction": deduction.to_dict()}, 201


@deductions_bp.get("")
def list_deductions_route():
    include_settled = request.args.get("include_settled", "true").lower() not in ("0", "false", "no")
    deductions = deduction_service.list_deductions(
        worker_id=request.args.get("worker_id", type=int),
        start=request.args.get("start") or None,
        end=request.args.get("end") or None,
        include_settled=include_settled,
    )
    return {"items": [d.to_dict() for d in deductions]}
