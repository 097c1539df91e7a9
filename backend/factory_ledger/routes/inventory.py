# Overview: Flask API routes for the inventory journal; parses input and returns JSON responses.

"""
Inventory journal routes.

- Stock only moves through journal entries (adjust, production, compensation).
- Quantities travel as strings to keep decimal precision.
"""

from flask import Blueprint, request

from ..errors import ValidationError
from ..models import InventoryItem, InventoryTransaction
from ..services import inventory_service
from ..validation import ModelValidationPolicy, enforce_rules_stock_adjust, validate_payload
from . import request_actor

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"item_id", "type", "quantity", "reason", "unit_cost_cents", "entry_date"},
    required_on_create={"item_id", "type", "quantity", "reason"},
)


@inventory_bp.get("/items")
def list_items_route():
    items = InventoryItem.query.filter(InventoryItem.is_active.is_(True)).order_by(InventoryItem.name).all()
    return {
        "items": [item.to_dict() for item in items],
        "total_value_cents": inventory_service.get_inventory_value_cents(),
    }


@inventory_bp.get("/items/<int:item_id>")
def item_summary_route(item_id: int):
    return inventory_service.get_item_summary(item_id)


@inventory_bp.get("/low-stock")
def low_stock_route():
    return {"items": [item.to_dict() for item in inventory_service.list_low_stock_items()]}


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Manual stock-in / stock-out.

    IN may carry unit_cost_cents, which becomes the item's last cost.
    """
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    patch = validate_payload(
        model=InventoryTransaction,
        payload=payload,
        policy=STOCK_ADJUST_POLICY,
        partial=False,
    )
    enforce_rules_stock_adjust(patch)

    applied = inventory_service.adjust_stock(
        item_id=patch["item_id"],
        tx_type=patch["type"],
        quantity=patch["quantity"],
        reason=patch["reason"],
        actor=actor,
        unit_cost_cents=patch.get("unit_cost_cents"),
        entry_date=patch.get("entry_date"),
    )
    return applied.to_dict(), 201


@inventory_bp.get("/transactions")
def list_transactions_route():
    transactions = inventory_service.list_transactions(
        item_id=request.args.get("item_id", type=int),
        worker_log_id=request.args.get("worker_log_id", type=int),
        limit=request.args.get("limit", default=200, type=int),
    )
    return {"items": [tx.to_dict() for tx in transactions]}


@inventory_bp.post("/transactions/<int:transaction_id>/compensate")
def compensate_transaction_route(transaction_id: int):
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    applied = inventory_service.compensate_transaction(
        transaction_id=transaction_id,
        reason=payload.get("reason"),
        actor=actor,
    )
    return applied.to_dict(), 201


@inventory_bp.get("/reconcile")
def reconcile_report_route():
    drifts = inventory_service.reconcile_stock(item_id=request.args.get("item_id", type=int))
    return {"in_sync": not drifts, "drifts": [d.to_dict() for d in drifts]}


@inventory_bp.post("/reconcile")
def reconcile_repair_route():
    """Rebuild drifted stock balances from the journal (audited)."""
    payload = request.get_json(silent=True) or {}
    actor = request_actor(payload)
    item_id = payload.get("item_id")
    if item_id is not None and (isinstance(item_id, bool) or not isinstance(item_id, int)):
        raise ValidationError("item_id must be an integer")
    repaired = inventory_service.reconcile_stock(item_id=item_id, repair=True, actor=actor)
    return {"repaired": [d.to_dict() for d in repaired]}
