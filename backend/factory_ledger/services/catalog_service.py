# Overview: Service-layer operations for workers, rates and inventory items (ledger reference data).

"""
Reference data the ledger reads: workers, rates (with their bill of
materials) and inventory items.

Inventory items are created with a zero projection; opening stock is
journaled as an IN entry so the journal/projection invariant holds from
the first row.
"""

from __future__ import annotations

import logging

from ..errors import InsufficientDataError, InvalidStateError, ValidationError
from ..extensions import db
from ..models import InventoryItem, Rate, RateMaterial, Worker
from ..models.inventory import TX_TYPE_IN
from ..models.rates import RATE_STATUS_ACTIVE, RATE_STATUS_ARCHIVED
from ..models.workers import SALARY_TYPES, WORKER_ROLES
from ..quantities import ZERO, to_quantity
from ..validation import coerce_date
from .audit_service import append_ledger_event
from .concurrency import run_in_transaction
from .inventory_service import apply_transaction

logger = logging.getLogger(__name__)


def _require_name(value, field: str = "name") -> str:
    if not value or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()[:255]


def _require_cents(value, field: str, *, positive: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in minor units")
    if positive and value <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    if value < 0:
        raise ValidationError(f"{field} cannot be negative")
    return value


def create_worker(
    *,
    name: str,
    salary_type: str = "PIECE_RATE",
    base_salary_cents: int = 0,
    role: str = "WEAVER",
    phone: str | None = None,
    is_ssb: bool = False,
    joined_on=None,
) -> Worker:
    name = _require_name(name)
    if salary_type not in SALARY_TYPES:
        raise ValidationError(f"salary_type must be one of {', '.join(SALARY_TYPES)}")
    if role not in WORKER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(WORKER_ROLES)}")
    base_salary_cents = _require_cents(base_salary_cents, "base_salary_cents")

    def _op():
        worker = Worker(
            name=name,
            phone=phone,
            role=role,
            salary_type=salary_type,
            base_salary_cents=base_salary_cents,
            is_ssb=bool(is_ssb),
            joined_on=coerce_date(joined_on, "joined_on"),
        )
        db.session.add(worker)
        db.session.flush()
        return worker

    return run_in_transaction(_op)


def get_worker(worker_id: int) -> Worker:
    worker = db.session.get(Worker, worker_id)
    if worker is None:
        raise InsufficientDataError(f"worker {worker_id} not found")
    return worker


def create_inventory_item(
    *,
    name: str,
    category: str = "General",
    unit: str = "pcs",
    opening_stock=0,
    min_stock_level=0,
    cost_per_unit_cents: int = 0,
    actor: str | None = None,
) -> InventoryItem:
    name = _require_name(name)
    opening = to_quantity(opening_stock, "opening_stock")
    if opening < ZERO:
        raise ValidationError("opening_stock cannot be negative")
    minimum = to_quantity(min_stock_level, "min_stock_level")
    if minimum < ZERO:
        raise ValidationError("min_stock_level cannot be negative")
    cost_per_unit_cents = _require_cents(cost_per_unit_cents, "cost_per_unit_cents")

    def _op():
        if InventoryItem.query.filter_by(name=name).first() is not None:
            raise ValidationError(f"inventory item {name!r} already exists")
        item = InventoryItem(
            name=name,
            category=category or "General",
            unit=unit or "pcs",
            current_stock=ZERO,
            min_stock_level=minimum,
            cost_per_unit_cents=cost_per_unit_cents,
        )
        db.session.add(item)
        db.session.flush()
        if opening > ZERO:
            apply_transaction(
                item_id=item.id,
                tx_type=TX_TYPE_IN,
                quantity=opening,
                reason="Opening stock",
                actor=actor,
                unit_cost_cents=cost_per_unit_cents or None,
            )
        return item

    item = run_in_transaction(_op)
    logger.info("Inventory item %s created with opening stock %s", item.id, opening)
    return item


def _build_materials(materials) -> list[RateMaterial]:
    rows = []
    seen = set()
    for raw in materials or []:
        item_id = raw.get("item_id")
        if item_id is None:
            raise ValidationError("each material needs an item_id")
        if item_id in seen:
            raise ValidationError(f"item {item_id} is listed twice in the bill of materials")
        seen.add(item_id)
        if db.session.get(InventoryItem, item_id) is None:
            raise InsufficientDataError(f"inventory item {item_id} not found")
        per_unit = to_quantity(raw.get("quantity_per_unit"), "quantity_per_unit")
        if per_unit <= ZERO:
            raise ValidationError("quantity_per_unit must be greater than 0")
        rows.append(RateMaterial(item_id=item_id, quantity_per_unit=per_unit))
    return rows


def create_rate(
    *,
    task_name: str,
    price_per_unit_cents: int,
    unit: str = "pcs",
    currency: str = "MMK",
    description: str | None = None,
    materials: list[dict] | None = None,
    actor: str | None = None,
) -> Rate:
    """
    Create a rate. materials: [{"item_id": int, "quantity_per_unit": number}].
    """
    task_name = _require_name(task_name, "task_name")
    price_per_unit_cents = _require_cents(price_per_unit_cents, "price_per_unit_cents", positive=True)

    def _op():
        rate = Rate(
            task_name=task_name,
            price_per_unit_cents=price_per_unit_cents,
            unit=unit or "pcs",
            currency=currency or "MMK",
            description=description,
            status=RATE_STATUS_ACTIVE,
        )
        rate.materials = _build_materials(materials)
        db.session.add(rate)
        db.session.flush()
        append_ledger_event(
            event_type="rate.created",
            event_category="rates",
            entity_type="rate",
            entity_id=rate.id,
            actor=actor,
            payload={"price_per_unit_cents": price_per_unit_cents},
        )
        return rate

    return run_in_transaction(_op)


def get_rate(rate_id: int) -> Rate:
    rate = db.session.get(Rate, rate_id)
    if rate is None:
        raise InsufficientDataError(f"rate {rate_id} not found")
    return rate


def update_rate_price(*, rate_id: int, price_per_unit_cents: int, actor: str | None = None) -> Rate:
    """Reprice a rate. Logs already written keep their snapshotted price."""
    price_per_unit_cents = _require_cents(price_per_unit_cents, "price_per_unit_cents", positive=True)

    def _op():
        rate = get_rate(rate_id)
        if rate.status == RATE_STATUS_ARCHIVED:
            raise InvalidStateError("archived rates cannot be repriced")
        previous = rate.price_per_unit_cents
        rate.price_per_unit_cents = price_per_unit_cents
        db.session.flush()
        append_ledger_event(
            event_type="rate.repriced",
            event_category="rates",
            entity_type="rate",
            entity_id=rate.id,
            actor=actor,
            payload={"from_cents": previous, "to_cents": price_per_unit_cents},
        )
        return rate

    return run_in_transaction(_op)


def archive_rate(*, rate_id: int, actor: str | None = None) -> Rate:
    def _op():
        rate = get_rate(rate_id)
        rate.status = RATE_STATUS_ARCHIVED
        db.session.flush()
        append_ledger_event(
            event_type="rate.archived",
            event_category="rates",
            entity_type="rate",
            entity_id=rate.id,
            actor=actor,
        )
        return rate

    return run_in_transaction(_op)


def restore_rate(*, rate_id: int, actor: str | None = None) -> Rate:
    """ARCHIVED -> ACTIVE; the rate can be logged against again."""
    def _op():
        rate = get_rate(rate_id)
        if rate.status == RATE_STATUS_ACTIVE:
            return rate
        rate.status = RATE_STATUS_ACTIVE
        db.session.flush()
        append_ledger_event(
            event_type="rate.restored",
            event_category="rates",
            entity_type="rate",
            entity_id=rate.id,
            actor=actor,
        )
        return rate

    return run_in_transaction(_op)


def set_worker_active(*, worker_id: int, is_active: bool, actor: str | None = None) -> Worker:
    """
    Activate or deactivate a worker.

    Inactive workers cannot record new production; their unsettled logs
    still settle in the next payroll run.
    """
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean")

    def _op():
        worker = get_worker(worker_id)
        if worker.is_active == is_active:
            return worker
        worker.is_active = is_active
        db.session.flush()
        append_ledger_event(
            event_type="worker.activated" if is_active else "worker.deactivated",
            event_category="workers",
            entity_type="worker",
            entity_id=worker.id,
            actor=actor,
        )
        return worker

    return run_in_transaction(_op)
