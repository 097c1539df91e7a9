# Overview: Bill-of-materials resolution for piece-rate tasks.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..models import Rate
from ..quantities import quantize_qty


@dataclass(frozen=True)
class MaterialRequirement:
    item_id: int
    item_name: str
    quantity_per_unit: Decimal
    required_quantity: Decimal


def resolve(rate: Rate, produced_quantity: Decimal) -> list[MaterialRequirement]:
    """
    Materials a rate consumes for produced_quantity output units.

    required_quantity = produced_quantity * quantity_per_unit for every BOM
    row; an empty list when the rate has no BOM. Pure: reads the rate's
    configured rows, never stock.
    """
    requirements = []
    for material in rate.materials:
        per_unit = quantize_qty(material.quantity_per_unit)
        requirements.append(
            MaterialRequirement(
                item_id=material.item_id,
                item_name=material.item.name if material.item else f"item {material.item_id}",
                quantity_per_unit=per_unit,
                required_quantity=quantize_qty(produced_quantity * per_unit),
            )
        )
    return requirements
