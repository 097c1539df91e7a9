# Overview: Pytest coverage for bill-of-materials resolution.

from decimal import Decimal

from factory_ledger.services import bom_service, catalog_service


class TestResolve:
    def test_requirements_scale_with_quantity(self, db_session, weaving_rate):
        requirements = bom_service.resolve(weaving_rate, Decimal("20"))

        assert len(requirements) == 1
        req = requirements[0]
        assert req.item_name == "Cotton Yarn"
        assert req.quantity_per_unit == Decimal("0.5")
        assert req.required_quantity == Decimal("10")

    def test_fractional_output_is_quantized(self, db_session, weaving_rate):
        req = bom_service.resolve(weaving_rate, Decimal("0.3333"))[0]
        assert req.required_quantity == Decimal("0.167")

    def test_rate_without_bom_needs_nothing(self, db_session, plain_rate):
        assert bom_service.resolve(plain_rate, Decimal("50")) == []

    def test_multi_material_bom(self, db_session, yarn, dye):
        rate = catalog_service.create_rate(
            task_name="Dyed Weaving",
            price_per_unit_cents=700,
            materials=[
                {"item_id": yarn.id, "quantity_per_unit": "0.5"},
                {"item_id": dye.id, "quantity_per_unit": "0.125"},
            ],
        )
        requirements = {r.item_id: r.required_quantity for r in bom_service.resolve(rate, Decimal("8"))}
        assert requirements == {yarn.id: Decimal("4"), dye.id: Decimal("1")}

    def test_resolve_does_not_read_stock(self, db_session, weaving_rate, yarn):
        """Requirements ignore availability; shortfalls are the journal's concern."""
        req = bom_service.resolve(weaving_rate, Decimal("1000"))[0]
        assert req.required_quantity == Decimal("500")
