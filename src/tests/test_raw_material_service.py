"""Tests for the raw material ledger service.

Covers movement recording for every kind, weighted-average cost, the
balance arithmetic recorded on each movement, and material CRUD/queries.
"""

from decimal import Decimal

import pytest

from src.services import raw_material_service
from src.services.exceptions import (
    InsufficientStock,
    RawMaterialNotFound,
    ValidationError,
)
from src.services.raw_material_service import (
    calculate_weighted_average,
    create_raw_material,
    get_low_stock_materials,
    get_movement_history,
    get_raw_material,
    list_raw_materials,
    record_movement,
    set_raw_material_active,
    update_raw_material,
)


def _balance(material_id):
    return Decimal(get_raw_material(material_id)["current_quantity"])


def _cost(material_id):
    return Decimal(get_raw_material(material_id)["cost_per_unit"])


# ============================================================================
# Weighted average
# ============================================================================


class TestCalculateWeightedAverage:
    """Tests for calculate_weighted_average()."""

    def test_blends_by_quantity(self):
        result = calculate_weighted_average(
            Decimal("1000"), Decimal("0.05"), Decimal("1000"), Decimal("0.07")
        )
        assert result == Decimal("0.06")

    def test_unequal_quantities(self):
        # (200*0.12 + 100*0.15) / 300 = 0.13
        result = calculate_weighted_average(
            Decimal("200"), Decimal("0.12"), Decimal("100"), Decimal("0.15")
        )
        assert result == Decimal("0.13")

    def test_first_receipt_takes_incoming_cost(self):
        result = calculate_weighted_average(Decimal("0"), Decimal("0"), Decimal("500"), Decimal("0.08"))
        assert result == Decimal("0.08")

    def test_zero_total_leaves_cost_unchanged(self):
        result = calculate_weighted_average(Decimal("0"), Decimal("0.05"), Decimal("0"), Decimal("0.09"))
        assert result == Decimal("0.05")

    def test_result_has_six_decimal_places(self):
        result = calculate_weighted_average(Decimal("3"), Decimal("1"), Decimal("3"), Decimal("0.333333"))
        assert result.as_tuple().exponent == -6


# ============================================================================
# Material CRUD
# ============================================================================


class TestCreateRawMaterial:
    """Tests for create_raw_material()."""

    def test_starts_empty(self, test_db):
        material = create_raw_material("Frasco 100ml", unit="unidade", category="frasco")

        assert material["id"] is not None
        assert Decimal(material["current_quantity"]) == 0
        assert Decimal(material["cost_per_unit"]) == 0
        assert material["base_unit"] == "unidade"
        assert material["is_active"] is True

    def test_default_category(self, test_db):
        material = create_raw_material("Fita", unit="unidade")
        assert material["category"] == "outro"

    def test_rejects_bad_fields(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            create_raw_material("  ", unit="cup", category="nope", minimum_stock=Decimal("-1"))

        errors = " ".join(exc_info.value.errors)
        assert "Name is required" in errors
        assert "Invalid unit" in errors
        assert "Invalid category" in errors
        assert "Minimum stock cannot be negative" in errors

    def test_name_must_be_text(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            create_raw_material(7, unit="g")
        assert exc_info.value.errors == ["Name must be text"]


class TestUpdateRawMaterial:
    """Tests for update_raw_material() and set_raw_material_active()."""

    def test_updates_descriptive_fields(self, test_db, essence):
        updated = update_raw_material(
            essence["id"], {"name": "Essência lavanda francesa", "minimum_stock": Decimal("250")}
        )
        assert updated["name"] == "Essência lavanda francesa"
        assert Decimal(updated["minimum_stock"]) == Decimal("250")

    def test_ledger_fields_not_editable(self, test_db, essence):
        with pytest.raises(ValidationError) as exc_info:
            update_raw_material(essence["id"], {"current_quantity": Decimal("5000")})
        assert "stock movements" in exc_info.value.errors[0]
        assert _balance(essence["id"]) == Decimal("1000")

    def test_unit_change_within_base_unit(self, test_db, essence):
        updated = update_raw_material(essence["id"], {"unit": "l"})
        assert updated["unit"] == "l"
        assert updated["base_unit"] == "ml"

    def test_unit_change_across_base_units_rejected(self, test_db, essence):
        with pytest.raises(ValidationError):
            update_raw_material(essence["id"], {"unit": "g"})

    def test_unknown_field_rejected(self, test_db, essence):
        with pytest.raises(ValidationError):
            update_raw_material(essence["id"], {"color": "purple"})

    def test_missing_material(self, test_db):
        with pytest.raises(RawMaterialNotFound):
            update_raw_material(999, {"name": "x"})

    def test_deactivate_hides_from_default_list(self, test_db, essence, wax):
        set_raw_material_active(essence["id"], False)

        names = [m["name"] for m in list_raw_materials()]
        assert names == ["Cera de soja"]

        all_names = [m["name"] for m in list_raw_materials(include_inactive=True)]
        assert "Essência de lavanda" in all_names


class TestQueries:
    """Tests for material queries."""

    def test_get_missing_material(self, test_db):
        with pytest.raises(RawMaterialNotFound):
            get_raw_material(12345)

    def test_list_filters(self, test_db, essence, wax):
        assert [m["name"] for m in list_raw_materials(category="base")] == ["Cera de soja"]
        assert [m["name"] for m in list_raw_materials(search="lavanda")] == ["Essência de lavanda"]

    def test_low_stock(self, test_db, essence, wax):
        # essence minimum is 100 ml; bring it down to exactly 100
        record_movement(essence["id"], "ajuste", Decimal("100"))

        low = get_low_stock_materials()
        ids = [m["id"] for m in low]
        assert essence["id"] in ids
        assert wax["id"] not in ids
        assert all(m["is_low_stock"] for m in low)


# ============================================================================
# Movements
# ============================================================================


class TestEntrada:
    """Tests for purchase receipts."""

    def test_first_receipt_sets_cost(self, test_db, essence):
        assert _balance(essence["id"]) == Decimal("1000")
        assert _cost(essence["id"]) == Decimal("0.05")

    def test_receipt_reweights_average(self, test_db, essence):
        movement = record_movement(essence["id"], "entrada", Decimal("1000"), unit_cost=Decimal("0.07"))

        assert Decimal(movement["balance_before"]) == Decimal("1000")
        assert Decimal(movement["balance_after"]) == Decimal("2000")
        assert Decimal(movement["cost_per_unit_at_time"]) == Decimal("0.07")
        assert _cost(essence["id"]) == Decimal("0.06")

    def test_total_value_in_display_unit(self, test_db, wax):
        # fixture received 2 kg for 40.00
        assert _balance(wax["id"]) == Decimal("2000")
        assert _cost(wax["id"]) == Decimal("0.02")

        record_movement(wax["id"], "entrada", Decimal("2"), unit="kg", total_value=Decimal("60"))
        # (2000*0.02 + 2000*0.03) / 4000
        assert _cost(wax["id"]) == Decimal("0.025")

    def test_receipt_without_cost_keeps_average(self, test_db, essence):
        record_movement(essence["id"], "entrada", Decimal("0.5"), unit="l")

        assert _balance(essence["id"]) == Decimal("1500")
        assert _cost(essence["id"]) == Decimal("0.05")

    def test_both_costs_rejected(self, test_db, essence):
        with pytest.raises(ValidationError):
            record_movement(
                essence["id"], "entrada", Decimal("10"), unit_cost=Decimal("1"), total_value=Decimal("10")
            )

    def test_negative_cost_rejected(self, test_db, essence):
        with pytest.raises(ValidationError):
            record_movement(essence["id"], "entrada", Decimal("10"), unit_cost=Decimal("-1"))
        assert _balance(essence["id"]) == Decimal("1000")


class TestOutgoingMovements:
    """Tests for baixa_producao and perda."""

    def test_baixa_producao_decrements(self, test_db, essence):
        movement = record_movement(essence["id"], "baixa_producao", Decimal("300"), actor="ana")

        assert Decimal(movement["quantity"]) == Decimal("-300")
        assert Decimal(movement["balance_after"]) == Decimal("700")
        assert movement["actor"] == "ana"
        assert _balance(essence["id"]) == Decimal("700")
        assert _cost(essence["id"]) == Decimal("0.05")

    def test_perda_can_empty_stock(self, test_db, essence):
        record_movement(essence["id"], "perda", Decimal("1"), unit="l", notes="frasco quebrado")
        assert _balance(essence["id"]) == Decimal("0")

    def test_insufficient_stock_records_nothing(self, test_db, essence):
        before = get_movement_history(essence["id"])

        with pytest.raises(InsufficientStock) as exc_info:
            record_movement(essence["id"], "perda", Decimal("1000.001"))

        shortage = exc_info.value.shortages[0]
        assert shortage["raw_material_id"] == essence["id"]
        assert shortage["available"] == Decimal("1000")
        assert _balance(essence["id"]) == Decimal("1000")
        assert len(get_movement_history(essence["id"])) == len(before)


class TestEstornoAndAjuste:
    """Tests for reversal and manual adjustment movements."""

    def test_estorno_adds_without_touching_cost(self, test_db, essence):
        record_movement(essence["id"], "baixa_producao", Decimal("500"))
        movement = record_movement(essence["id"], "estorno", Decimal("500"))

        assert Decimal(movement["quantity"]) == Decimal("500")
        assert _balance(essence["id"]) == Decimal("1000")
        assert _cost(essence["id"]) == Decimal("0.05")

    def test_ajuste_sets_target_balance(self, test_db, essence):
        movement = record_movement(essence["id"], "ajuste", Decimal("940"), notes="contagem")

        assert Decimal(movement["balance_before"]) == Decimal("1000")
        assert Decimal(movement["quantity"]) == Decimal("-60")
        assert _balance(essence["id"]) == Decimal("940")

    def test_ajuste_upwards(self, test_db, essence):
        record_movement(essence["id"], "ajuste", Decimal("1.2"), unit="l")
        assert _balance(essence["id"]) == Decimal("1200")

    def test_ajuste_negative_target_rejected(self, test_db, essence):
        with pytest.raises(ValidationError):
            record_movement(essence["id"], "ajuste", Decimal("-1"))


class TestMovementValidation:
    """Tests for movement input validation."""

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-5")])
    def test_non_positive_quantity(self, test_db, essence, quantity):
        with pytest.raises(ValidationError):
            record_movement(essence["id"], "entrada", quantity)

    def test_unknown_kind(self, test_db, essence):
        with pytest.raises(ValidationError):
            record_movement(essence["id"], "transferencia", Decimal("1"))

    def test_incompatible_unit(self, test_db, essence):
        with pytest.raises(ValidationError) as exc_info:
            record_movement(essence["id"], "entrada", Decimal("1"), unit="kg")
        assert "not compatible" in exc_info.value.errors[0]

    def test_cost_only_on_entrada(self, test_db, essence):
        with pytest.raises(ValidationError):
            record_movement(essence["id"], "estorno", Decimal("1"), unit_cost=Decimal("0.1"))

    def test_missing_material(self, test_db):
        with pytest.raises(RawMaterialNotFound):
            record_movement(404, "entrada", Decimal("1"))

    def test_quantity_below_stored_precision(self, test_db, essence):
        movements_before = len(get_movement_history(essence["id"]))

        with pytest.raises(ValidationError) as exc_info:
            record_movement(essence["id"], "entrada", Decimal("0.0001"))

        assert "at least 0.001 ml" in exc_info.value.errors[0]
        assert len(get_movement_history(essence["id"])) == movements_before
        assert _balance(essence["id"]) == Decimal("1000")

    def test_quantity_rounded_to_stored_precision(self, test_db, essence):
        movement = record_movement(essence["id"], "entrada", Decimal("0.0006"))

        assert Decimal(movement["quantity"]) == Decimal("0.001")
        assert _balance(essence["id"]) == Decimal("1000.001")

    @pytest.mark.parametrize("field", ["notes", "actor"])
    def test_audit_fields_must_be_text(self, test_db, essence, field):
        with pytest.raises(ValidationError) as exc_info:
            record_movement(essence["id"], "perda", Decimal("1"), **{field: 123})
        assert "must be text" in exc_info.value.errors[0]


class TestMovementHistory:
    """Tests for get_movement_history() and the ledger balance invariant."""

    def test_newest_first_and_limited(self, test_db, essence):
        record_movement(essence["id"], "baixa_producao", Decimal("100"))
        record_movement(essence["id"], "estorno", Decimal("40"))

        history = get_movement_history(essence["id"])
        assert [m["movement_type"] for m in history] == ["estorno", "baixa_producao", "entrada"]

        assert len(get_movement_history(essence["id"], limit=1)) == 1

    def test_every_movement_balances(self, test_db, essence):
        record_movement(essence["id"], "entrada", Decimal("250"), unit_cost=Decimal("0.04"))
        record_movement(essence["id"], "baixa_producao", Decimal("600"))
        record_movement(essence["id"], "perda", Decimal("50"))
        record_movement(essence["id"], "estorno", Decimal("100"))
        record_movement(essence["id"], "ajuste", Decimal("650"))

        history = get_movement_history(essence["id"])
        for movement in history:
            assert Decimal(movement["balance_after"]) == (
                Decimal(movement["balance_before"]) + Decimal(movement["quantity"])
            )

        # chain: each movement starts where the previous one ended
        chronological = list(reversed(history))
        for previous, current in zip(chronological, chronological[1:]):
            assert Decimal(current["balance_before"]) == Decimal(previous["balance_after"])

        assert _balance(essence["id"]) == Decimal("650")

    def test_history_of_missing_material(self, test_db):
        with pytest.raises(RawMaterialNotFound):
            raw_material_service.get_movement_history(77)
