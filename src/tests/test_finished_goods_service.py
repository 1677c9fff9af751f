"""Tests for the finished-goods counter service."""

from decimal import Decimal

import pytest

from src.services import production_batch_service
from src.services.exceptions import InsufficientFinishedGoods, InsufficientStock, ProductNotFound
from src.services.finished_goods_service import (
    apply_batch_delta,
    get_finished_goods_stock,
    get_product_unit_cost,
    list_finished_goods,
)
from src.services.product_service import create_product


class TestFinishedGoodsStock:
    """Tests for get_finished_goods_stock() and list_finished_goods()."""

    def test_zero_before_any_batch(self, test_db, product):
        stock = get_finished_goods_stock(product["id"])
        assert stock == {
            "product_id": product["id"],
            "product_name": "Vela de lavanda 200g",
            "current_quantity": 0,
        }

    def test_counts_completed_batches(self, test_db, product, recipe):
        production_batch_service.create_production_batch(recipe["id"], 4, initial_status="concluido")
        production_batch_service.create_production_batch(recipe["id"], 6, initial_status="concluido")

        assert get_finished_goods_stock(product["id"])["current_quantity"] == 10

    def test_missing_product(self, test_db):
        with pytest.raises(ProductNotFound):
            get_finished_goods_stock(31)

    def test_list_exclude_zero(self, test_db, product, recipe):
        create_product("Sabonete de lavanda")
        production_batch_service.create_production_batch(recipe["id"], 2, initial_status="concluido")

        everything = list_finished_goods()
        on_hand = list_finished_goods(exclude_zero=True)

        assert [r["product_name"] for r in everything] == ["Sabonete de lavanda", "Vela de lavanda 200g"]
        assert [r["product_id"] for r in on_hand] == [product["id"]]


class TestApplyBatchDelta:
    """apply_batch_delta() runs inside the caller's transaction."""

    def test_creates_row_on_first_increment(self, test_db, product):
        session = test_db()
        stock = apply_batch_delta(session, product["id"], 5)
        session.commit()
        session.close()

        assert stock.current_quantity == 5
        assert get_finished_goods_stock(product["id"])["current_quantity"] == 5

    def test_rejects_negative_result(self, test_db, product):
        session = test_db()
        with pytest.raises(InsufficientFinishedGoods) as exc_info:
            apply_batch_delta(session, product["id"], -1)
        session.rollback()
        session.close()

        assert exc_info.value.product_id == product["id"]
        assert exc_info.value.shortages[0]["required"] == 1
        assert exc_info.value.shortages[0]["available"] == 0

    def test_is_an_insufficient_stock_error(self):
        assert issubclass(InsufficientFinishedGoods, InsufficientStock)


class TestProductUnitCost:
    """Tests for get_product_unit_cost()."""

    def test_no_recipe_no_batch(self, test_db, product):
        assert get_product_unit_cost(product["id"]) == {
            "product_id": product["id"],
            "value": None,
            "source": "none",
        }

    def test_falls_back_to_live_recipe_cost(self, test_db, product, recipe):
        result = get_product_unit_cost(product["id"])

        assert result["source"] == "recipe"
        assert Decimal(result["value"]) == Decimal("2.5")

    def test_uses_latest_completed_batch(self, test_db, product, essence, recipe):
        from src.services.raw_material_service import record_movement

        production_batch_service.create_production_batch(recipe["id"], 2, initial_status="concluido")
        record_movement(essence["id"], "entrada", Decimal("1100"), unit_cost=Decimal("0.15"))
        production_batch_service.create_production_batch(recipe["id"], 2, initial_status="concluido")

        result = get_product_unit_cost(product["id"])

        # average after 1000 ml at 0.05 less 100 ml, plus 1100 ml at 0.15: 0.105 per ml
        assert result["source"] == "batch"
        assert Decimal(result["value"]) == Decimal("5.25")

    def test_open_batches_are_ignored(self, test_db, product, recipe):
        production_batch_service.create_production_batch(recipe["id"], 2)
        assert get_product_unit_cost(product["id"])["source"] == "recipe"
