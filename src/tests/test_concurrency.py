"""Concurrency tests against a file-backed SQLite database.

Two sessions stand in for two operators working at the same time.
"""

import sqlite3
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

import src.services.database as db_module
from src.models import FinishedGoodsStock, RawMaterial
from src.services import production_batch_service, raw_material_service
from src.services.database import create_database_engine, init_database, unit_of_work
from src.services.exceptions import ConcurrencyConflict, InsufficientStock
from src.services.finished_goods_service import apply_batch_delta
from src.services.product_service import create_product
from src.services.recipe_service import save_recipe


@pytest.fixture
def file_db(tmp_path, monkeypatch):
    """Point the services at a fresh SQLite file and yield its session factory."""
    url = f"sqlite:///{tmp_path / 'ledger.db'}"
    engine = create_database_engine(url)
    init_database(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(db_module, "get_session_factory", lambda: factory)

    yield url, factory

    engine.dispose()


@pytest.fixture
def stocked(file_db):
    """One material with 1000 ml and an active recipe using 50 ml per unit."""
    material = raw_material_service.create_raw_material("Essência de alecrim", unit="ml")
    raw_material_service.record_movement(
        material["id"], "entrada", Decimal("1000"), unit_cost=Decimal("0.04")
    )
    product = create_product("Vela de alecrim")
    recipe = save_recipe(product["id"], [{"raw_material_id": material["id"], "quantity": 50}])
    return material["id"], recipe["id"]


def _balance(material_id):
    return Decimal(raw_material_service.get_raw_material(material_id)["current_quantity"])


class TestOptimisticLocking:
    def test_stale_version_raises_conflict(self, file_db, stocked):
        _, factory = file_db
        material_id, _ = stocked
        first, second = factory(), factory()
        try:
            stale = first.get(RawMaterial, material_id)
            second.get(RawMaterial, material_id).notes = "recontado"
            second.commit()

            with pytest.raises(ConcurrencyConflict) as exc_info:
                with unit_of_work(first):
                    stale.minimum_stock = Decimal("10")
                    first.flush()
            assert isinstance(exc_info.value.original_error, StaleDataError)
        finally:
            first.rollback()
            first.close()
            second.close()

    def test_second_writer_sees_first_writers_balance(self, file_db, stocked):
        _, factory = file_db
        material_id, _ = stocked
        first, second = factory(), factory()
        try:
            first.get(RawMaterial, material_id)
            second.get(RawMaterial, material_id)

            raw_material_service.record_movement(material_id, "perda", Decimal("100"), session=second)
            second.commit()
            movement = raw_material_service.record_movement(
                material_id, "perda", Decimal("100"), session=first
            )
            first.commit()
        finally:
            first.close()
            second.close()

        assert Decimal(movement["balance_before"]) == Decimal("900")
        assert _balance(material_id) == Decimal("800")

    def test_commit_rereads_balance_under_lock(self, file_db, stocked):
        _, factory = file_db
        material_id, recipe_id = stocked
        session = factory()
        try:
            # Loaded while 1000 ml were on hand
            session.get(RawMaterial, material_id)
            production_batch_service.create_production_batch(recipe_id, 12)

            with pytest.raises(InsufficientStock) as exc_info:
                production_batch_service.create_production_batch(recipe_id, 10, session=session)
            assert exc_info.value.shortages[0]["available"] == Decimal("400")
        finally:
            session.rollback()
            session.close()

        assert _balance(material_id) == Decimal("400")


class TestLockContention:
    def test_locked_database_raises_conflict(self, file_db, stocked):
        url, factory = file_db
        material_id, _ = stocked
        impatient_engine = create_engine(url, connect_args={"timeout": 0.1})
        holder, waiter = factory(), sessionmaker(bind=impatient_engine)()
        try:
            waiter.get(RawMaterial, material_id)
            raw_material_service.record_movement(material_id, "perda", Decimal("1"), session=holder)

            with pytest.raises(ConcurrencyConflict):
                raw_material_service.record_movement(
                    material_id, "perda", Decimal("1"), session=waiter
                )
        finally:
            waiter.rollback()
            waiter.close()
            holder.rollback()
            holder.close()
            impatient_engine.dispose()

        assert _balance(material_id) == Decimal("1000")

    def test_translated_operational_errors(self, test_db):
        with pytest.raises(ConcurrencyConflict):
            with unit_of_work(test_db()):
                raise OperationalError("UPDATE", {}, sqlite3.OperationalError("database is locked"))

    def test_postgres_serialization_failure(self, test_db):
        class SerializationFailure(Exception):
            pgcode = "40001"

        with pytest.raises(ConcurrencyConflict):
            with unit_of_work(test_db()):
                raise OperationalError("UPDATE", {}, SerializationFailure("could not serialize"))

    def test_other_operational_errors_pass_through(self, test_db):
        with pytest.raises(OperationalError):
            with unit_of_work(test_db()):
                raise OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: x"))


class TestUniquenessConflicts:
    def test_first_counter_row_created_twice(self, file_db):
        _, factory = file_db
        product = create_product("Difusor de alecrim")
        first, second = factory(), factory()
        try:
            apply_batch_delta(first, product["id"], 3)
            first.commit()

            # Second session inserts as if it had found no row
            second.add(FinishedGoodsStock(product_id=product["id"], current_quantity=5))
            with pytest.raises(ConcurrencyConflict) as exc_info:
                with unit_of_work(second):
                    second.flush()
            assert isinstance(exc_info.value.original_error, IntegrityError)
        finally:
            second.rollback()
            first.close()
            second.close()

        with factory() as session:
            assert session.query(FinishedGoodsStock).one().current_quantity == 3

    def test_postgres_unique_violation(self, test_db):
        class UniqueViolation(Exception):
            pgcode = "23505"

        with pytest.raises(ConcurrencyConflict):
            with unit_of_work(test_db()):
                raise IntegrityError("INSERT", {}, UniqueViolation("duplicate key value"))

    def test_other_integrity_errors_pass_through(self, test_db):
        failure = sqlite3.IntegrityError(
            "CHECK constraint failed: ck_finished_goods_quantity_non_negative"
        )
        with pytest.raises(IntegrityError):
            with unit_of_work(test_db()):
                raise IntegrityError("UPDATE", {}, failure)
