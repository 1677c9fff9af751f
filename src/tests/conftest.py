"""Pytest configuration and fixtures for service layer tests."""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models import Base


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(db_engine):
    """Provide a clean test database for each test function.

    This fixture:
    1. Uses the in-memory SQLite engine from db_engine
    2. Points the global session factory at it
    3. Provides the scoped session factory to the test
    4. Restores the original session factory afterwards
    """
    session_factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    db_module.get_session_factory = original_get_session


# ============================================================================
# Ledger fixtures
# ============================================================================


@pytest.fixture(scope="function")
def product(test_db):
    """A catalog product reference."""
    from src.services import product_service

    return product_service.create_product("Vela de lavanda 200g", slug="vela-lavanda-200g")


@pytest.fixture(scope="function")
def essence(test_db):
    """Material M: 1000 ml on hand at 0.05 per ml."""
    from src.services import raw_material_service

    material = raw_material_service.create_raw_material(
        "Essência de lavanda", unit="ml", category="essencia", minimum_stock=Decimal("100")
    )
    raw_material_service.record_movement(
        material["id"], "entrada", Decimal("1000"), unit_cost=Decimal("0.05"), actor="setup"
    )
    return raw_material_service.get_raw_material(material["id"])


@pytest.fixture(scope="function")
def wax(test_db):
    """Soy wax stocked in grams: 2 kg at 0.02 per g."""
    from src.services import raw_material_service

    material = raw_material_service.create_raw_material("Cera de soja", unit="kg", category="base")
    raw_material_service.record_movement(
        material["id"], "entrada", Decimal("2"), unit="kg", total_value=Decimal("40"), actor="setup"
    )
    return raw_material_service.get_raw_material(material["id"])


@pytest.fixture(scope="function")
def recipe(test_db, product, essence):
    """Recipe R: 50 ml of M per unit. First recipe of the product, so active."""
    from src.services import recipe_service

    return recipe_service.save_recipe(
        product["id"],
        [{"raw_material_id": essence["id"], "quantity": Decimal("50"), "unit": "ml"}],
        created_by="setup",
    )


@pytest.fixture(scope="function")
def two_line_recipe(test_db, product, essence, wax):
    """Active recipe using 50 ml of essence and 0.15 kg of wax per unit."""
    from src.services import recipe_service

    return recipe_service.save_recipe(
        product["id"],
        [
            {"raw_material_id": essence["id"], "quantity": Decimal("50"), "unit": "ml"},
            {"raw_material_id": wax["id"], "quantity": Decimal("0.15"), "unit": "kg"},
        ],
    )
