"""Tests for configuration and database setup."""

import pytest
from sqlalchemy import inspect

import src.services.database as db_module
from src.utils.config import Config, get_config, reset_config


@pytest.fixture
def clean_config(monkeypatch):
    monkeypatch.delenv("ATELIER_LEDGER_ENV", raising=False)
    monkeypatch.delenv("ATELIER_LEDGER_DATABASE_URL", raising=False)
    reset_config()
    yield
    reset_config()


class TestConfig:
    def test_development_uses_project_data_dir(self, clean_config):
        config = Config("development")

        assert config.database_path.parent.name == "data"
        assert config.database_url.startswith("sqlite:///")
        assert config.database_url.endswith("atelier_ledger.db")

    def test_production_uses_home_dir(self, clean_config):
        config = Config("production")
        assert config.database_path.parent.name == ".atelier_ledger"

    def test_invalid_environment(self, clean_config):
        with pytest.raises(ValueError):
            Config("staging")

    def test_url_override_from_environment(self, clean_config, monkeypatch):
        monkeypatch.setenv("ATELIER_LEDGER_DATABASE_URL", "postgresql://ledger@db/atelier")

        config = get_config()

        assert config.database_url == "postgresql://ledger@db/atelier"
        assert config.uses_sqlite is False
        assert config.database_exists() is True

    def test_singleton_keeps_first_environment(self, clean_config, monkeypatch):
        monkeypatch.setenv("ATELIER_LEDGER_ENV", "development")

        first = get_config()
        second = get_config("production")

        assert second is first
        assert second.is_development


class TestDatabaseSetup:
    def test_init_database_creates_ledger_tables(self, tmp_path, monkeypatch):
        engine = db_module.create_database_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        monkeypatch.setattr(db_module, "_engine", engine)

        assert db_module.verify_database() is False
        db_module.init_database(engine)
        db_module.init_database(engine)

        tables = set(inspect(engine).get_table_names())
        assert {"raw_materials", "stock_movements", "recipes", "recipe_items"} <= tables
        assert {"production_batches", "production_batch_items", "finished_goods_stock"} <= tables
        assert db_module.verify_database() is True
        engine.dispose()

    def test_foreign_keys_enabled(self, tmp_path):
        engine = db_module.create_database_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        with engine.connect() as connection:
            assert connection.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        engine.dispose()

    def test_reset_requires_confirmation(self):
        with pytest.raises(ValueError):
            db_module.reset_database()

    def test_session_scope_rolls_back_on_error(self, test_db, product):
        from src.models import Product

        with pytest.raises(RuntimeError):
            with db_module.session_scope() as session:
                session.get(Product, product["id"]).name = "Renomeado"
                raise RuntimeError("abort")

        with db_module.session_scope() as session:
            assert session.get(Product, product["id"]).name == product["name"]
