"""
Database connection and session management for Atelier Ledger.

This module provides:
- Database engine creation and configuration
- Session factory for database operations
- session_scope(): one transaction per block (commit / rollback / close)
- unit_of_work(): session reuse plus translation of lost races into
  ConcurrencyConflict
- Database initialization (create tables)
- SQLite pragmas (foreign keys, WAL)
"""

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, close_all_sessions, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import get_config
from .exceptions import ConcurrencyConflict
from .logging_utils import get_service_logger

logger = get_service_logger(__name__)

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = ("40001", "40P01")
# PostgreSQL unique_violation
_UNIQUE_VIOLATION_SQLSTATE = "23505"


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Set SQLite pragmas on every new SQLite connection.

    Foreign keys must be enabled per connection for ON DELETE rules
    (SET NULL on movement batch references) to apply.
    """
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return

    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create and configure the database engine.

    Args:
        database_url: Optional database URL. If None, uses config default.
        echo: If True, log all SQL statements

    Returns:
        Configured SQLAlchemy Engine
    """
    if database_url is None:
        database_url = get_config().database_url

    logger.info(f"Creating database engine: {database_url}")

    if ":memory:" in database_url or "mode=memory" in database_url:
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Create all tables that do not exist yet.

    Safe to call multiple times.

    Args:
        engine: Optional engine to use. If None, uses global engine.
    """
    if engine is None:
        engine = get_engine()

    logger.info("Initializing database tables")

    # Importing the package registers every model with Base.metadata
    from .. import models  # noqa: F401

    Base.metadata.create_all(engine)

    logger.info("Database tables initialized successfully")


def get_engine(force_recreate: bool = False) -> Engine:
    """
    Get the global database engine (created on first use).

    Args:
        force_recreate: If True, recreate the engine even if one exists
    """
    global _engine

    if _engine is None or force_recreate:
        _engine = create_database_engine()

    return _engine


def get_session_factory() -> sessionmaker:
    """Get the global session factory."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)

    return _SessionFactory


def get_session() -> Session:
    """Create a new database session."""
    session_factory = get_session_factory()
    return session_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Provide a transactional scope for database operations.

    - Creates a new session
    - Commits on success
    - Rolls back on exception
    - Always closes the session

    Example:
        with session_scope() as session:
            session.add(RawMaterial(name="Cera de soja", unit="g"))
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _is_lock_conflict(error: OperationalError) -> bool:
    """True for errors that mean another writer holds or changed the rows."""
    sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    message = str(error.orig).lower()
    return "database is locked" in message or "database table is locked" in message


def _is_uniqueness_conflict(error: IntegrityError) -> bool:
    """True when a concurrent insert claimed the same unique key first."""
    sqlstate = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if sqlstate == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "unique constraint failed" in str(error.orig).lower()


@contextmanager
def unit_of_work(session: Optional[Session] = None) -> Iterator[Session]:
    """
    Run a block as one atomic unit of work.

    Uses the caller's session when one is passed (the caller owns commit and
    rollback); otherwise opens session_scope(). Optimistic-lock failures and
    lock contention are raised as ConcurrencyConflict, as are unique-key
    violations from a concurrent insert of the same row.

    Example:
        with unit_of_work(session) as session:
            material = _lock_material(session, material_id)
            ...
    """
    try:
        if session is not None:
            yield session
        else:
            with session_scope() as owned:
                yield owned
    except StaleDataError as e:
        logger.warning(f"Optimistic lock conflict: {e}")
        raise ConcurrencyConflict(
            "Stock or batch was changed by another operation; re-read and retry",
            original_error=e,
        ) from e
    except OperationalError as e:
        if _is_lock_conflict(e):
            logger.warning(f"Lock conflict: {e.orig}")
            raise ConcurrencyConflict(
                "Database is busy with a concurrent write; retry the operation",
                original_error=e,
            ) from e
        raise
    except IntegrityError as e:
        if _is_uniqueness_conflict(e):
            logger.warning(f"Uniqueness conflict: {e.orig}")
            raise ConcurrencyConflict(
                "Another operation created the same record first; re-read and retry",
                original_error=e,
            ) from e
        raise


def verify_database() -> bool:
    """
    Verify that the database is accessible and has the ledger tables.

    Returns:
        True if database is valid, False otherwise
    """
    try:
        tables = inspect(get_engine()).get_table_names()
        expected_tables = ["raw_materials", "stock_movements", "production_batches"]
        return all(table in tables for table in expected_tables)
    except OperationalError as e:
        logger.error(f"Database verification failed: {e}")
        return False


def reset_database(confirm: bool = False) -> None:
    """
    Drop all tables and recreate the database.

    WARNING: This deletes all data, including the movement audit trail.

    Raises:
        ValueError: If confirm is not True
    """
    if not confirm:
        raise ValueError("Must pass confirm=True to reset database. This will delete all data!")

    logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST")

    engine = get_engine()

    from .. import models  # noqa: F401

    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")

    Base.metadata.create_all(engine)
    logger.info("Tables recreated")


def close_connections() -> None:
    """Close all sessions and dispose of the engine."""
    global _engine, _SessionFactory

    if _SessionFactory is not None:
        close_all_sessions()
        _SessionFactory = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    logger.info("Database connections closed")


def initialize_app_database() -> None:
    """
    Initialize the application database.

    Creates the database file (for SQLite) and all tables if missing.
    """
    config = get_config()
    config.ensure_directories()

    if not config.database_exists():
        logger.info(f"Creating new database at: {config.database_path}")
    else:
        logger.info(f"Using database: {config.database_url}")

    init_database(get_engine())

    if verify_database():
        logger.info("Database initialized and verified successfully")
    else:
        logger.warning("Database verification failed - tables may not exist")
