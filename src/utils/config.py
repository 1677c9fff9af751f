"""
Configuration management for Atelier Ledger.

This module handles:
- Database path configuration
- Environment-specific configuration (development vs. production)
- Database URL overrides for server deployments
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
)

ENVIRONMENT_VARIABLE = "ATELIER_LEDGER_ENV"
DATABASE_URL_VARIABLE = "ATELIER_LEDGER_DATABASE_URL"

logger = logging.getLogger(__name__)


class Config:
    """
    Application configuration manager.

    Resolves where the ledger database lives. A full SQLAlchemy URL in
    ATELIER_LEDGER_DATABASE_URL takes precedence over the file-based
    SQLite default.
    """

    def __init__(self, environment: str = "production", database_url: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
            database_url: Optional explicit SQLAlchemy URL (overrides env and default)
        """
        if environment not in ("production", "development"):
            raise ValueError(
                f"Invalid environment: {environment}. Must be 'production' or 'development'"
            )

        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION
        self._database_url_override = database_url or os.environ.get(DATABASE_URL_VARIABLE)

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_dir = self._base_dir
        self._database_path = self._database_dir / DATABASE_FILENAME

    def _get_project_data_dir(self) -> Path:
        """Project data/ directory used in development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Per-user application directory used in production."""
        return Path.home() / ".atelier_ledger"

    def ensure_directories(self) -> None:
        """Create the database directory if a file-based database is used."""
        if self._database_url_override is None:
            self._database_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        return self._app_name

    @property
    def app_version(self) -> str:
        return self._app_version

    @property
    def database_version(self) -> str:
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            The override URL when configured, otherwise a SQLite file URL
        """
        if self._database_url_override:
            return self._database_url_override
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def uses_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def database_exists(self) -> bool:
        """
        Check if the database file exists.

        Always True for non-SQLite URLs; the server owns that lifecycle.
        """
        if not self.uses_sqlite:
            return True
        return self._database_path.exists()

    def __repr__(self) -> str:
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument, so a running process never switches
    databases mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    ATELIER_LEDGER_ENV or defaults to production. Ignored if
                    the singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENVIRONMENT_VARIABLE, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton."
        )

    return _config_instance


def reset_config() -> None:
    """Reset the global configuration instance (used by tests)."""
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """Get the configured SQLAlchemy database URL."""
    return get_config().database_url
