"""Service layer logging utilities.

Provides structured logging functions for service operations, giving ledger
movements, recipe changes and batch transitions one consistent log format.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="create_production_batch",
        outcome="success",
        batch_id=123,
        recipe_id=45,
    )

    log_operation(
        logger,
        operation="create_production_batch",
        outcome="insufficient_stock",
        level=logging.WARNING,
        recipe_id=45,
        shortages=["Cera de soja"],
    )
"""

import logging
from typing import Any, Optional

LOGGER_NAMESPACE = "atelier_ledger.services"

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger under the 'atelier_ledger.services' namespace.

    Example:
        >>> logger = get_service_logger("src.services.production_batch_service")
        >>> logger.name
        'atelier_ledger.services.production_batch_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is always "<operation>: <outcome>"; context fields travel in
    the record's ``extra`` so structured handlers can index them.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "record_movement", "change_production_status")
        outcome: Outcome description (e.g., "success", "insufficient_stock")
        level: Log level (default: INFO)
        **context: Entity IDs, quantities, error details
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)


def configure_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    """
    Attach a stream handler to the service namespace.

    Intended for entry points (CLI); library callers configure logging
    themselves. Calling twice does not add a second handler.
    """
    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        root.addHandler(handler)
