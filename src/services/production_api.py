"""
External interface for back-office callers.

Each function here wraps one service operation and returns a structured
result instead of raising:

    {"success": True, ...operation fields...}
    {"success": False, "error": "<message>", "error_type": "<code>", ...}

Service errors keep their taxonomy code (ValidationError, InsufficientStock,
InvalidStateTransition, NotFound, ConcurrencyConflict, ...); any other
database failure is reported as DatabaseError. Callers never receive a raw
SQLAlchemy exception.
"""

import functools
import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import ProductionStatus
from . import production_batch_service, raw_material_service, recipe_service
from .exceptions import (
    DatabaseError,
    InsufficientStock,
    NotFound,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def error_result(error: Exception) -> Dict[str, Any]:
    """Convert an exception into the structured failure shape."""
    if isinstance(error, SQLAlchemyError):
        error = DatabaseError(str(getattr(error, "orig", None) or error), original_error=error)

    result: Dict[str, Any] = {
        "success": False,
        "error": str(error),
        "error_type": getattr(error, "error_code", "ServiceError"),
    }
    if isinstance(error, ValidationError):
        result["errors"] = list(error.errors)
    if isinstance(error, InsufficientStock):
        result["shortages"] = [
            {key: str(value) if key in ("required", "available") else value for key, value in s.items()}
            for s in error.shortages
        ]
    if isinstance(error, NotFound):
        result["entity_id"] = error.entity_id
    return result


def structured_result(operation_name: str) -> Callable:
    """
    Decorator turning a service call into a structured success/error result.

    The wrapped function returns a dict of operation fields; the wrapper adds
    "success": True. ServiceError and SQLAlchemyError become error_result().

    Example:
        >>> @structured_result("activate_recipe")
        ... def activate_recipe(recipe_id):
        ...     recipe = recipe_service.activate_recipe(recipe_id)
        ...     return {"recipe_id": recipe["id"]}
    """

    def decorator(func: Callable[..., Dict[str, Any]]) -> Callable[..., Dict[str, Any]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Dict[str, Any]:
            start_time = time.time()
            try:
                fields = func(*args, **kwargs)
            except (ServiceError, SQLAlchemyError) as e:
                result = error_result(e)
                log_operation(
                    logger,
                    operation_name,
                    "failed",
                    level=logging.WARNING,
                    error_type=result["error_type"],
                    error=result["error"],
                    elapsed=round(time.time() - start_time, 3),
                )
                return result

            logger.debug(f"Completed {operation_name} ({time.time() - start_time:.3f}s)")
            return {"success": True, **fields}

        return wrapper

    return decorator


# =============================================================================
# Production
# =============================================================================


@structured_result("simulate_production")
def simulate_production(recipe_id: int, quantity: int) -> Dict[str, Any]:
    """Simulate a batch: {success, valid, items, total_cost, unit_cost, ...}."""
    return production_batch_service.simulate_production(recipe_id, quantity)


@structured_result("create_production_batch")
def create_production_batch(
    recipe_id: int,
    quantity: int,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    initial_status: str = ProductionStatus.PRODUZINDO.value,
) -> Dict[str, Any]:
    """Commit a batch: {success, batch_id, total_cost, unit_cost, status}."""
    batch = production_batch_service.create_production_batch(
        recipe_id, quantity, notes=notes, actor=actor, initial_status=initial_status
    )
    return {
        "batch_id": batch["id"],
        "total_cost": batch["total_cost"],
        "unit_cost": batch["unit_cost"],
        "status": batch["status"],
    }


@structured_result("change_production_status")
def change_production_status(batch_id: int, new_status: str, actor: Optional[str] = None) -> Dict[str, Any]:
    """Transition a batch: {success, batch_id, status}."""
    batch = production_batch_service.change_production_status(batch_id, new_status, actor=actor)
    return {"batch_id": batch["id"], "status": batch["status"]}


@structured_result("delete_production_batch")
def delete_production_batch(batch_id: int, actor: Optional[str] = None) -> Dict[str, Any]:
    """Delete a batch after compensation: {success, batch_id, previous_status}."""
    outcome = production_batch_service.delete_production_batch(batch_id, actor=actor)
    return {"batch_id": outcome["batch_id"], "previous_status": outcome["previous_status"]}


@structured_result("get_production_batch")
def get_production_batch(batch_id: int) -> Dict[str, Any]:
    """Read a batch: {success, batch}."""
    return {"batch": production_batch_service.get_production_batch(batch_id)}


# =============================================================================
# Raw materials and recipes
# =============================================================================


@structured_result("record_raw_material_movement")
def record_raw_material_movement(
    material_id: int,
    quantity,
    kind: str,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    unit: Optional[str] = None,
    unit_cost=None,
    total_value=None,
) -> Dict[str, Any]:
    """Record a movement: {success, movement_id, balance_after, cost_per_unit_at_time}."""
    movement = raw_material_service.record_movement(
        material_id,
        kind,
        quantity,
        notes=notes,
        actor=actor,
        unit=unit,
        unit_cost=unit_cost,
        total_value=total_value,
    )
    return {
        "movement_id": movement["movement_id"],
        "balance_after": movement["balance_after"],
        "cost_per_unit_at_time": movement["cost_per_unit_at_time"],
    }


@structured_result("activate_recipe")
def activate_recipe(recipe_id: int) -> Dict[str, Any]:
    """Activate a recipe version: {success, recipe_id, product_id, version}."""
    recipe = recipe_service.activate_recipe(recipe_id)
    return {
        "recipe_id": recipe["id"],
        "product_id": recipe["product_id"],
        "version": recipe["version"],
    }


@structured_result("get_low_stock_materials")
def get_low_stock_materials() -> Dict[str, Any]:
    """Materials at or below minimum stock: {success, materials}."""
    return {"materials": raw_material_service.get_low_stock_materials()}
