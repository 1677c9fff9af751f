"""Service layer exception classes for Atelier Ledger.

This module defines all custom exceptions raised by the service layer.
Each class carries an ``error_code`` naming its category so the external
facade can return a stable, structured failure.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── InvalidRecipeError
    ├── InsufficientStock
    │   └── InsufficientFinishedGoods
    ├── InvalidStateTransition
    ├── NotFound
    │   ├── RawMaterialNotFound
    │   ├── RecipeNotFound
    │   ├── ProductionBatchNotFound
    │   └── ProductNotFound
    ├── RecipeInUse
    ├── ConcurrencyConflict
    └── DatabaseError
"""

from typing import List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    error_code = "ServiceError"


class ValidationError(ServiceError):
    """Raised when input validation fails.

    Args:
        errors: List of human-readable validation messages

    Example:
        >>> raise ValidationError(["Quantity must be positive"])
        ValidationError: Validation failed: Quantity must be positive
    """

    error_code = "ValidationError"

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {'; '.join(self.errors)}")


class InvalidRecipeError(ServiceError):
    """Raised when a product has no usable (active) recipe."""

    error_code = "InvalidRecipeError"

    def __init__(self, message: str, product_id: Optional[int] = None, recipe_id: Optional[int] = None):
        self.product_id = product_id
        self.recipe_id = recipe_id
        super().__init__(message)


class InsufficientStock(ServiceError):
    """Raised when one or more materials cannot cover a requested consumption.

    Args:
        shortages: List of dicts with raw_material_id, name, required, available

    Example:
        >>> raise InsufficientStock([{"raw_material_id": 1, "name": "Cera",
        ...     "required": Decimal("1250"), "available": Decimal("1000")}])
        InsufficientStock: Insufficient stock for Cera: required 1250, available 1000
    """

    error_code = "InsufficientStock"

    def __init__(self, shortages: List[dict]):
        self.shortages = shortages
        details = ", ".join(
            f"{s['name']}: required {s['required']}, available {s['available']}"
            for s in shortages
        )
        super().__init__(f"Insufficient stock for {details}")


class InsufficientFinishedGoods(InsufficientStock):
    """Raised when a finished-goods decrement would go below zero."""

    def __init__(self, product_id: int, required: int, available: int):
        self.product_id = product_id
        super().__init__(
            [
                {
                    "product_id": product_id,
                    "name": f"finished goods of product {product_id}",
                    "required": required,
                    "available": available,
                }
            ]
        )


class InvalidStateTransition(ServiceError):
    """Raised when a batch status change is not in the transition table."""

    error_code = "InvalidStateTransition"

    def __init__(self, current_status: str, requested_status: str):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot change production status from '{current_status}' to '{requested_status}'"
        )


class NotFound(ServiceError):
    """Raised when a referenced entity does not exist."""

    error_code = "NotFound"
    entity = "Record"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} with ID {entity_id} not found")


class RawMaterialNotFound(NotFound):
    entity = "Raw material"


class RecipeNotFound(NotFound):
    entity = "Recipe"


class ProductionBatchNotFound(NotFound):
    entity = "Production batch"


class ProductNotFound(NotFound):
    entity = "Product"


class RecipeInUse(ServiceError):
    """Raised when editing or deleting a recipe that production batches reference.

    Args:
        recipe_id: The recipe being changed
        batch_count: Number of batches that reference it
    """

    error_code = "RecipeInUse"

    def __init__(self, recipe_id: int, batch_count: int):
        self.recipe_id = recipe_id
        self.batch_count = batch_count
        super().__init__(
            f"Recipe {recipe_id} is referenced by {batch_count} production batch(es); "
            f"save a new version instead"
        )


class ConcurrencyConflict(ServiceError):
    """Raised when a concurrent writer changed the same rows first.

    The operation was rolled back; the caller should re-read (re-simulate)
    and re-issue the request.
    """

    error_code = "ConcurrencyConflict"

    def __init__(self, message: str = "Concurrent update detected", original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message)


class DatabaseError(ServiceError):
    """Raised when a database operation fails for any other reason."""

    error_code = "DatabaseError"

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")
