"""Services package - Business logic layer for Atelier Ledger.

This package contains the service modules that own every write to stock,
recipes, production batches and finished goods.

Architecture:
- Services: Stateless functions organized by domain
- Transactions: Managed via session_scope() / unit_of_work()
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Facade: production_api returns structured success/error results

Service Modules:
- unit_normalizer: Display unit to base unit conversion
- raw_material_service: Raw material ledger (movements, weighted-average cost)
- product_service: Catalog product reference rows
- recipe_service: Versioned recipes and activation
- batch_transitions: Production status transition table
- production_batch_service: Simulation, commit and batch lifecycle
- finished_goods_service: Finished-goods counter
- production_api: External structured-result interface

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
"""

from . import (
    database,
    unit_normalizer,
    raw_material_service,
    product_service,
    recipe_service,
    batch_transitions,
    finished_goods_service,
    production_batch_service,
    production_api,
)

from .exceptions import (
    ServiceError,
    ValidationError,
    InvalidRecipeError,
    InsufficientStock,
    InsufficientFinishedGoods,
    InvalidStateTransition,
    NotFound,
    RawMaterialNotFound,
    RecipeNotFound,
    ProductionBatchNotFound,
    ProductNotFound,
    RecipeInUse,
    ConcurrencyConflict,
    DatabaseError,
)

__all__ = [
    # Modules
    "database",
    "unit_normalizer",
    "raw_material_service",
    "product_service",
    "recipe_service",
    "batch_transitions",
    "finished_goods_service",
    "production_batch_service",
    "production_api",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "InvalidRecipeError",
    "InsufficientStock",
    "InsufficientFinishedGoods",
    "InvalidStateTransition",
    "NotFound",
    "RawMaterialNotFound",
    "RecipeNotFound",
    "ProductionBatchNotFound",
    "ProductNotFound",
    "RecipeInUse",
    "ConcurrencyConflict",
    "DatabaseError",
]
