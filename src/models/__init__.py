"""
Database models package.

This package contains all SQLAlchemy ORM models for the ledger.
"""

from .base import Base, BaseModel
from .enums import MeasurementUnit, MovementType, ProductionStatus
from .product import Product
from .raw_material import RawMaterial
from .stock_movement import StockMovement
from .recipe import Recipe, RecipeItem
from .production_batch import ProductionBatch, ProductionBatchItem
from .finished_goods_stock import FinishedGoodsStock

__all__ = [
    "Base",
    "BaseModel",
    # Enumerations
    "MeasurementUnit",
    "MovementType",
    "ProductionStatus",
    # Catalog reference
    "Product",
    # Raw material ledger
    "RawMaterial",
    "StockMovement",
    # Recipe registry
    "Recipe",
    "RecipeItem",
    # Production
    "ProductionBatch",
    "ProductionBatchItem",
    # Finished goods
    "FinishedGoodsStock",
]
