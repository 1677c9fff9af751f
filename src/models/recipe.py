"""
Recipe models - versioned bills of materials.

This module contains:
- Recipe: One version of a product's bill of materials
- RecipeItem: A material line (quantity + display unit) on a recipe

A product may have many recipe versions but at most one active version;
the partial unique index below backs that rule at the database level.
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import MeasurementUnit, enum_values


class Recipe(BaseModel):
    """
    Recipe version for a product.

    Attributes:
        product_id: Product this recipe produces
        version: Per-product version number (1, 2, ...)
        is_active: True for the version production uses
        total_cost: Cost of one unit, snapshotted when the recipe was saved
        notes: Free text
        created_by: Operator identifier
    """

    __tablename__ = "recipes"

    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    version = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    total_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)

    product = relationship("Product", back_populates="recipes")
    items = relationship(
        "RecipeItem",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeItem.id",
    )
    production_batches = relationship("ProductionBatch", back_populates="recipe")

    __table_args__ = (
        UniqueConstraint("product_id", "version", name="uq_recipe_product_version"),
        Index(
            "uq_recipe_active_per_product",
            "product_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        CheckConstraint("version > 0", name="ck_recipe_version_positive"),
        CheckConstraint("total_cost >= 0", name="ck_recipe_total_cost_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"Recipe(id={self.id}, product_id={self.product_id}, "
            f"version={self.version}, is_active={self.is_active})"
        )


class RecipeItem(BaseModel):
    """
    Material line on a recipe.

    Quantity is per unit of finished product, expressed in `unit`; it is
    normalised to the material's base unit before any stock arithmetic.
    """

    __tablename__ = "recipe_items"

    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    raw_material_id = Column(
        Integer, ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Numeric(14, 3), nullable=False)
    unit = Column(String(20), nullable=False)

    recipe = relationship("Recipe", back_populates="items")
    raw_material = relationship("RawMaterial")

    __table_args__ = (
        Index("idx_recipe_item_recipe", "recipe_id"),
        Index("idx_recipe_item_material", "raw_material_id"),
        UniqueConstraint("recipe_id", "raw_material_id", name="uq_recipe_item_material"),
        CheckConstraint("quantity > 0", name="ck_recipe_item_quantity_positive"),
        CheckConstraint(
            f"unit IN ({enum_values(MeasurementUnit)})", name="ck_recipe_item_unit_valid"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"RecipeItem(id={self.id}, recipe_id={self.recipe_id}, "
            f"raw_material_id={self.raw_material_id}, quantity={self.quantity} {self.unit})"
        )
