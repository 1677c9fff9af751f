"""
ProductionBatch models for costed production runs.

This module contains:
- ProductionBatch: One production run of a recipe, with its lifecycle status
- ProductionBatchItem: Material consumed by the run, with cost snapshotted
  at consumption time

Batch rows change only through production_batch_service status transitions;
batch items are never modified after creation.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import ProductionStatus, enum_values
from src.utils.datetime_utils import utc_now


class ProductionBatch(BaseModel):
    """
    Production batch.

    Attributes:
        product_id: Product produced
        recipe_id: Recipe version consumed
        quantity_produced: Units produced (must be > 0)
        status: One of ProductionStatus
        total_cost: Sum of consumed line costs
        unit_cost: total_cost / quantity_produced
        notes: Free text
        produced_by: Operator who committed the batch
        produced_at: Commit timestamp
        status_changed_at: Timestamp of the last status transition
        reversed_at / reversed_by: Set when the batch is reversed
        version: Optimistic-lock counter
    """

    __tablename__ = "production_batches"

    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_produced = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=ProductionStatus.PRODUZINDO.value)
    total_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    unit_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0"))
    notes = Column(Text, nullable=True)

    produced_by = Column(String(64), nullable=True)
    produced_at = Column(DateTime, nullable=False, default=utc_now)
    status_changed_at = Column(DateTime, nullable=True)
    reversed_at = Column(DateTime, nullable=True)
    reversed_by = Column(String(64), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    product = relationship("Product")
    recipe = relationship("Recipe", back_populates="production_batches")
    items = relationship(
        "ProductionBatchItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="ProductionBatchItem.id",
    )
    movements = relationship("StockMovement", back_populates="production_batch")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_production_batch_product", "product_id"),
        Index("idx_production_batch_recipe", "recipe_id"),
        Index("idx_production_batch_status", "status"),
        Index("idx_production_batch_produced_at", "produced_at"),
        CheckConstraint(
            "quantity_produced > 0", name="ck_production_batch_quantity_positive"
        ),
        CheckConstraint(
            f"status IN ({enum_values(ProductionStatus)})",
            name="ck_production_batch_status_valid",
        ),
        CheckConstraint("total_cost >= 0", name="ck_production_batch_total_cost_non_negative"),
        CheckConstraint("unit_cost >= 0", name="ck_production_batch_unit_cost_non_negative"),
    )

    @property
    def production_status(self) -> ProductionStatus:
        """Status as the closed enumeration."""
        return ProductionStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"ProductionBatch(id={self.id}, product_id={self.product_id}, "
            f"quantity_produced={self.quantity_produced}, status='{self.status}')"
        )


class ProductionBatchItem(BaseModel):
    """
    Material consumed by a production batch.

    cost_per_unit and total_cost are copied from the material at the moment
    of consumption and stay fixed even if the material's average changes.
    """

    __tablename__ = "production_batch_items"

    batch_id = Column(
        Integer, ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False
    )
    raw_material_id = Column(
        Integer, ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_consumed = Column(Numeric(14, 3), nullable=False)
    unit = Column(String(20), nullable=False)
    cost_per_unit = Column(Numeric(14, 6), nullable=False)
    total_cost = Column(Numeric(14, 4), nullable=False)

    batch = relationship("ProductionBatch", back_populates="items")
    raw_material = relationship("RawMaterial")

    __table_args__ = (
        Index("idx_production_batch_item_batch", "batch_id"),
        Index("idx_production_batch_item_material", "raw_material_id"),
        CheckConstraint(
            "quantity_consumed > 0", name="ck_production_batch_item_quantity_positive"
        ),
        CheckConstraint("total_cost >= 0", name="ck_production_batch_item_cost_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"ProductionBatchItem(id={self.id}, batch_id={self.batch_id}, "
            f"raw_material_id={self.raw_material_id}, quantity={self.quantity_consumed})"
        )
