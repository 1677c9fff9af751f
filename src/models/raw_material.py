"""
RawMaterial model for ledger-owned stock balances.

Each raw material carries its current balance in base units and a
weighted-average cost per base unit. Both fields are written only by
raw_material_service.record_movement(); every change is mirrored by an
append-only StockMovement row.
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import MeasurementUnit, enum_values


class RawMaterial(BaseModel):
    """
    Raw material with a running balance and weighted-average cost.

    Attributes:
        name: Material name
        category: One of RAW_MATERIAL_CATEGORIES
        unit: Display unit chosen by the operator (ml, l, g, kg, unidade)
        current_quantity: Balance in base units (never negative)
        cost_per_unit: Weighted-average cost per base unit
        minimum_stock: Low-stock threshold in base units
        is_active: Inactive materials are hidden from recipe editors
        version: Optimistic-lock counter, bumped on every UPDATE
    """

    __tablename__ = "raw_materials"

    name = Column(String(200), nullable=False, index=True)
    category = Column(String(50), nullable=False, default="outro")
    unit = Column(String(20), nullable=False, default=MeasurementUnit.UNIDADE.value)
    current_quantity = Column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    cost_per_unit = Column(Numeric(14, 6), nullable=False, default=Decimal("0"))
    minimum_stock = Column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    movements = relationship(
        "StockMovement",
        back_populates="raw_material",
        order_by="StockMovement.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_raw_material_category", "category"),
        CheckConstraint(
            "current_quantity >= 0", name="ck_raw_material_quantity_non_negative"
        ),
        CheckConstraint("cost_per_unit >= 0", name="ck_raw_material_cost_non_negative"),
        CheckConstraint(
            "minimum_stock >= 0", name="ck_raw_material_minimum_non_negative"
        ),
        CheckConstraint(
            f"unit IN ({enum_values(MeasurementUnit)})", name="ck_raw_material_unit_valid"
        ),
    )

    @property
    def is_low_stock(self) -> bool:
        """True when the balance is at or below the minimum stock level."""
        return self.current_quantity <= self.minimum_stock

    def __repr__(self) -> str:
        return (
            f"RawMaterial(id={self.id}, name='{self.name}', "
            f"current_quantity={self.current_quantity}, cost_per_unit={self.cost_per_unit})"
        )
