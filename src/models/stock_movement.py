"""
StockMovement model - the append-only raw material ledger.

Every change to RawMaterial.current_quantity produces exactly one row here,
recording the signed delta and the balances on either side of it. Rows are
never updated or deleted by the service layer.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from .enums import MovementType, enum_values


class StockMovement(BaseModel):
    """
    Immutable stock movement record.

    Attributes:
        raw_material_id: Material whose balance changed
        movement_type: One of MovementType
        quantity: Signed delta in base units (negative for consumption/loss)
        balance_before: Balance before the movement
        balance_after: Balance after the movement
        cost_per_unit_at_time: Incoming cost for priced receipts, average otherwise
        production_batch_id: Batch that caused the movement, if any
        reference_type: production_batch / production_batch_reversal
        notes: Free text
        actor: Operator identifier
    """

    __tablename__ = "stock_movements"

    raw_material_id = Column(
        Integer, ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False
    )
    movement_type = Column(String(20), nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    balance_before = Column(Numeric(14, 3), nullable=False)
    balance_after = Column(Numeric(14, 3), nullable=False)
    cost_per_unit_at_time = Column(Numeric(14, 6), nullable=False)

    # SET NULL keeps ledger rows when a batch is hard-deleted
    production_batch_id = Column(
        Integer,
        ForeignKey("production_batches.id", ondelete="SET NULL"),
        nullable=True,
    )
    reference_type = Column(String(40), nullable=True)
    notes = Column(Text, nullable=True)
    actor = Column(String(64), nullable=True)

    raw_material = relationship("RawMaterial", back_populates="movements")
    production_batch = relationship("ProductionBatch", back_populates="movements")

    __table_args__ = (
        Index("idx_stock_movement_material", "raw_material_id"),
        Index("idx_stock_movement_batch", "production_batch_id"),
        Index("idx_stock_movement_created_at", "created_at"),
        CheckConstraint(
            f"movement_type IN ({enum_values(MovementType)})",
            name="ck_stock_movement_type_valid",
        ),
        CheckConstraint(
            "balance_after >= 0", name="ck_stock_movement_balance_non_negative"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"StockMovement(id={self.id}, raw_material_id={self.raw_material_id}, "
            f"type='{self.movement_type}', quantity={self.quantity})"
        )
