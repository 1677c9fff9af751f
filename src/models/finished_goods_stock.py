"""
FinishedGoodsStock model.

One row per product holding the quantity on hand of finished goods.
Rows are created lazily the first time a batch adds stock, and are
written only by production batch transitions.
"""

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer
from sqlalchemy.orm import relationship

from .base import BaseModel


class FinishedGoodsStock(BaseModel):
    """
    Finished-goods counter for a product.

    Attributes:
        product_id: Product counted (unique)
        current_quantity: Units on hand (never negative)
        version: Optimistic-lock counter
    """

    __tablename__ = "finished_goods_stock"

    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    current_quantity = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)

    product = relationship("Product", back_populates="finished_goods_stock")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "current_quantity >= 0", name="ck_finished_goods_quantity_non_negative"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"FinishedGoodsStock(product_id={self.product_id}, "
            f"current_quantity={self.current_quantity})"
        )
