"""
Product model.

The storefront catalog owns products; the ledger keeps a thin reference
row so recipes, batches and finished-goods stock can hold foreign keys.
"""

from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from .base import BaseModel


class Product(BaseModel):
    """
    Sellable product reference.

    Attributes:
        name: Display name
        slug: Catalog identifier
        is_active: Whether the catalog still sells the product
    """

    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=True, unique=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    recipes = relationship("Recipe", back_populates="product")
    finished_goods_stock = relationship(
        "FinishedGoodsStock", back_populates="product", uselist=False
    )
