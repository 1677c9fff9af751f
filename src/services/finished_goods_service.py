"""
Finished Goods Counter Service.

Per-product quantity on hand of finished goods. Callers can read the counter
but never write it: apply_batch_delta() is invoked only by production batch
transitions, inside the transition's own unit of work.

Key Functions:
- Mutation (batch engine only): apply_batch_delta
- Query Functions: get_finished_goods_stock, list_finished_goods,
  get_product_unit_cost
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import FinishedGoodsStock, Product, ProductionBatch, ProductionStatus, Recipe
from .database import session_scope
from .exceptions import InsufficientFinishedGoods
from .logging_utils import get_service_logger, log_operation
from .product_service import require_product
from .recipe_service import compute_live_cost

logger = get_service_logger(__name__)


# =============================================================================
# Mutation Function
# =============================================================================


def apply_batch_delta(session: Session, product_id: int, delta: int) -> FinishedGoodsStock:
    """
    Add `delta` (may be negative) to a product's finished-goods counter.

    Transaction boundary: Inherits session from caller (required). The row is
    locked and re-read; it is created on the first positive delta.

    Raises:
        InsufficientFinishedGoods: If the counter would go below zero
    """
    stock = (
        session.query(FinishedGoodsStock)
        .filter(FinishedGoodsStock.product_id == product_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    available = stock.current_quantity if stock is not None else 0
    new_quantity = available + delta

    if new_quantity < 0:
        log_operation(
            logger,
            "apply_batch_delta",
            "insufficient_finished_goods",
            level=logging.WARNING,
            product_id=product_id,
            delta=delta,
            available=available,
        )
        raise InsufficientFinishedGoods(product_id, -delta, available)

    if stock is None:
        stock = FinishedGoodsStock(product_id=product_id, current_quantity=0)
        session.add(stock)

    stock.current_quantity = new_quantity
    session.flush()

    log_operation(
        logger,
        "apply_batch_delta",
        "success",
        product_id=product_id,
        delta=delta,
        current_quantity=new_quantity,
    )
    return stock


# =============================================================================
# Query Functions
# =============================================================================


def get_finished_goods_stock(product_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Get the finished-goods quantity of a product.

    Transaction boundary: Read-only operation.

    Returns:
        Dict with product_id, product_name, current_quantity (0 when the
        product never had stock)

    Raises:
        ProductNotFound: If the product does not exist
    """
    if session is not None:
        return _get_finished_goods_stock_impl(product_id, session)
    with session_scope() as session:
        return _get_finished_goods_stock_impl(product_id, session)


def _get_finished_goods_stock_impl(product_id: int, session: Session) -> Dict[str, Any]:
    product = require_product(session, product_id)
    return _stock_to_dict(product)


def list_finished_goods(exclude_zero: bool = False, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """
    List finished-goods quantities for all active products, by name.

    Args:
        exclude_zero: If True, skip products with nothing on hand
    """
    if session is not None:
        return _list_finished_goods_impl(exclude_zero, session)
    with session_scope() as session:
        return _list_finished_goods_impl(exclude_zero, session)


def _list_finished_goods_impl(exclude_zero: bool, session: Session) -> List[Dict[str, Any]]:
    products = (
        session.query(Product).filter(Product.is_active.is_(True)).order_by(Product.name).all()
    )
    results = [_stock_to_dict(product) for product in products]
    if exclude_zero:
        results = [r for r in results if r["current_quantity"] > 0]
    return results


def get_product_unit_cost(product_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Unit cost to show next to a product's price.

    Uses the unit cost of the most recent concluido batch; without one, the
    live cost of the active recipe.

    Returns:
        Dict with product_id, value (str or None) and source
        ("batch", "recipe" or "none")

    Raises:
        ProductNotFound: If the product does not exist
    """
    if session is not None:
        return _get_product_unit_cost_impl(product_id, session)
    with session_scope() as session:
        return _get_product_unit_cost_impl(product_id, session)


def _get_product_unit_cost_impl(product_id: int, session: Session) -> Dict[str, Any]:
    require_product(session, product_id)

    batch = (
        session.query(ProductionBatch)
        .filter(
            ProductionBatch.product_id == product_id,
            ProductionBatch.status == ProductionStatus.CONCLUIDO.value,
        )
        .order_by(ProductionBatch.produced_at.desc(), ProductionBatch.id.desc())
        .first()
    )
    if batch is not None:
        return {"product_id": product_id, "value": str(batch.unit_cost), "source": "batch"}

    recipe = (
        session.query(Recipe)
        .filter(Recipe.product_id == product_id, Recipe.is_active.is_(True))
        .first()
    )
    if recipe is not None:
        return {"product_id": product_id, "value": str(compute_live_cost(recipe)), "source": "recipe"}

    return {"product_id": product_id, "value": None, "source": "none"}


def _stock_to_dict(product: Product) -> Dict[str, Any]:
    stock = product.finished_goods_stock
    return {
        "product_id": product.id,
        "product_name": product.name,
        "current_quantity": stock.current_quantity if stock is not None else 0,
    }
