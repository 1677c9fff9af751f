"""Product Service - catalog reference rows.

The storefront catalog owns products. The ledger keeps a thin reference
row per product so recipes, batches and finished-goods stock can point at
it; this module registers and reads those rows.

Example Usage:
  >>> from src.services.product_service import create_product
  >>> product = create_product("Vela de lavanda 200g", slug="vela-lavanda-200g")
  >>> product["is_active"]
  True
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import Product
from ..utils.constants import MAX_NAME_LENGTH
from .database import session_scope, unit_of_work
from .exceptions import ProductNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def create_product(
    name: str,
    slug: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Register a catalog product with the ledger.

    Raises:
        ValidationError: If the name is empty or too long, or the slug is taken
    """
    errors = []
    if name is not None and not isinstance(name, str):
        raise ValidationError(["Product name must be text"])
    name = (name or "").strip()
    if not name:
        errors.append("Product name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"Product name must be at most {MAX_NAME_LENGTH} characters")
    if errors:
        raise ValidationError(errors)

    with unit_of_work(session) as session:
        if slug and session.query(Product).filter(Product.slug == slug).first() is not None:
            raise ValidationError([f"Product slug '{slug}' already exists"])

        product = Product(name=name, slug=slug or None)
        session.add(product)
        session.flush()

        log_operation(logger, "create_product", "success", product_id=product.id)
        return product.to_dict()


def get_product(product_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a product reference by ID.

    Raises:
        ProductNotFound: If product_id doesn't exist
    """
    if session is not None:
        return _get_product_impl(product_id, session)
    with session_scope() as session:
        return _get_product_impl(product_id, session)


def _get_product_impl(product_id: int, session: Session) -> Dict[str, Any]:
    product = require_product(session, product_id)
    return product.to_dict()


def require_product(session: Session, product_id: int) -> Product:
    """Load a product or raise ProductNotFound."""
    product = session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def list_products(include_inactive: bool = False, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """List product references ordered by name."""
    with unit_of_work(session) as session:
        query = session.query(Product)
        if not include_inactive:
            query = query.filter(Product.is_active.is_(True))
        return [p.to_dict() for p in query.order_by(Product.name).all()]
