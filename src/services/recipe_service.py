"""
Recipe Registry Service.

Versioned bills of materials per product. Each product may have many recipe
versions but at most one active version; activation switches the active
version inside one transaction so readers never see zero or two.

Cost figures:
- `total_cost` is the cost of one unit snapshotted when the recipe is saved
- live_unit_cost() recomputes it from the materials' current average costs;
  production simulation and commit use the live figure

Key Functions:
- Mutations: save_recipe, update_recipe, activate_recipe, delete_recipe
- Queries: get_recipe, get_active_recipe, list_recipes, live_unit_cost
- Expansion: expand_recipe (per-line required base quantities)
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models import ProductionBatch, RawMaterial, Recipe, RecipeItem
from ..utils.constants import (
    MAX_ACTOR_LENGTH,
    MAX_NOTES_LENGTH,
    MONEY_PRECISION,
    QUANTITY_PRECISION,
)
from .database import session_scope, unit_of_work
from .exceptions import (
    InvalidRecipeError,
    RawMaterialNotFound,
    RecipeInUse,
    RecipeNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .product_service import require_product
from .unit_normalizer import base_unit_for, to_base_quantity

logger = get_service_logger(__name__)


# =============================================================================
# Item Validation and Costing
# =============================================================================


def _validate_items(items: List[Dict[str, Any]], session: Session) -> List[Dict[str, Any]]:
    """
    Validate recipe item dicts and resolve their materials.

    Each item needs raw_material_id and quantity; unit defaults to the
    material's unit.

    Returns:
        List of dicts with raw_material (RawMaterial), quantity (Decimal), unit

    Raises:
        ValidationError: Aggregated item problems
        RawMaterialNotFound: If a referenced material does not exist
    """
    if not items:
        raise ValidationError(["A recipe needs at least one item"])

    errors: List[str] = []
    resolved: List[Dict[str, Any]] = []
    seen = set()

    for position, item in enumerate(items, start=1):
        material_id = item.get("raw_material_id")
        if material_id is None:
            errors.append(f"Item {position}: raw_material_id is required")
            continue
        if material_id in seen:
            errors.append(f"Item {position}: raw material {material_id} appears more than once")
            continue
        seen.add(material_id)

        material = session.get(RawMaterial, material_id)
        if material is None:
            raise RawMaterialNotFound(material_id)

        raw_quantity = item.get("quantity")
        try:
            quantity = Decimal(str(raw_quantity))
        except ArithmeticError:
            errors.append(f"Item {position}: quantity '{raw_quantity}' is not a number")
            continue
        if isinstance(raw_quantity, bool) or not quantity.is_finite() or quantity <= 0:
            errors.append(f"Item {position}: quantity must be positive")
            continue
        quantity = quantity.quantize(QUANTITY_PRECISION)
        if quantity == 0:
            errors.append(f"Item {position}: quantity must be at least {QUANTITY_PRECISION}")
            continue

        unit = item.get("unit") or material.unit
        try:
            item_base = base_unit_for(unit)
        except ValidationError as e:
            errors.extend(f"Item {position}: {message}" for message in e.errors)
            continue
        material_base = base_unit_for(material.unit)
        if item_base != material_base:
            errors.append(
                f"Item {position}: unit '{unit}' does not match {material.name} "
                f"(stocked in {material_base})"
            )
            continue

        resolved.append({"raw_material": material, "quantity": quantity, "unit": unit})

    if errors:
        raise ValidationError(errors)
    return resolved


def _items_cost(lines) -> Decimal:
    """Sum base quantity x current material cost over (material, quantity, unit) lines."""
    total = Decimal("0")
    for material, quantity, unit in lines:
        total += to_base_quantity(quantity, unit) * Decimal(str(material.cost_per_unit))
    return total.quantize(MONEY_PRECISION)


def compute_live_cost(recipe: Recipe) -> Decimal:
    """Cost of one unit of a loaded recipe at current material costs."""
    return _items_cost((item.raw_material, item.quantity, item.unit) for item in recipe.items)


def expand_recipe(recipe: Recipe, quantity: int) -> List[Dict[str, Any]]:
    """
    Expand a recipe into required base quantities for `quantity` units.

    Returns:
        List of dicts with raw_material_id, required (Decimal, base units),
        base_unit, in recipe item order
    """
    return [
        {
            "raw_material_id": item.raw_material_id,
            "required": to_base_quantity(item.quantity, item.unit) * quantity,
            "base_unit": base_unit_for(item.unit),
        }
        for item in recipe.items
    ]


def _validate_notes(notes: Optional[str], created_by: Optional[str] = None) -> None:
    errors = []
    if notes is not None and not isinstance(notes, str):
        errors.append("Notes must be text")
    elif notes is not None and len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
    if created_by is not None and not isinstance(created_by, str):
        errors.append("created_by must be text")
    elif created_by is not None and len(created_by) > MAX_ACTOR_LENGTH:
        errors.append(f"created_by must be at most {MAX_ACTOR_LENGTH} characters")
    if errors:
        raise ValidationError(errors)


def _batch_count(session: Session, recipe_id: int) -> int:
    return (
        session.query(func.count(ProductionBatch.id))
        .filter(ProductionBatch.recipe_id == recipe_id)
        .scalar()
    )


def _get_recipe_or_raise(session: Session, recipe_id: int) -> Recipe:
    recipe = (
        session.query(Recipe)
        .options(joinedload(Recipe.items).joinedload(RecipeItem.raw_material))
        .filter(Recipe.id == recipe_id)
        .first()
    )
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    return recipe


def _switch_active(session: Session, recipe: Recipe) -> None:
    """Deactivate every other version of the product, then activate `recipe`.

    The bulk UPDATE is flushed before the target flips so the partial unique
    index never sees two active rows.
    """
    session.query(Recipe).filter(
        Recipe.product_id == recipe.product_id,
        Recipe.id != recipe.id,
        Recipe.is_active.is_(True),
    ).update({"is_active": False}, synchronize_session="fetch")
    session.flush()
    recipe.is_active = True
    session.flush()


# =============================================================================
# Mutations
# =============================================================================


def save_recipe(
    product_id: int,
    items: List[Dict[str, Any]],
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
    activate: bool = False,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Save a new recipe version for a product.

    Transaction boundary: One atomic unit of work. The version number is
    max(version) + 1 for the product. The first recipe of a product is
    activated automatically; later versions only when activate=True.

    Args:
        product_id: Product the recipe produces
        items: List of {"raw_material_id", "quantity", "unit"} per unit of product
        notes: Free text
        created_by: Operator identifier
        activate: Make the new version the active one

    Returns:
        Recipe dict including items, snapshot total_cost and live_cost

    Raises:
        ProductNotFound: If the product does not exist
        RawMaterialNotFound: If an item references a missing material
        ValidationError: If items are invalid
    """
    _validate_notes(notes, created_by)

    with unit_of_work(session) as session:
        require_product(session, product_id)
        resolved = _validate_items(items, session)

        existing_versions = (
            session.query(func.max(Recipe.version)).filter(Recipe.product_id == product_id).scalar()
        )
        version = (existing_versions or 0) + 1

        recipe = Recipe(
            product_id=product_id,
            version=version,
            is_active=False,
            total_cost=_items_cost((r["raw_material"], r["quantity"], r["unit"]) for r in resolved),
            notes=notes,
            created_by=created_by,
        )
        for line in resolved:
            recipe.items.append(
                RecipeItem(
                    raw_material_id=line["raw_material"].id,
                    quantity=line["quantity"],
                    unit=line["unit"],
                )
            )
        session.add(recipe)
        session.flush()

        if activate or existing_versions is None:
            _switch_active(session, recipe)

        log_operation(
            logger,
            "save_recipe",
            "success",
            recipe_id=recipe.id,
            product_id=product_id,
            version=version,
            is_active=recipe.is_active,
        )
        return _recipe_to_dict(_get_recipe_or_raise(session, recipe.id))


def update_recipe(
    recipe_id: int,
    items: Optional[List[Dict[str, Any]]] = None,
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Replace a recipe's items and/or notes in place.

    Only recipes no batch has used can be edited; otherwise save a new
    version. Replacing items recomputes the snapshot cost.

    Raises:
        RecipeNotFound: If the recipe does not exist
        RecipeInUse: If production batches reference the recipe
        ValidationError: If items are invalid
    """
    _validate_notes(notes)

    with unit_of_work(session) as session:
        recipe = _get_recipe_or_raise(session, recipe_id)

        batch_count = _batch_count(session, recipe_id)
        if batch_count:
            raise RecipeInUse(recipe_id, batch_count)

        if items is not None:
            resolved = _validate_items(items, session)
            # Old rows must be gone before re-inserting the same materials
            recipe.items.clear()
            session.flush()
            for line in resolved:
                recipe.items.append(
                    RecipeItem(
                        raw_material_id=line["raw_material"].id,
                        quantity=line["quantity"],
                        unit=line["unit"],
                    )
                )
            recipe.total_cost = _items_cost(
                (r["raw_material"], r["quantity"], r["unit"]) for r in resolved
            )
        if notes is not None:
            recipe.notes = notes
        session.flush()

        log_operation(logger, "update_recipe", "success", recipe_id=recipe_id)
        session.expire(recipe)
        return _recipe_to_dict(_get_recipe_or_raise(session, recipe_id))


def activate_recipe(recipe_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Make a recipe the active version for its product.

    Transaction boundary: One atomic unit of work. All other versions of the
    product are deactivated before the target is activated.

    Raises:
        RecipeNotFound: If the recipe does not exist
    """
    with unit_of_work(session) as session:
        recipe = _get_recipe_or_raise(session, recipe_id)
        if not recipe.is_active:
            _switch_active(session, recipe)

        log_operation(
            logger,
            "activate_recipe",
            "success",
            recipe_id=recipe_id,
            product_id=recipe.product_id,
        )
        return _recipe_to_dict(recipe)


def delete_recipe(recipe_id: int, session: Optional[Session] = None) -> bool:
    """
    Delete a recipe version and its items.

    Raises:
        RecipeNotFound: If the recipe does not exist
        RecipeInUse: If production batches reference the recipe
        ValidationError: If the recipe is active while other versions exist
    """
    with unit_of_work(session) as session:
        recipe = _get_recipe_or_raise(session, recipe_id)

        batch_count = _batch_count(session, recipe_id)
        if batch_count:
            log_operation(
                logger,
                "delete_recipe",
                "in_use",
                level=logging.WARNING,
                recipe_id=recipe_id,
                batch_count=batch_count,
            )
            raise RecipeInUse(recipe_id, batch_count)

        if recipe.is_active:
            others = (
                session.query(func.count(Recipe.id))
                .filter(Recipe.product_id == recipe.product_id, Recipe.id != recipe_id)
                .scalar()
            )
            if others:
                raise ValidationError(
                    ["Cannot delete the active recipe while other versions exist; activate another first"]
                )

        session.delete(recipe)
        session.flush()

        log_operation(logger, "delete_recipe", "success", recipe_id=recipe_id)
        return True


# =============================================================================
# Queries
# =============================================================================


def get_recipe(recipe_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a recipe with items, snapshot cost and live cost.

    Raises:
        RecipeNotFound: If the recipe does not exist
    """
    if session is not None:
        return _recipe_to_dict(_get_recipe_or_raise(session, recipe_id))
    with session_scope() as session:
        return _recipe_to_dict(_get_recipe_or_raise(session, recipe_id))


def find_active_recipe(session: Session, product_id: int) -> Recipe:
    """Load the product's active recipe.

    Raises:
        ProductNotFound: If the product does not exist
        InvalidRecipeError: If the product has no active recipe
    """
    require_product(session, product_id)
    recipe = (
        session.query(Recipe)
        .options(joinedload(Recipe.items).joinedload(RecipeItem.raw_material))
        .filter(Recipe.product_id == product_id, Recipe.is_active.is_(True))
        .first()
    )
    if recipe is None:
        raise InvalidRecipeError(
            f"Product {product_id} has no active recipe", product_id=product_id
        )
    return recipe


def get_active_recipe(product_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get the active recipe of a product.

    Raises:
        ProductNotFound: If the product does not exist
        InvalidRecipeError: If the product has no active recipe
    """
    if session is not None:
        return _recipe_to_dict(find_active_recipe(session, product_id))
    with session_scope() as session:
        return _recipe_to_dict(find_active_recipe(session, product_id))


def list_recipes(product_id: int, session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """List every recipe version of a product, newest version first."""
    with unit_of_work(session) as session:
        require_product(session, product_id)
        recipes = (
            session.query(Recipe)
            .options(joinedload(Recipe.items).joinedload(RecipeItem.raw_material))
            .filter(Recipe.product_id == product_id)
            .order_by(Recipe.version.desc())
            .all()
        )
        return [_recipe_to_dict(r) for r in recipes]


def live_unit_cost(recipe_id: int, session: Optional[Session] = None) -> Decimal:
    """
    Cost of one unit at the materials' current average costs.

    Unlike the stored `total_cost` snapshot, this moves with every priced
    receipt.

    Raises:
        RecipeNotFound: If the recipe does not exist
    """
    with unit_of_work(session) as session:
        return compute_live_cost(_get_recipe_or_raise(session, recipe_id))


# =============================================================================
# Serialization
# =============================================================================


def _recipe_to_dict(recipe: Recipe) -> Dict[str, Any]:
    """Convert a Recipe to a dictionary with items and both cost figures."""
    return {
        "id": recipe.id,
        "uuid": recipe.uuid,
        "product_id": recipe.product_id,
        "product_name": recipe.product.name if recipe.product else None,
        "version": recipe.version,
        "is_active": recipe.is_active,
        "total_cost": str(recipe.total_cost),
        "live_cost": str(compute_live_cost(recipe)),
        "notes": recipe.notes,
        "created_by": recipe.created_by,
        "created_at": recipe.created_at.isoformat() if recipe.created_at else None,
        "items": [
            {
                "id": item.id,
                "raw_material_id": item.raw_material_id,
                "raw_material_name": item.raw_material.name,
                "quantity": str(item.quantity),
                "unit": item.unit,
                "base_quantity": str(to_base_quantity(item.quantity, item.unit)),
                "base_unit": base_unit_for(item.unit),
            }
            for item in recipe.items
        ],
    }
