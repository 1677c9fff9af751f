"""
Production Batch Service - simulation, commit and batch lifecycle.

This module is the production batch engine:
- simulate_production(): read-only expansion of a recipe against live stock
- create_production_batch(): atomic consumption of every recipe line plus
  the batch record, re-validated against current balances under lock
- change_production_status(): status transitions with the side effects
  listed in batch_transitions.STATUS_TRANSITIONS
- delete_production_batch(): compensating writes followed by physical
  removal (loses the batch's own audit record)

Stock writes go through raw_material_service.apply_movement() and
finished-goods writes through finished_goods_service.apply_batch_delta(),
always inside this module's unit of work.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from ..models import (
    MovementType,
    ProductionBatch,
    ProductionBatchItem,
    ProductionStatus,
    RawMaterial,
    Recipe,
    RecipeItem,
)
from ..utils.constants import (
    MAX_ACTOR_LENGTH,
    MAX_NOTES_LENGTH,
    MONEY_PRECISION,
    PRODUCTION_HISTORY_LIMIT,
    QUANTITY_PRECISION,
    REFERENCE_PRODUCTION_BATCH,
    REFERENCE_PRODUCTION_BATCH_REVERSAL,
    UNIT_COST_PRECISION,
)
from ..utils.datetime_utils import to_iso, utc_now
from .batch_transitions import (
    DELETE_EFFECTS,
    INITIAL_STATUS_EFFECTS,
    TransitionEffect,
    get_transition_effect,
)
from .database import session_scope, unit_of_work
from .exceptions import (
    InsufficientStock,
    InvalidRecipeError,
    InvalidStateTransition,
    ProductionBatchNotFound,
    RecipeNotFound,
    ValidationError,
)
from .finished_goods_service import apply_batch_delta
from .logging_utils import get_service_logger, log_operation
from .raw_material_service import apply_movement, lock_material
from .recipe_service import expand_recipe, find_active_recipe

logger = get_service_logger(__name__)


# =============================================================================
# Validation Helpers
# =============================================================================


def _validate_quantity(quantity) -> int:
    """Batch quantities are whole units greater than zero."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError([f"Quantity must be a whole number, got {quantity!r}"])
    if quantity <= 0:
        raise ValidationError(["Quantity must be greater than zero"])
    return quantity


def _validate_audit_fields(notes: Optional[str], actor: Optional[str]) -> None:
    errors = []
    if notes is not None and not isinstance(notes, str):
        errors.append("Notes must be text")
    elif notes is not None and len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
    if actor is not None and not isinstance(actor, str):
        errors.append("Actor must be text")
    elif actor is not None and len(actor) > MAX_ACTOR_LENGTH:
        errors.append(f"Actor must be at most {MAX_ACTOR_LENGTH} characters")
    if errors:
        raise ValidationError(errors)


def _load_recipe(session: Session, recipe_id) -> Recipe:
    if recipe_id is None:
        raise ValidationError(["A recipe must be selected"])
    recipe = (
        session.query(Recipe)
        .options(joinedload(Recipe.items).joinedload(RecipeItem.raw_material))
        .filter(Recipe.id == recipe_id)
        .first()
    )
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    return recipe


def _lock_batch(session: Session, batch_id: int) -> ProductionBatch:
    batch = (
        session.query(ProductionBatch)
        .filter(ProductionBatch.id == batch_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if batch is None:
        raise ProductionBatchNotFound(batch_id)
    return batch


def _line_cost(required: Decimal, cost_per_unit) -> Decimal:
    return (required * Decimal(str(cost_per_unit))).quantize(MONEY_PRECISION)


def _unit_cost(total_cost: Decimal, quantity: int) -> Decimal:
    return (total_cost / quantity).quantize(MONEY_PRECISION)


# =============================================================================
# Simulation
# =============================================================================


def simulate_production(recipe_id: int, quantity: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Expand a recipe for `quantity` units against current stock.

    Transaction boundary: Read-only operation. Takes no locks and writes
    nothing; the result is advisory and is re-checked at commit time.

    Args:
        recipe_id: Recipe to expand (active or not)
        quantity: Units to produce

    Returns:
        Dict with:
        - valid: True when every line is covered by stock
        - recipe_id, product_id, quantity
        - items: per line raw_material_id, name, required, available,
          balance_after, unit, cost_per_unit, line_cost, sufficient
        - total_cost, unit_cost (live material costs)
        - shortages: lines that are not covered

    Raises:
        ValidationError: If quantity is invalid or no recipe is selected
        RecipeNotFound: If the recipe does not exist
    """
    quantity = _validate_quantity(quantity)
    if session is not None:
        return _simulate_impl(recipe_id, quantity, session)
    with session_scope() as session:
        return _simulate_impl(recipe_id, quantity, session)


def _simulate_impl(recipe_id: int, quantity: int, session: Session) -> Dict[str, Any]:
    recipe = _load_recipe(session, recipe_id)

    items = []
    shortages = []
    total_cost = Decimal("0")
    for line in expand_recipe(recipe, quantity):
        material = session.get(RawMaterial, line["raw_material_id"])
        required = line["required"].quantize(QUANTITY_PRECISION)
        available = Decimal(str(material.current_quantity))
        line_cost = _line_cost(required, material.cost_per_unit)
        sufficient = required <= available
        total_cost += line_cost

        entry = {
            "raw_material_id": material.id,
            "name": material.name,
            "required": str(required),
            "available": str(available),
            "balance_after": str(available - required),
            "unit": line["base_unit"],
            "cost_per_unit": str(material.cost_per_unit),
            "line_cost": str(line_cost),
            "sufficient": sufficient,
        }
        items.append(entry)
        if not sufficient:
            shortages.append(entry)

    return {
        "valid": not shortages,
        "recipe_id": recipe.id,
        "product_id": recipe.product_id,
        "quantity": quantity,
        "items": items,
        "total_cost": str(total_cost),
        "unit_cost": str(_unit_cost(total_cost, quantity)),
        "shortages": shortages,
    }


def simulate_for_product(product_id: int, quantity: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Simulate production using the product's active recipe.

    Raises:
        InvalidRecipeError: If the product has no active recipe
    """
    quantity = _validate_quantity(quantity)
    with unit_of_work(session) as session:
        recipe = find_active_recipe(session, product_id)
        return _simulate_impl(recipe.id, quantity, session)


# =============================================================================
# Commit
# =============================================================================


def create_production_batch(
    recipe_id: int,
    quantity: int,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    initial_status=ProductionStatus.PRODUZINDO,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Consume stock for a recipe and record a production batch.

    Transaction boundary: One atomic unit of work. Materials are locked in
    id order and sufficiency is checked against their current balances; if
    any line is short, InsufficientStock is raised before anything is
    written. Otherwise one baixa_producao movement per line, the batch, its
    items (cost snapshotted) and, for concluido, the finished-goods increment
    commit together.

    Args:
        recipe_id: The product's active recipe
        quantity: Units produced (> 0)
        notes: Free text
        actor: Operator identifier
        initial_status: produzindo (default) or concluido

    Returns:
        Batch dict (see get_production_batch)

    Raises:
        ValidationError: Bad quantity, status or audit fields
        RecipeNotFound: If the recipe does not exist
        InvalidRecipeError: If the recipe is not the product's active version
        InsufficientStock: If any line exceeds the current balance
        ConcurrencyConflict: If a concurrent writer changed the same rows
    """
    quantity = _validate_quantity(quantity)
    _validate_audit_fields(notes, actor)
    try:
        status = ProductionStatus(initial_status)
    except ValueError:
        status = None
    if status not in INITIAL_STATUS_EFFECTS:
        valid = ", ".join(s.value for s in INITIAL_STATUS_EFFECTS)
        raise ValidationError([f"Initial status must be one of: {valid}"])

    with unit_of_work(session) as session:
        recipe = _load_recipe(session, recipe_id)
        if not recipe.is_active:
            raise InvalidRecipeError(
                f"Recipe {recipe.id} (version {recipe.version}) is not the active recipe "
                f"of product {recipe.product_id}",
                product_id=recipe.product_id,
                recipe_id=recipe.id,
            )

        lines = expand_recipe(recipe, quantity)
        locked = {
            material_id: lock_material(session, material_id)
            for material_id in sorted(line["raw_material_id"] for line in lines)
        }

        shortages = []
        for line in lines:
            material = locked[line["raw_material_id"]]
            required = line["required"].quantize(QUANTITY_PRECISION)
            available = Decimal(str(material.current_quantity))
            if required > available:
                shortages.append(
                    {
                        "raw_material_id": material.id,
                        "name": material.name,
                        "required": required,
                        "available": available,
                    }
                )
        if shortages:
            log_operation(
                logger,
                "create_production_batch",
                "insufficient_stock",
                level=logging.WARNING,
                recipe_id=recipe.id,
                quantity=quantity,
                shortages=[s["raw_material_id"] for s in shortages],
            )
            raise InsufficientStock(shortages)

        produced_at = utc_now()
        batch = ProductionBatch(
            product_id=recipe.product_id,
            recipe_id=recipe.id,
            quantity_produced=quantity,
            status=status.value,
            notes=notes,
            produced_by=actor,
            produced_at=produced_at,
            status_changed_at=produced_at,
        )

        total_cost = Decimal("0")
        for line in lines:
            material = locked[line["raw_material_id"]]
            required = line["required"].quantize(QUANTITY_PRECISION)
            cost_per_unit = Decimal(str(material.cost_per_unit)).quantize(UNIT_COST_PRECISION)
            line_cost = _line_cost(required, cost_per_unit)
            total_cost += line_cost
            batch.items.append(
                ProductionBatchItem(
                    raw_material_id=material.id,
                    quantity_consumed=required,
                    unit=line["base_unit"],
                    cost_per_unit=cost_per_unit,
                    total_cost=line_cost,
                )
            )
        batch.total_cost = total_cost
        batch.unit_cost = _unit_cost(total_cost, quantity)
        session.add(batch)
        session.flush()

        for line in lines:
            apply_movement(
                session,
                locked[line["raw_material_id"]],
                MovementType.BAIXA_PRODUCAO,
                line["required"],
                notes=f"Production batch #{batch.id}",
                actor=actor,
                production_batch_id=batch.id,
                reference_type=REFERENCE_PRODUCTION_BATCH,
            )

        _apply_effect(session, batch, INITIAL_STATUS_EFFECTS[status], actor, "Production batch")
        session.flush()

        log_operation(
            logger,
            "create_production_batch",
            "success",
            batch_id=batch.id,
            recipe_id=recipe.id,
            quantity=quantity,
            status=status.value,
            total_cost=str(total_cost),
        )
        return _batch_to_dict(batch)


def create_for_product(
    product_id: int,
    quantity: int,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    initial_status=ProductionStatus.PRODUZINDO,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """Commit a batch using the product's active recipe (custom-order flow).

    Raises:
        InvalidRecipeError: If the product has no active recipe
    """
    with unit_of_work(session) as session:
        recipe = find_active_recipe(session, product_id)
        return create_production_batch(
            recipe.id, quantity, notes, actor, initial_status, session=session
        )


# =============================================================================
# Lifecycle
# =============================================================================


def _apply_effect(
    session: Session,
    batch: ProductionBatch,
    effect: TransitionEffect,
    actor: Optional[str],
    reason: str,
) -> None:
    """Apply a TransitionEffect to stock and finished goods for `batch`."""
    if effect.finished_goods_sign:
        apply_batch_delta(session, batch.product_id, effect.finished_goods_sign * batch.quantity_produced)

    if effect.return_materials:
        for item in sorted(batch.items, key=lambda i: i.raw_material_id):
            material = lock_material(session, item.raw_material_id)
            apply_movement(
                session,
                material,
                MovementType.ESTORNO,
                Decimal(str(item.quantity_consumed)),
                notes=f"{reason} #{batch.id}",
                actor=actor,
                production_batch_id=batch.id,
                reference_type=REFERENCE_PRODUCTION_BATCH_REVERSAL,
            )


def change_production_status(
    batch_id: int,
    new_status,
    actor: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Move a batch to a new status and apply the transition's side effects.

    Transaction boundary: One atomic unit of work. The status change,
    finished-goods delta and estorno movements commit together; a rejected
    transition writes nothing.

    Raises:
        ProductionBatchNotFound: If the batch does not exist
        InvalidStateTransition: If the transition is not allowed
        InsufficientFinishedGoods: If finished goods would go negative
        ConcurrencyConflict: If a concurrent writer changed the same rows
    """
    _validate_audit_fields(None, actor)

    with unit_of_work(session) as session:
        batch = _lock_batch(session, batch_id)
        previous = batch.status

        try:
            effect = get_transition_effect(previous, new_status)
        except InvalidStateTransition:
            log_operation(
                logger,
                "change_production_status",
                "invalid_transition",
                level=logging.WARNING,
                batch_id=batch_id,
                from_status=previous,
                to_status=str(getattr(new_status, "value", new_status)),
            )
            raise

        target = ProductionStatus(new_status)
        _apply_effect(session, batch, effect, actor, "Reversal of production batch")

        now = utc_now()
        batch.status = target.value
        batch.status_changed_at = now
        if target == ProductionStatus.ESTORNADO:
            batch.reversed_at = now
            batch.reversed_by = actor
        session.flush()

        log_operation(
            logger,
            "change_production_status",
            "success",
            batch_id=batch_id,
            from_status=previous,
            to_status=target.value,
            finished_goods_delta=effect.finished_goods_sign * batch.quantity_produced,
            materials_returned=effect.return_materials,
        )
        return _batch_to_dict(batch)


def delete_production_batch(
    batch_id: int,
    actor: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Physically delete a batch after compensating its effects.

    Privileged operation: unlike estornado, the batch row and its items are
    removed. produzindo batches return their materials first; concluido
    batches take their quantity out of finished goods. Movements already in
    the ledger stay, with their batch reference cleared.

    Returns:
        Dict with batch_id, deleted, previous status and applied effects

    Raises:
        ProductionBatchNotFound: If the batch does not exist
        InsufficientFinishedGoods: If finished goods would go negative
    """
    _validate_audit_fields(None, actor)

    with unit_of_work(session) as session:
        batch = _lock_batch(session, batch_id)
        status = batch.production_status
        effect = DELETE_EFFECTS[status]
        finished_goods_delta = effect.finished_goods_sign * batch.quantity_produced

        _apply_effect(session, batch, effect, actor, "Deletion of production batch")
        session.delete(batch)
        session.flush()

        log_operation(
            logger,
            "delete_production_batch",
            "deleted",
            level=logging.WARNING,
            batch_id=batch_id,
            status=status.value,
            actor=actor,
        )
        return {
            "batch_id": batch_id,
            "deleted": True,
            "previous_status": status.value,
            "materials_returned": effect.return_materials,
            "finished_goods_delta": finished_goods_delta,
        }


# =============================================================================
# Queries
# =============================================================================


def get_production_batch(batch_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a batch with its consumed items.

    Raises:
        ProductionBatchNotFound: If the batch does not exist
    """
    if session is not None:
        return _get_production_batch_impl(batch_id, session)
    with session_scope() as session:
        return _get_production_batch_impl(batch_id, session)


def _get_production_batch_impl(batch_id: int, session: Session) -> Dict[str, Any]:
    batch = session.get(ProductionBatch, batch_id)
    if batch is None:
        raise ProductionBatchNotFound(batch_id)
    return _batch_to_dict(batch)


def get_production_history(
    product_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = PRODUCTION_HISTORY_LIMIT,
    offset: int = 0,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    List batches, most recent first.

    Args:
        product_id: Filter by product
        status: Filter by status value
        limit: Maximum number of batches
        offset: Number of batches to skip
    """
    if status is not None:
        try:
            status = ProductionStatus(status).value
        except ValueError:
            raise ValidationError([f"Invalid status filter '{status}'"])

    if session is not None:
        return _get_production_history_impl(product_id, status, limit, offset, session)
    with session_scope() as session:
        return _get_production_history_impl(product_id, status, limit, offset, session)


def _get_production_history_impl(product_id, status, limit, offset, session) -> List[Dict[str, Any]]:
    query = session.query(ProductionBatch).options(
        joinedload(ProductionBatch.items).joinedload(ProductionBatchItem.raw_material),
        joinedload(ProductionBatch.product),
        joinedload(ProductionBatch.recipe),
    )
    if product_id is not None:
        query = query.filter(ProductionBatch.product_id == product_id)
    if status is not None:
        query = query.filter(ProductionBatch.status == status)

    batches = (
        query.order_by(ProductionBatch.produced_at.desc(), ProductionBatch.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return [_batch_to_dict(b) for b in batches]


# =============================================================================
# Serialization
# =============================================================================


def _batch_to_dict(batch: ProductionBatch) -> Dict[str, Any]:
    """Convert a ProductionBatch to a dictionary representation."""
    return {
        "id": batch.id,
        "batch_id": batch.id,
        "uuid": batch.uuid,
        "product_id": batch.product_id,
        "product_name": batch.product.name if batch.product else None,
        "recipe_id": batch.recipe_id,
        "recipe_version": batch.recipe.version if batch.recipe else None,
        "quantity_produced": batch.quantity_produced,
        "status": batch.status,
        "total_cost": str(batch.total_cost),
        "unit_cost": str(batch.unit_cost),
        "notes": batch.notes,
        "produced_by": batch.produced_by,
        "produced_at": to_iso(batch.produced_at),
        "status_changed_at": to_iso(batch.status_changed_at),
        "reversed_at": to_iso(batch.reversed_at),
        "reversed_by": batch.reversed_by,
        "items": [
            {
                "id": item.id,
                "raw_material_id": item.raw_material_id,
                "raw_material_name": item.raw_material.name if item.raw_material else None,
                "quantity_consumed": str(item.quantity_consumed),
                "unit": item.unit,
                "cost_per_unit": str(item.cost_per_unit),
                "total_cost": str(item.total_cost),
            }
            for item in batch.items
        ],
    }
