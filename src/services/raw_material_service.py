"""
Raw Material Ledger Service.

This module owns raw material balances and weighted-average costs. Every
change to a material's `current_quantity` goes through record_movement()
(or apply_movement() inside a caller's transaction) and appends exactly one
immutable StockMovement row in the same unit of work.

Key Functions:
- Ledger: record_movement, apply_movement, calculate_weighted_average
- CRUD: create_raw_material, update_raw_material, set_raw_material_active
- Queries: get_raw_material, list_raw_materials, get_low_stock_materials,
  get_movement_history

Session Pattern:
All public functions accept an optional `session` parameter. If provided, the
function uses the caller's session (for transaction atomicity). If None, the
function opens its own unit of work.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from src.models import MovementType, RawMaterial, StockMovement
from src.utils.constants import (
    DEFAULT_RAW_MATERIAL_CATEGORY,
    MAX_ACTOR_LENGTH,
    MAX_NAME_LENGTH,
    MAX_NOTES_LENGTH,
    MEASUREMENT_UNITS,
    MOVEMENT_HISTORY_LIMIT,
    QUANTITY_PRECISION,
    RAW_MATERIAL_CATEGORIES,
    UNIT_COST_PRECISION,
)
from .database import session_scope, unit_of_work
from .exceptions import InsufficientStock, RawMaterialNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .unit_normalizer import base_unit_for, to_base_quantity, units_compatible

logger = get_service_logger(__name__)

# Movement kinds whose quantity is subtracted from the balance
_OUTGOING_TYPES = (MovementType.BAIXA_PRODUCAO, MovementType.PERDA)
# Movement kinds whose quantity is added to the balance
_INCOMING_TYPES = (MovementType.ENTRADA, MovementType.ESTORNO)

_EDITABLE_FIELDS = ("name", "category", "unit", "minimum_stock", "notes")
_LEDGER_OWNED_FIELDS = ("current_quantity", "cost_per_unit")


# =============================================================================
# Calculation Helpers
# =============================================================================


def calculate_weighted_average(
    current_quantity: Decimal,
    current_avg_cost: Decimal,
    added_quantity: Decimal,
    added_unit_cost: Decimal,
) -> Decimal:
    """Calculate new weighted average cost after a receipt.

    Formula: (current_qty * current_avg + added_qty * added_cost) / (current_qty + added_qty)

    Special Cases:
        - If current_qty + added_qty == 0: Returns current_avg_cost (unchanged)
        - If current_quantity == 0: Returns added_unit_cost (first receipt)

    Examples:
        >>> calculate_weighted_average(Decimal("1000"), Decimal("0.05"), Decimal("1000"), Decimal("0.07"))
        Decimal('0.060000')
    """
    current_qty = Decimal(str(current_quantity))
    added_qty = Decimal(str(added_quantity))
    current_avg = Decimal(str(current_avg_cost))
    added_cost = Decimal(str(added_unit_cost))

    total_quantity = current_qty + added_qty
    if total_quantity == 0:
        return current_avg.quantize(UNIT_COST_PRECISION)

    if current_qty == 0:
        return added_cost.quantize(UNIT_COST_PRECISION)

    total_value = (current_qty * current_avg) + (added_qty * added_cost)
    return (total_value / total_quantity).quantize(UNIT_COST_PRECISION)


def signed_delta(movement_type: MovementType, quantity: Decimal, balance_before: Decimal) -> Decimal:
    """Signed balance change for a movement.

    For ajuste the quantity is the counted target balance, so the delta is
    the difference from the current balance.
    """
    if movement_type in _INCOMING_TYPES:
        return quantity
    if movement_type in _OUTGOING_TYPES:
        return -quantity
    return quantity - balance_before


def _coerce_movement_type(movement_type) -> MovementType:
    try:
        return MovementType(movement_type)
    except ValueError:
        valid = ", ".join(m.value for m in MovementType)
        raise ValidationError([f"Invalid movement type '{movement_type}'. Must be one of: {valid}"])


def _coerce_decimal(value, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError([f"{field} must be a number"])
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError([f"{field} must be a number"])
    if not result.is_finite():
        raise ValidationError([f"{field} must be a finite number"])
    return result


def _validate_text(errors: List[str], value: Optional[str], field: str, max_length: int) -> None:
    if value is not None and not isinstance(value, str):
        errors.append(f"{field} must be text")
    elif value is not None and len(value) > max_length:
        errors.append(f"{field} must be at most {max_length} characters")


# =============================================================================
# Ledger
# =============================================================================


def lock_material(session: Session, material_id: int) -> RawMaterial:
    """Load a material for update, re-reading its current balance.

    Issues SELECT ... FOR UPDATE where the backend supports it; the version
    column catches concurrent writers on backends that ignore the lock.

    Raises:
        RawMaterialNotFound: If the material does not exist
    """
    material = (
        session.query(RawMaterial)
        .filter(RawMaterial.id == material_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if material is None:
        raise RawMaterialNotFound(material_id)
    return material


def apply_movement(
    session: Session,
    material: RawMaterial,
    movement_type: MovementType,
    base_quantity: Decimal,
    *,
    incoming_unit_cost: Optional[Decimal] = None,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    production_batch_id: Optional[int] = None,
    reference_type: Optional[str] = None,
) -> StockMovement:
    """
    Apply one movement to a locked material and append its ledger row.

    Transaction boundary: Inherits session from caller. The caller must have
    loaded `material` through lock_material() in the same session.

    Args:
        session: Caller's session
        material: Locked RawMaterial
        movement_type: Kind of movement
        base_quantity: Quantity in base units (target balance for ajuste)
        incoming_unit_cost: Cost per base unit for priced entrada receipts
        notes, actor: Audit fields
        production_batch_id, reference_type: Batch reference, if any

    Returns:
        The new StockMovement (flushed, id assigned)

    Raises:
        InsufficientStock: If the balance would go negative
    """
    quantity = base_quantity.quantize(QUANTITY_PRECISION)
    balance_before = Decimal(str(material.current_quantity))
    balance_after = balance_before + signed_delta(movement_type, quantity, balance_before)

    if balance_after < 0:
        raise InsufficientStock(
            [
                {
                    "raw_material_id": material.id,
                    "name": material.name,
                    "required": quantity,
                    "available": balance_before,
                }
            ]
        )

    current_cost = Decimal(str(material.cost_per_unit))
    cost_at_time = current_cost
    if movement_type == MovementType.ENTRADA and incoming_unit_cost is not None:
        cost_at_time = incoming_unit_cost.quantize(UNIT_COST_PRECISION)
        material.cost_per_unit = calculate_weighted_average(
            balance_before, current_cost, quantity, incoming_unit_cost
        )

    material.current_quantity = balance_after

    movement = StockMovement(
        raw_material_id=material.id,
        movement_type=movement_type.value,
        quantity=balance_after - balance_before,
        balance_before=balance_before,
        balance_after=balance_after,
        cost_per_unit_at_time=cost_at_time,
        production_batch_id=production_batch_id,
        reference_type=reference_type,
        notes=notes,
        actor=actor,
    )
    session.add(movement)
    session.flush()
    return movement


def record_movement(
    material_id: int,
    movement_type,
    quantity,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    *,
    unit: Optional[str] = None,
    unit_cost=None,
    total_value=None,
    production_batch_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Record a stock movement for a raw material.

    Transaction boundary: One atomic unit of work. The material's balance,
    its weighted-average cost and the appended StockMovement commit together.

    Args:
        material_id: Material to move
        movement_type: entrada, ajuste, baixa_producao, estorno or perda
        quantity: Positive quantity; for ajuste, the counted target balance (>= 0)
        notes: Free text
        actor: Operator identifier
        unit: Unit of `quantity` (defaults to the material's unit); must share
              the material's base unit
        unit_cost: Incoming cost per base unit (entrada only)
        total_value: Total price of the receipt (entrada only, alternative to unit_cost)
        production_batch_id: Batch reference, if any
        reference_type: Reference kind stored alongside the batch reference
        session: Optional session for transactional composition

    Returns:
        Dict describing the movement, including "movement_id"

    Raises:
        ValidationError: Bad kind, quantity, unit or cost
        RawMaterialNotFound: If the material does not exist
        InsufficientStock: If the balance would go negative (nothing recorded)
    """
    kind = _coerce_movement_type(movement_type)
    amount = _coerce_decimal(quantity, "Quantity")

    errors: List[str] = []
    if kind == MovementType.AJUSTE:
        if amount < 0:
            errors.append("Adjustment target balance cannot be negative")
    elif amount <= 0:
        errors.append("Quantity must be positive")
    if unit_cost is not None and total_value is not None:
        errors.append("Provide either unit_cost or total_value, not both")
    if kind != MovementType.ENTRADA and (unit_cost is not None or total_value is not None):
        errors.append("Costs can only be supplied on entrada movements")
    _validate_text(errors, notes, "Notes", MAX_NOTES_LENGTH)
    _validate_text(errors, actor, "Actor", MAX_ACTOR_LENGTH)
    if errors:
        raise ValidationError(errors)

    with unit_of_work(session) as session:
        material = lock_material(session, material_id)

        movement_unit = unit or material.unit
        if not units_compatible(movement_unit, material.unit):
            raise ValidationError(
                [
                    f"Unit '{movement_unit}' is not compatible with material unit "
                    f"'{material.unit}' (base unit {base_unit_for(material.unit)})"
                ]
            )
        base_quantity = to_base_quantity(amount, movement_unit).quantize(QUANTITY_PRECISION)
        if kind != MovementType.AJUSTE and base_quantity == 0:
            raise ValidationError(
                [f"Quantity must be at least {QUANTITY_PRECISION} {base_unit_for(material.unit)}"]
            )

        incoming_cost = None
        if unit_cost is not None:
            incoming_cost = _coerce_decimal(unit_cost, "Unit cost")
        elif total_value is not None:
            value = _coerce_decimal(total_value, "Total value")
            incoming_cost = value / base_quantity
        if incoming_cost is not None and incoming_cost < 0:
            raise ValidationError(["Cost cannot be negative"])

        try:
            movement = apply_movement(
                session,
                material,
                kind,
                base_quantity,
                incoming_unit_cost=incoming_cost,
                notes=notes,
                actor=actor,
                production_batch_id=production_batch_id,
                reference_type=reference_type,
            )
        except InsufficientStock:
            log_operation(
                logger,
                "record_movement",
                "insufficient_stock",
                level=logging.WARNING,
                raw_material_id=material_id,
                movement_type=kind.value,
                quantity=str(base_quantity),
            )
            raise

        log_operation(
            logger,
            "record_movement",
            "success",
            raw_material_id=material_id,
            movement_id=movement.id,
            movement_type=kind.value,
            balance_after=str(movement.balance_after),
        )
        return _movement_to_dict(movement)


# =============================================================================
# CRUD
# =============================================================================


def _validate_material_fields(data: Dict[str, Any], partial: bool = False) -> List[str]:
    errors: List[str] = []

    if "name" in data or not partial:
        name = data.get("name") or ""
        if not isinstance(name, str):
            errors.append("Name must be text")
        elif not name.strip():
            errors.append("Name is required")
        elif len(name.strip()) > MAX_NAME_LENGTH:
            errors.append(f"Name must be at most {MAX_NAME_LENGTH} characters")

    if "unit" in data or not partial:
        if data.get("unit") not in MEASUREMENT_UNITS:
            errors.append(
                f"Invalid unit '{data.get('unit')}'. Must be one of: {', '.join(MEASUREMENT_UNITS)}"
            )

    if "category" in data and data["category"] not in RAW_MATERIAL_CATEGORIES:
        errors.append(
            f"Invalid category '{data['category']}'. "
            f"Must be one of: {', '.join(RAW_MATERIAL_CATEGORIES)}"
        )

    if data.get("minimum_stock") is not None:
        try:
            if _coerce_decimal(data["minimum_stock"], "Minimum stock") < 0:
                errors.append("Minimum stock cannot be negative")
        except ValidationError as e:
            errors.extend(e.errors)

    _validate_text(errors, data.get("notes"), "Notes", MAX_NOTES_LENGTH)
    return errors


def create_raw_material(
    name: str,
    unit: str,
    category: str = DEFAULT_RAW_MATERIAL_CATEGORY,
    minimum_stock=Decimal("0"),
    notes: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Create a raw material with zero balance and zero cost.

    Stock only enters through record_movement(), so the first entrada sets
    the starting weighted-average cost.

    Args:
        name: Material name
        unit: Display unit (ml, l, g, kg, unidade)
        category: One of RAW_MATERIAL_CATEGORIES
        minimum_stock: Low-stock threshold in base units
        notes: Free text

    Raises:
        ValidationError: If any field is invalid
    """
    data = {
        "name": name,
        "unit": unit,
        "category": category,
        "minimum_stock": minimum_stock,
        "notes": notes,
    }
    errors = _validate_material_fields(data)
    if errors:
        raise ValidationError(errors)

    with unit_of_work(session) as session:
        material = RawMaterial(
            name=name.strip(),
            unit=unit,
            category=category,
            minimum_stock=_coerce_decimal(minimum_stock or 0, "Minimum stock").quantize(
                QUANTITY_PRECISION
            ),
            current_quantity=Decimal("0"),
            cost_per_unit=Decimal("0"),
            notes=notes,
        )
        session.add(material)
        session.flush()

        log_operation(logger, "create_raw_material", "success", raw_material_id=material.id)
        return _material_to_dict(material)


def update_raw_material(
    material_id: int,
    updates: Dict[str, Any],
    session: Optional[Session] = None,
) -> Dict[str, Any]:
    """
    Update descriptive fields of a raw material.

    Balance and cost are ledger-owned and cannot be edited here; a unit
    change must keep the same base unit so stored balances stay valid.

    Raises:
        RawMaterialNotFound: If the material does not exist
        ValidationError: If a field is invalid or not editable
    """
    forbidden = [field for field in updates if field in _LEDGER_OWNED_FIELDS]
    if forbidden:
        raise ValidationError(
            [f"{field} is maintained by stock movements and cannot be edited" for field in forbidden]
        )
    unknown = [field for field in updates if field not in _EDITABLE_FIELDS]
    if unknown:
        raise ValidationError([f"Unknown field: {field}" for field in unknown])

    errors = _validate_material_fields(updates, partial=True)
    if errors:
        raise ValidationError(errors)

    with unit_of_work(session) as session:
        material = lock_material(session, material_id)

        if "unit" in updates and not units_compatible(updates["unit"], material.unit):
            raise ValidationError(
                [
                    f"Cannot change unit from '{material.unit}' to '{updates['unit']}': "
                    f"base units differ"
                ]
            )

        for field, value in updates.items():
            if field == "name":
                value = value.strip()
            elif field == "minimum_stock":
                value = _coerce_decimal(value or 0, "Minimum stock").quantize(QUANTITY_PRECISION)
            setattr(material, field, value)
        session.flush()

        log_operation(
            logger,
            "update_raw_material",
            "success",
            raw_material_id=material_id,
            fields=sorted(updates),
        )
        return _material_to_dict(material)


def set_raw_material_active(
    material_id: int, is_active: bool, session: Optional[Session] = None
) -> Dict[str, Any]:
    """Activate or deactivate a raw material."""
    with unit_of_work(session) as session:
        material = lock_material(session, material_id)
        material.is_active = bool(is_active)
        session.flush()
        log_operation(
            logger,
            "set_raw_material_active",
            "success",
            raw_material_id=material_id,
            is_active=material.is_active,
        )
        return _material_to_dict(material)


# =============================================================================
# Queries
# =============================================================================


def get_raw_material(material_id: int, session: Optional[Session] = None) -> Dict[str, Any]:
    """Get a raw material by ID.

    Raises:
        RawMaterialNotFound: If the material does not exist
    """
    if session is not None:
        return _get_raw_material_impl(material_id, session)
    with session_scope() as session:
        return _get_raw_material_impl(material_id, session)


def _get_raw_material_impl(material_id: int, session: Session) -> Dict[str, Any]:
    material = session.get(RawMaterial, material_id)
    if material is None:
        raise RawMaterialNotFound(material_id)
    return _material_to_dict(material)


def list_raw_materials(
    category: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    List raw materials ordered by name.

    Args:
        category: Filter by category
        search: Case-insensitive substring match on name
        include_inactive: If False (default), hide inactive materials
    """
    if session is not None:
        return _list_raw_materials_impl(category, search, include_inactive, session)
    with session_scope() as session:
        return _list_raw_materials_impl(category, search, include_inactive, session)


def _list_raw_materials_impl(category, search, include_inactive, session) -> List[Dict[str, Any]]:
    query = session.query(RawMaterial)
    if category is not None:
        query = query.filter(RawMaterial.category == category)
    if search:
        query = query.filter(RawMaterial.name.ilike(f"%{search.strip()}%"))
    if not include_inactive:
        query = query.filter(RawMaterial.is_active.is_(True))
    return [_material_to_dict(m) for m in query.order_by(RawMaterial.name).all()]


def get_low_stock_materials(session: Optional[Session] = None) -> List[Dict[str, Any]]:
    """Active materials whose balance is at or below their minimum stock."""
    if session is not None:
        return _get_low_stock_impl(session)
    with session_scope() as session:
        return _get_low_stock_impl(session)


def _get_low_stock_impl(session: Session) -> List[Dict[str, Any]]:
    materials = (
        session.query(RawMaterial)
        .filter(
            RawMaterial.is_active.is_(True),
            RawMaterial.current_quantity <= RawMaterial.minimum_stock,
        )
        .order_by(RawMaterial.name)
        .all()
    )
    return [_material_to_dict(m) for m in materials]


def get_movement_history(
    material_id: int,
    limit: int = MOVEMENT_HISTORY_LIMIT,
    session: Optional[Session] = None,
) -> List[Dict[str, Any]]:
    """
    Get a material's movements, newest first.

    Raises:
        RawMaterialNotFound: If the material does not exist
    """
    if session is not None:
        return _get_movement_history_impl(material_id, limit, session)
    with session_scope() as session:
        return _get_movement_history_impl(material_id, limit, session)


def _get_movement_history_impl(material_id: int, limit: int, session: Session) -> List[Dict[str, Any]]:
    if session.get(RawMaterial, material_id) is None:
        raise RawMaterialNotFound(material_id)
    movements = (
        session.query(StockMovement)
        .filter(StockMovement.raw_material_id == material_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    return [_movement_to_dict(m) for m in movements]


# =============================================================================
# Serialization
# =============================================================================


def _material_to_dict(material: RawMaterial) -> Dict[str, Any]:
    result = material.to_dict()
    result["base_unit"] = base_unit_for(material.unit)
    result["is_low_stock"] = material.is_low_stock
    return result


def _movement_to_dict(movement: StockMovement) -> Dict[str, Any]:
    result = movement.to_dict()
    result["movement_id"] = movement.id
    return result
