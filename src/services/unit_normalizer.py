"""
Unit normalization for raw material quantities.

This module provides:
- Conversion of display quantities (l, kg) into base storage units (ml, g)
- Base unit lookup for a display unit
- Compatibility checks between two units

Conversion Strategy:
- Volume converts through milliliters (base unit)
- Mass converts through grams (base unit)
- "unidade" units are discrete counts (identity conversion)
"""

from decimal import Decimal
from typing import Union

from src.utils.constants import BASE_UNIT_FACTORS, MEASUREMENT_UNITS
from .exceptions import ValidationError


def _factor_for(unit: str) -> tuple:
    """Return (base_unit, multiplier) or raise ValidationError for unknown units."""
    key = unit.strip().lower() if isinstance(unit, str) else unit
    if key not in BASE_UNIT_FACTORS:
        raise ValidationError(
            [f"Unknown unit '{unit}'. Valid units: {', '.join(MEASUREMENT_UNITS)}"]
        )
    return BASE_UNIT_FACTORS[key]


def base_unit_for(unit: str) -> str:
    """
    Get the base storage unit for a display unit.

    Examples:
        >>> base_unit_for("kg")
        'g'
        >>> base_unit_for("unidade")
        'unidade'
    """
    return _factor_for(unit)[0]


def to_base_quantity(quantity: Union[Decimal, int, float, str], unit: str) -> Decimal:
    """
    Convert a quantity expressed in `unit` to the unit's base storage unit.

    Args:
        quantity: Quantity in the display unit
        unit: One of MEASUREMENT_UNITS

    Returns:
        Quantity in base units as Decimal

    Raises:
        ValidationError: If the unit is unknown or the quantity is not numeric

    Examples:
        >>> to_base_quantity(Decimal("1.5"), "l")
        Decimal('1500.0')
        >>> to_base_quantity(50, "ml")
        Decimal('50')
    """
    _, factor = _factor_for(unit)
    try:
        value = Decimal(str(quantity))
    except ArithmeticError:
        raise ValidationError([f"Quantity '{quantity}' is not a number"])
    if not value.is_finite():
        raise ValidationError([f"Quantity '{quantity}' is not a finite number"])
    return value * factor


def units_compatible(unit_a: str, unit_b: str) -> bool:
    """True when both units normalize to the same base unit."""
    return base_unit_for(unit_a) == base_unit_for(unit_b)
