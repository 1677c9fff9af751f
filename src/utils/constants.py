"""
Constants for the Atelier Ledger inventory and production engine.

This module defines all system-wide constants including:
- Measurement units (display and base storage units)
- Raw material categories
- Decimal precision for quantities and costs
- Application metadata
"""

from decimal import Decimal
from typing import Dict, List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Atelier Ledger"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"

# ============================================================================
# Measurement Units
# ============================================================================

# Units an operator may type on a recipe line or a stock movement
MEASUREMENT_UNITS: List[str] = [
    "ml",  # Milliliter (base)
    "l",  # Liter
    "g",  # Gram (base)
    "kg",  # Kilogram
    "unidade",  # Count (base)
]

# Display unit -> (base unit, multiplier)
BASE_UNIT_FACTORS: Dict[str, tuple] = {
    "ml": ("ml", Decimal("1")),
    "l": ("ml", Decimal("1000")),
    "g": ("g", Decimal("1")),
    "kg": ("g", Decimal("1000")),
    "unidade": ("unidade", Decimal("1")),
}

# ============================================================================
# Raw Material Categories
# ============================================================================

RAW_MATERIAL_CATEGORIES: List[str] = [
    "base",
    "essencia",
    "fixador",
    "corante",
    "frasco",
    "rotulo",
    "caixa",
    "embalagem",
    "outro",
]

DEFAULT_RAW_MATERIAL_CATEGORY = "outro"

# ============================================================================
# Decimal Precision
# ============================================================================

# Stock quantities in base units (ml, g, unidade)
QUANTITY_PRECISION = Decimal("0.001")

# Weighted-average cost per base unit
UNIT_COST_PRECISION = Decimal("0.000001")

# Monetary totals (batch cost, line cost, recipe snapshot)
MONEY_PRECISION = Decimal("0.0001")

# ============================================================================
# Defaults
# ============================================================================

MAX_NAME_LENGTH = 200
MAX_NOTES_LENGTH = 2000
MAX_ACTOR_LENGTH = 64

MOVEMENT_HISTORY_LIMIT = 50
PRODUCTION_HISTORY_LIMIT = 50

# ============================================================================
# Database
# ============================================================================

DATABASE_FILENAME = "atelier_ledger.db"

# Movement reference types
REFERENCE_PRODUCTION_BATCH = "production_batch"
REFERENCE_PRODUCTION_BATCH_REVERSAL = "production_batch_reversal"
