"""
Enumerations for the inventory ledger and production batches.

This module contains the closed value sets stored in string columns:
- MeasurementUnit: Units accepted on recipe lines and movements
- MovementType: Kinds of stock movement recorded in the ledger
- ProductionStatus: Lifecycle states of a production batch
"""

from enum import Enum


class MeasurementUnit(str, Enum):
    """
    Measurement units.

    Stock is always stored in a base unit (ML, G, UNIDADE); L and KG are
    display units that normalise by a factor of 1000.
    """

    ML = "ml"
    L = "l"
    G = "g"
    KG = "kg"
    UNIDADE = "unidade"


class MovementType(str, Enum):
    """
    Stock movement kinds.

    Values:
        ENTRADA: Purchase receipt; adds stock and re-weights the average cost
        AJUSTE: Manual correction; sets the balance to a counted target
        BAIXA_PRODUCAO: Consumption by a production batch
        ESTORNO: Reversal returning previously consumed stock
        PERDA: Loss/spoilage write-off
    """

    ENTRADA = "entrada"
    AJUSTE = "ajuste"
    BAIXA_PRODUCAO = "baixa_producao"
    ESTORNO = "estorno"
    PERDA = "perda"


class ProductionStatus(str, Enum):
    """
    Production batch lifecycle status.

    Values:
        PRODUZINDO: Materials consumed, product not yet confirmed
        CONCLUIDO: Product finished and counted in finished-goods stock
        PERDA: Batch lost; materials stay consumed
        ESTORNADO: Batch reversed; terminal
    """

    PRODUZINDO = "produzindo"
    CONCLUIDO = "concluido"
    PERDA = "perda"
    ESTORNADO = "estornado"


def enum_values(enum_cls) -> str:
    """Render an enum's values as a SQL IN-list for CHECK constraints."""
    return ", ".join(f"'{member.value}'" for member in enum_cls)
