"""
Production batch status transition table.

The lifecycle policy lives here as data: every allowed (from, to) pair maps
to the side effects it triggers, so the policy can be read and tested on its
own. production_batch_service applies the effects; nothing else decides them.

    produzindo -> concluido   finished goods +quantity
    produzindo -> perda       none (materials stay consumed)
    produzindo -> estornado   materials returned
    concluido  -> perda       finished goods -quantity
    concluido  -> estornado   finished goods -quantity, materials returned
    perda      -> estornado   materials returned

estornado is terminal.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

from ..models import ProductionStatus
from .exceptions import InvalidStateTransition


@dataclass(frozen=True)
class TransitionEffect:
    """Side effects of a status change.

    Attributes:
        finished_goods_sign: +1 adds quantity_produced to finished goods,
            -1 removes it, 0 leaves the counter alone
        return_materials: Write estorno movements for every consumed line
    """

    finished_goods_sign: int = 0
    return_materials: bool = False


NO_EFFECT = TransitionEffect()

STATUS_TRANSITIONS: Dict[Tuple[ProductionStatus, ProductionStatus], TransitionEffect] = {
    (ProductionStatus.PRODUZINDO, ProductionStatus.CONCLUIDO): TransitionEffect(finished_goods_sign=1),
    (ProductionStatus.PRODUZINDO, ProductionStatus.PERDA): NO_EFFECT,
    (ProductionStatus.PRODUZINDO, ProductionStatus.ESTORNADO): TransitionEffect(return_materials=True),
    (ProductionStatus.CONCLUIDO, ProductionStatus.PERDA): TransitionEffect(finished_goods_sign=-1),
    (ProductionStatus.CONCLUIDO, ProductionStatus.ESTORNADO): TransitionEffect(
        finished_goods_sign=-1, return_materials=True
    ),
    (ProductionStatus.PERDA, ProductionStatus.ESTORNADO): TransitionEffect(return_materials=True),
}

# Effects applied when a batch is created directly in a status
INITIAL_STATUS_EFFECTS: Dict[ProductionStatus, TransitionEffect] = {
    ProductionStatus.PRODUZINDO: NO_EFFECT,
    ProductionStatus.CONCLUIDO: TransitionEffect(finished_goods_sign=1),
}

# Compensation applied before a batch is physically deleted
DELETE_EFFECTS: Dict[ProductionStatus, TransitionEffect] = {
    ProductionStatus.PRODUZINDO: TransitionEffect(return_materials=True),
    ProductionStatus.CONCLUIDO: TransitionEffect(finished_goods_sign=-1),
    ProductionStatus.PERDA: NO_EFFECT,
    ProductionStatus.ESTORNADO: NO_EFFECT,
}

TERMINAL_STATUSES = frozenset(
    status
    for status in ProductionStatus
    if not any(current == status for current, _ in STATUS_TRANSITIONS)
)


def get_transition_effect(current, requested) -> TransitionEffect:
    """
    Look up the side effects of moving a batch from `current` to `requested`.

    Raises:
        InvalidStateTransition: If the pair is not in STATUS_TRANSITIONS
    """
    current_status = ProductionStatus(current)
    try:
        requested_status = ProductionStatus(requested)
    except ValueError:
        raise InvalidStateTransition(current_status.value, str(requested))

    effect = STATUS_TRANSITIONS.get((current_status, requested_status))
    if effect is None:
        raise InvalidStateTransition(current_status.value, requested_status.value)
    return effect


def allowed_targets(current) -> Tuple[ProductionStatus, ...]:
    """Statuses reachable from `current` in one transition."""
    current_status = ProductionStatus(current)
    return tuple(target for source, target in STATUS_TRANSITIONS if source == current_status)
