"""Tests for the production status transition table."""

import pytest

from src.models import ProductionStatus
from src.services.batch_transitions import (
    DELETE_EFFECTS,
    INITIAL_STATUS_EFFECTS,
    NO_EFFECT,
    STATUS_TRANSITIONS,
    TERMINAL_STATUSES,
    TransitionEffect,
    allowed_targets,
    get_transition_effect,
)
from src.services.exceptions import InvalidStateTransition

P = ProductionStatus.PRODUZINDO
C = ProductionStatus.CONCLUIDO
L = ProductionStatus.PERDA
E = ProductionStatus.ESTORNADO

ALLOWED = {
    (P, C): TransitionEffect(finished_goods_sign=1),
    (P, L): NO_EFFECT,
    (P, E): TransitionEffect(return_materials=True),
    (C, L): TransitionEffect(finished_goods_sign=-1),
    (C, E): TransitionEffect(finished_goods_sign=-1, return_materials=True),
    (L, E): TransitionEffect(return_materials=True),
}


class TestTransitionTable:
    """The table holds exactly the six allowed transitions."""

    def test_exact_pairs(self):
        assert STATUS_TRANSITIONS == ALLOWED

    @pytest.mark.parametrize("pair", sorted(ALLOWED, key=lambda p: (p[0].value, p[1].value)))
    def test_allowed_effects(self, pair):
        current, requested = pair
        assert get_transition_effect(current, requested) == ALLOWED[pair]

    def test_accepts_string_values(self):
        assert get_transition_effect("produzindo", "concluido") == TransitionEffect(finished_goods_sign=1)

    @pytest.mark.parametrize(
        "current,requested",
        [
            (current, requested)
            for current in ProductionStatus
            for requested in ProductionStatus
            if (current, requested) not in ALLOWED
        ],
    )
    def test_other_pairs_rejected(self, current, requested):
        with pytest.raises(InvalidStateTransition) as exc_info:
            get_transition_effect(current, requested)
        assert exc_info.value.current_status == current.value
        assert exc_info.value.requested_status == requested.value

    def test_unknown_target_rejected(self):
        with pytest.raises(InvalidStateTransition):
            get_transition_effect("produzindo", "vendido")


class TestTerminalAndTargets:
    def test_estornado_is_only_terminal_status(self):
        assert TERMINAL_STATUSES == frozenset({E})
        assert allowed_targets(E) == ()

    def test_allowed_targets(self):
        assert set(allowed_targets(P)) == {C, L, E}
        assert set(allowed_targets(C)) == {L, E}
        assert allowed_targets("perda") == (E,)


class TestCreationAndDeletionEffects:
    def test_initial_statuses(self):
        assert INITIAL_STATUS_EFFECTS == {P: NO_EFFECT, C: TransitionEffect(finished_goods_sign=1)}

    def test_delete_compensation(self):
        assert DELETE_EFFECTS[P] == TransitionEffect(return_materials=True)
        assert DELETE_EFFECTS[C] == TransitionEffect(finished_goods_sign=-1)
        assert DELETE_EFFECTS[L] == NO_EFFECT
        assert DELETE_EFFECTS[E] == NO_EFFECT

    def test_effects_are_immutable(self):
        with pytest.raises(AttributeError):
            NO_EFFECT.return_materials = True
