"""
Tests for the combat tracker data models.
"""

import pytest
from pydantic import ValidationError

from combat_tracker.models import (
    Combatant,
    CombatantKind,
    CombatEvent,
    CombatSnapshot,
    EncounterState,
    Position,
    cell_key,
)


class TestCombatant:

    def test_camel_case_record(self):
        combatant = Combatant.model_validate({
            "id": "orc",
            "name": "Orc",
            "type": "monster",
            "initiativeModifier": 1,
            "currentHitPoints": 6,
            "maxHitPoints": 6,
            "damageReduction": 3,
        })
        assert combatant.kind is CombatantKind.MONSTER
        assert combatant.initiative_modifier == 1
        assert combatant.damage_reduction.amount == 3
        assert combatant.damage_reduction.bypassed_by == []

    def test_snake_case_record(self):
        combatant = Combatant(id="a", name="A", kind="npc", current_hit_points=4)
        assert combatant.kind is CombatantKind.NPC
        assert combatant.current_hit_points == 4

    def test_displayed_hit_points_floor(self):
        combatant = Combatant(id="a", name="A", current_hit_points=-7)
        assert combatant.current_hit_points == -7
        assert combatant.displayed_hit_points == 0

    @pytest.mark.parametrize("score,modifier", [(10, 0), (11, 0), (12, 1), (8, -1), (7, -2), (18, 4)])
    def test_constitution_modifier(self, score, modifier):
        assert Combatant(id="a", name="A", constitution=score).constitution_modifier == modifier

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            Combatant(id="a", name="A", kind="dragon-god")


class TestPosition:

    def test_hashable_and_equal(self):
        assert Position(x=1, y=2) == Position(x=1, y=2)
        assert len({Position(x=1, y=2), Position(x=1, y=2)}) == 1

    def test_cell_key(self):
        assert cell_key(3, 7) == "3,7"


class TestCombatEvent:

    def test_frozen(self):
        event = CombatEvent(round=1, turn=1, event="Something")
        with pytest.raises(ValidationError):
            event.details = "changed"


class TestEncounterState:

    def test_accepts_both_key_styles(self):
        camel = EncounterState.model_validate({"combatState": {"round": 3}})
        snake = EncounterState.model_validate({"combat_state": {"round": 3}})
        assert camel.combat_state.round == snake.combat_state.round == 3

    def test_snapshot_defaults(self):
        snapshot = CombatSnapshot()
        assert snapshot.version == "1.0"
        assert snapshot.exported_at.tzinfo is not None
        assert "exportedAt" in snapshot.model_dump(by_alias=True)
