"""
Tests for the combat session orchestrator.

Covers:
- start_combat / end_combat lifecycle and validation
- The event log: immutability, round/turn tagging, logger mirroring
- Battlemap commands through the session
- Snapshot export/import round trip
- Statistics, overview and end-of-combat detection
- End-to-end encounter scenario
"""

import json
import logging
import random
import threading

import pytest
from pydantic import ValidationError
from unittest.mock import patch

from combat_tracker.config import TrackerConfig
from combat_tracker.exceptions import (
    CombatantNotFoundError,
    ConditionNotFoundError,
    InvalidStateError,
    InvariantViolationError,
    OutOfBoundsError,
)
from combat_tracker.models import CombatSnapshot, Position
from combat_tracker.combat.conditions import DEFAULT_REGISTRY
from combat_tracker.combat.session import CombatSession, Survivor


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestStartCombat:

    def test_start_registers_participants(self, active_session):
        state = active_session.state
        assert state.combat_state.active
        assert state.combat_state.round == 1
        assert set(state.combatants) == {"fighter", "wizard", "orc"}
        assert state.combatants["orc"].starting_hit_points == 5
        assert state.combatants["orc"].damage_reduction.amount == 2

    def test_start_returns_first_combatant(self, session, party):
        session.rng.randint = lambda a, b: 10
        assert session.start_combat(party).id == "fighter"

    def test_start_is_logged(self, active_session):
        entry = [e for e in active_session.combat_log if e.category == "combat_start"][0]
        assert entry.event == "Combat begins!"
        assert entry.details == "3 combatants, Round 1"

    def test_start_twice_rejected(self, active_session, party):
        with pytest.raises(InvalidStateError):
            active_session.start_combat(party)

    def test_empty_participants_rejected(self, session):
        with pytest.raises(InvalidStateError):
            session.start_combat([])
        assert not session.is_active

    def test_duplicate_ids_rejected(self, session, party):
        with pytest.raises(InvalidStateError) as exc_info:
            session.start_combat(party + [dict(party[0])])
        assert exc_info.value.details["duplicates"] == ["fighter"]
        assert session.state.combatants == {}

    def test_invalid_record_rejected(self, session, party):
        bad = dict(party[1])
        del bad["name"]
        with pytest.raises(InvalidStateError):
            session.start_combat([party[0], bad])
        assert not session.is_active

    def test_participant_models_are_copied(self, session):
        from combat_tracker.models import Combatant

        hero = Combatant(id="hero", name="Lidda", current_hit_points=8, max_hit_points=8)
        session.start_combat([hero])
        session.apply_damage("hero", 3)
        assert hero.current_hit_points == 8


class TestEndCombat:

    def test_end_reports_survivors(self, active_session):
        active_session.track_spell({"name": "Bless", "casterId": "wizard", "duration": "1 minute"})
        active_session.delay_turn("fighter")
        active_session.ready_action("wizard", "Magic Missile", "orc charges")
        active_session.apply_damage("orc", 20, "magic")

        summary = active_session.end_combat()

        assert [s.id for s in summary.survivors] == ["fighter", "wizard"]
        assert summary.survivors[0] == Survivor(
            id="fighter", name="Tordek", hit_points=30, max_hit_points=30
        )
        assert summary.rounds == 1
        assert summary.combat_log[-1].event == "Combat ends after 1 rounds"
        assert not active_session.is_active
        assert active_session.state.spells == {}
        assert active_session.state.initiative.delayed_actions == []
        assert active_session.state.initiative.readied_actions == []

    def test_zero_hp_is_not_a_survivor(self, active_session):
        active_session.apply_damage("wizard", 12)
        survivors = active_session.end_combat().survivors
        assert "wizard" not in [s.id for s in survivors]

    def test_same_named_survivors_are_distinct(self, session):
        goblins = [
            {"id": "g1", "name": "Goblin", "type": "monster", "currentHitPoints": 4, "maxHitPoints": 5},
            {"id": "g2", "name": "Goblin", "type": "monster", "currentHitPoints": 5, "maxHitPoints": 5},
        ]
        session.start_combat(goblins)
        session.apply_damage("g2", 15)

        survivors = session.end_combat().survivors

        assert [(s.id, s.name, s.hit_points) for s in survivors] == [("g1", "Goblin", 4)]

    def test_end_inactive_raises(self, session):
        with pytest.raises(InvalidStateError):
            session.end_combat()

    def test_summary_to_dict(self, active_session):
        data = active_session.end_combat().to_dict()
        assert data["rounds"] == 1
        assert data["survivors"][0] == {
            "id": "fighter", "name": "Tordek", "hit_points": 30, "max_hit_points": 30,
        }
        assert data["combat_log"][-1]["event"] == "Combat ends after 1 rounds"

    def test_restart_after_end(self, active_session, party):
        active_session.next_turn()
        active_session.end_combat()
        active_session.start_combat(party)

        assert active_session.state.combat_state.round == 1
        assert active_session.combat_log[0].event == "Initiative rolled"


# ---------------------------------------------------------------------------
# Event log
# ---------------------------------------------------------------------------

class TestEventLog:

    def test_events_are_frozen(self, active_session):
        entry = active_session.combat_log[0]
        with pytest.raises(ValidationError):
            entry.event = "rewritten"

    def test_log_is_a_tuple_copy(self, active_session):
        log = active_session.combat_log
        active_session.log_combat_event("Something happens")
        assert isinstance(log, tuple)
        assert len(active_session.combat_log) == len(log) + 1

    def test_events_tagged_with_round_and_turn(self, active_session):
        active_session.next_turn()
        entry = active_session.log_combat_event("Mialee hesitates", "nothing else")
        assert (entry.round, entry.turn) == (1, 2)
        assert entry.category == "general"
        assert entry.timestamp.tzinfo is not None

    def test_multi_line_details_become_tuple(self, active_session):
        entry = active_session.log_combat_event("Volley", ["arrow 1", "arrow 2"])
        assert entry.details == ("arrow 1", "arrow 2")

    def test_events_mirrored_to_logger(self, active_session, caplog):
        with caplog.at_level(logging.INFO, logger="combat-tracker"):
            active_session.log_combat_event("Thunder rolls", "far away")
        assert "📜 [R1T1] Thunder rolls: far away" in caplog.text


# ---------------------------------------------------------------------------
# Battlemap commands
# ---------------------------------------------------------------------------

class TestBattlemapCommands:

    def test_place_and_range(self, active_session):
        active_session.place_combatant("fighter", 0, 0)
        active_session.place_combatant("orc", 3, 3)

        result = active_session.get_range("fighter", "orc")

        assert result.squares == 4
        assert result.feet == 20
        placed = [e.event for e in active_session.combat_log if e.category == "position"]
        assert placed == ["Tordek moves to (0, 0)", "Orc Warrior moves to (3, 3)"]

    def test_place_unknown_combatant(self, active_session):
        with pytest.raises(CombatantNotFoundError):
            active_session.place_combatant("ghost", 0, 0)

    def test_place_out_of_bounds(self, active_session):
        with pytest.raises(OutOfBoundsError):
            active_session.place_combatant("fighter", 40, 0)
        assert active_session.state.battlemap.positions == {}

    def test_range_unplaced_is_none(self, active_session):
        active_session.place_combatant("fighter", 0, 0)
        assert active_session.get_range("fighter", "orc") is None

    def test_range_unknown_raises(self, active_session):
        with pytest.raises(CombatantNotFoundError):
            active_session.get_range("fighter", "ghost")

    def test_move_within_speed(self, active_session):
        active_session.place_combatant("fighter", 0, 0)
        result = active_session.move_combatant("fighter", 4, 0, speed=20)

        assert result.success
        assert active_session.state.battlemap.positions["fighter"] == Position(x=4, y=0)

    def test_move_beyond_speed_not_logged(self, active_session):
        active_session.place_combatant("fighter", 0, 0)
        log_length = len(active_session.combat_log)

        result = active_session.move_combatant("fighter", 10, 0, speed=30)

        assert not result.success
        assert len(active_session.combat_log) == log_length

    def test_move_unplaced(self, active_session):
        with pytest.raises(CombatantNotFoundError):
            active_session.move_combatant("fighter", 1, 1)

    def test_hex_grid_from_config(self, party):
        session = CombatSession(config=TrackerConfig(grid_type="hex"))
        session.start_combat(party)
        session.place_combatant("fighter", 0, 0)
        session.place_combatant("orc", 3, 3)
        assert session.get_range("fighter", "orc").squares == 6

    def test_terrain_and_effects(self, active_session):
        active_session.set_terrain(1, 1, "rubble")
        assert active_session.get_terrain(1, 1) == "rubble"

        active_session.add_area_effect([(2, 2), (2, 3)], "Fog Cloud")
        assert active_session.clear_area_effect("Fog Cloud") == 2
        assert active_session.state.battlemap.effects == {}


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshot:

    def test_export_uses_snapshot_layout(self, active_session):
        data = active_session.export_state()

        assert data["version"] == "1.0"
        assert data["combatState"]["round"] == 1
        assert [e["id"] for e in data["initiative"]["order"]] == ["fighter", "wizard", "orc"]
        assert data["combatants"]["orc"]["currentHitPoints"] == 5
        assert data["battlemap"]["grid"]["width"] == 40

    def test_round_trip_reproduces_next_turn(self, active_session, party):
        active_session.place_combatant("fighter", 2, 2)
        spell_id = active_session.track_spell({
            "name": "Slow", "casterId": "wizard", "duration": "3 rounds",
            "targets": ["orc"], "effects": [{"condition": "slowed"}],
        })
        active_session.apply_condition("fighter", "shaken", duration=2)
        active_session.apply_damage("orc", 3, "magic")
        active_session.next_turn()
        snapshot = active_session.export_state()

        restored = CombatSession(rng=random.Random(1))
        restored.import_state(snapshot)

        original_next = active_session.next_turn()
        restored_next = restored.next_turn()

        assert restored_next == original_next
        assert restored.state.combatants == active_session.state.combatants
        assert restored.state.spells[spell_id] == active_session.state.spells[spell_id]
        assert restored.state.battlemap == active_session.state.battlemap
        assert restored.state.combat_state.round == active_session.state.combat_state.round
        assert [e.event for e in restored.combat_log] == [e.event for e in active_session.combat_log]

    def test_import_snapshot_model(self, active_session):
        snapshot = CombatSnapshot.model_validate(active_session.export_state())
        restored = CombatSession()
        restored.import_state(snapshot)
        assert restored.get_current_combatant().id == "fighter"

    @pytest.mark.parametrize("seed", range(20))
    def test_round_trip_replays_stabilization_rolls(self, party, seed):
        session = CombatSession(rng=random.Random(seed))
        session.start_combat(party)
        order = [e.id for e in session.state.initiative.order]
        while order[(session.state.combat_state.current_turn_index + 1) % len(order)] != "wizard":
            session.next_turn()
        session.apply_damage("wizard", 14)
        snapshot = json.loads(json.dumps(session.export_state()))

        restored = CombatSession(rng=random.Random(seed + 1000))
        restored.import_state(snapshot)

        # Two of Mialee's turns, each with a bleed and a stabilization roll
        for _ in range(4):
            session.next_turn()
            restored.next_turn()

        assert restored.state.combatants == session.state.combatants
        assert [e.event for e in restored.combat_log] == [e.event for e in session.combat_log]

    def test_export_carries_dice_state(self, session, party):
        session.start_combat(party)
        data = session.export_state()

        restored = CombatSession()
        restored.import_state(data)

        assert restored.rng.random() == session.rng.random()

    def test_snapshot_without_dice_state(self, active_session):
        data = active_session.export_state()
        del data["rngState"]
        restored = CombatSession(rng=random.Random(5))

        restored.import_state(data)

        assert restored.rng.getstate() == random.Random(5).getstate()
        assert restored.get_current_combatant().id == "fighter"

    def test_invalid_dice_state_leaves_session(self, active_session):
        data = active_session.export_state()
        data["rngState"] = [3, [1, 2, 3], None]
        before = active_session.state
        dice = active_session.rng.getstate()

        with pytest.raises(InvalidStateError):
            active_session.import_state(data)
        assert active_session.state is before
        assert active_session.rng.getstate() == dice

    def test_invalid_snapshot_leaves_state(self, active_session):
        before = active_session.state
        with pytest.raises(InvalidStateError):
            active_session.import_state({"combatState": {"round": "not a number"}})
        assert active_session.state is before

    def test_inconsistent_snapshot_rolled_back(self, active_session):
        data = active_session.export_state()
        data["combatState"]["current_turn_index"] = 9
        before = active_session.state

        with pytest.raises(InvariantViolationError):
            active_session.import_state(data)
        assert active_session.state is before


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class TestReporting:

    def test_statistics(self, active_session):
        active_session.apply_damage("orc", 3, "magic")
        active_session.apply_healing("orc", 1)
        active_session.apply_damage("wizard", 25)
        active_session.next_turn()

        stats = active_session.get_combat_statistics()

        assert stats.rounds == 1
        assert stats.turns_taken == 1
        assert stats.active_combatants == 2
        assert stats.damage_events == 2
        assert stats.healing_events == 1
        assert stats.deaths == 1

    def test_overview(self, active_session):
        active_session.apply_condition("orc", "prone")
        overview = active_session.get_overview()

        assert overview["round"] == 1
        assert overview["current_combatant"] == "Tordek"
        assert [c["id"] for c in overview["combatants"]] == ["fighter", "wizard", "orc"]
        orc = overview["combatants"][2]
        assert orc["conditions"] == ["prone"]
        assert orc["status"] == "healthy"
        assert overview["is_over"] is False

    def test_combat_over_when_one_left(self, active_session):
        assert not active_session.is_combat_over()
        active_session.apply_damage("orc", 30, "magic")
        assert not active_session.is_combat_over()
        active_session.apply_damage("wizard", 30)
        assert active_session.is_combat_over()


# ---------------------------------------------------------------------------
# Configuration and concurrency
# ---------------------------------------------------------------------------

class TestSessionConfiguration:

    def test_injected_registry(self, party):
        registry = DEFAULT_REGISTRY.with_conditions(without=["slowed"])
        session = CombatSession(registry=registry)
        session.start_combat(party)
        with pytest.raises(ConditionNotFoundError):
            session.apply_condition("fighter", "slowed")

    def test_condition_table_from_config(self, tmp_path, party):
        table = tmp_path / "house.yaml"
        table.write_text("conditions:\n  nauseated:\n    category: physical\n", encoding="utf-8")

        session = CombatSession(config=TrackerConfig(condition_table=str(table)))
        session.start_combat(party)

        assert session.apply_condition("orc", "nauseated").name == "nauseated"

    def test_custom_death_threshold(self, party):
        session = CombatSession(config=TrackerConfig(death_threshold=-15))
        session.start_combat(party)
        session.apply_damage("wizard", 24)
        assert session.status.has_condition("wizard", "dying")

    def test_concurrent_commands_stay_consistent(self, active_session):
        def worker():
            for _ in range(30):
                active_session.next_turn()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        combat_state = active_session.state.combat_state
        assert combat_state.round == 41
        assert combat_state.current_turn_index == 0


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------

class TestEncounterScenario:

    def test_full_encounter(self, session, party):
        with patch.object(session.rng, "randint", side_effect=[7, 10, 10]):
            first = session.start_combat(party)
        session.rng.randint = lambda a, b: 15

        # Tied totals: the +5 modifier acts first
        assert first.id == "fighter"
        assert [e.id for e in session.state.initiative.order] == ["fighter", "wizard", "orc"]

        for _ in range(3):
            session.next_turn()
        assert session.state.combat_state.round == 2
        assert session.state.combat_state.current_turn_index == 0

        session.next_turn()
        spell_id = session.track_spell({
            "name": "Slow",
            "casterId": "wizard",
            "duration": "2 rounds",
            "targets": ["orc", "fighter"],
            "effects": [{"type": "condition", "condition": "slowed"}],
        })
        assert session.status.has_condition("orc", "slowed")

        session.next_turn()
        session.next_turn()

        assert spell_id not in session.state.spells
        assert not session.status.has_condition("orc", "slowed")
        assert not session.status.has_condition("fighter", "slowed")

        session.apply_damage("orc", 8, "magic")
        assert session.health.status_of("orc").value == "dying"
        summary = session.end_combat()
        assert [s.name for s in summary.survivors] == ["Tordek", "Mialee"]
