"""
CombatSession - orchestrates one D&D 3.5 encounter.

This module provides the single entry point a caller uses to run combat.
It owns the encounter state and wires the component engines together:

- InitiativeScheduler: turn order, rounds, delayed and readied actions
- StatusEngine: condition lifecycles and start-of-turn effects
- SpellDurationTracker: timed spells and the conditions they grant
- HealthStateMachine: damage, healing and dead/dying/disabled tags
- positioning: battlemap placement, movement and range

Every public method runs under the session's re-entrant lock, so one
session may be shared between threads while keeping a single writer.
"""

from __future__ import annotations

import logging
import random
from dataclasses import asdict, dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Iterable

from pydantic import ValidationError

from ..config import TrackerConfig
from ..exceptions import CombatantNotFoundError, InvalidStateError, InvariantViolationError
from ..models import (
    Battlemap,
    Combatant,
    CombatEvent,
    CombatSnapshot,
    CombatState,
    ConditionInstance,
    EncounterState,
    GridConfig,
    HealthStatus,
    InitiativeEntry,
    InitiativeState,
    ReadiedAction,
)
from . import positioning
from .conditions import DEFAULT_REGISTRY, ConditionRegistry, load_registry
from .health import DamageResult, HealingResult, HealthStateMachine
from .initiative import InitiativeScheduler
from .positioning import MovementResult, RangeResult
from .spells import SpellDurationTracker
from .status import StatusEngine

logger = logging.getLogger("combat-tracker.session")

SNAPSHOT_ONLY_KEYS = frozenset({"version", "exportedAt", "exported_at", "rngState", "rng_state"})


def _rng_state(raw: list[Any] | None) -> tuple | None:
    """Turn a serialized ``getstate()`` list back into what ``setstate()`` takes."""
    if raw is None:
        return None
    try:
        version, internal, gauss_next = raw
        state = (version, tuple(internal), gauss_next)
        random.Random().setstate(state)
    except (TypeError, ValueError) as e:
        raise InvalidStateError("Invalid dice state in combat snapshot", {"error": str(e)}) from e
    return state


@dataclass
class Survivor:
    """A combatant still standing when combat ended."""
    id: str
    name: str
    hit_points: int
    max_hit_points: int


@dataclass
class CombatSummary:
    """What end_combat() hands back to the caller."""
    rounds: int
    combat_log: tuple[CombatEvent, ...]
    survivors: list[Survivor] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "rounds": self.rounds,
            "survivors": [asdict(s) for s in self.survivors],
            "combat_log": [e.model_dump(mode="json") for e in self.combat_log],
        }


@dataclass
class CombatStatistics:
    rounds: int
    turns_taken: int
    active_combatants: int
    active_spells: int
    active_conditions: int
    damage_events: int
    healing_events: int
    deaths: int


class CombatSession:
    """One encounter: state, event log and the rule engines acting on it.

    Args:
        config: Rules and battlemap settings. Defaults to TrackerConfig().
        registry: Condition table used to validate condition names. Defaults
            to the table named by config.condition_table, else the 3.5 table.
        rng: Random source for initiative and stabilization rolls. Inject a
            seeded ``random.Random`` for reproducible encounters.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        registry: ConditionRegistry | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or TrackerConfig()
        if registry is None:
            if self.config.condition_table:
                registry = load_registry(Path(self.config.condition_table))
            else:
                registry = DEFAULT_REGISTRY
        self.registry = registry
        self.rng = rng or random.Random()
        self._lock = RLock()

        self.state = EncounterState(battlemap=Battlemap(grid=self._grid_from_config()))

        self.status = StatusEngine(self)
        self.health = HealthStateMachine(self)
        self.spells = SpellDurationTracker(self)
        self.initiative = InitiativeScheduler(self, hooks=self)

    def _grid_from_config(self) -> GridConfig:
        return GridConfig(
            type=self.config.grid_type,
            cell_size_feet=self.config.cell_size_feet,
            width=self.config.grid_width,
            height=self.config.grid_height,
        )

    # -----------------------------------------------------------------
    # Event log
    # -----------------------------------------------------------------

    def log_combat_event(
        self,
        event: str,
        details: str | Iterable[str] = "",
        category: str = "general",
    ) -> CombatEvent:
        """Append an immutable, round/turn-tagged event to the combat log."""
        with self._lock:
            if not isinstance(details, str):
                details = tuple(details)
            combat_state = self.state.combat_state
            entry = CombatEvent(
                round=combat_state.round,
                turn=combat_state.current_turn_index + 1,
                event=event,
                details=details,
                category=category,
            )
            combat_state.combat_log.append(entry)

            text = "; ".join(details) if isinstance(details, tuple) else details
            logger.info(f"📜 [R{entry.round}T{entry.turn}] {event}: {text}")
            return entry

    @property
    def combat_log(self) -> tuple[CombatEvent, ...]:
        with self._lock:
            return tuple(self.state.combat_state.combat_log)

    def combatant_name(self, combatant_id: str) -> str:
        combatant = self.state.combatants.get(combatant_id)
        return combatant.name if combatant else combatant_id

    @property
    def is_active(self) -> bool:
        return self.state.combat_state.active

    # -----------------------------------------------------------------
    # Combat lifecycle
    # -----------------------------------------------------------------

    def start_combat(self, participants: Iterable[Combatant | dict[str, Any]]) -> InitiativeEntry | None:
        """Begin combat: register participants, set round 1 and roll initiative.

        Participants may be Combatant models or plain records using either
        snake_case or camelCase keys.

        Returns:
            The combatant who acts first.

        Raises:
            InvalidStateError: If combat is already active, the participant
                list is empty, ids repeat, or a record fails validation.
        """
        with self._lock:
            if self.is_active:
                raise InvalidStateError("Combat is already active")

            combatants = self._validate_participants(participants)

            for combatant in combatants:
                combatant.starting_hit_points = combatant.current_hit_points
            self.state.combat_state = CombatState(active=True, round=1)
            self.state.initiative = InitiativeState()
            self.state.spells = {}
            self.state.combatants = {c.id: c for c in combatants}
            self.state.battlemap.positions = {}

            self.initiative.roll_initiative(combatants)
            self.log_combat_event(
                "Combat begins!",
                f"{len(combatants)} combatants, Round 1",
                category="combat_start",
            )
            logger.info(f"⚔️ Combat started with {len(combatants)} combatants")
            return self.initiative.get_current_combatant()

    def _validate_participants(self, participants: Iterable[Combatant | dict[str, Any]]) -> list[Combatant]:
        combatants: list[Combatant] = []
        for participant in participants:
            if isinstance(participant, Combatant):
                combatants.append(participant.model_copy(deep=True))
                continue
            try:
                combatants.append(Combatant.model_validate(participant))
            except ValidationError as e:
                raise InvalidStateError(
                    "Invalid combatant record",
                    {"record": participant, "errors": e.errors()},
                ) from e

        if not combatants:
            raise InvalidStateError("Cannot start combat: no participants")
        ids = [c.id for c in combatants]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise InvalidStateError(
                "Cannot start combat: duplicate combatant ids",
                {"duplicates": duplicates},
            )
        return combatants

    def end_combat(self) -> CombatSummary:
        """End combat and report survivors (HP > 0 and not dead).

        Raises:
            InvalidStateError: If combat is not active.
        """
        with self._lock:
            combat_state = self.state.combat_state
            if not combat_state.active:
                raise InvalidStateError("Combat is not active")

            self.log_combat_event(
                f"Combat ends after {combat_state.round} rounds",
                category="combat_end",
            )
            combat_state.active = False
            self.spells.clear()
            self.state.initiative.delayed_actions = []
            self.state.initiative.readied_actions = []
            self.state.initiative.interrupted_ids = []
            for entry in self.state.initiative.order:
                entry.delayed = False
                entry.has_readied_action = False

            survivors = [
                Survivor(
                    id=c.id,
                    name=c.name,
                    hit_points=c.current_hit_points,
                    max_hit_points=c.max_hit_points,
                )
                for c in self.state.combatants.values()
                if c.current_hit_points > 0 and not c.has_condition("dead")
            ]
            logger.info(f"🏁 Combat ended after {combat_state.round} rounds, {len(survivors)} survivors")
            return CombatSummary(
                rounds=combat_state.round,
                combat_log=tuple(combat_state.combat_log),
                survivors=survivors,
            )

    # -----------------------------------------------------------------
    # Turn hooks (called by the InitiativeScheduler)
    # -----------------------------------------------------------------

    def on_turn_end(self, combatant_id: str) -> None:
        self.state.combat_state.turn_timer = None

    def on_round_start(self, round_number: int) -> None:
        logger.debug(f"🔄 Starting round {round_number}")

    def on_turn_start(self, combatant_id: str) -> None:
        self.initiative.expire_readied_actions(combatant_id)
        self.status.process_start_of_turn(combatant_id)
        self.spells.update_spell_durations()

    # -----------------------------------------------------------------
    # Initiative commands
    # -----------------------------------------------------------------

    def get_current_combatant(self) -> InitiativeEntry | None:
        with self._lock:
            return self.initiative.get_current_combatant()

    def next_turn(self) -> InitiativeEntry | None:
        with self._lock:
            return self.initiative.next_turn()

    def roll_initiative(self, participants: Iterable[Combatant | dict[str, Any]]) -> list[InitiativeEntry]:
        """Re-roll initiative for a participant list, replacing the order."""
        with self._lock:
            combatants = self._validate_participants(participants)
            return self.initiative.roll_initiative(combatants)

    def delay_turn(self, combatant_id: str) -> InitiativeEntry | None:
        with self._lock:
            return self.initiative.delay_turn(combatant_id)

    def act_on_delayed_turn(self, combatant_id: str) -> InitiativeEntry | None:
        with self._lock:
            return self.initiative.act_on_delayed_turn(combatant_id)

    def ready_action(self, combatant_id: str, action: str, trigger: str) -> ReadiedAction:
        with self._lock:
            return self.initiative.ready_action(combatant_id, action, trigger)

    def pending_readied_actions(self) -> list[ReadiedAction]:
        with self._lock:
            return self.initiative.pending_readied_actions()

    def resolve_readied_action(self, action_id: str) -> ReadiedAction:
        with self._lock:
            return self.initiative.resolve_readied_action(action_id)

    # -----------------------------------------------------------------
    # Condition commands
    # -----------------------------------------------------------------

    def apply_condition(
        self,
        combatant_id: str,
        name: str,
        duration: int | None = None,
        source: str | None = None,
    ) -> ConditionInstance:
        with self._lock:
            return self.status.apply_condition(combatant_id, name, duration, source)

    def remove_condition(self, combatant_id: str, name: str) -> ConditionInstance | None:
        with self._lock:
            return self.status.remove_condition(combatant_id, name)

    def get_active_conditions(self, combatant_id: str) -> list[ConditionInstance]:
        with self._lock:
            return self.status.get_active_conditions(combatant_id)

    # -----------------------------------------------------------------
    # Health commands
    # -----------------------------------------------------------------

    def apply_damage(self, combatant_id: str, amount: int, damage_type: str = "untyped") -> DamageResult:
        with self._lock:
            return self.health.apply_damage(combatant_id, amount, damage_type)

    def apply_healing(self, combatant_id: str, amount: int) -> HealingResult | None:
        with self._lock:
            return self.health.apply_healing(combatant_id, amount)

    def check_health_status(self, combatant_id: str) -> HealthStatus:
        with self._lock:
            return self.health.check_health_status(combatant_id)

    # -----------------------------------------------------------------
    # Spell commands
    # -----------------------------------------------------------------

    def track_spell(self, spell_data: dict[str, Any]) -> str:
        with self._lock:
            return self.spells.track_spell(spell_data)

    def end_spell(self, spell_id: str) -> None:
        with self._lock:
            self.spells.end_spell(spell_id)

    def dismiss_spell(self, spell_id: str, caster_id: str) -> bool:
        with self._lock:
            return self.spells.dismiss_spell(spell_id, caster_id)

    def end_concentration(self, caster_id: str) -> list[str]:
        with self._lock:
            return self.spells.end_concentration(caster_id, reason="dropped")

    # -----------------------------------------------------------------
    # Battlemap commands
    # -----------------------------------------------------------------

    def place_combatant(self, combatant_id: str, x: int, y: int) -> None:
        """Place a known combatant on the battlemap.

        Raises:
            CombatantNotFoundError: If the combatant is not in the session.
            OutOfBoundsError: If the cell is outside the grid.
        """
        with self._lock:
            self._require_combatant(combatant_id)
            positioning.place_combatant(self.state.battlemap, combatant_id, x, y)
            self.log_combat_event(
                f"{self.combatant_name(combatant_id)} moves to ({x}, {y})",
                category="position",
            )

    def move_combatant(self, combatant_id: str, x: int, y: int, speed: int | None = None) -> MovementResult:
        """Move a placed combatant, optionally within a speed budget in feet.

        Raises:
            CombatantNotFoundError: If the combatant is unknown or unplaced.
            OutOfBoundsError: If the cell is outside the grid.
        """
        with self._lock:
            self._require_combatant(combatant_id)
            if combatant_id not in self.state.battlemap.positions:
                raise CombatantNotFoundError(combatant_id, {"reason": "not on the battlemap"})

            result = positioning.move_combatant(self.state.battlemap, combatant_id, x, y, speed)
            if result.success:
                self.log_combat_event(
                    f"{self.combatant_name(combatant_id)} moves to ({x}, {y})",
                    f"{result.squares} squares ({result.feet} ft)",
                    category="movement",
                )
            else:
                logger.debug(f"🚫 {result.message}")
            return result

    def get_range(self, first_id: str, second_id: str) -> RangeResult | None:
        """Distance between two combatants, or None if either is unplaced."""
        with self._lock:
            self._require_combatant(first_id)
            self._require_combatant(second_id)
            return positioning.get_range(self.state.battlemap, first_id, second_id)

    def set_terrain(self, x: int, y: int, terrain: str | None) -> None:
        with self._lock:
            positioning.set_terrain(self.state.battlemap, x, y, terrain)
            self.log_combat_event(
                f"Terrain at ({x}, {y}) set to {terrain}" if terrain else f"Terrain at ({x}, {y}) cleared",
                category="terrain",
            )

    def get_terrain(self, x: int, y: int) -> str | None:
        with self._lock:
            return positioning.get_terrain(self.state.battlemap, x, y)

    def add_area_effect(self, cells: list[tuple[int, int]], effect: str) -> list[str]:
        with self._lock:
            marked = positioning.add_area_effect(self.state.battlemap, cells, effect)
            self.log_combat_event(
                f"{effect} covers {len(marked)} squares",
                tuple(marked),
                category="area_effect",
            )
            return marked

    def clear_area_effect(self, effect: str) -> int:
        with self._lock:
            cleared = positioning.clear_area_effect(self.state.battlemap, effect)
            if cleared:
                self.log_combat_event(f"{effect} dissipates", category="area_effect")
            return cleared

    # -----------------------------------------------------------------
    # Snapshot and reporting
    # -----------------------------------------------------------------

    def export_state(self) -> dict[str, Any]:
        """Serialize the whole encounter to a JSON-compatible snapshot dict."""
        with self._lock:
            snapshot = CombatSnapshot.model_validate({
                **self.state.model_dump(),
                "rng_state": list(self.rng.getstate()),
            })
            logger.debug(f"💾 Exported snapshot at round {self.state.combat_state.round}")
            return snapshot.model_dump(mode="json", by_alias=True)

    def import_state(self, snapshot: CombatSnapshot | dict[str, Any]) -> None:
        """Replace the encounter state with a previously exported snapshot.

        The snapshot is fully validated before anything is replaced. When it
        carries dice state, the session's RNG is restored too, so the next
        turns roll exactly as they would have in the exporting session.

        Raises:
            InvalidStateError: If the snapshot fails validation.
            InvariantViolationError: If the restored turn order is inconsistent.
        """
        with self._lock:
            if isinstance(snapshot, CombatSnapshot):
                data = snapshot.model_dump()
            else:
                data = snapshot
            try:
                restored = EncounterState.model_validate(
                    {k: v for k, v in data.items() if k not in SNAPSHOT_ONLY_KEYS}
                )
            except ValidationError as e:
                raise InvalidStateError("Invalid combat snapshot", {"errors": e.errors()}) from e
            rng_state = _rng_state(data.get("rngState", data.get("rng_state")))

            previous, self.state = self.state, restored
            try:
                self.initiative.check_invariants()
            except InvariantViolationError:
                self.state = previous
                raise
            if rng_state is not None:
                self.rng.setstate(rng_state)
            logger.debug(f"📂 Imported snapshot at round {restored.combat_state.round}")

    def get_combat_statistics(self) -> CombatStatistics:
        with self._lock:
            log = self.state.combat_state.combat_log
            alive = [
                c for c in self.state.combatants.values()
                if not c.has_condition("dead")
            ]
            return CombatStatistics(
                rounds=self.state.combat_state.round,
                turns_taken=sum(1 for e in log if e.category == "turn_start"),
                active_combatants=len(alive),
                active_spells=len(self.state.spells),
                active_conditions=sum(len(c.conditions) for c in self.state.combatants.values()),
                damage_events=sum(1 for e in log if e.category == "damage"),
                healing_events=sum(1 for e in log if e.category == "healing"),
                deaths=sum(1 for e in log if e.category == "death"),
            )

    def get_overview(self) -> dict[str, Any]:
        """Presentation-ready summary of the encounter."""
        with self._lock:
            combat_state = self.state.combat_state
            current = self.initiative.get_current_combatant()
            combatants = []
            for entry in self.state.initiative.order:
                combatant = self.state.combatants.get(entry.id)
                if combatant is None:
                    continue
                combatants.append({
                    "id": combatant.id,
                    "name": combatant.name,
                    "initiative": entry.initiative,
                    "hit_points": combatant.displayed_hit_points,
                    "max_hit_points": combatant.max_hit_points,
                    "status": self.health.status_of(combatant.id).value,
                    "conditions": sorted(combatant.conditions),
                    "delayed": entry.delayed,
                    "has_readied_action": entry.has_readied_action,
                })
            return {
                "active": combat_state.active,
                "round": combat_state.round,
                "turn": combat_state.current_turn_index + 1,
                "current_combatant": current.name if current else None,
                "combatants": combatants,
                "spells": [s.name for s in self.state.spells.values()],
                "is_over": self._is_combat_over(),
            }

    def is_combat_over(self) -> bool:
        """True once one or fewer combatants are still alive."""
        with self._lock:
            return self._is_combat_over()

    def _is_combat_over(self) -> bool:
        alive = [
            c for c in self.state.combatants.values()
            if c.current_hit_points > self.config.death_threshold and not c.has_condition("dead")
        ]
        return len(alive) <= 1

    def _require_combatant(self, combatant_id: str) -> Combatant:
        combatant = self.state.combatants.get(combatant_id)
        if combatant is None:
            raise CombatantNotFoundError(combatant_id)
        return combatant
