"""
Initiative scheduling for D&D 3.5 combat.

Key components:
- TurnHooks: extension seam for end-of-turn, start-of-round and
  start-of-turn processing, implemented by the combat session.
- InitiativeScheduler: rolls and orders initiative, advances turns and
  rounds, and keeps delayed and readied actions.

Ordering: initiative total descending, then modifier descending; entries
that tie on both keep their roll order. Delayed combatants are re-inserted
by explicit list position, so repeated delays in one round stay exact.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from shortuuid import random

from ..exceptions import (
    CombatantNotFoundError,
    InvalidStateError,
    InvariantViolationError,
    ReadiedActionNotFoundError,
)
from ..models import (
    Combatant,
    InitiativeEntry,
    InitiativeState,
    ReadiedAction,
    ReadiedActionStatus,
)

if TYPE_CHECKING:
    from .session import CombatSession

logger = logging.getLogger("combat-tracker.initiative")


class TurnHooks(Protocol):
    """Per-turn processing hooks called by the scheduler."""

    def on_turn_end(self, combatant_id: str) -> None: ...

    def on_round_start(self, round_number: int) -> None: ...

    def on_turn_start(self, combatant_id: str) -> None: ...


def initiative_sort_key(entry: InitiativeEntry) -> tuple[int, int]:
    return (-entry.initiative, -entry.modifier)


class InitiativeScheduler:
    """Turn order and round progression for one combat session."""

    def __init__(self, session: "CombatSession", hooks: TurnHooks):
        self._session = session
        self._hooks = hooks

    @property
    def initiative(self) -> InitiativeState:
        return self._session.state.initiative

    @property
    def order(self) -> list[InitiativeEntry]:
        return self._session.state.initiative.order

    # -----------------------------------------------------------------
    # Rolling
    # -----------------------------------------------------------------

    def roll_initiative(self, participants: list[Combatant]) -> list[InitiativeEntry]:
        """Roll d20 + modifier for each participant and sort the order.

        Replaces any previous order entirely and resets the turn index.

        Returns:
            The new initiative order.
        """
        entries: list[InitiativeEntry] = []
        for participant in participants:
            roll = self._session.rng.randint(1, 20)
            entries.append(
                InitiativeEntry(
                    id=participant.id,
                    name=participant.name,
                    kind=participant.kind,
                    initiative=roll + participant.initiative_modifier,
                    roll=roll,
                    modifier=participant.initiative_modifier,
                )
            )
        entries.sort(key=initiative_sort_key)

        state = self.initiative
        state.order = entries
        state.rolled = True
        state.delayed_actions = []
        state.interrupted_ids = []
        self._session.state.combat_state.current_turn_index = 0

        self._session.log_combat_event(
            "Initiative rolled",
            tuple(f"{e.name}: {e.initiative} ({e.roll} {e.modifier:+d})" for e in entries),
            category="initiative",
        )
        logger.debug(f"🎲 Initiative rolled: {[(e.name, e.initiative) for e in entries]}")
        return entries

    # -----------------------------------------------------------------
    # Turn Progression
    # -----------------------------------------------------------------

    def get_current_combatant(self) -> InitiativeEntry | None:
        """The entry whose turn it is, or None before initiative is rolled."""
        if not self.initiative.rolled or not self.order:
            return None
        return self.order[self._session.state.combat_state.current_turn_index]

    def find_entry(self, combatant_id: str) -> InitiativeEntry:
        for entry in self.order:
            if entry.id == combatant_id:
                return entry
        raise CombatantNotFoundError(combatant_id)

    def next_turn(self) -> InitiativeEntry | None:
        """End the current turn and start the next one.

        No-op (returns None) while combat is inactive. Crossing the end of
        the order starts a new round.

        Returns:
            The entry whose turn it now is.
        """
        combat_state = self._session.state.combat_state
        if not combat_state.active:
            return None

        self._advance()
        if self._session.config.skip_dead_combatants:
            for _ in range(len(self.order) - 1):
                current = self.get_current_combatant()
                if current is None or not self._session.status.has_condition(current.id, "dead"):
                    break
                self._session.log_combat_event(
                    f"{current.name} is dead; turn skipped", category="turn_skipped"
                )
                combat_state.current_turn_index += 1
                if combat_state.current_turn_index >= len(self.order):
                    self.start_new_round()

        new_current = self.get_current_combatant()
        if new_current is None:
            return None

        if new_current.id in self.initiative.interrupted_ids:
            self.initiative.interrupted_ids.remove(new_current.id)
            self._session.log_combat_event(
                f"{new_current.name} resumes turn",
                f"Round {combat_state.round}, Initiative {new_current.initiative}",
                category="turn_resumed",
            )
            self.check_invariants()
            return new_current

        if new_current.delayed:
            self._lapse_delay(new_current)

        self._hooks.on_turn_start(new_current.id)
        self._session.log_combat_event(
            f"{new_current.name} begins turn",
            f"Round {combat_state.round}, Initiative {new_current.initiative}",
            category="turn_start",
        )
        self.check_invariants()
        return new_current

    def _advance(self) -> None:
        combat_state = self._session.state.combat_state
        current = self.get_current_combatant()
        if current is not None:
            self._hooks.on_turn_end(current.id)
            self._session.log_combat_event(
                f"{current.name} ends turn",
                f"Round {combat_state.round}, Turn {combat_state.current_turn_index + 1}",
                category="turn_end",
            )

        combat_state.current_turn_index += 1
        if combat_state.current_turn_index >= len(self.order):
            self.start_new_round()

    def start_new_round(self) -> int:
        """Increment the round counter and return to the top of the order."""
        combat_state = self._session.state.combat_state
        combat_state.round += 1
        combat_state.current_turn_index = 0

        self._hooks.on_round_start(combat_state.round)
        self._session.log_combat_event(f"Round {combat_state.round} begins", category="round_start")
        logger.debug(f"⚔️ Round {combat_state.round} begins")
        return combat_state.round

    # -----------------------------------------------------------------
    # Delayed Turns
    # -----------------------------------------------------------------

    def delay_turn(self, combatant_id: str) -> InitiativeEntry | None:
        """Delay the current combatant's turn and move on to the next one.

        Raises:
            CombatantNotFoundError: If the combatant is not in the order.
            InvalidStateError: If combat is inactive or it is not their turn.
        """
        entry = self.find_entry(combatant_id)
        self._require_active()
        current = self.get_current_combatant()
        if current is None or current.id != combatant_id:
            raise InvalidStateError(
                f"{entry.name} can only delay on their own turn",
                {"combatant_id": combatant_id, "current": current.id if current else None},
            )

        entry.delayed = True
        self.initiative.delayed_actions.append(combatant_id)
        self._session.log_combat_event(f"{entry.name} delays their turn", category="turn_delayed")
        return self.next_turn()

    def act_on_delayed_turn(self, combatant_id: str) -> InitiativeEntry | None:
        """Let a delaying combatant act now, ahead of the current combatant.

        The delayed entry is moved to the current slot and takes the current
        combatant's initiative value. The interrupted combatant resumes its
        turn (without repeating start-of-turn effects) when the delayed
        combatant finishes.

        Returns:
            The entry now acting, or None if the combatant was not delaying.

        Raises:
            CombatantNotFoundError: If the combatant is not in the order.
            InvalidStateError: If combat is inactive.
        """
        entry = self.find_entry(combatant_id)
        self._require_active()
        if combatant_id not in self.initiative.delayed_actions:
            return None

        combat_state = self._session.state.combat_state
        current = self.get_current_combatant()
        self.initiative.delayed_actions.remove(combatant_id)
        entry.delayed = False

        if current is not None and current.id != combatant_id:
            old_index = self.order.index(entry)
            index = combat_state.current_turn_index
            self.order.pop(old_index)
            if old_index < index:
                index -= 1
            self.order.insert(index, entry)
            entry.initiative = current.initiative
            combat_state.current_turn_index = index
            if current.id not in self.initiative.interrupted_ids:
                self.initiative.interrupted_ids.append(current.id)

        self._session.log_combat_event(
            f"{entry.name} acts on delayed turn",
            f"Initiative {entry.initiative}",
            category="delayed_turn_taken",
        )
        self.check_invariants()
        return entry

    def _lapse_delay(self, entry: InitiativeEntry) -> None:
        entry.delayed = False
        if entry.id in self.initiative.delayed_actions:
            self.initiative.delayed_actions.remove(entry.id)
        self._session.log_combat_event(
            f"{entry.name}'s delayed turn lapses", category="delay_lapsed"
        )

    # -----------------------------------------------------------------
    # Readied Actions
    # -----------------------------------------------------------------

    def ready_action(self, combatant_id: str, action: str, trigger: str) -> ReadiedAction:
        """Record a readied action awaiting its trigger.

        The trigger is not evaluated here; callers poll
        ``pending_readied_actions()`` and call ``resolve_readied_action()``.
        """
        entry = self.find_entry(combatant_id)
        readied = ReadiedAction(
            id=random(length=8),
            combatant_id=combatant_id,
            action=action,
            trigger=trigger,
            readied_round=self._session.state.combat_state.round,
        )
        self.initiative.readied_actions.append(readied)
        entry.has_readied_action = True

        self._session.log_combat_event(
            f"{entry.name} readies action", f"Trigger: {trigger}", category="action_readied"
        )
        return readied

    def pending_readied_actions(self) -> list[ReadiedAction]:
        return [
            r for r in self.initiative.readied_actions
            if r.status is ReadiedActionStatus.PENDING
        ]

    def resolve_readied_action(self, action_id: str) -> ReadiedAction:
        """Mark a pending readied action as triggered and resolved.

        Raises:
            ReadiedActionNotFoundError: If no pending action has that id.
        """
        for readied in self.pending_readied_actions():
            if readied.id == action_id:
                readied.status = ReadiedActionStatus.RESOLVED
                self._refresh_readied_flag(readied.combatant_id)
                self._session.log_combat_event(
                    f"{self._session.combatant_name(readied.combatant_id)} takes readied action",
                    f"{readied.action} (trigger: {readied.trigger})",
                    category="readied_action_resolved",
                )
                return readied
        raise ReadiedActionNotFoundError(action_id)

    def expire_readied_actions(self, combatant_id: str) -> list[ReadiedAction]:
        """Expire a combatant's pending readied actions (at their next turn)."""
        expired = [r for r in self.pending_readied_actions() if r.combatant_id == combatant_id]
        for readied in expired:
            readied.status = ReadiedActionStatus.EXPIRED
            self._session.log_combat_event(
                f"{self._session.combatant_name(combatant_id)}'s readied action expires",
                readied.action,
                category="readied_action_expired",
            )
        if expired:
            self._refresh_readied_flag(combatant_id)
        return expired

    def _refresh_readied_flag(self, combatant_id: str) -> None:
        pending = any(r.combatant_id == combatant_id for r in self.pending_readied_actions())
        for entry in self.order:
            if entry.id == combatant_id:
                entry.has_readied_action = pending

    # -----------------------------------------------------------------
    # Consistency
    # -----------------------------------------------------------------

    def _require_active(self) -> None:
        if not self._session.state.combat_state.active:
            raise InvalidStateError("Combat is not active")

    def check_invariants(self) -> None:
        """Verify turn-index and order consistency while combat is active."""
        combat_state = self._session.state.combat_state
        if not combat_state.active:
            return

        problems: list[str] = []
        if self.order and not 0 <= combat_state.current_turn_index < len(self.order):
            problems.append(
                f"turn index {combat_state.current_turn_index} outside order of {len(self.order)}"
            )
        ids = [e.id for e in self.order]
        if len(ids) != len(set(ids)):
            problems.append("duplicate ids in initiative order")
        if combat_state.round < 1:
            problems.append(f"round {combat_state.round} below 1 while active")

        if not problems:
            return
        message = "Initiative invariant violated: " + "; ".join(problems)
        if self._session.config.strict_invariants:
            raise InvariantViolationError(message, {"problems": problems})
        logger.error(f"❌ {message}")
