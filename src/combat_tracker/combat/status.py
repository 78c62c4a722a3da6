"""
Status engine: per-combatant condition lifecycles.

Applies, removes and counts down ConditionInstances on combatants, and runs
the per-turn condition effects (bleeding while dying, stabilization checks).
Condition definitions come from the session's injected ConditionRegistry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..models import Combatant, ConditionInstance

if TYPE_CHECKING:
    from .session import CombatSession

logger = logging.getLogger("combat-tracker.status")


class StatusEngine:
    """Condition bookkeeping for one combat session.

    Only one instance of a given condition exists per combatant: applying a
    condition again replaces the previous instance (and its duration).
    """

    def __init__(self, session: "CombatSession"):
        self._session = session

    # -----------------------------------------------------------------
    # Condition Management
    # -----------------------------------------------------------------

    def apply_condition(
        self,
        combatant_id: str,
        name: str,
        duration: int | None = None,
        source: str | None = None,
    ) -> ConditionInstance:
        """Apply a condition to a combatant.

        A combatant record is created on first reference if the id is not
        yet known to the session.

        Args:
            combatant_id: The combatant to affect.
            name: Registry name of the condition (case-insensitive).
            duration: Duration in rounds, or None for permanent.
            source: What applied the condition (spell id, "health"...).

        Returns:
            The new ConditionInstance.

        Raises:
            ConditionNotFoundError: If the condition is not in the registry.
            ValueError: If duration is less than one round.
        """
        definition = self._session.registry.require(name)
        if duration is not None and duration < 1:
            raise ValueError(f"Condition duration must be at least 1 round, got {duration}")

        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            combatant = Combatant(id=combatant_id, name=f"Combatant {combatant_id}")
            self._session.state.combatants[combatant_id] = combatant
            logger.debug(f"🆕 Created combatant record for {combatant_id!r} on first reference")

        key = name.lower()
        instance = ConditionInstance(
            name=key,
            applied_round=self._session.state.combat_state.round,
            duration=duration,
            remaining=duration,
            source=source,
        )
        combatant.conditions[key] = instance

        self._session.log_combat_event(
            f"{combatant.name} affected by {definition.name}",
            f"Duration: {duration} rounds" if duration else "Permanent until removed",
            category="condition_applied",
        )
        return instance

    def remove_condition(self, combatant_id: str, name: str) -> ConditionInstance | None:
        """Remove a condition. No-op if the combatant or condition is absent.

        Returns:
            The removed instance, or None if nothing was removed.
        """
        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            return None

        removed = combatant.conditions.pop(name.lower(), None)
        if removed is not None:
            self._session.log_combat_event(
                f"{combatant.name} recovers from {removed.name}",
                category="condition_removed",
            )
        return removed

    def get_active_conditions(self, combatant_id: str) -> list[ConditionInstance]:
        combatant = self._session.state.combatants.get(combatant_id)
        return list(combatant.conditions.values()) if combatant else []

    def has_condition(self, combatant_id: str, name: str) -> bool:
        combatant = self._session.state.combatants.get(combatant_id)
        return combatant is not None and combatant.has_condition(name)

    # -----------------------------------------------------------------
    # Duration Management
    # -----------------------------------------------------------------

    def update_condition_durations(self, combatant_id: str) -> list[str]:
        """Count down timed conditions by one round and drop expired ones.

        Permanent conditions (remaining is None) are untouched.

        Returns:
            Names of conditions that expired.
        """
        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            return []

        expired: list[str] = []
        for name, instance in list(combatant.conditions.items()):
            if instance.remaining is not None and instance.remaining > 0:
                instance.remaining -= 1
                if instance.remaining == 0:
                    expired.append(name)

        for name in expired:
            self.remove_condition(combatant_id, name)
        return expired

    # -----------------------------------------------------------------
    # Start-of-turn Effects
    # -----------------------------------------------------------------

    def process_start_of_turn(self, combatant_id: str) -> None:
        """Run per-turn condition effects, then count down durations.

        Effects currently implemented:
        - lose_hit_point: 1 point of bleeding damage, never reduced by DR.
        - stabilization_check: d20 + CON modifier against the configured DC;
          success replaces "dying" with "disabled".
        """
        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            return

        registry = self._session.registry
        for name in list(combatant.conditions):
            if name not in combatant.conditions:
                # Removed by an earlier effect this turn (e.g. death ended dying)
                continue
            if name not in registry:
                logger.warning(f"⚠️ Condition {name!r} on {combatant.name} is not in the registry")
                continue

            effects = registry[name].effects
            if effects.lose_hit_point:
                self._session.health.apply_damage(
                    combatant_id, 1, "bleeding", ignore_reduction=True
                )

            if effects.stabilization_check and name in combatant.conditions:
                self._stabilization_check(combatant, name)

        self.update_condition_durations(combatant_id)

    def _stabilization_check(self, combatant: Combatant, condition_name: str) -> bool:
        roll = self._session.rng.randint(1, 20)
        total = roll + combatant.constitution_modifier
        dc = self._session.config.stabilization_dc
        logger.debug(
            f"🎲 {combatant.name} stabilization check: {roll} + "
            f"{combatant.constitution_modifier} = {total} vs DC {dc}"
        )
        if total < dc:
            return False

        self.remove_condition(combatant.id, condition_name)
        self.apply_condition(combatant.id, "disabled", source="stabilization")
        self._session.log_combat_event(
            f"{combatant.name} stabilizes",
            f"Rolled {roll} + {combatant.constitution_modifier} = {total} vs DC {dc}",
            category="stabilized",
        )
        return True
