"""
Health state machine for D&D 3.5 hit points.

Health is derived from the combatant's signed hit points on every write
rather than stored as a separate enum:

    Healthy   HP > 0
    Disabled  HP == 0
    Dying     death_threshold < HP < 0
    Dead      HP <= death_threshold (-10 by default)

Hit points are never floored at zero internally; ``displayed_hit_points``
on the Combatant model provides the floored value for presentation. The
status engine's "dead", "dying" and "disabled" tags are kept in step with
the derived state so other rule logic can read them like any condition.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel

from ..exceptions import CombatantNotFoundError, InvalidStateError
from ..models import Combatant, HealthStatus

if TYPE_CHECKING:
    from .session import CombatSession

logger = logging.getLogger("combat-tracker.health")

HEALTH_SOURCE = "health"


class DamageResult(BaseModel):
    """Outcome of applying damage to one combatant."""

    combatant_id: str
    requested: int
    actual: int
    damage_type: str
    hit_points: int
    status: HealthStatus


class HealingResult(BaseModel):
    combatant_id: str
    requested: int
    actual: int
    hit_points: int
    status: HealthStatus


def health_status(hit_points: int, death_threshold: int = -10) -> HealthStatus:
    """Derive the health state from signed hit points."""
    if hit_points <= death_threshold:
        return HealthStatus.DEAD
    if hit_points < 0:
        return HealthStatus.DYING
    if hit_points == 0:
        return HealthStatus.DISABLED
    return HealthStatus.HEALTHY


def damage_after_reduction(combatant: Combatant, amount: int, damage_type: str) -> int:
    """Apply the combatant's damage reduction, flooring the result at zero."""
    dr = combatant.damage_reduction
    if dr is None or damage_type in dr.bypassed_by:
        return amount
    return max(0, amount - dr.amount)


class HealthStateMachine:
    """Damage, healing and health-state transitions for one combat session."""

    def __init__(self, session: "CombatSession"):
        self._session = session

    def status_of(self, combatant_id: str) -> HealthStatus:
        combatant = self._require(combatant_id)
        if combatant.has_condition("dead"):
            return HealthStatus.DEAD
        return health_status(combatant.current_hit_points, self._session.config.death_threshold)

    def apply_damage(
        self,
        combatant_id: str,
        amount: int,
        damage_type: str = "untyped",
        ignore_reduction: bool = False,
    ) -> DamageResult:
        """Deal damage to a combatant and re-evaluate its health state.

        Args:
            combatant_id: The combatant taking damage.
            amount: Damage before reduction. Must not be negative.
            damage_type: Damage type, checked against DR bypasses.
            ignore_reduction: Skip damage reduction entirely (bleeding).

        Returns:
            A DamageResult with the damage actually dealt.

        Raises:
            CombatantNotFoundError: If the combatant is unknown.
            ValueError: If amount is negative.
        """
        combatant = self._require(combatant_id)
        if amount < 0:
            raise ValueError(f"Damage amount must not be negative, got {amount}")

        if ignore_reduction:
            actual = amount
        else:
            actual = damage_after_reduction(combatant, amount, damage_type)
        combatant.current_hit_points -= actual

        self._session.log_combat_event(
            f"{combatant.name} takes {actual} {damage_type} damage",
            f"HP: {combatant.displayed_hit_points}/{combatant.max_hit_points}",
            category="damage",
        )
        status = self.check_health_status(combatant_id)

        return DamageResult(
            combatant_id=combatant_id,
            requested=amount,
            actual=actual,
            damage_type=damage_type,
            hit_points=combatant.current_hit_points,
            status=status,
        )

    def apply_healing(self, combatant_id: str, amount: int) -> HealingResult | None:
        """Restore hit points, up to the combatant's maximum.

        Healing an unknown combatant is a no-op and returns None.

        Raises:
            InvalidStateError: If the combatant is dead.
            ValueError: If amount is negative.
        """
        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            logger.warning(f"⚠️ Ignoring healing for unknown combatant {combatant_id!r}")
            return None
        if amount < 0:
            raise ValueError(f"Healing amount must not be negative, got {amount}")
        if combatant.has_condition("dead"):
            raise InvalidStateError(
                f"{combatant.name} is dead and cannot be healed",
                {"combatant_id": combatant_id},
            )

        old_hp = combatant.current_hit_points
        combatant.current_hit_points = min(combatant.max_hit_points, old_hp + amount)
        # A combatant already above max (temporary buffs) is never lowered by healing
        combatant.current_hit_points = max(combatant.current_hit_points, old_hp)
        actual = combatant.current_hit_points - old_hp

        if combatant.current_hit_points > 0:
            self._session.status.remove_condition(combatant_id, "dying")
            self._session.status.remove_condition(combatant_id, "unconscious")

        self._session.log_combat_event(
            f"{combatant.name} healed for {actual} points",
            f"HP: {combatant.displayed_hit_points}/{combatant.max_hit_points}",
            category="healing",
        )
        status = self.check_health_status(combatant_id, after_damage=False)

        return HealingResult(
            combatant_id=combatant_id,
            requested=amount,
            actual=actual,
            hit_points=combatant.current_hit_points,
            status=status,
        )

    def check_health_status(self, combatant_id: str, after_damage: bool = True) -> HealthStatus:
        """Bring the dead/dying/disabled tags in line with current hit points.

        Death is terminal: a combatant tagged "dead" stays dead. A combatant
        stabilized at negative hit points only starts dying again when the
        check follows damage (after_damage=True).

        Returns:
            The combatant's health state after the update.
        """
        combatant = self._require(combatant_id)
        status = self._session.status

        if combatant.has_condition("dead"):
            return HealthStatus.DEAD

        current = health_status(combatant.current_hit_points, self._session.config.death_threshold)

        if current is HealthStatus.DEAD:
            status.remove_condition(combatant_id, "dying")
            status.remove_condition(combatant_id, "disabled")
            status.apply_condition(combatant_id, "dead", source=HEALTH_SOURCE)
            self._session.log_combat_event(f"{combatant.name} dies", category="death")
            self._session.spells.end_concentration(combatant_id, reason="death")
        elif current is HealthStatus.DYING:
            stable = combatant.has_condition("disabled") and not combatant.has_condition("dying")
            if stable and not after_damage:
                return current
            # A stabilized combatant that takes damage starts dying again
            status.remove_condition(combatant_id, "disabled")
            if not combatant.has_condition("dying"):
                status.apply_condition(combatant_id, "dying", source=HEALTH_SOURCE)
                self._session.spells.end_concentration(combatant_id, reason="dying")
        elif current is HealthStatus.DISABLED:
            status.remove_condition(combatant_id, "dying")
            if not combatant.has_condition("disabled"):
                status.apply_condition(combatant_id, "disabled", source=HEALTH_SOURCE)
        else:
            for name in ("dying", "disabled", "unconscious"):
                status.remove_condition(combatant_id, name)

        return current

    def _require(self, combatant_id: str) -> Combatant:
        combatant = self._session.state.combatants.get(combatant_id)
        if combatant is None:
            raise CombatantNotFoundError(combatant_id)
        return combatant
