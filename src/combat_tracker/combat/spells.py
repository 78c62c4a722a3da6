"""
Spell duration tracking for D&D 3.5 combat.

Tracked spells belong to the session rather than to any one combatant,
since a spell may have several targets. Durations are parsed from the
free-text duration line of a spell description and counted in rounds:

    1 minute = 10 rounds
    1 hour   = 600 rounds

Round-based spells count down once per combatant turn (the global tick
fires at every start of turn). Concentration, permanent and instantaneous
spells are never counted down; concentration spells end when the caster
drops concentration or is struck down.
"""

from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING, Any

from shortuuid import random

from ..exceptions import CombatantNotFoundError, SpellNotFoundError
from ..models import Duration, DurationKind, SpellEffect, TrackedSpell

if TYPE_CHECKING:
    from .session import CombatSession

logger = logging.getLogger("combat-tracker.spells")

ROUNDS_PER_MINUTE = 10
ROUNDS_PER_HOUR = 600

_ROUNDS_RE = re.compile(r"(\d+)\s*round")
_MINUTES_RE = re.compile(r"(\d+)\s*minute")
_HOURS_RE = re.compile(r"(\d+)\s*hour")


def parse_duration(text: str | None) -> Duration:
    """Parse a spell's duration text into a structured Duration.

    Keywords are matched case-insensitively, first match wins:
    "instant", "permanent", "concentration", "N round(s)", "N minute(s)",
    "N hour(s)". Anything else is treated as a single round.

    Examples:
        >>> parse_duration("3 rounds")
        Duration(kind=<DurationKind.ROUNDS: 'rounds'>, value=3)
        >>> parse_duration("2 minutes").value
        20
    """
    if not isinstance(text, str):
        return Duration(kind=DurationKind.ROUNDS, value=1)

    lower = text.lower()
    if "instant" in lower:
        return Duration(kind=DurationKind.INSTANTANEOUS, value=0)
    if "permanent" in lower:
        return Duration(kind=DurationKind.PERMANENT, value=-1)
    if "concentration" in lower:
        return Duration(kind=DurationKind.CONCENTRATION, value=-2)
    if "round" in lower:
        m = _ROUNDS_RE.search(lower)
        return Duration(kind=DurationKind.ROUNDS, value=int(m.group(1)) if m else 1)
    if "minute" in lower:
        m = _MINUTES_RE.search(lower)
        minutes = int(m.group(1)) if m else 1
        return Duration(kind=DurationKind.ROUNDS, value=minutes * ROUNDS_PER_MINUTE)
    if "hour" in lower:
        m = _HOURS_RE.search(lower)
        hours = int(m.group(1)) if m else 1
        return Duration(kind=DurationKind.ROUNDS, value=hours * ROUNDS_PER_HOUR)
    return Duration(kind=DurationKind.ROUNDS, value=1)


class SpellDurationTracker:
    """Tracks timed spell effects for one combat session.

    Typical workflow:
    1. A spell is cast -> ``track_spell()`` (grants its conditions)
    2. Every start of turn -> ``update_spell_durations()``
    3. The spell runs out, is dismissed, or concentration drops
       -> ``end_spell()`` (strips the conditions it granted)
    """

    def __init__(self, session: "CombatSession"):
        self._session = session

    @property
    def spells(self) -> dict[str, TrackedSpell]:
        return self._session.state.spells

    # -----------------------------------------------------------------
    # Tracking
    # -----------------------------------------------------------------

    def track_spell(self, spell_data: dict[str, Any]) -> str:
        """Start tracking a cast spell.

        Every effect of type "condition" is applied to each target, with the
        spell's id as the condition source.

        Args:
            spell_data: Spell record with at least ``name`` and ``casterId``
                (or ``caster_id``). Optional: ``duration`` (free text),
                ``targets``, ``level``, ``school``, ``concentration``,
                ``dismissible``, ``effects``.

        Returns:
            The generated spell id.

        Raises:
            ConditionNotFoundError: If an effect names an unknown condition.
            CombatantNotFoundError: If a target is not in the session.
        """
        caster_id = spell_data.get("casterId", spell_data.get("caster_id"))
        if caster_id is None:
            raise ValueError("Spell data must include a caster id")
        name = spell_data["name"]
        targets = list(spell_data.get("targets") or [])
        effects = [SpellEffect.model_validate(e) for e in spell_data.get("effects") or []]

        # Validate everything before touching state
        granted = [e.condition for e in effects if e.type == "condition" and e.condition]
        for condition in granted:
            self._session.registry.require(condition)
        for target_id in targets:
            if target_id not in self._session.state.combatants:
                raise CombatantNotFoundError(target_id)

        duration = parse_duration(spell_data.get("duration"))
        spell_id = self._new_spell_id(caster_id, name)
        spell = TrackedSpell(
            id=spell_id,
            name=name,
            level=spell_data.get("level"),
            school=spell_data.get("school"),
            caster_id=caster_id,
            targets=targets,
            duration=duration,
            remaining_duration=duration.model_copy(),
            concentration=bool(spell_data.get("concentration", False))
            or duration.kind is DurationKind.CONCENTRATION,
            dismissible=bool(spell_data.get("dismissible", False)),
            cast_round=self._session.state.combat_state.round,
            effects=effects,
        )
        self.spells[spell_id] = spell

        self._session.log_combat_event(
            f"{self._session.combatant_name(caster_id)} casts {name}",
            f"Duration: {spell_data.get('duration', 'unspecified')}",
            category="spell_cast",
        )
        for target_id in targets:
            for condition in granted:
                self._session.status.apply_condition(target_id, condition, source=spell_id)

        logger.debug(f"✨ Tracking spell: {name} ({spell_id})")
        return spell_id

    def _new_spell_id(self, caster_id: str, name: str) -> str:
        while True:
            spell_id = f"{caster_id}_{name}_{int(time.time() * 1000)}_{random(length=4)}"
            if spell_id not in self.spells:
                return spell_id

    # -----------------------------------------------------------------
    # Countdown
    # -----------------------------------------------------------------

    def update_spell_durations(self) -> list[str]:
        """Count down every round-based spell by one and end expired ones.

        Returns:
            Ids of spells that ended.
        """
        ended: list[str] = []
        warn_at = self._session.config.spell_expiry_warning_rounds

        for spell_id, spell in list(self.spells.items()):
            remaining = spell.remaining_duration
            if spell.duration.kind is not DurationKind.ROUNDS or remaining.value <= 0:
                continue

            remaining.value -= 1
            if remaining.value <= 0:
                remaining.value = 0
                self.end_spell(spell_id)
                ended.append(spell_id)
            elif remaining.value <= warn_at:
                self._session.log_combat_event(
                    f"{spell.name} expires in {remaining.value} rounds",
                    category="spell_expiring",
                )
        return ended

    # -----------------------------------------------------------------
    # Ending Spells
    # -----------------------------------------------------------------

    def end_spell(self, spell_id: str) -> TrackedSpell:
        """Stop tracking a spell and strip the conditions it granted.

        Raises:
            SpellNotFoundError: If the spell is not tracked.
        """
        spell = self.spells.get(spell_id)
        if spell is None:
            raise SpellNotFoundError(spell_id)

        for target_id in spell.targets:
            self._remove_spell_effects(target_id, spell)
        del self.spells[spell_id]

        self._session.log_combat_event(f"{spell.name} ends", category="spell_ended")
        logger.debug(f"⏰ Spell ended: {spell.name}")
        return spell

    def _remove_spell_effects(self, target_id: str, spell: TrackedSpell) -> None:
        combatant = self._session.state.combatants.get(target_id)
        if combatant is None:
            return
        for effect in spell.effects:
            if effect.type != "condition" or not effect.condition:
                continue
            instance = combatant.conditions.get(effect.condition.lower())
            # Leave the condition alone if something else re-applied it since
            if instance is not None and instance.source == spell.id:
                self._session.status.remove_condition(target_id, effect.condition)

    def dismiss_spell(self, spell_id: str, caster_id: str) -> bool:
        """Dismiss a dismissible spell on behalf of its caster.

        Returns:
            True if the spell was dismissed; False (with no side effects) if
            it is not dismissible or the caller is not the caster.

        Raises:
            SpellNotFoundError: If the spell is not tracked.
        """
        spell = self.spells.get(spell_id)
        if spell is None:
            raise SpellNotFoundError(spell_id)
        if not spell.dismissible or spell.caster_id != caster_id:
            return False

        self.end_spell(spell_id)
        self._session.log_combat_event(
            f"{self._session.combatant_name(caster_id)} dismisses {spell.name}",
            category="spell_dismissed",
        )
        return True

    def end_concentration(self, caster_id: str, reason: str | None = None) -> list[str]:
        """End every concentration spell maintained by *caster_id*.

        Returns:
            Ids of the spells that ended.
        """
        ended: list[str] = []
        for spell_id, spell in list(self.spells.items()):
            if spell.caster_id == caster_id and spell.concentration:
                self.end_spell(spell_id)
                ended.append(spell_id)

        if ended and reason:
            self._session.log_combat_event(
                f"{self._session.combatant_name(caster_id)} loses concentration",
                f"Reason: {reason}",
                category="concentration_broken",
            )
        return ended

    def clear(self) -> None:
        """Drop every tracked spell without side effects (end of combat)."""
        self.spells.clear()
