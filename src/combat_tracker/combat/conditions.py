"""
Condition registry for D&D 3.5 combat.

This module provides:
- ConditionEffects / ConditionDefinition: descriptive models of what a
  condition does mechanically.
- SRD_CONDITIONS: the default 3.5 condition table.
- ConditionRegistry: an immutable lookup table injected into each combat
  session, so alternate rule sets can be swapped in without touching
  module state.
- load_registry: reads a JSON or YAML condition table (house rules,
  other editions) on top of a base registry.

The effect bundles are data consumed by other rule logic. Only
``lose_hit_point`` and ``stabilization_check`` are acted on by the engine
itself (at the start of the affected combatant's turn).
"""

import json
import logging
from collections.abc import Iterator, Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import ConditionNotFoundError

logger = logging.getLogger("combat-tracker.conditions")


class ConditionCategory(str, Enum):
    PHYSICAL = "physical"
    POSITIONAL = "positional"
    MENTAL = "mental"
    MAGICAL = "magical"
    STATUS = "status"


class ConditionEffects(BaseModel):
    """Mechanical effects of a condition.

    Attributes:
        attack_modifier: Bonus/penalty to all attack rolls.
        melee_attack_modifier: Bonus/penalty to melee attack rolls only.
        ac_modifier: Bonus/penalty to Armor Class.
        ac_vs_melee_modifier: AC adjustment against melee attacks.
        ac_vs_ranged_modifier: AC adjustment against ranged attacks.
        save_modifiers: Per-save adjustments ("reflex", "all"...).
        ability_modifiers: Per-ability score adjustments.
        skill_modifiers: Per-skill adjustments.
        movement_multiplier: Multiplier on base speed (0.5 = half speed).
        movement_bonus: Flat feet added to speed.
        spell_failure: Chance (0-1) of spell failure.
        flags: Behavioral flags ("cannot_act", "helpless", "must_flee"...).
        auto_fail: Checks or saves that automatically fail.
        behavior_table: d% style table of forced behaviors, keyed by roll.
        lose_hit_point: Loses 1 hp at the start of each of its turns.
        stabilization_check: Makes a CON check each turn to stabilize.
    """
    model_config = ConfigDict(frozen=True)

    attack_modifier: int = 0
    melee_attack_modifier: int = 0
    ac_modifier: int = 0
    ac_vs_melee_modifier: int = 0
    ac_vs_ranged_modifier: int = 0
    save_modifiers: dict[str, int] = Field(default_factory=dict)
    ability_modifiers: dict[str, int] = Field(default_factory=dict)
    skill_modifiers: dict[str, int] = Field(default_factory=dict)
    movement_multiplier: float = 1.0
    movement_bonus: int = 0
    spell_failure: float = Field(default=0.0, ge=0.0, le=1.0)
    flags: frozenset[str] = frozenset()
    auto_fail: tuple[str, ...] = ()
    behavior_table: dict[int, str] = Field(default_factory=dict)
    lose_hit_point: bool = False
    stabilization_check: bool = False


class ConditionDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    category: ConditionCategory
    description: str = ""
    effects: ConditionEffects = Field(default_factory=ConditionEffects)


# ---------------------------------------------------------------------------
# D&D 3.5 Condition Table
# ---------------------------------------------------------------------------

SRD_CONDITIONS: dict[str, ConditionDefinition] = {
    # Physical
    "blinded": ConditionDefinition(
        name="Blinded",
        category=ConditionCategory.PHYSICAL,
        description="Cannot see, -2 to attacks and AC, half movement speed",
        effects=ConditionEffects(
            attack_modifier=-2,
            ac_modifier=-2,
            skill_modifiers={"spot": -4, "search": -4},
            movement_multiplier=0.5,
            auto_fail=("spot_checks_based_on_sight",),
        ),
    ),
    "deafened": ConditionDefinition(
        name="Deafened",
        category=ConditionCategory.PHYSICAL,
        description="Cannot hear, -4 to Listen checks, 20% spell failure",
        effects=ConditionEffects(
            skill_modifiers={"listen": -4},
            spell_failure=0.2,  # verbal components only
            auto_fail=("listen_checks",),
        ),
    ),
    "paralyzed": ConditionDefinition(
        name="Paralyzed",
        category=ConditionCategory.PHYSICAL,
        description="Cannot move or act, effective Dex 0, -4 AC penalty",
        effects=ConditionEffects(
            ac_modifier=-4,
            movement_multiplier=0.0,
            flags=frozenset({"cannot_move", "cannot_act", "no_dex_bonus", "helpless"}),
            auto_fail=("reflex_saves", "dexterity_checks"),
        ),
    ),
    "stunned": ConditionDefinition(
        name="Stunned",
        category=ConditionCategory.PHYSICAL,
        description="Cannot act, -2 AC penalty, automatically fail Reflex saves",
        effects=ConditionEffects(
            ac_modifier=-2,
            flags=frozenset({"cannot_act", "no_dex_bonus"}),
            auto_fail=("reflex_saves",),
        ),
    ),
    "dazed": ConditionDefinition(
        name="Dazed",
        category=ConditionCategory.PHYSICAL,
        description="Cannot act, but can defend normally",
        effects=ConditionEffects(flags=frozenset({"cannot_act"})),
    ),
    "entangled": ConditionDefinition(
        name="Entangled",
        category=ConditionCategory.PHYSICAL,
        description="Cannot move, -2 attack, -4 Dex",
        effects=ConditionEffects(
            attack_modifier=-2,
            ability_modifiers={"dexterity": -4},
            movement_multiplier=0.0,
            flags=frozenset({"cannot_move"}),
        ),
    ),
    "grappled": ConditionDefinition(
        name="Grappled",
        category=ConditionCategory.PHYSICAL,
        description="Cannot move, -4 Dex, -2 attack with light weapons only",
        effects=ConditionEffects(
            attack_modifier=-2,
            ability_modifiers={"dexterity": -4},
            movement_multiplier=0.0,
            flags=frozenset({"cannot_move", "light_weapons_only"}),
        ),
    ),
    "sickened": ConditionDefinition(
        name="Sickened",
        category=ConditionCategory.PHYSICAL,
        description="-2 on all rolls",
        effects=ConditionEffects(attack_modifier=-2, save_modifiers={"all": -2}),
    ),
    # Positional
    "prone": ConditionDefinition(
        name="Prone",
        category=ConditionCategory.POSITIONAL,
        description="Lying down, -4 to melee attacks, +4 AC vs ranged, -4 AC vs melee",
        effects=ConditionEffects(
            melee_attack_modifier=-4,
            ac_vs_ranged_modifier=4,
            ac_vs_melee_modifier=-4,
            flags=frozenset({"crawling"}),
        ),
    ),
    # Mental
    "confused": ConditionDefinition(
        name="Confused",
        category=ConditionCategory.MENTAL,
        description="Acts randomly each round according to confusion table",
        effects=ConditionEffects(
            flags=frozenset({"random_behavior"}),
            behavior_table={
                1: "attack_caster",
                2: "act_normally",
                3: "babble_incoherently",
                4: "flee_at_top_speed",
                5: "attack_nearest_creature",
            },
        ),
    ),
    "charmed": ConditionDefinition(
        name="Charmed",
        category=ConditionCategory.MENTAL,
        description="Regards charmer as friend, will not take hostile actions",
        effects=ConditionEffects(
            save_modifiers={"if_threatened": 2},
            flags=frozenset({"regards_charmer_as_friend", "no_hostile_actions"}),
        ),
    ),
    "dominated": ConditionDefinition(
        name="Dominated",
        category=ConditionCategory.MENTAL,
        description="Completely controlled by dominating creature",
        effects=ConditionEffects(
            flags=frozenset({"controlled_by_dominator", "mental_link"}),
        ),
    ),
    "fascinated": ConditionDefinition(
        name="Fascinated",
        category=ConditionCategory.MENTAL,
        description="Cannot take actions except to listen/watch",
        effects=ConditionEffects(flags=frozenset({"limited_actions"})),
    ),
    "feared": ConditionDefinition(
        name="Feared",
        category=ConditionCategory.MENTAL,
        description="Must flee from fear source, -2 to attacks and saves",
        effects=ConditionEffects(
            attack_modifier=-2,
            save_modifiers={"all": -2},
            flags=frozenset({"must_flee", "cannot_charge"}),
        ),
    ),
    "frightened": ConditionDefinition(
        name="Frightened",
        category=ConditionCategory.MENTAL,
        description="-2 on all rolls, must flee if possible",
        effects=ConditionEffects(
            attack_modifier=-2,
            save_modifiers={"all": -2},
            flags=frozenset({"must_flee"}),
        ),
    ),
    "shaken": ConditionDefinition(
        name="Shaken",
        category=ConditionCategory.MENTAL,
        description="-2 on all rolls",
        effects=ConditionEffects(attack_modifier=-2, save_modifiers={"all": -2}),
    ),
    # Magical
    "invisible": ConditionDefinition(
        name="Invisible",
        category=ConditionCategory.MAGICAL,
        description="+2 to attacks and AC, +40 to Hide checks, total concealment",
        effects=ConditionEffects(
            attack_modifier=2,
            ac_modifier=2,
            skill_modifiers={"hide": 40},
            flags=frozenset({"total_concealment"}),
        ),
    ),
    "hasted": ConditionDefinition(
        name="Hasted",
        category=ConditionCategory.MAGICAL,
        description="Extra attack, +30 ft movement, +1 AC and Reflex saves",
        effects=ConditionEffects(
            ac_modifier=1,
            save_modifiers={"reflex": 1},
            movement_bonus=30,
            flags=frozenset({"extra_attack"}),
        ),
    ),
    "slowed": ConditionDefinition(
        name="Slowed",
        category=ConditionCategory.MAGICAL,
        description="Half movement, -1 to attacks, AC, and Reflex saves",
        effects=ConditionEffects(
            attack_modifier=-1,
            ac_modifier=-1,
            save_modifiers={"reflex": -1},
            movement_multiplier=0.5,
            flags=frozenset({"reduced_actions"}),
        ),
    ),
    # Status
    "dying": ConditionDefinition(
        name="Dying",
        category=ConditionCategory.STATUS,
        description="Unconscious, losing 1 hp per round, requires stabilization",
        effects=ConditionEffects(
            flags=frozenset({"unconscious", "helpless"}),
            lose_hit_point=True,
            stabilization_check=True,
        ),
    ),
    "disabled": ConditionDefinition(
        name="Disabled",
        category=ConditionCategory.STATUS,
        description="Can take only single move or standard action, strenuous actions deal 1 damage",
        effects=ConditionEffects(
            flags=frozenset({"single_move_or_standard", "strenuous_action_damage"}),
        ),
    ),
    "unconscious": ConditionDefinition(
        name="Unconscious",
        category=ConditionCategory.STATUS,
        description="Helpless, cannot act",
        effects=ConditionEffects(flags=frozenset({"cannot_act", "helpless"})),
    ),
    "dead": ConditionDefinition(
        name="Dead",
        category=ConditionCategory.STATUS,
        description="Hit points at or below -10; takes no further turns",
        effects=ConditionEffects(flags=frozenset({"cannot_act", "cannot_move", "dead"})),
    ),
    "exhausted": ConditionDefinition(
        name="Exhausted",
        category=ConditionCategory.STATUS,
        description="-6 Str and Dex, half movement, cannot run",
        effects=ConditionEffects(
            ability_modifiers={"strength": -6, "dexterity": -6},
            movement_multiplier=0.5,
            flags=frozenset({"cannot_run"}),
        ),
    ),
    "fatigued": ConditionDefinition(
        name="Fatigued",
        category=ConditionCategory.STATUS,
        description="-2 Str and Dex, cannot run",
        effects=ConditionEffects(
            ability_modifiers={"strength": -2, "dexterity": -2},
            flags=frozenset({"cannot_run"}),
        ),
    ),
}


class ConditionRegistry(Mapping[str, ConditionDefinition]):
    """Read-only condition lookup table.

    Keys are case-insensitive. Registries never change after construction;
    use ``with_conditions`` to derive a variant rule set.
    """

    def __init__(self, conditions: Mapping[str, ConditionDefinition]):
        self._conditions = MappingProxyType(
            {name.lower(): definition for name, definition in conditions.items()}
        )

    def __getitem__(self, name: str) -> ConditionDefinition:
        return self._conditions[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._conditions)

    def __len__(self) -> int:
        return len(self._conditions)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._conditions

    def require(self, name: str) -> ConditionDefinition:
        """Look up a condition, raising ConditionNotFoundError if unknown."""
        try:
            return self[name]
        except KeyError:
            raise ConditionNotFoundError(name) from None

    def with_conditions(
        self,
        conditions: Mapping[str, ConditionDefinition] | None = None,
        without: list[str] | None = None,
    ) -> "ConditionRegistry":
        """Return a new registry with conditions added/replaced or removed."""
        merged = dict(self._conditions)
        for name in without or []:
            merged.pop(name.lower(), None)
        for name, definition in (conditions or {}).items():
            merged[name.lower()] = definition
        return ConditionRegistry(merged)


DEFAULT_REGISTRY = ConditionRegistry(SRD_CONDITIONS)


# ---------------------------------------------------------------------------
# Loading custom condition tables
# ---------------------------------------------------------------------------

SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


def load_registry(path: Path, base: ConditionRegistry | None = DEFAULT_REGISTRY) -> ConditionRegistry:
    """Build a registry from a JSON or YAML condition table.

    Expected format:
        conditions:
          nauseated:
            name: Nauseated
            category: physical
            description: Can only take a single move action
            effects:
              flags: [single_move_action]

    Entries are layered over *base* (pass None for a table that stands on
    its own), so a house-rule file only needs the conditions it changes.

    Raises:
        ValueError: If the file is missing, unsupported, malformed, or an
            entry fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"Condition table not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise ValueError(
            f"Unsupported file format: {suffix}. "
            f"Supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))}"
        )

    raw_content = path.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(raw_content)
        else:
            data = yaml.safe_load(raw_content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Failed to parse {suffix} file: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("conditions"), dict):
        raise ValueError("Condition table must contain a 'conditions' mapping")

    conditions: dict[str, ConditionDefinition] = {}
    for key, entry in data["conditions"].items():
        try:
            conditions[key] = ConditionDefinition.model_validate({"name": key.title(), **entry})
        except ValidationError as e:
            raise ValueError(f"Invalid condition {key!r}: {e}") from e

    logger.debug(f"📚 Loaded {len(conditions)} conditions from {path}")
    if base is None:
        return ConditionRegistry(conditions)
    return base.with_conditions(conditions)
