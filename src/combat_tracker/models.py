"""
Data models for the combat tracker.

Everything the engine keeps for one encounter lives in these pydantic models,
so a whole encounter can be dumped to JSON and validated back without loss.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CombatantKind(str, Enum):
    PLAYER = "player"
    NPC = "npc"
    MONSTER = "monster"


class HealthStatus(str, Enum):
    """Health states derived from signed hit points."""
    HEALTHY = "healthy"
    DISABLED = "disabled"
    DYING = "dying"
    DEAD = "dead"


class DurationKind(str, Enum):
    ROUNDS = "rounds"
    INSTANTANEOUS = "instantaneous"
    PERMANENT = "permanent"
    CONCENTRATION = "concentration"


class ReadiedActionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Combatants and conditions
# ---------------------------------------------------------------------------

class ConditionInstance(BaseModel):
    """A condition currently affecting one combatant.

    Attributes:
        name: Registry key of the condition (e.g. "slowed").
        applied_round: Combat round in which the condition was applied.
        duration: Total duration in rounds. None means permanent until removed.
        remaining: Rounds left. None for permanent conditions; never negative.
        source: What applied the condition (a spell id, "health", a trap...).
    """
    name: str
    applied_round: int = 0
    duration: int | None = Field(default=None, ge=0)
    remaining: int | None = Field(default=None, ge=0)
    source: str | None = None


class DamageReduction(BaseModel):
    """Flat damage reduction, optionally bypassed by certain damage types.

    ``DamageReduction(amount=10, bypassed_by=["magic"])`` is DR 10/magic.
    """
    amount: int = Field(default=0, ge=0)
    bypassed_by: list[str] = Field(default_factory=list)


class Combatant(BaseModel):
    """A participant in an encounter.

    Accepts both snake_case field names and the camelCase keys produced by
    the character generator (``initiativeModifier``, ``currentHitPoints``...).
    Hit points are stored signed so dying and dead thresholds are reachable;
    use ``displayed_hit_points`` for presentation.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    kind: CombatantKind = Field(
        default=CombatantKind.PLAYER,
        validation_alias=AliasChoices("kind", "type"),
    )
    initiative_modifier: int = 0
    current_hit_points: int = 0
    max_hit_points: int = Field(default=0, ge=0)
    constitution: int = Field(default=10, ge=0)
    damage_reduction: DamageReduction | None = None
    conditions: dict[str, ConditionInstance] = Field(default_factory=dict)
    starting_hit_points: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_damage_reduction(cls, data: Any) -> Any:
        """Accept a bare integer as a flat damage reduction amount."""
        if isinstance(data, dict):
            for key in ("damage_reduction", "damageReduction"):
                if isinstance(data.get(key), int):
                    data = {**data, key: {"amount": data[key]}}
        return data

    @property
    def displayed_hit_points(self) -> int:
        """Hit points floored at zero, for display."""
        return max(0, self.current_hit_points)

    @property
    def constitution_modifier(self) -> int:
        return (self.constitution - 10) // 2

    def has_condition(self, name: str) -> bool:
        return name.lower() in self.conditions


# ---------------------------------------------------------------------------
# Initiative
# ---------------------------------------------------------------------------

class InitiativeEntry(BaseModel):
    """One combatant's place in the initiative order.

    Attributes:
        initiative: Resolved total (roll + modifier).
        roll: The raw d20 result.
        modifier: The initiative modifier used for tie-breaking.
        delayed: Whether the combatant is currently delaying.
        has_readied_action: Whether a readied action is pending for them.
    """
    id: str
    name: str
    kind: CombatantKind = CombatantKind.PLAYER
    initiative: int
    roll: int
    modifier: int
    delayed: bool = False
    has_readied_action: bool = False


class ReadiedAction(BaseModel):
    """An action held until a trigger occurs.

    The engine records intent only; an external rules evaluator decides
    when the trigger fires and calls back to resolve it.
    """
    id: str
    combatant_id: str
    action: str
    trigger: str
    readied_round: int = 0
    status: ReadiedActionStatus = ReadiedActionStatus.PENDING


class InitiativeState(BaseModel):
    order: list[InitiativeEntry] = Field(default_factory=list)
    rolled: bool = False
    delayed_actions: list[str] = Field(
        default_factory=list,
        description="Ids of combatants currently delaying, in the order they delayed"
    )
    readied_actions: list[ReadiedAction] = Field(default_factory=list)
    interrupted_ids: list[str] = Field(
        default_factory=list,
        description="Combatants whose turns were interrupted by a delayed combatant acting"
    )


# ---------------------------------------------------------------------------
# Spells
# ---------------------------------------------------------------------------

class Duration(BaseModel):
    """Structured spell duration.

    ``value`` is a round count for ROUNDS. The other kinds carry sentinel
    values: 0 (instantaneous), -1 (permanent) and -2 (concentration).
    """
    kind: DurationKind = DurationKind.ROUNDS
    value: int = 1


class SpellEffect(BaseModel):
    """An effect granted by a spell. ``condition`` names a registry entry."""
    type: str = "condition"
    condition: str | None = None
    timing: str | None = None


class TrackedSpell(BaseModel):
    id: str
    name: str
    level: int | None = None
    school: str | None = None
    caster_id: str
    targets: list[str] = Field(default_factory=list)
    duration: Duration
    remaining_duration: Duration
    concentration: bool = False
    dismissible: bool = False
    cast_round: int = 0
    effects: list[SpellEffect] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Event log and combat state
# ---------------------------------------------------------------------------

class CombatEvent(BaseModel):
    """One immutable entry in the combat log.

    Attributes:
        round: Combat round when the event was recorded.
        turn: 1-based turn number within the round.
        timestamp: UTC time of recording.
        event: Short human-readable description.
        details: Free text, or a tuple of lines for multi-part events.
        category: Machine-readable event kind (e.g. "damage", "turn_start").
    """
    model_config = ConfigDict(frozen=True)

    round: int
    turn: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event: str
    details: str | tuple[str, ...] = ""
    category: str = "general"


class CombatState(BaseModel):
    active: bool = False
    round: int = Field(default=0, ge=0)
    current_turn_index: int = Field(default=0, ge=0)
    turn_timer: float | None = Field(
        default=None,
        description="Presentation-layer turn timer; carries no engine semantics"
    )
    combat_log: list[CombatEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Battlemap
# ---------------------------------------------------------------------------

class Position(BaseModel):
    """Grid cell coordinates. On a hex grid these are axial coordinates."""

    x: int
    y: int

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Position):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))

    def __repr__(self) -> str:
        return f"Position(x={self.x}, y={self.y})"


class GridConfig(BaseModel):
    type: Literal["square", "hex"] = "square"
    cell_size_feet: int = Field(default=5, gt=0)
    width: int = Field(default=40, gt=0)
    height: int = Field(default=30, gt=0)


class Battlemap(BaseModel):
    """Grid configuration plus per-cell maps.

    ``terrain`` and ``effects`` are keyed by ``"x,y"`` cell keys so the map
    serializes to plain JSON.
    """
    grid: GridConfig = Field(default_factory=GridConfig)
    positions: dict[str, Position] = Field(default_factory=dict)
    terrain: dict[str, str] = Field(default_factory=dict)
    effects: dict[str, list[str]] = Field(default_factory=dict)


def cell_key(x: int, y: int) -> str:
    """Key used by the terrain and effect maps."""
    return f"{x},{y}"


# ---------------------------------------------------------------------------
# Encounter aggregate and snapshot
# ---------------------------------------------------------------------------

class EncounterState(BaseModel):
    """All mutable state of one encounter.

    Dumped with ``by_alias=True`` the top-level keys are camelCase
    (``combatState``, ``initiative``...), the layout export collaborators
    expect. Either spelling is accepted on validation.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    combat_state: CombatState = Field(default_factory=CombatState)
    initiative: InitiativeState = Field(default_factory=InitiativeState)
    combatants: dict[str, Combatant] = Field(default_factory=dict)
    spells: dict[str, TrackedSpell] = Field(default_factory=dict)
    battlemap: Battlemap = Field(default_factory=Battlemap)


class CombatSnapshot(EncounterState):
    """Exported encounter state, as handed to persistence and export layers."""
    version: str = "1.0"
    exported_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    rng_state: list[Any] | None = Field(
        default=None,
        description="Dice state from random.Random.getstate(), so replays roll the same dice",
    )


__all__ = [
    "CombatantKind",
    "HealthStatus",
    "DurationKind",
    "ReadiedActionStatus",
    "ConditionInstance",
    "DamageReduction",
    "Combatant",
    "InitiativeEntry",
    "ReadiedAction",
    "InitiativeState",
    "Duration",
    "SpellEffect",
    "TrackedSpell",
    "CombatEvent",
    "CombatState",
    "Position",
    "GridConfig",
    "Battlemap",
    "cell_key",
    "EncounterState",
    "CombatSnapshot",
]
