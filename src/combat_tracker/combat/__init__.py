"""
Combat engine package for combat-tracker.

Provides the combat session orchestrator and the engines it wires
together: initiative scheduling, the condition registry and status
engine, spell duration tracking, the health state machine, and
battlemap positioning for D&D 3.5 combat.
"""

# Orchestrator
from .session import CombatSession, CombatStatistics, CombatSummary, Survivor

# Component engines
from .initiative import InitiativeScheduler, TurnHooks
from .status import StatusEngine
from .spells import SpellDurationTracker, parse_duration
from .health import DamageResult, HealingResult, HealthStateMachine, health_status

# Condition tables
from .conditions import (
    DEFAULT_REGISTRY,
    SRD_CONDITIONS,
    ConditionCategory,
    ConditionDefinition,
    ConditionEffects,
    ConditionRegistry,
    load_registry,
)

# Battlemap
from .positioning import (
    MovementResult,
    RangeResult,
    grid_distance,
    hex_distance,
    range_increment,
    square_distance,
)

__all__ = [
    "CombatSession",
    "CombatStatistics",
    "CombatSummary",
    "Survivor",
    "InitiativeScheduler",
    "TurnHooks",
    "StatusEngine",
    "SpellDurationTracker",
    "parse_duration",
    "DamageResult",
    "HealingResult",
    "HealthStateMachine",
    "health_status",
    "DEFAULT_REGISTRY",
    "SRD_CONDITIONS",
    "ConditionCategory",
    "ConditionDefinition",
    "ConditionEffects",
    "ConditionRegistry",
    "load_registry",
    "MovementResult",
    "RangeResult",
    "grid_distance",
    "hex_distance",
    "range_increment",
    "square_distance",
]
