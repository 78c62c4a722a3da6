"""
Exception hierarchy for the combat tracker.

Validation failures (unknown ids, out-of-bounds placement, illegal state
transitions) are raised synchronously to the caller and never leave the
session half-updated. InvariantViolationError signals a defect in the
engine itself.
"""

from __future__ import annotations

from typing import Any


class CombatTrackerError(Exception):
    """Base exception for all combat tracker errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary of additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(CombatTrackerError):
    """A referenced entity does not exist in the session.

    Attributes:
        resource: Kind of entity that was looked up (e.g. "combatant")
        key: The identifier that could not be resolved
    """

    resource = "resource"

    def __init__(self, key: str, details: dict[str, Any] | None = None):
        super().__init__(f"Unknown {self.resource}: {key!r}", details)
        self.key = key


class CombatantNotFoundError(NotFoundError):
    """Unknown combatant id."""

    resource = "combatant"


class ConditionNotFoundError(NotFoundError):
    """Condition name missing from the active registry."""

    resource = "condition"


class SpellNotFoundError(NotFoundError):
    """Unknown tracked spell id."""

    resource = "spell"


class ReadiedActionNotFoundError(NotFoundError):
    resource = "readied action"


class OutOfBoundsError(CombatTrackerError):
    """Placement or movement outside the battlemap.

    Attributes:
        x: Requested column
        y: Requested row
    """

    def __init__(self, x: int, y: int, width: int, height: int):
        super().__init__(
            f"Position ({x}, {y}) outside battlemap bounds {width}x{height}",
            {"x": x, "y": y, "width": width, "height": height},
        )
        self.x = x
        self.y = y


class InvalidStateError(CombatTrackerError):
    """The command is not legal in the session's current state."""
    pass


class InvariantViolationError(CombatTrackerError):
    """Internal consistency check failed. Indicates an engine defect."""
    pass


__all__ = [
    "CombatTrackerError",
    "NotFoundError",
    "CombatantNotFoundError",
    "ConditionNotFoundError",
    "SpellNotFoundError",
    "ReadiedActionNotFoundError",
    "OutOfBoundsError",
    "InvalidStateError",
    "InvariantViolationError",
]
