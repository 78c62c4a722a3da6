"""
Configuration model for the combat tracker.
"""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("combat-tracker")

ENV_PREFIX = "COMBAT_TRACKER_"


class TrackerConfig(BaseModel):
    """Tunable rules and battlemap defaults for a combat session.

    The defaults reproduce the D&D 3.5 reference behavior: a 40x30 square
    grid of 5-foot cells, death at -10 HP, DC 10 stabilization checks and
    expiry warnings for spells with three or fewer rounds left.
    """

    # Battlemap
    grid_type: str = Field(
        default="square",
        description="Grid shape: 'square' or 'hex'"
    )
    cell_size_feet: int = Field(
        default=5,
        gt=0,
        description="Feet per grid cell"
    )
    grid_width: int = Field(
        default=40,
        gt=0,
        description="Battlemap width in cells"
    )
    grid_height: int = Field(
        default=30,
        gt=0,
        description="Battlemap height in cells"
    )

    # Health rules
    death_threshold: int = Field(
        default=-10,
        lt=0,
        description="Hit point total at or below which a combatant is dead"
    )
    stabilization_dc: int = Field(
        default=10,
        ge=1,
        description="DC of the d20 + CON check a dying combatant makes each turn"
    )

    condition_table: str | None = Field(
        default=None,
        description="Path to a JSON/YAML condition table layered over the 3.5 defaults"
    )

    # Turn processing
    spell_expiry_warning_rounds: int = Field(
        default=3,
        ge=0,
        description="Log an expiry warning when a spell has this many rounds or fewer left"
    )
    skip_dead_combatants: bool = Field(
        default=False,
        description="Whether next_turn passes over combatants tagged 'dead'"
    )
    strict_invariants: bool = Field(
        default=True,
        description="Raise InvariantViolationError instead of logging it"
    )

    @field_validator("grid_type")
    @classmethod
    def validate_grid_type(cls, v: str) -> str:
        """Ensure grid type is a supported shape."""
        valid_types = {"square", "hex"}
        if v.strip().lower() not in valid_types:
            raise ValueError(
                f"grid_type must be one of: {', '.join(sorted(valid_types))}"
            )
        return v.strip().lower()


def load_config(env_file: str | None = None, **overrides) -> TrackerConfig:
    """Build a TrackerConfig from COMBAT_TRACKER_* environment variables.

    A .env file is loaded first when present. Explicit keyword overrides win
    over the environment.

    Args:
        env_file: Optional path to a .env file. Defaults to dotenv's search.
        **overrides: Field values that take precedence over the environment.

    Returns:
        A validated TrackerConfig.
    """
    if not load_dotenv(env_file):
        logger.debug("No .env file found, using process environment only")

    values: dict = {}
    for name in TrackerConfig.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = raw
    values.update(overrides)

    config = TrackerConfig.model_validate(values)
    logger.debug(f"⚙️ Tracker config loaded: {config.model_dump()}")
    return config


__all__ = ["TrackerConfig", "load_config", "ENV_PREFIX"]
