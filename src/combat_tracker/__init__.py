"""
combat-tracker - a turn-based D&D 3.5 combat engine.
"""

from .combat import CombatSession
from .config import TrackerConfig, load_config
from .exceptions import *
from .models import *

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("combat-tracker")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable
__all__ = ["CombatSession", "TrackerConfig", "load_config"]
