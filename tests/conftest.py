"""
Pytest configuration and fixtures for combat-tracker tests.
"""

import random
import sys
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing combat_tracker
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from combat_tracker.combat.session import CombatSession  # noqa: E402
from combat_tracker.config import TrackerConfig  # noqa: E402


@pytest.fixture
def session() -> CombatSession:
    """An idle session with a seeded dice source."""
    return CombatSession(config=TrackerConfig(), rng=random.Random(1234))


@pytest.fixture
def party() -> list[dict]:
    """Three participants as the character generator hands them over."""
    return [
        {
            "id": "fighter",
            "name": "Tordek",
            "type": "player",
            "initiativeModifier": 5,
            "currentHitPoints": 30,
            "maxHitPoints": 30,
            "constitution": 16,
        },
        {
            "id": "wizard",
            "name": "Mialee",
            "type": "player",
            "initiativeModifier": 2,
            "currentHitPoints": 12,
            "maxHitPoints": 12,
            "constitution": 12,
        },
        {
            "id": "orc",
            "name": "Orc Warrior",
            "type": "monster",
            "initiativeModifier": 2,
            "currentHitPoints": 5,
            "maxHitPoints": 5,
            "constitution": 10,
            "damageReduction": {"amount": 2, "bypassed_by": ["magic"]},
        },
    ]


@pytest.fixture
def active_session(session: CombatSession, party: list[dict]) -> CombatSession:
    """Combat started with every d20 rolling 10.

    Order: fighter (15), wizard (12), orc (12). The tie keeps roll order.
    """
    session.rng.randint = lambda a, b: 10
    session.start_combat(party)
    return session
