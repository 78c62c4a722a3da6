"""
Battlemap positioning and distance engine for D&D 3.5 combat.

Provides grid distance calculations for square and hex maps, range
increments for ranged attacks, and placement/movement utilities that
operate on a Battlemap model.

Grid convention:
- Position(0, 0) is the top-left cell of the battlemap.
- Square grids use the 3.5 alternating-diagonal rule: the first diagonal
  step costs one square, the second costs two, and so on.
- Hex grids use axial coordinates.
"""

from __future__ import annotations

import math

from pydantic import BaseModel

from ..exceptions import OutOfBoundsError
from ..models import Battlemap, GridConfig, Position, cell_key


# ---------------------------------------------------------------------------
# Distance calculation
# ---------------------------------------------------------------------------

def diagonal_cost(diagonals: int) -> int:
    """Square cost of *diagonals* consecutive diagonal steps (1, 2, 1, 2...)."""
    return (diagonals // 2) * 3 + (diagonals % 2)


def square_distance(a: Position, b: Position) -> int:
    """Distance in squares on a square grid.

    Straight steps cost one square each; diagonal steps alternate between
    one and two squares.

    Args:
        a: First position.
        b: Second position.

    Returns:
        Distance in squares.
    """
    dx = abs(b.x - a.x)
    dy = abs(b.y - a.y)
    diagonals = min(dx, dy)
    straight = max(dx, dy) - diagonals
    return straight + diagonal_cost(diagonals)


def hex_distance(a: Position, b: Position) -> int:
    """Distance in hexes between two axial coordinates."""
    dx = b.x - a.x
    dy = b.y - a.y
    return max(abs(dx), abs(dy), abs(dx + dy))


def grid_distance(a: Position, b: Position, grid: GridConfig) -> int:
    """Distance in cells using the grid's shape."""
    if grid.type == "hex":
        return hex_distance(a, b)
    return square_distance(a, b)


def range_increment(feet: int) -> int:
    """Ranged-attack range increment for a distance in feet (one per 100 ft)."""
    return math.ceil(feet / 100)


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------

class RangeResult(BaseModel):
    """Distance between two placed combatants."""

    squares: int
    feet: int
    range_increment: int


class MovementResult(BaseModel):
    """Result of a movement attempt."""

    success: bool
    combatant_id: str
    old_position: Position | None = None
    new_position: Position | None = None
    squares: int = 0
    feet: int = 0
    speed: int | None = None
    message: str = ""


# ---------------------------------------------------------------------------
# Battlemap utilities
# ---------------------------------------------------------------------------

def in_bounds(grid: GridConfig, x: int, y: int) -> bool:
    return 0 <= x < grid.width and 0 <= y < grid.height


def check_bounds(grid: GridConfig, x: int, y: int) -> None:
    """Raise OutOfBoundsError unless (x, y) lies inside the grid."""
    if not in_bounds(grid, x, y):
        raise OutOfBoundsError(x, y, grid.width, grid.height)


def place_combatant(battlemap: Battlemap, combatant_id: str, x: int, y: int) -> Position:
    """Put a combatant on a cell, replacing any previous position.

    Raises:
        OutOfBoundsError: If the cell is outside the grid.
    """
    check_bounds(battlemap.grid, x, y)
    position = Position(x=x, y=y)
    battlemap.positions[combatant_id] = position
    return position


def move_combatant(
    battlemap: Battlemap,
    combatant_id: str,
    x: int,
    y: int,
    speed: int | None = None,
) -> MovementResult:
    """Move a placed combatant and report the distance covered.

    If *speed* (in feet) is given and the move would exceed it, the move is
    refused and the combatant stays where it is.

    Args:
        battlemap: The battlemap to update.
        combatant_id: Id of the combatant to move. Must already be placed.
        x: Target column.
        y: Target row.
        speed: Optional movement budget in feet.

    Returns:
        A MovementResult with the distance in squares and feet.

    Raises:
        KeyError: If the combatant has no position on the battlemap.
        OutOfBoundsError: If the target cell is outside the grid.
    """
    current = battlemap.positions[combatant_id]
    check_bounds(battlemap.grid, x, y)

    target = Position(x=x, y=y)
    squares = grid_distance(current, target, battlemap.grid)
    feet = squares * battlemap.grid.cell_size_feet

    if speed is not None and feet > speed:
        return MovementResult(
            success=False,
            combatant_id=combatant_id,
            old_position=current,
            new_position=target,
            squares=squares,
            feet=feet,
            speed=speed,
            message=f"Cannot move {feet}ft (speed {speed}ft). Movement denied.",
        )

    battlemap.positions[combatant_id] = target
    return MovementResult(
        success=True,
        combatant_id=combatant_id,
        old_position=current,
        new_position=target,
        squares=squares,
        feet=feet,
        speed=speed,
        message=f"Moved {feet}ft from {current} to {target}.",
    )


def get_range(battlemap: Battlemap, first_id: str, second_id: str) -> RangeResult | None:
    """Distance between two combatants, or None if either is not placed."""
    first = battlemap.positions.get(first_id)
    second = battlemap.positions.get(second_id)
    if first is None or second is None:
        return None

    squares = grid_distance(first, second, battlemap.grid)
    feet = squares * battlemap.grid.cell_size_feet
    return RangeResult(squares=squares, feet=feet, range_increment=range_increment(feet))


def set_terrain(battlemap: Battlemap, x: int, y: int, terrain: str | None) -> None:
    """Set or clear (terrain=None) the terrain type of a cell."""
    check_bounds(battlemap.grid, x, y)
    key = cell_key(x, y)
    if terrain is None:
        battlemap.terrain.pop(key, None)
    else:
        battlemap.terrain[key] = terrain


def get_terrain(battlemap: Battlemap, x: int, y: int) -> str | None:
    check_bounds(battlemap.grid, x, y)
    return battlemap.terrain.get(cell_key(x, y))


def add_area_effect(battlemap: Battlemap, cells: list[tuple[int, int]], effect: str) -> list[str]:
    """Mark each cell in *cells* as covered by *effect*.

    All cells are bounds-checked before any is marked.

    Returns:
        The cell keys that were marked.
    """
    for x, y in cells:
        check_bounds(battlemap.grid, x, y)

    marked: list[str] = []
    for x, y in cells:
        key = cell_key(x, y)
        cell_effects = battlemap.effects.setdefault(key, [])
        if effect not in cell_effects:
            cell_effects.append(effect)
        marked.append(key)
    return marked


def clear_area_effect(battlemap: Battlemap, effect: str) -> int:
    """Remove *effect* from every cell. Returns the number of cells cleared."""
    cleared = 0
    for key in list(battlemap.effects):
        cell_effects = battlemap.effects[key]
        if effect in cell_effects:
            cell_effects.remove(effect)
            cleared += 1
        if not cell_effects:
            del battlemap.effects[key]
    return cleared
