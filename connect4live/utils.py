"""
utils.py - Constants, enumerations and helpers shared across the session engine

This module provides the board dimensions, the disc/player enumeration, the
per-move status values and small helpers used by the rules engine, the bot
and the command-line tools.
"""

from enum import Enum, auto
from typing import Iterable, List, Tuple

import numpy as np

# Game constants
ROWS = 6
COLS = 7
CONNECT_N = 4  # Number of pieces in a row to win
CENTER_COL = COLS // 2


class Player(Enum):
    """Enumeration representing players and cell states."""
    EMPTY = 0
    ONE = 1    # First player
    TWO = 2    # Second player

    def other(self):
        """Get the other player."""
        if self == Player.ONE:
            return Player.TWO
        elif self == Player.TWO:
            return Player.ONE
        return Player.EMPTY

    def __str__(self):
        if self == Player.EMPTY:
            return " "
        elif self == Player.ONE:
            return "X"
        else:
            return "O"


class GameStatus(Enum):
    """Outcome of a move or state of a session."""
    IN_PROGRESS = "in_progress"
    WON = "won"
    DRAWN = "drawn"

    def is_game_over(self) -> bool:
        """Check if the game is over."""
        return self != GameStatus.IN_PROGRESS


class Direction(Enum):
    """Enumeration representing directions for win checking."""
    HORIZONTAL = auto()
    VERTICAL = auto()
    DIAGONAL_DOWN = auto()  # Diagonal from top-left to bottom-right
    DIAGONAL_UP = auto()  # Diagonal from bottom-left to top-right


# Direction vectors (row, col) for each direction
DIRECTION_VECTORS = {
    Direction.HORIZONTAL: (0, 1),
    Direction.VERTICAL: (1, 0),
    Direction.DIAGONAL_DOWN: (1, 1),
    Direction.DIAGONAL_UP: (-1, 1)
}


def is_valid_position(row: int, col: int) -> bool:
    """
    Check if a position is within the board boundaries.

    Args:
        row: Row index
        col: Column index

    Returns:
        True if position is valid, False otherwise
    """
    return 0 <= row < ROWS and 0 <= col < COLS


def center_order(columns: Iterable[int]) -> List[int]:
    """Sort columns center-out; ties keep the left column first."""
    return sorted(columns, key=lambda c: (abs(c - CENTER_COL), c))


def _build_windows() -> np.ndarray:
    """Flat indices of every four-cell window on the board (69 windows)."""
    windows = []
    for row in range(ROWS):
        for col in range(COLS):
            for dr, dc in DIRECTION_VECTORS.values():
                end_row = row + (CONNECT_N - 1) * dr
                end_col = col + (CONNECT_N - 1) * dc
                if not is_valid_position(end_row, end_col):
                    continue
                windows.append([(row + i * dr) * COLS + (col + i * dc) for i in range(CONNECT_N)])
    return np.array(windows, dtype=np.intp)


# Precomputed once; used by the bot's evaluation
WINDOW_INDICES = _build_windows()


def render_board_ascii(grid: np.ndarray) -> str:
    """
    Render the board as ASCII art.

    Args:
        grid: The 6x7 board grid

    Returns:
        ASCII representation of the board
    """
    result = ["|" + "-" * (COLS * 2 - 1) + "|"]

    for row in range(ROWS):
        cells = [str(Player(int(grid[row, col]))) for col in range(COLS)]
        result.append("|" + " ".join(cells) + "|")

    result.append("|" + "-" * (COLS * 2 - 1) + "|")
    result.append("|" + " ".join(str(i) for i in range(COLS)) + "|")

    return "\n".join(result)


def parse_position(position: str) -> List[List[int]]:
    """
    Parse a comma-separated position string of ROWS * COLS values.

    Args:
        position: Values 0/1/2 in row-major order, top row first

    Returns:
        The position as a list of rows

    Raises:
        ValueError: If the string does not contain exactly ROWS * COLS values
    """
    values = [int(c) for c in position.split(',') if c.strip()]
    if len(values) != ROWS * COLS:
        raise ValueError(f"Position string must have {ROWS * COLS} values, got {len(values)}")
    return [values[r * COLS:(r + 1) * COLS] for r in range(ROWS)]


def winning_positions_to_list(positions: Iterable[Tuple[int, int]]) -> List[List[int]]:
    """Convert (row, col) tuples to JSON-friendly lists."""
    return [[int(r), int(c)] for r, c in positions]
