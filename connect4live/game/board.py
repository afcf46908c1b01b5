"""
board.py - Immutable board representation for Connect Four

This module implements the Board value object. A Board never changes after
construction: placing a disc returns a new Board, so a board can be shared
freely between sessions, bot searches and worker threads.
"""

from typing import List, Optional, Sequence

import numpy as np

from connect4live.debug import debug
from connect4live.errors import InvalidMove
from connect4live.utils import ROWS, COLS, Player, render_board_ascii


class Board:
    """
    Represents a Connect Four game board.

    Row 0 is the top of the board and row ROWS - 1 the bottom. Cells hold
    0 (empty), 1 (player one) or 2 (player two).
    """

    __slots__ = ("_grid",)

    def __init__(self, grid: Optional[np.ndarray] = None):
        """
        Initialize a board.

        Args:
            grid: Optional 6x7 array to copy; an empty board is created when omitted
        """
        if grid is None:
            new_grid = np.zeros((ROWS, COLS), dtype=np.int8)
        else:
            new_grid = np.array(grid, dtype=np.int8, copy=True)
            if new_grid.shape != (ROWS, COLS):
                raise ValueError(f"Board grid must be {ROWS}x{COLS}, got {new_grid.shape}")
        new_grid.setflags(write=False)
        self._grid = new_grid

    @classmethod
    def _wrap(cls, grid: np.ndarray) -> 'Board':
        """Adopt an already-private grid without copying it again."""
        board = cls.__new__(cls)
        grid.setflags(write=False)
        board._grid = grid
        return board

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[int]]) -> 'Board':
        """
        Build a board from a list of rows, validating the position.

        Args:
            rows: ROWS lists of COLS values in {0, 1, 2}, top row first

        Returns:
            A new Board

        Raises:
            ValueError: On a bad shape, an unknown cell value or a floating disc
        """
        grid = np.array(rows, dtype=np.int8)
        if grid.shape != (ROWS, COLS):
            raise ValueError(f"Board must be {ROWS}x{COLS}, got {grid.shape}")
        if not np.isin(grid, (Player.EMPTY.value, Player.ONE.value, Player.TWO.value)).all():
            raise ValueError("Board cells must be 0, 1 or 2")

        # Discs must be bottom-aligned: no empty cell below an occupied one
        occupied = grid != Player.EMPTY.value
        if (occupied[:-1] & ~occupied[1:]).any():
            raise ValueError("Board has a floating disc")

        return cls._wrap(grid)

    @property
    def grid(self) -> np.ndarray:
        """Read-only view of the underlying grid."""
        return self._grid

    def cell(self, row: int, col: int) -> int:
        """
        Get the value of a single cell.

        Raises:
            IndexError: If the position is outside the board
        """
        if not (0 <= row < ROWS and 0 <= col < COLS):
            raise IndexError(f"Cell position ({row}, {col}) is out of bounds")
        return int(self._grid[row, col])

    def is_legal(self, column: int) -> bool:
        """
        Check if a disc can be dropped into a column.

        Args:
            column: The column to check (0-indexed)

        Returns:
            False if the column is out of range or its top cell is occupied
        """
        if not isinstance(column, (int, np.integer)) or isinstance(column, bool):
            return False
        if not (0 <= column < COLS):
            return False
        return self._grid[0, column] == Player.EMPTY.value

    def legal_columns(self) -> List[int]:
        """Get the list of columns that still accept a disc."""
        return [int(c) for c in np.flatnonzero(self._grid[0] == Player.EMPTY.value)]

    def landing_row(self, column: int) -> int:
        """Row a disc dropped into ``column`` would occupy, or -1 if full/out of range."""
        if not self.is_legal(column):
            return -1
        empty_rows = np.flatnonzero(self._grid[:, column] == Player.EMPTY.value)
        return int(empty_rows[-1])

    def top_row(self, column: int) -> int:
        """
        Row of the topmost disc in a column.

        Because discs fill from the bottom, the first occupied cell scanning
        from the top is the most recently placed disc.

        Returns:
            The row index, or -1 if the column is empty
        """
        occupied = np.flatnonzero(self._grid[:, column] != Player.EMPTY.value)
        return int(occupied[0]) if occupied.size else -1

    def place(self, column: int, player: int) -> 'Board':
        """
        Drop a disc into a column.

        Args:
            column: The column to place a piece (0-indexed)
            player: Player number (1 or 2)

        Returns:
            A new Board with the lowest empty cell of the column set to player

        Raises:
            InvalidMove: If the column is full or out of range
        """
        row = self.landing_row(column)
        if row < 0:
            debug.debug(f"Rejected placement in column {column}", "board")
            raise InvalidMove(column)

        new_grid = self._grid.copy()
        new_grid[row, column] = int(player)
        debug.trace(f"Placed player {player} at ({row}, {column})", "board")
        return Board._wrap(new_grid)

    def is_full(self) -> bool:
        """True iff every column's top cell is occupied."""
        return bool((self._grid[0] != Player.EMPTY.value).all())

    def disc_count(self) -> int:
        return int(np.count_nonzero(self._grid))

    def to_rows(self) -> List[List[int]]:
        """Row-major list of lists, top row first."""
        return self._grid.tolist()

    def render(self) -> str:
        return render_board_ascii(self._grid)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return bool(np.array_equal(self._grid, other._grid))

    def __hash__(self) -> int:
        return hash(self._grid.tobytes())

    def __str__(self) -> str:
        """String representation of the board."""
        return self.render()

    def __repr__(self) -> str:
        return f"Board(discs={self.disc_count()})"
