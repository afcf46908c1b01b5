"""
rules.py - Rules engine for Connect Four

This module provides:
1. MoveResult, the per-move outcome reported to sessions and the bot
2. RulesEngine, which applies moves, alternates turns and detects wins/draws
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from connect4live.debug import debug
from connect4live.errors import InvalidMove, SessionOver
from connect4live.game.board import Board
from connect4live.game.win_checker import check_win, find_winner
from connect4live.utils import Player, GameStatus


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a single move."""
    row: int
    column: int
    status: GameStatus
    winner: Optional[int] = None  # player number when status is WON


class RulesEngine:
    """
    Connect Four rules on top of an immutable Board.

    The engine owns the board reference and the turn counter (player 1 or 2).
    Once a move ends the game the final board is kept for inspection, the
    turn stops advancing and further moves are refused.
    """

    def __init__(self, board: Optional[Board] = None, current_player: int = Player.ONE.value):
        """
        Initialize the engine.

        Args:
            board: Starting position (empty board when omitted)
            current_player: Player number to move first
        """
        if current_player not in (Player.ONE.value, Player.TWO.value):
            raise ValueError(f"current_player must be 1 or 2, got {current_player}")
        self._board = board if board is not None else Board()
        self._current_player = current_player
        self._last_result: Optional[MoveResult] = None
        self._over: Optional[bool] = None  # derived lazily when no move was recorded

    @property
    def board(self) -> Board:
        return self._board

    @property
    def current_player(self) -> int:
        return self._current_player

    @property
    def last_result(self) -> Optional[MoveResult]:
        return self._last_result

    @property
    def is_over(self) -> bool:
        if self._last_result is not None:
            return self._last_result.status.is_game_over()
        if self._over is None:
            self._over = self.status().is_game_over()
        return self._over

    def clone(self) -> 'RulesEngine':
        """Copy the engine; the immutable board is shared, not copied."""
        return self.with_player(self._current_player)

    def apply_move(self, column: int) -> MoveResult:
        """
        Drop the current player's disc into a column.

        Args:
            column: The column to play (0-indexed)

        Returns:
            The MoveResult for this move

        Raises:
            SessionOver: If the game already ended
            InvalidMove: If the column is full or out of range
        """
        if self.is_over:
            raise SessionOver()

        player = self._current_player
        new_board = self._board.place(column, player)  # raises InvalidMove

        # The disc just placed is the topmost disc of the column
        row = new_board.top_row(column)
        if row < 0 or new_board.cell(row, column) != player:
            raise InvalidMove(column, "could not be resolved after placement")

        self._board = new_board

        if check_win(new_board, row, column, player):
            result = MoveResult(row, column, GameStatus.WON, player)
            debug.debug(f"Player {player} wins at ({row}, {column})", "rules")
        elif new_board.is_full():
            result = MoveResult(row, column, GameStatus.DRAWN)
            debug.debug("Board full, game drawn", "rules")
        else:
            result = MoveResult(row, column, GameStatus.IN_PROGRESS)
            self._current_player = Player(player).other().value

        self._last_result = result
        return result

    def simulate(self, column: int) -> Optional[Tuple[MoveResult, 'RulesEngine']]:
        """
        Try a move without touching this engine.

        Returns:
            (result, child engine) for a legal move, or None if the move is
            illegal or the game is already over
        """
        if self.is_over or not self._board.is_legal(column):
            return None
        child = self.clone()
        return child.apply_move(column), child

    def with_player(self, player: int) -> 'RulesEngine':
        """Engine over the same board with ``player`` to move (used for threat probing)."""
        engine = RulesEngine(self._board, player)
        engine._last_result = self._last_result
        engine._over = self._over
        return engine

    def status(self) -> GameStatus:
        """Status derived from the board alone (works for recovered positions)."""
        if find_winner(self._board) is not None:
            return GameStatus.WON
        if self._board.is_full():
            return GameStatus.DRAWN
        return GameStatus.IN_PROGRESS

    def winner(self) -> Optional[int]:
        return find_winner(self._board)
