"""
minimax.py - Fallback bot opponent for Connect Four

This module provides the BotPlayer that stands in for a missing human. Move
selection is layered, each layer short-circuiting the next:

1. Play an immediate win
2. Block the opponent's immediate win
3. Create a double threat (fork), or occupy the column where the opponent would fork
4. Alpha-beta minimax over the remaining safe columns

The bot only ever returns a legal column. If the search fails it falls back
to a uniformly random legal column so a session never stalls.
"""

import math
import random
from typing import Callable, List, Optional

import numpy as np

from connect4live.debug import debug
from connect4live.errors import SessionOver
from connect4live.game.board import Board
from connect4live.game.rules import RulesEngine
from connect4live.utils import CENTER_COL, Player, GameStatus, WINDOW_INDICES, center_order

WIN_SCORE = 100000
LOSE_SCORE = -100000

# Window scores indexed by the number of one side's discs in a window
# that holds no discs of the other side
OWN_WINDOW_SCORES = np.array([0, 1, 10, 50, 1000], dtype=np.int64)
OPPONENT_WINDOW_SCORES = np.array([0, -1, -15, -80, -1000], dtype=np.int64)
CENTER_DISC_BONUS = 6

DEFAULT_DEPTH = 6


class BotPlayer:
    """
    A Connect Four player combining tactical checks with minimax search.

    This player evaluates positions by searching the game tree up to a specified
    depth, assuming both players play optimally.
    """

    def __init__(self, player: int, depth: int = DEFAULT_DEPTH, rng: Optional[random.Random] = None):
        """
        Initialize the bot.

        Args:
            player: Player number (1 or 2) the bot plays as
            depth: Maximum search depth in plies (higher = stronger but slower)
            rng: Random generator used for the last-resort fallback
        """
        if player not in (Player.ONE.value, Player.TWO.value):
            raise ValueError(f"player must be 1 or 2, got {player}")
        self.player = player
        self.opponent = Player(player).other().value
        self.depth = max(1, depth)
        self.nodes_evaluated = 0  # For performance tracking
        self._rng = rng or random.Random()

    def choose_column(self, engine: RulesEngine) -> int:
        """
        Get the best move for the bot.

        Args:
            engine: Snapshot of the session's rules engine; it is not modified

        Returns:
            The column index of the chosen move

        Raises:
            SessionOver: If the game is over or no column is playable
        """
        legal = engine.board.legal_columns()
        if engine.is_over or not legal:
            raise SessionOver()

        if engine.current_player != self.player:
            debug.warning(f"Bot {self.player} asked to move on player {engine.current_player}'s turn", "bot")
            engine = engine.with_player(self.player)

        self.nodes_evaluated = 0
        timer = f"bot_search_{id(self)}"
        debug.start_timer(timer)
        try:
            column = self._select_column(engine)
        except Exception as e:
            debug.error(f"Bot search failed: {e}", "bot")
            column = None
        finally:
            debug.end_timer(timer, "bot")

        if column is None or column not in legal:
            column = self._rng.choice(legal)
            debug.warning(f"Bot falling back to random column {column}", "bot")

        return column

    def _select_column(self, engine: RulesEngine) -> Optional[int]:
        """Run the selection layers in order; None means nothing was found."""
        ordered = center_order(engine.board.legal_columns())

        wins = self._winning_columns(engine, self.player)
        if wins:
            debug.debug(f"Bot found winning move: column {wins[0]}", "bot")
            return wins[0]

        blocks = self._winning_columns(engine, self.opponent)
        if blocks:
            debug.debug(f"Bot blocking opponent win: column {blocks[0]}", "bot")
            return blocks[0]

        for column in ordered:
            if self._check(column, lambda: self._creates_fork(engine, column, self.player)
                           and not self._hands_opponent_win(engine, column)):
                debug.debug(f"Bot creating double threat: column {column}", "bot")
                return column

        for column in ordered:
            if self._check(column, lambda: self._creates_fork(engine, column, self.opponent)
                           and not self._hands_opponent_win(engine, column)):
                debug.debug(f"Bot occupying opponent fork square: column {column}", "bot")
                return column

        candidates = self._safe_columns(engine, ordered)
        column = self._search_root(engine, candidates)
        debug.debug(f"Bot using minimax result: column {column} "
                    f"({self.nodes_evaluated} nodes)", "bot")
        return column

    @staticmethod
    def _check(column: int, test: Callable[[], bool]) -> bool:
        """Run a per-column test; a test that raises rules the column out."""
        try:
            return bool(test())
        except Exception as e:
            debug.warning(f"Skipping column {column} after heuristic error: {e}", "bot")
            return False

    def _winning_columns(self, engine: RulesEngine, player: int) -> List[int]:
        """Columns where ``player`` would win immediately, center-out."""
        mover = engine if engine.current_player == player else engine.with_player(player)

        def wins_with(column: int) -> bool:
            outcome = mover.simulate(column)
            return outcome is not None and outcome[0].status == GameStatus.WON

        return [column for column in center_order(mover.board.legal_columns())
                if self._check(column, lambda: wins_with(column))]

    def _creates_fork(self, engine: RulesEngine, column: int, player: int) -> bool:
        """
        Check if ``player`` playing ``column`` leaves two or more distinct
        immediate winning follow-ups.
        """
        mover = engine if engine.current_player == player else engine.with_player(player)
        outcome = mover.simulate(column)
        if outcome is None or outcome[0].status.is_game_over():
            return False
        follow_up = outcome[1].with_player(player)
        return len(self._winning_columns(follow_up, player)) >= 2

    def _hands_opponent_win(self, engine: RulesEngine, column: int) -> bool:
        """Check if playing ``column`` lets the opponent win on the next move."""
        outcome = engine.simulate(column)
        if outcome is None or outcome[0].status.is_game_over():
            return False
        return bool(self._winning_columns(outcome[1], self.opponent))

    def _hands_opponent_fork(self, engine: RulesEngine, column: int) -> bool:
        outcome = engine.simulate(column)
        if outcome is None or outcome[0].status.is_game_over():
            return False
        child = outcome[1]
        return any(self._creates_fork(child, reply, self.opponent)
                   for reply in child.board.legal_columns())

    def _safe_columns(self, engine: RulesEngine, ordered: List[int]) -> List[int]:
        """
        Filter out columns that hand the opponent a win or a fork.

        Falls back to the less strict filter, then to every legal column,
        when nothing survives.
        """
        no_immediate_loss = [c for c in ordered
                             if self._check(c, lambda: not self._hands_opponent_win(engine, c))]
        if not no_immediate_loss:
            return ordered

        no_fork = [c for c in no_immediate_loss
                   if self._check(c, lambda: not self._hands_opponent_fork(engine, c))]
        return no_fork or no_immediate_loss

    def _search_root(self, engine: RulesEngine, candidates: List[int]) -> Optional[int]:
        best_score = -math.inf
        best_column = None
        alpha = -math.inf
        beta = math.inf

        for column in center_order(candidates):
            try:
                outcome = engine.simulate(column)
                if outcome is None:
                    continue
                # Next level is the opponent, who minimizes
                score = self._minimax(outcome[1], self.depth - 1, alpha, beta, False)
            except Exception as e:
                debug.warning(f"Skipping column {column} after search error: {e}", "bot")
                continue

            if score > best_score:
                best_score = score
                best_column = column
            alpha = max(alpha, score)

        return best_column

    def _minimax(self, engine: RulesEngine, depth: int, alpha: float, beta: float,
                 is_maximizing: bool) -> float:
        """
        Minimax algorithm with alpha-beta pruning.

        Args:
            engine: Position to score
            depth: Remaining search depth
            alpha: Best score the maximizer can guarantee
            beta: Best score the minimizer can guarantee
            is_maximizing: True if the bot is to move at this node

        Returns:
            The evaluation score for this position from the bot's point of view
        """
        self.nodes_evaluated += 1

        last = engine.last_result
        if last is not None and last.status == GameStatus.WON:
            # Prefer faster wins and slower losses
            if last.winner == self.player:
                return WIN_SCORE + depth
            return LOSE_SCORE - depth
        if last is not None and last.status == GameStatus.DRAWN:
            return 0

        legal = engine.board.legal_columns()
        if depth == 0 or not legal:
            return self.evaluate(engine.board)

        if is_maximizing:
            max_score = -math.inf
            for column in center_order(legal):
                outcome = engine.simulate(column)
                if outcome is None:
                    continue
                score = self._minimax(outcome[1], depth - 1, alpha, beta, False)
                max_score = max(max_score, score)
                alpha = max(alpha, score)
                # Beta cutoff
                if beta <= alpha:
                    break
            return max_score

        min_score = math.inf
        for column in center_order(legal):
            outcome = engine.simulate(column)
            if outcome is None:
                continue
            score = self._minimax(outcome[1], depth - 1, alpha, beta, True)
            min_score = min(min_score, score)
            beta = min(beta, score)
            # Alpha cutoff
            if beta <= alpha:
                break
        return min_score

    def evaluate(self, board: Board) -> float:
        """
        Heuristic evaluation of a board position.

        Every four-cell window is scored: windows holding only the bot's discs
        score positively by disc count, windows holding only the opponent's
        discs score negatively, mixed windows are dead and score 0. Bot discs
        in the center column earn a bonus.

        Args:
            board: The board to evaluate

        Returns:
            A score representing how good the position is for the bot
        """
        grid = board.grid
        cells = grid.ravel()[WINDOW_INDICES]
        mine = np.count_nonzero(cells == self.player, axis=1)
        theirs = np.count_nonzero(cells == self.opponent, axis=1)

        score = OWN_WINDOW_SCORES[mine[theirs == 0]].sum()
        score += OPPONENT_WINDOW_SCORES[theirs[mine == 0]].sum()
        score += CENTER_DISC_BONUS * np.count_nonzero(grid[:, CENTER_COL] == self.player)

        return float(score)
