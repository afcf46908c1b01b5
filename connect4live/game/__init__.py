"""
connect4live.game - Core game mechanics for Connect Four

This package contains the immutable board, win detection and the rules
engine used by sessions and by the bot.
"""

from connect4live.game.board import Board
from connect4live.game.rules import MoveResult, RulesEngine
from connect4live.game.win_checker import check_win, find_winner, winning_line

__all__ = ['Board', 'MoveResult', 'RulesEngine', 'check_win', 'find_winner', 'winning_line']
