"""
connect4live/ai/__init__.py - Bot opponent for Connect Four

This module provides the minimax bot that replaces a missing human opponent.
"""

from connect4live.ai.minimax import BotPlayer

__all__ = ['BotPlayer']
