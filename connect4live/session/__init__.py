"""
connect4live.session - Sessions, matchmaking and realtime coordination

This package binds identities to rules engines, pairs waiting identities
(falling back to a bot opponent) and coordinates connected clients.
"""

from connect4live.session.models import Identity, IdentityKind, Session
from connect4live.session.registry import SessionRegistry
from connect4live.session.matchmaking import MatchmakingQueue
from connect4live.session.coordinator import Connection, ConnectionState, RealtimeCoordinator

__all__ = [
    'Connection', 'ConnectionState', 'Identity', 'IdentityKind', 'MatchmakingQueue',
    'RealtimeCoordinator', 'Session', 'SessionRegistry',
]
