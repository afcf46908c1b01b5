"""
connect4live - Real-time Connect Four session engine

This package provides the rules engine, the fallback bot opponent,
matchmaking and the realtime coordinator that runs two-player
Connect Four sessions over persistent WebSocket connections.
"""

# Version number
__version__ = '0.1.0'
