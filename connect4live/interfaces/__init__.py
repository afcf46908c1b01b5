"""
connect4live.interfaces - Outer surfaces of the session engine

This package contains the WebSocket server and the command-line interface.
"""

# Don't import anything here; the server pulls in websockets
__all__ = []
