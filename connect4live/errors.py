"""
errors.py - Exception hierarchy for the Connect Four session engine

All errors surfaced to a client derive from Connect4Error and carry a
machine-readable code that is sent along with the ``error`` event.

Usage:
    from connect4live.errors import InvalidMove, NotYourTurn

    try:
        session.make_move(column, identity_id)
    except (InvalidMove, NotYourTurn) as e:
        await connection.send(error_event(e))
"""

from typing import Any, Dict, Optional

__all__ = [
    "Connect4Error",
    "IdentityNotInSession",
    "InvalidMove",
    "NameConflict",
    "NotYourTurn",
    "ProtocolError",
    "SessionNotFound",
    "SessionOver",
]


class Connect4Error(Exception):
    """Base exception for all session engine errors.

    Attributes:
        code: Machine-readable error code for categorization
        message: Human-readable error description
        context: Additional context for debugging
    """
    code: str = "CONNECT4_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
        }


class InvalidMove(Connect4Error):
    """Column out of range or already full. No state was changed."""
    code: str = "INVALID_MOVE"

    def __init__(self, column: Any, reason: str = "column is full or out of bounds"):
        super().__init__(f"Invalid move: column {column} {reason}", context={"column": column})
        self.column = column


class NotYourTurn(Connect4Error):
    code: str = "NOT_YOUR_TURN"

    def __init__(self, identity_id: str, expected_id: str):
        super().__init__("Not your turn", context={"identity": identity_id, "expected": expected_id})


class SessionOver(Connect4Error):
    """Raised when a move is attempted after a win, draw or forfeit."""
    code: str = "SESSION_OVER"

    def __init__(self, session_id: Optional[str] = None):
        context = {"session": session_id} if session_id else None
        super().__init__("Session is already over", context=context)


class SessionNotFound(Connect4Error):
    code: str = "SESSION_NOT_FOUND"

    def __init__(self, session_id: Optional[str]):
        super().__init__(
            "Session not found. It may have expired or does not exist.",
            context={"session": session_id},
        )
        self.session_id = session_id


class IdentityNotInSession(Connect4Error):
    code: str = "IDENTITY_NOT_IN_SESSION"

    def __init__(self, identity: str, session_id: Optional[str] = None):
        super().__init__(
            "You are not a player in this session",
            context={"identity": identity, "session": session_id},
        )


class NameConflict(Connect4Error):
    """A display name is already in use; the server picked ``assigned`` instead."""
    code: str = "NAME_CONFLICT"

    def __init__(self, requested: str, assigned: str):
        super().__init__(
            f'Name "{requested}" is already taken. Using "{assigned}" instead.',
            context={"requested": requested, "assigned": assigned},
        )
        self.requested = requested
        self.assigned = assigned


class ProtocolError(Connect4Error):
    """Malformed or unknown client message."""
    code: str = "PROTOCOL_ERROR"
