"""
registry.py - Registry of live sessions

The registry indexes sessions by id and by participant, hands out one
asyncio.Lock per session so turn mutations are serialized per session, and
sweeps sessions orphaned by players who never came back.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from connect4live.debug import debug
from connect4live.session.models import Identity, Session, utc_now


class SessionRegistry:
    """In-memory map of live sessions."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._by_identity: Dict[str, str] = {}  # identity_id -> session_id
        self._locks: Dict[str, asyncio.Lock] = {}  # session_id -> turn lock

    def create(self, first: Identity, second: Identity, session_id: str) -> Session:
        """
        Construct and index a session.

        Args:
            first: Identity moving first
            second: Identity moving second
            session_id: Id for the new session

        Returns:
            The new Session

        Raises:
            ValueError: If the id is already in use
        """
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already exists")

        session = Session(session_id, first, second)
        self._sessions[session_id] = session
        self._by_identity[first.id] = session_id
        self._by_identity[second.id] = session_id
        self._locks[session_id] = asyncio.Lock()

        debug.info(f"Session created: {session_id} ({first.name} vs {second.name})", "registry")
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    def find_by_identity(self, identity_id: str) -> Optional[Session]:
        session_id = self._by_identity.get(identity_id)
        return self._sessions.get(session_id) if session_id else None

    def update(self, session: Session) -> None:
        """Store a session under its id, re-indexing its identities."""
        self._sessions[session.id] = session
        self._by_identity[session.first.id] = session.id
        self._by_identity[session.second.id] = session.id
        self._locks.setdefault(session.id, asyncio.Lock())
        debug.trace(f"Session updated: {session.id}", "registry")

    def remove(self, session_id: str) -> Optional[Session]:
        """Remove a session and de-index both identities."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None

        for identity in session.identities:
            if self._by_identity.get(identity.id) == session_id:
                del self._by_identity[identity.id]
        self._locks.pop(session_id, None)

        debug.info(f"Session removed: {session_id}", "registry")
        return session

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """
        Lock serializing turn mutations of one session.

        A lock is created on demand so callers never race a removal.
        """
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            if session_id in self._sessions:
                self._locks[session_id] = lock
        return lock

    def active_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def sweep_stale(self, max_age_minutes: float = 60, now: Optional[datetime] = None) -> List[str]:
        """
        Remove in-progress sessions whose last move is older than the bound.

        Args:
            max_age_minutes: Age bound measured from the last move
            now: Reference time (defaults to the current UTC time)

        Returns:
            Ids of the removed sessions
        """
        now = now or utc_now()
        cutoff = now - timedelta(minutes=max_age_minutes)
        stale = [s.id for s in self._sessions.values()
                 if not s.is_over and s.last_move_at < cutoff]

        for session_id in stale:
            self.remove(session_id)
            debug.info(f"Stale session cleaned up: {session_id}", "registry")

        return stale

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
