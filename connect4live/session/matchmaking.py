"""
matchmaking.py - Matchmaking queue with fallback bot opponents

Waiting identities are paired first-come first-served. An identity left
alone too long gets a bot opponent when its fallback timer fires. Hosts of
direct invites wait under a pre-assigned session id until someone joins by
that id.
"""

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from connect4live.debug import debug
from connect4live.errors import SessionNotFound
from connect4live.session.models import Identity, Session, utc_now
from connect4live.session.registry import SessionRegistry

MatchCallback = Callable[[Session], Awaitable[None]]

DEFAULT_FALLBACK_DELAY = 10.0


@dataclass
class QueueEntry:
    """One waiting identity."""
    identity: Identity
    enqueued_at: datetime
    session_id: Optional[str] = None
    on_match: Optional[MatchCallback] = None
    fallback_task: Optional[asyncio.Task] = None

    def cancel_fallback(self):
        if self.fallback_task is not None and not self.fallback_task.done():
            self.fallback_task.cancel()
        self.fallback_task = None


class MatchmakingQueue:
    """
    FIFO matchmaking queue.

    Every mutation (pairing, dequeue, direct join, fallback firing) runs under
    one asyncio.Lock, so a waiting identity can never be paired twice.
    Match notifications run after the lock is released.
    """

    def __init__(self, registry: SessionRegistry,
                 fallback_delay: float = DEFAULT_FALLBACK_DELAY,
                 on_session_created: Optional[MatchCallback] = None,
                 bot_factory: Callable[[], Identity] = Identity.bot):
        """
        Initialize the queue.

        Args:
            registry: Registry new sessions are created in
            fallback_delay: Seconds before a lone identity gets a bot opponent
            on_session_created: Coroutine called with every session this queue creates
            bot_factory: Builds the bot identity for fallback sessions
        """
        self._registry = registry
        self._fallback_delay = fallback_delay
        self._on_session_created = on_session_created
        self._bot_factory = bot_factory
        self._entries: "OrderedDict[str, QueueEntry]" = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def fallback_delay(self) -> float:
        return self._fallback_delay

    def set_on_session_created(self, callback: Optional[MatchCallback]) -> None:
        self._on_session_created = callback

    async def enqueue(self, identity: Identity, session_id: Optional[str] = None,
                      on_match: Optional[MatchCallback] = None) -> bool:
        """
        Add an identity to the queue and try to pair it.

        Args:
            identity: The waiting identity
            session_id: Pre-assigned session id for direct invites
            on_match: Coroutine called with the session once this entry is matched

        Returns:
            False if the identity was already queued, True otherwise
        """
        session = None
        matched: List[QueueEntry] = []

        async with self._lock:
            if identity.id in self._entries:
                debug.debug(f"Identity already in queue: {identity.name}", "matchmaking")
                return False

            entry = QueueEntry(identity, utc_now(), session_id, on_match)
            self._entries[identity.id] = entry
            debug.info(f"Identity queued: {identity.name} (queue size {len(self._entries)})", "matchmaking")

            pair = self._take_pair()
            if pair is not None:
                matched = list(pair)
                session = self._start_session(*pair)
            elif session_id is None:
                entry.fallback_task = self._arm(entry, self._fallback_delay)

        if session is not None:
            await self._notify(session, matched)
        return True

    async def dequeue(self, identity_id: str) -> bool:
        """
        Remove an identity and cancel its fallback timer.

        Returns:
            True if the identity was queued
        """
        async with self._lock:
            entry = self._entries.pop(identity_id, None)
            if entry is None:
                return False
            entry.cancel_fallback()

        debug.info(f"Identity removed from queue: {entry.identity.name}", "matchmaking")
        return True

    async def arm_fallback(self, identity_id: str, delay: Optional[float] = None) -> bool:
        """
        (Re)arm the fallback timer of a queued identity.

        Used for invite hosts, which are not armed automatically.

        Returns:
            False if the identity is no longer queued
        """
        async with self._lock:
            entry = self._entries.get(identity_id)
            if entry is None:
                return False
            entry.cancel_fallback()
            entry.fallback_task = self._arm(entry, self._fallback_delay if delay is None else delay)
            return True

    async def join_by_session_id(self, session_id: str, identity: Identity) -> Session:
        """
        Start an invited session immediately, bypassing FIFO pairing.

        Args:
            session_id: Id the host is waiting under
            identity: The joining identity

        Returns:
            The new Session with the host moving first

        Raises:
            SessionNotFound: If nobody waits under that id
            ValueError: If the host tries to join its own session
        """
        async with self._lock:
            host = self._find_by_session_id(session_id)
            if host is None:
                raise SessionNotFound(session_id)
            if host.identity.id == identity.id:
                raise ValueError("Cannot join your own session")

            del self._entries[host.identity.id]
            host.cancel_fallback()

            joiner = self._entries.pop(identity.id, None)
            if joiner is not None:
                joiner.cancel_fallback()

            session = self._registry.create(host.identity, identity, session_id)
            debug.info(f"{identity.name} joined {host.identity.name} by session id {session_id}", "matchmaking")

        await self._notify(session, [host] + ([joiner] if joiner else []))
        return session

    def find_waiting_by_session_id(self, session_id: str) -> Optional[QueueEntry]:
        return self._find_by_session_id(session_id)

    def is_queued(self, identity_id: str) -> bool:
        return identity_id in self._entries

    def entries(self) -> List[QueueEntry]:
        return list(self._entries.values())

    def close(self) -> None:
        """Cancel every pending fallback timer."""
        for entry in self._entries.values():
            entry.cancel_fallback()

    def __len__(self) -> int:
        return len(self._entries)

    # Helpers below must be called with self._lock held

    def _find_by_session_id(self, session_id: str) -> Optional[QueueEntry]:
        for entry in self._entries.values():
            if entry.session_id == session_id:
                return entry
        return None

    def _take_pair(self) -> Optional[Tuple[QueueEntry, QueueEntry]]:
        """Pop the two longest-waiting entries, cancelling their timers."""
        if len(self._entries) < 2:
            return None

        _, first = self._entries.popitem(last=False)
        _, second = self._entries.popitem(last=False)
        first.cancel_fallback()
        second.cancel_fallback()

        debug.info(f"Match found: {first.identity.name} vs {second.identity.name}", "matchmaking")
        return first, second

    def _start_session(self, first: QueueEntry, second: QueueEntry) -> Session:
        session_id = first.session_id or second.session_id or str(uuid.uuid4())
        return self._registry.create(first.identity, second.identity, session_id)

    def _arm(self, entry: QueueEntry, delay: float) -> asyncio.Task:
        debug.debug(f"Fallback armed for {entry.identity.name} in {delay}s", "matchmaking")
        return asyncio.create_task(self._fallback_after(entry.identity.id, delay))

    async def _fallback_after(self, identity_id: str, delay: float) -> None:
        await asyncio.sleep(delay)

        async with self._lock:
            entry = self._entries.get(identity_id)
            # A newer timer or a match may have superseded this one
            if entry is None or entry.fallback_task is not asyncio.current_task():
                debug.debug(f"Fallback for {identity_id} no longer applies", "matchmaking")
                return

            del self._entries[identity_id]
            entry.fallback_task = None
            bot = self._bot_factory()
            session = self._registry.create(entry.identity, bot, entry.session_id or str(uuid.uuid4()))
            debug.info(f"Starting bot session for {entry.identity.name}", "matchmaking")

        await self._notify(session, [entry])

    async def _notify(self, session: Session, entries: List[QueueEntry]) -> None:
        for entry in entries:
            if entry.on_match is None:
                continue
            try:
                await entry.on_match(session)
            except Exception as e:
                debug.error(f"Match callback failed for {entry.identity.name}: {e}", "matchmaking")

        if self._on_session_created is not None:
            try:
                await self._on_session_created(session)
            except Exception as e:
                debug.error(f"Session-created handler failed for {session.id}: {e}", "matchmaking")
