"""
coordinator.py - Realtime coordination of connections and sessions

This module provides:
1. Connection, the transport-facing interface the coordinator sends events to
2. RealtimeCoordinator, which routes client intents, serializes turns per
   session, drives bot opponents and enforces the disconnect/forfeit window

Client intents (JSON objects with a "type" field):
    create-session {identityName}
    join-session   {identityName, sessionId?}
    make-move      {sessionId, column}
    reconnect      {identityName, sessionId?}
"""

import asyncio
import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from connect4live.ai.minimax import BotPlayer
from connect4live.config import ServerConfig
from connect4live.data import analytics as events
from connect4live.data.analytics import AnalyticsSink
from connect4live.data.data_manager import DataManager
from connect4live.debug import debug
from connect4live.errors import (
    Connect4Error, IdentityNotInSession, NameConflict, ProtocolError, SessionNotFound, SessionOver,
)
from connect4live.game.rules import MoveResult
from connect4live.session.matchmaking import MatchmakingQueue
from connect4live.session.models import Identity, Session, utc_now
from connect4live.session.registry import SessionRegistry


class Connection:
    """One client connection. Transports subclass this and implement send()."""

    def __init__(self, connection_id: Optional[str] = None):
        self.connection_id = connection_id or str(uuid.uuid4())

    async def send(self, event: Dict[str, Any]) -> None:
        raise NotImplementedError


class ConnectionState(Enum):
    UNBOUND = "unbound"
    QUEUED = "queued"
    IN_SESSION = "in_session"
    DISCONNECTED = "disconnected"


@dataclass
class ConnectionBinding:
    """What a connection is bound to: its identity and its session, if any."""
    connection: Connection
    identity: Identity
    state: ConnectionState = ConnectionState.UNBOUND
    session_id: Optional[str] = None
    disconnected_at: Optional[datetime] = None
    forfeit_task: Optional[asyncio.Task] = None

    def cancel_forfeit(self):
        if self.forfeit_task is not None and not self.forfeit_task.done():
            self.forfeit_task.cancel()
        self.forfeit_task = None


Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


def error_event(error: Connect4Error) -> Dict[str, Any]:
    event = {"type": "error"}
    event.update(error.to_dict())
    return event


class RealtimeCoordinator:
    """
    Routes client intents to matchmaking and sessions.

    Turn mutations of a session happen only under that session's lock from
    the registry. Matchmaking state is guarded by the queue's own lock. Timers
    (fallback, forfeit, removal of finished sessions) are asyncio tasks that
    re-check state under the relevant lock when they fire.
    """

    def __init__(self, config: Optional[ServerConfig] = None,
                 registry: Optional[SessionRegistry] = None,
                 queue: Optional[MatchmakingQueue] = None,
                 data_manager: Optional[DataManager] = None,
                 analytics: Optional[AnalyticsSink] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize the coordinator.

        Args:
            config: Timing and bot settings (defaults when omitted)
            registry: Session registry (a fresh one when omitted)
            queue: Matchmaking queue (built over the registry when omitted)
            data_manager: Persistence collaborator, optional
            analytics: Analytics sink, optional
            rng: Random generator handed to bots
        """
        self.config = config or ServerConfig()
        self.registry = registry or SessionRegistry()
        self.queue = queue or MatchmakingQueue(self.registry, self.config.fallback_delay)
        self.queue.set_on_session_created(self._on_session_created)
        self.data_manager = data_manager
        self.analytics = analytics or AnalyticsSink()
        self._rng = rng or random.Random()

        self._bindings: Dict[str, ConnectionBinding] = {}       # connection_id -> binding
        self._identity_connections: Dict[str, str] = {}         # identity_id -> connection_id
        self._active_names: Dict[str, str] = {}                 # name -> connection_id
        self._tasks: Set[asyncio.Task] = set()
        self._sweep_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Handler] = {
            "create-session": self.handle_create_session,
            "join-session": self.handle_join_session,
            "make-move": self.handle_make_move,
            "reconnect": self.handle_reconnect,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the stale-session sweep loop."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            debug.info("Coordinator started", "coordinator")

    async def close(self) -> None:
        """Cancel every timer and background task."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None

        self.queue.close()
        for binding in self._bindings.values():
            binding.cancel_forfeit()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        debug.info("Coordinator stopped", "coordinator")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            for session_id in self.registry.sweep_stale(self.config.stale_session_minutes):
                self._release_session_bindings(session_id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, connection: Connection, message: Any) -> None:
        """
        Route one inbound message to its handler.

        Connect4Error subclasses become ``error`` events for the acting
        connection. Anything else is logged and reported generically.
        """
        try:
            if not isinstance(message, dict):
                raise ProtocolError("Message must be a JSON object")
            handler = self._handlers.get(message.get("type"))
            if handler is None:
                raise ProtocolError(f"Unknown message type: {message.get('type')!r}")
            await handler(connection, message)
        except Connect4Error as e:
            debug.debug(f"Rejected {connection.connection_id}: {e}", "coordinator")
            await self._send(connection, error_event(e))
        except Exception as e:
            debug.error(f"Error handling message from {connection.connection_id}: {e}", "coordinator")
            await self._send(connection, {"type": "error", "code": "INTERNAL_ERROR",
                                          "message": "Failed to process request"})

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def handle_create_session(self, connection: Connection, message: Dict[str, Any]) -> None:
        """Wait for an opponent under a fresh session id; a bot joins after the fallback delay."""
        self._ensure_unbound(connection)
        identity = await self._claim_identity(connection, message.get("identityName"))
        session_id = str(uuid.uuid4())

        binding = self._bind(connection, identity, ConnectionState.QUEUED, session_id)
        await self._send(connection, {
            "type": "session-created",
            "sessionId": session_id,
            "waiting": True,
            "fallbackDelayMs": self.config.fallback_delay_ms,
        })

        await self.queue.enqueue(identity, session_id)
        if binding.state == ConnectionState.QUEUED:
            await self.queue.arm_fallback(identity.id)
        debug.info(f"{identity.name} created session {session_id}", "coordinator")

    async def handle_join_session(self, connection: Connection, message: Dict[str, Any]) -> None:
        """Join by session id, or enter the FIFO queue when no id is given."""
        session_id = message.get("sessionId")
        if not session_id:
            await self._join_queue(connection, message.get("identityName"))
            return

        name = self._require_name(message.get("identityName"))

        session = self.registry.get(session_id)
        if session is None and self.queue.find_waiting_by_session_id(session_id) is not None:
            self._ensure_unbound(connection)
            identity = await self._claim_identity(connection, name)
            self._bind(connection, identity, ConnectionState.QUEUED, session_id)
            try:
                await self.queue.join_by_session_id(session_id, identity)
            except SessionNotFound:
                # The host was matched or fell back to a bot in the meantime
                self._unbind(connection)
                raise
            return

        if session is None:
            session = await self._lookup_session(session_id)

        identity = session.identity_by_name(name)
        if identity is None or identity.is_bot:
            raise IdentityNotInSession(name, session_id)
        await self._rebind(connection, session, identity)

    async def _join_queue(self, connection: Connection, name: Any) -> None:
        self._ensure_unbound(connection)
        identity = await self._claim_identity(connection, name)
        self._bind(connection, identity, ConnectionState.QUEUED)
        await self._send(connection, {
            "type": "session-created",
            "sessionId": None,
            "waiting": True,
            "fallbackDelayMs": self.config.fallback_delay_ms,
        })
        await self.queue.enqueue(identity)
        debug.info(f"{identity.name} joined matchmaking", "coordinator")

    async def handle_make_move(self, connection: Connection, message: Dict[str, Any]) -> None:
        """Apply a human move under the session lock and broadcast it."""
        binding = self._bindings.get(connection.connection_id)
        if binding is None:
            raise ProtocolError("Join a session before making moves")

        column = message.get("column")
        session_id = message.get("sessionId") or binding.session_id
        session = self.registry.get(session_id)
        if session is None or not session.has_identity(binding.identity.id):
            session = self.registry.find_by_identity(binding.identity.id)
        if session is None:
            session = await self._lookup_session(session_id)

        async with self.registry.lock_for(session.id):
            result = session.make_move(column, binding.identity.id)
            self.registry.update(session)
            binding.session_id = session.id
            await self._after_move(session, binding.identity, result)

        if not session.is_over and session.current_identity.is_bot:
            self._spawn(self._drive_bot(session.id))

    async def handle_reconnect(self, connection: Connection, message: Dict[str, Any]) -> None:
        """Rebind a returning participant to its session within the reconnection window."""
        name = self._require_name(message.get("identityName"))
        session_id = message.get("sessionId")

        if session_id:
            session = await self._lookup_session(session_id)
        else:
            session = self._find_session_by_name(name)
            if session is None:
                raise SessionNotFound(None)

        identity = session.identity_by_name(name)
        if identity is None or identity.is_bot:
            raise IdentityNotInSession(name, session.id)
        await self._rebind(connection, session, identity)

    async def handle_disconnect(self, connection: Connection) -> None:
        """
        Handle transport loss.

        A queued identity leaves the queue. An identity in a live session
        keeps its seat for the reconnection window, after which it forfeits.
        """
        binding = self._bindings.get(connection.connection_id)
        if binding is None:
            return

        identity = binding.identity
        if binding.state == ConnectionState.QUEUED:
            await self.queue.dequeue(identity.id)
            self._unbind(connection)
            debug.info(f"{identity.name} left the queue", "coordinator")
            return

        session = self.registry.get(binding.session_id)
        if binding.state != ConnectionState.IN_SESSION or session is None or session.is_over:
            self._unbind(connection)
            return

        # The name stays reserved for the seat until it is reclaimed or forfeited
        binding.state = ConnectionState.DISCONNECTED
        binding.disconnected_at = utc_now()
        binding.forfeit_task = self._spawn(
            self._forfeit_after(connection.connection_id, session.id, self.config.reconnect_window))

        await self._broadcast(session, {"type": "opponent-disconnected", "identityId": identity.id},
                              exclude=identity.id)
        self._emit(events.IDENTITY_DISCONNECTED, session.id, identity.id)
        debug.info(f"{identity.name} disconnected from session {session.id}", "coordinator")

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _on_session_created(self, session: Session) -> None:
        """Bind both participants and send them the initial state."""
        for identity in session.identities:
            binding = self._binding_for_identity(identity.id)
            if binding is None:
                continue
            binding.state = ConnectionState.IN_SESSION
            binding.session_id = session.id

        await self._broadcast(session, {"type": "session-update", "session": session.to_dict()})
        self._emit(events.SESSION_STARTED, session.id, session.first.id, {
            "first": session.first.to_dict(),
            "second": session.second.to_dict(),
        })
        debug.info(f"Session {session.id} started: {session.first.name} vs {session.second.name}",
                   "coordinator")

        if session.current_identity.is_bot:
            self._spawn(self._drive_bot(session.id))

    async def _after_move(self, session: Session, mover: Identity, result: MoveResult) -> None:
        """Broadcast a move; finish the session when it ended. Caller holds the session lock."""
        await self._broadcast(session, {
            "type": "move-applied",
            "sessionId": session.id,
            "identityId": mover.id,
            "column": result.column,
            "row": result.row,
            "session": session.to_dict(),
        })
        self._emit(events.MOVE_MADE, session.id, mover.id, {"column": result.column, "row": result.row})

        if session.is_over:
            await self._finish_session(session)

    async def _drive_bot(self, session_id: str) -> None:
        """Play bot moves while a bot is to move in the session."""
        while True:
            if self.config.bot_move_delay > 0:
                await asyncio.sleep(self.config.bot_move_delay)

            session = self.registry.get(session_id)
            if session is None or session.is_over or not session.current_identity.is_bot:
                return

            bot_identity = session.current_identity
            snapshot = session.engine.clone()
            bot = BotPlayer(snapshot.current_player, depth=self.config.bot_depth, rng=self._rng)
            try:
                column = await asyncio.to_thread(bot.choose_column, snapshot)
            except Exception as e:
                debug.error(f"Bot move failed in session {session_id}: {e}", "coordinator")
                legal = snapshot.board.legal_columns()
                if not legal:
                    return
                column = self._rng.choice(legal)
                debug.warning(f"Bot using fallback column {column}", "coordinator")

            async with self.registry.lock_for(session_id):
                current = self.registry.get(session_id)
                # The position may have moved on while the bot was thinking
                if (current is not session or session.is_over
                        or session.current_identity.id != bot_identity.id
                        or session.engine.board != snapshot.board):
                    debug.debug(f"Discarding stale bot move for session {session_id}", "coordinator")
                    return

                result = session.make_move(column, bot_identity.id)
                self.registry.update(session)
                debug.info(f"Bot played column {column} in session {session_id}", "coordinator")
                await self._after_move(session, bot_identity, result)

            if session.is_over:
                return

    async def _finish_session(self, session: Session) -> None:
        """Announce a terminal session, persist it and schedule its removal."""
        winner = session.winner
        payload = session.to_dict()
        await self._broadcast(session, {
            "type": "session-over",
            "session": payload,
            "winner": winner.to_dict() if winner else None,
            "forfeit": session.forfeit,
        })

        for identity in session.identities:
            binding = self._binding_for_identity(identity.id)
            if binding is not None and binding.state == ConnectionState.DISCONNECTED:
                binding.cancel_forfeit()
                self._unbind(binding.connection)

        self._emit(events.SESSION_COMPLETED, session.id, winner.id if winner else None, {
            "status": payload["status"],
            "forfeit": session.forfeit,
            "moves": len(session.moves),
        })
        if self.data_manager is not None:
            self._spawn(self._persist(payload))
        self._spawn(self._remove_later(session))

        debug.info(f"Session {session.id} over: {payload['status']}, "
                   f"winner {winner.name if winner else 'none'}", "coordinator")

    async def _persist(self, payload: Dict[str, Any]) -> None:
        try:
            ok = await asyncio.to_thread(self.data_manager.record_completed_session, payload)
        except Exception as e:
            debug.error(f"Failed to persist session {payload['id']}: {e}", "coordinator")
            return
        if not ok:
            debug.warning(f"Session {payload['id']} was not persisted", "coordinator")

    async def _remove_later(self, session: Session) -> None:
        await asyncio.sleep(self.config.finished_session_ttl)
        if self.registry.get(session.id) is session:
            self.registry.remove(session.id)
            self._release_session_bindings(session.id)

    async def _forfeit_after(self, connection_id: str, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self.registry.lock_for(session_id):
            binding = self._bindings.get(connection_id)
            if (binding is None or binding.state != ConnectionState.DISCONNECTED
                    or binding.forfeit_task is not asyncio.current_task()):
                return
            binding.forfeit_task = None
            session = self.registry.get(session_id)
            if session is None or session.is_over:
                self._unbind(binding.connection)
                return
            await self._forfeit(session, binding.identity)

    async def _forfeit(self, session: Session, loser: Identity) -> None:
        """End a session in favour of the opponent of ``loser``. Caller holds the session lock."""
        winner = session.finish_by_forfeit(loser.id)
        self.registry.update(session)
        debug.info(f"{loser.name} forfeited session {session.id}, {winner.name} wins", "coordinator")
        await self._finish_session(session)

    # ------------------------------------------------------------------
    # Connection bookkeeping
    # ------------------------------------------------------------------

    async def _rebind(self, connection: Connection, session: Session, identity: Identity) -> None:
        """Attach a connection to an existing seat, replacing any previous connection."""
        async with self.registry.lock_for(session.id):
            previous = self._binding_for_identity(identity.id)
            if previous is not None and previous.connection is not connection:
                if (previous.state == ConnectionState.DISCONNECTED
                        and previous.disconnected_at is not None and not session.is_over):
                    away = (utc_now() - previous.disconnected_at).total_seconds()
                    if away > self.config.reconnect_window:
                        previous.cancel_forfeit()
                        await self._forfeit(session, identity)
                        raise SessionOver(session.id)
                previous.cancel_forfeit()
                self._unbind(previous.connection)

            current = self._bindings.get(connection.connection_id)
            if current is not None and current.identity.id != identity.id:
                self._ensure_unbound(connection)
            if self.is_name_taken(identity.name, connection.connection_id):
                raise ProtocolError(f"{identity.name} is in use by another connection")

            self._take_name(identity.name, connection)
            self._bind(connection, identity, ConnectionState.IN_SESSION, session.id)

            await self._send(connection, {"type": "session-update", "session": session.to_dict()})
            await self._broadcast(session, {"type": "opponent-reconnected", "identityId": identity.id},
                                  exclude=identity.id)
        debug.info(f"{identity.name} reconnected to session {session.id}", "coordinator")

        if not session.is_over and session.current_identity.is_bot:
            self._spawn(self._drive_bot(session.id))

    def _bind(self, connection: Connection, identity: Identity, state: ConnectionState,
              session_id: Optional[str] = None) -> ConnectionBinding:
        binding = ConnectionBinding(connection, identity, state, session_id)
        self._bindings[connection.connection_id] = binding
        self._identity_connections[identity.id] = connection.connection_id
        return binding

    def _unbind(self, connection: Connection) -> None:
        binding = self._bindings.pop(connection.connection_id, None)
        if binding is None:
            return
        binding.cancel_forfeit()
        self._free_name(binding.identity.name, connection.connection_id)
        if self._identity_connections.get(binding.identity.id) == connection.connection_id:
            del self._identity_connections[binding.identity.id]

    def _binding_for_identity(self, identity_id: str) -> Optional[ConnectionBinding]:
        connection_id = self._identity_connections.get(identity_id)
        return self._bindings.get(connection_id) if connection_id else None

    def binding_for(self, connection: Connection) -> Optional[ConnectionBinding]:
        return self._bindings.get(connection.connection_id)

    def _ensure_unbound(self, connection: Connection) -> None:
        """Refuse a new join while the connection is queued or in a live session."""
        binding = self._bindings.get(connection.connection_id)
        if binding is None:
            return
        if binding.state == ConnectionState.QUEUED:
            raise ProtocolError("Already waiting for an opponent")
        session = self.registry.get(binding.session_id)
        if binding.state == ConnectionState.IN_SESSION and session is not None and not session.is_over:
            raise ProtocolError("Already playing in a session")
        self._unbind(connection)

    def _release_session_bindings(self, session_id: str) -> None:
        for binding in list(self._bindings.values()):
            if binding.session_id == session_id and binding.state != ConnectionState.QUEUED:
                if binding.state == ConnectionState.DISCONNECTED:
                    self._unbind(binding.connection)
                else:
                    binding.state = ConnectionState.UNBOUND

    def _find_session_by_name(self, name: str) -> Optional[Session]:
        for session in self.registry.active_sessions():
            identity = session.identity_by_name(name)
            if identity is not None and not identity.is_bot:
                return session
        return None

    async def _lookup_session(self, session_id: Optional[str]) -> Session:
        """Fetch a session, retrying once after a short delay."""
        session = self.registry.get(session_id)
        if session is None:
            debug.debug(f"Session {session_id} not found, retrying", "coordinator")
            await asyncio.sleep(self.config.lookup_retry_delay)
            session = self.registry.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    @staticmethod
    def _require_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ProtocolError("identityName is required")
        return name.strip()

    def is_name_taken(self, name: str, exclude_connection_id: Optional[str] = None) -> bool:
        connection_id = self._active_names.get(name)
        if connection_id is None or connection_id == exclude_connection_id:
            return False
        if connection_id not in self._bindings:
            del self._active_names[name]
            return False
        return True

    def _unique_name(self, base: str) -> str:
        counter = 1
        while self.is_name_taken(f"{base}{counter}"):
            counter += 1
        return f"{base}{counter}"

    def _take_name(self, name: str, connection: Connection) -> None:
        self._active_names[name] = connection.connection_id

    def _free_name(self, name: str, connection_id: str) -> None:
        if self._active_names.get(name) == connection_id:
            del self._active_names[name]

    async def _claim_identity(self, connection: Connection, requested: Any) -> Identity:
        """Create a human identity, disambiguating the name if it is in use."""
        name = self._require_name(requested)
        if self.is_name_taken(name, connection.connection_id):
            conflict = NameConflict(name, self._unique_name(name))
            debug.info(str(conflict), "coordinator")
            await self._send(connection, {
                "type": "name-taken",
                "requested": conflict.requested,
                "assigned": conflict.assigned,
                "message": conflict.message,
            })
            name = conflict.assigned

        identity = Identity.human(name)
        self._take_name(name, connection)
        if self.data_manager is not None:
            self._spawn(self._store_identity(identity))
        return identity

    async def _store_identity(self, identity: Identity) -> None:
        try:
            await asyncio.to_thread(self.data_manager.upsert_identity, identity.id, identity.name,
                                    identity.kind.value)
        except Exception as e:
            debug.warning(f"Failed to store identity {identity.name}: {e}", "coordinator")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send(self, connection: Connection, event: Dict[str, Any]) -> bool:
        try:
            await connection.send(event)
            return True
        except Exception as e:
            debug.warning(f"Send to {connection.connection_id} failed: {e}", "coordinator")
            return False

    async def _broadcast(self, session: Session, event: Dict[str, Any],
                         exclude: Optional[str] = None) -> None:
        """Send an event to every connected participant of a session."""
        for connection in self._connections_for(session.identities, exclude):
            await self._send(connection, event)

    def _connections_for(self, identities: Iterable[Identity], exclude: Optional[str]):
        for identity in identities:
            if identity.id == exclude or identity.is_bot:
                continue
            binding = self._binding_for_identity(identity.id)
            if binding is not None and binding.state != ConnectionState.DISCONNECTED:
                yield binding.connection

    def _emit(self, event_type: str, session_id: Optional[str], identity_id: Optional[str] = None,
              data: Optional[Dict[str, Any]] = None) -> None:
        if not self.analytics.enabled:
            return
        self._spawn(self._emit_async(event_type, session_id, identity_id, data))

    async def _emit_async(self, event_type: str, session_id: Optional[str],
                          identity_id: Optional[str], data: Optional[Dict[str, Any]]) -> None:
        try:
            await asyncio.to_thread(self.analytics.emit, event_type, session_id, identity_id, data)
        except Exception as e:
            debug.warning(f"Analytics event {event_type} dropped: {e}", "coordinator")
