"""
server.py - WebSocket transport for the session engine

Each socket becomes a WebSocketConnection. Text frames carry JSON objects
that are routed through RealtimeCoordinator.dispatch; the coordinator is
told about the disconnect when the socket closes.
"""

import asyncio
import json
import signal
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from connect4live.config import ServerConfig
from connect4live.data.analytics import AnalyticsSink, EventLogAnalytics
from connect4live.data.data_manager import DataManager
from connect4live.debug import debug
from connect4live.errors import ProtocolError
from connect4live.session.coordinator import Connection, RealtimeCoordinator, error_event


class WebSocketConnection(Connection):
    """Connection backed by one websockets connection."""

    def __init__(self, websocket):
        super().__init__()
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        await self.websocket.send(json.dumps(event))

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.connection_id})"


def decode_message(raw: Any) -> Dict[str, Any]:
    """
    Decode one inbound frame.

    Raises:
        ProtocolError: If the frame is binary, not JSON or not a JSON object
    """
    if isinstance(raw, bytes):
        raise ProtocolError("Binary frames are not supported")
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed JSON: {e.msg}") from e
    if not isinstance(message, dict):
        raise ProtocolError("Message must be a JSON object")
    return message


class GameServer:
    """WebSocket server wiring sockets to a RealtimeCoordinator."""

    def __init__(self, config: Optional[ServerConfig] = None,
                 coordinator: Optional[RealtimeCoordinator] = None):
        self.config = config or ServerConfig()
        self.coordinator = coordinator or build_coordinator(self.config)

    async def handle_socket(self, websocket) -> None:
        """Serve one socket until it closes."""
        connection = WebSocketConnection(websocket)
        debug.info(f"Client connected: {connection.connection_id}", "server")
        try:
            async for raw in websocket:
                try:
                    message = decode_message(raw)
                except ProtocolError as e:
                    await connection.send(error_event(e))
                    continue
                debug.trace(f"{connection.connection_id} -> {message.get('type')}", "server")
                await self.coordinator.dispatch(connection, message)
        except ConnectionClosed:
            debug.debug(f"Connection closed: {connection.connection_id}", "server")
        finally:
            await self.coordinator.handle_disconnect(connection)
            debug.info(f"Client disconnected: {connection.connection_id}", "server")

    async def serve(self, stop: Optional[asyncio.Future] = None) -> None:
        """
        Run the server until ``stop`` completes (or SIGINT/SIGTERM).

        Args:
            stop: Future that ends the server when done
        """
        loop = asyncio.get_running_loop()
        if stop is None:
            stop = loop.create_future()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, stop.set_result, None)
                except (NotImplementedError, RuntimeError):
                    debug.debug(f"Signal handler for {sig!r} not available", "server")

        self.coordinator.start()
        try:
            async with websockets.serve(self.handle_socket, self.config.host, self.config.port):
                debug.info(f"Listening on ws://{self.config.host}:{self.config.port}", "server")
                await stop
        finally:
            await self.coordinator.close()
            debug.info("Server stopped", "server")


def build_coordinator(config: ServerConfig) -> RealtimeCoordinator:
    """Coordinator with file persistence and, when enabled, the event log."""
    data_manager = DataManager(config.data_dir)
    analytics = EventLogAnalytics(config.data_dir) if config.analytics_enabled else AnalyticsSink()
    return RealtimeCoordinator(config, data_manager=data_manager, analytics=analytics)


def run_server(config: ServerConfig) -> None:
    """Blocking entry point used by the CLI."""
    asyncio.run(GameServer(config).serve())
