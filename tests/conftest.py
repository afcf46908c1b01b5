import asyncio
import random
from typing import Any, Dict, List

import pytest

from connect4live.config import ServerConfig
from connect4live.debug import debug, DebugLevel
from connect4live.session.coordinator import Connection, RealtimeCoordinator
from connect4live.session.registry import SessionRegistry

debug.configure(level=DebugLevel.WARNING)


class FakeConnection(Connection):
    """In-memory connection that records every event sent to it."""

    def __init__(self, name: str = "client"):
        super().__init__(f"conn-{name}")
        self.events: List[Dict[str, Any]] = []
        self._arrived = asyncio.Event()
        self.fail_sends = False

    async def send(self, event: Dict[str, Any]) -> None:
        if self.fail_sends:
            raise ConnectionError("socket gone")
        self.events.append(event)
        self._arrived.set()

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type]

    async def wait_for(self, event_type: str, timeout: float = 5.0, count: int = 1) -> Dict[str, Any]:
        """Wait until ``count`` events of a type arrived; return the last of them."""
        async def _wait():
            while len(self.of_type(event_type)) < count:
                self._arrived.clear()
                await self._arrived.wait()
            return self.of_type(event_type)[count - 1]

        return await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def config(tmp_path) -> ServerConfig:
    return ServerConfig(
        fallback_delay=0.2,
        reconnect_window=0.3,
        finished_session_ttl=0.5,
        sweep_interval=60.0,
        bot_depth=2,
        bot_move_delay=0.0,
        lookup_retry_delay=0.01,
        data_dir=str(tmp_path / "data"),
        analytics_enabled=False,
    )


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
async def coordinator(config):
    coord = RealtimeCoordinator(config, rng=random.Random(7))
    yield coord
    await coord.close()

