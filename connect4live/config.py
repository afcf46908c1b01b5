"""
config.py - Server configuration for the Connect Four session engine

Timing values are wall-clock seconds. Defaults can be overridden with
CONNECT4LIVE_* environment variables and then with command-line flags.
"""

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings

ENV_PREFIX = "CONNECT4LIVE_"


class ServerConfig(BaseSettings):
    """Settings for the server, matchmaking and session timers."""

    host: str = Field(default="0.0.0.0", description="Interface to bind")
    port: int = Field(default=3000, ge=1, le=65535, description="Port to listen on")
    fallback_delay: float = Field(default=10.0, ge=0, description="Seconds before a bot replaces a missing opponent")
    reconnect_window: float = Field(default=30.0, ge=0, description="Seconds a disconnected player has to come back")
    finished_session_ttl: float = Field(default=300.0, ge=0, description="Finished sessions stay readable this long")
    sweep_interval: float = Field(default=60.0, gt=0)
    stale_session_minutes: float = Field(default=60.0, gt=0)
    bot_depth: int = Field(default=6, ge=1, description="Bot search depth in plies")
    bot_move_delay: float = Field(default=0.5, ge=0)
    lookup_retry_delay: float = Field(default=0.1, ge=0)
    data_dir: str = Field(default="data", description="Directory for results and events")
    analytics_enabled: bool = True

    model_config = {"env_prefix": ENV_PREFIX, "case_sensitive": False, "extra": "ignore", "frozen": True}

    @property
    def fallback_delay_ms(self) -> int:
        return int(self.fallback_delay * 1000)

    def with_overrides(self, **overrides: Any) -> "ServerConfig":
        """Return a copy with every non-None override applied."""
        return self.model_copy(update={k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Build a configuration from CONNECT4LIVE_* environment variables.

        Raises:
            ValueError: If a variable cannot be converted to the field's type
        """
        return cls()
