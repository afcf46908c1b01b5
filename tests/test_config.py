import pytest

from connect4live.config import ServerConfig


def test_defaults():
    config = ServerConfig()
    assert config.fallback_delay == 10.0
    assert config.reconnect_window == 30.0
    assert config.bot_depth == 6
    assert config.fallback_delay_ms == 10000


def test_from_env_converts_types(monkeypatch):
    monkeypatch.setenv("CONNECT4LIVE_PORT", "4000")
    monkeypatch.setenv("CONNECT4LIVE_FALLBACK_DELAY", "2.5")
    monkeypatch.setenv("CONNECT4LIVE_ANALYTICS_ENABLED", "false")
    monkeypatch.setenv("CONNECT4LIVE_HOST", "127.0.0.1")
    monkeypatch.setenv("UNRELATED", "x")

    config = ServerConfig.from_env()
    assert config.port == 4000
    assert config.fallback_delay == 2.5
    assert config.analytics_enabled is False
    assert config.host == "127.0.0.1"
    assert config.bot_depth == 6


def test_from_env_rejects_garbage(monkeypatch):
    monkeypatch.setenv("CONNECT4LIVE_PORT", "many")
    with pytest.raises(ValueError):
        ServerConfig.from_env()


def test_port_out_of_range(monkeypatch):
    monkeypatch.setenv("CONNECT4LIVE_PORT", "70000")
    with pytest.raises(ValueError):
        ServerConfig.from_env()


def test_overrides_skip_none():
    config = ServerConfig().with_overrides(port=None, bot_depth=3)
    assert config.port == 3000
    assert config.bot_depth == 3


def test_config_is_frozen():
    config = ServerConfig()
    with pytest.raises(ValueError):
        config.port = 1
