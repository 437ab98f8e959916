"""
Shared fixtures.
"""

import pytest

from mailrelay.core import config as config_module
from mailrelay.core.config import ConfigManager


@pytest.fixture
def clean_env(monkeypatch):
    """Remove relay settings inherited from the host environment."""
    for name in (
        "BOT_TOKEN",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_API_URL",
        "TELEGRAM_PARSE_MODE",
        "MAILTM_BASE_URL",
        "MAILTM_TIMEOUT_SECONDS",
        "HOST",
        "PORT",
        "MAILRELAY_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_config(tmp_path, monkeypatch, clean_env):
    """ConfigManager backed by files in a temp directory, installed as the global config."""
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    config = ConfigManager(
        env_file=str(tmp_path / ".env"),
        config_file=str(tmp_path / "config.yaml"),
    )
    monkeypatch.setattr(config_module, "_config", config)
    return config
