"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from unittest.mock import patch

import pytest

from agentstats.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _no_dotenv() -> Generator[None]:
    """Keep a developer's local .env out of the test run.

    The cached settings are dropped and env_file is unset for the duration of
    each test, then restored.
    """
    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Settings]:
    """Provide explicit settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = Settings(
        agent_id="1001",
        agent_name="Alice",
        agent_interface_pattern="",
        tracked_queues="",
        stats_period="today",
        service_level_threshold=20.0,
        max_recent_calls=50,
        max_alert_history=200,
        realtime_updates=True,
        refresh_interval_seconds=0,
        stats_persist=False,
        stats_storage_key="agent_stats",
        stats_db_path="",
        persist_debounce_seconds=0.0,
        log_level="INFO",
    )
    with (
        patch("agentstats.config.get_settings", return_value=fake_settings),
        patch("agentstats.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings

