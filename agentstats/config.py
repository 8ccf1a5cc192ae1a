from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Tracked agent (required by the API host; empty string means not configured)
    agent_id: str = ""
    agent_name: str = ""
    agent_interface_pattern: str = ""  # e.g. "PJSIP/*" or "PJSIP/1001"

    # Queue allow-list (comma-separated, empty = all queues)
    tracked_queues: str = ""

    # Statistics behaviour
    stats_period: str = "today"
    service_level_threshold: float = 20.0  # seconds
    max_recent_calls: int = 50
    max_alert_history: int = 200
    realtime_updates: bool = True
    refresh_interval_seconds: int = 30  # 0 disables the periodic refresh

    # Persistence (optional, stats_persist=false means in-memory only)
    stats_persist: bool = False
    stats_storage_key: str = "agent_stats"
    stats_db_path: str = ""  # empty = in-process key/value store
    persist_debounce_seconds: float = 1.0

    log_level: str = "INFO"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    def queue_list(self) -> list[str]:
        """Split the comma-separated queue allow-list, dropping blanks."""
        return [q.strip() for q in self.tracked_queues.split(",") if q.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
