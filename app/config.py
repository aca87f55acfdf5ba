"""Application configuration."""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file from project root
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> list[str]:
    value = os.environ.get(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """Application settings from environment variables."""

    database_url: str
    suggestions_enabled: bool
    suggestions_exclude_nsfw: bool
    suggestions_notifications: bool
    suggestions_exclude_tags: list[str]
    suggestions_interval_hours: float
    notify_webhook_url: str
    source_timeout_seconds: float

    def __init__(self):
        self.database_url = os.environ.get(
            "DATABASE_URL", "sqlite+aiosqlite:///./manga_suggestions.db"
        )
        self.suggestions_enabled = _env_bool("SUGGESTIONS_ENABLED", True)
        self.suggestions_exclude_nsfw = _env_bool("SUGGESTIONS_EXCLUDE_NSFW", False)
        self.suggestions_notifications = _env_bool("SUGGESTIONS_NOTIFICATIONS", False)
        self.suggestions_exclude_tags = _env_list("SUGGESTIONS_EXCLUDE_TAGS")
        self.suggestions_interval_hours = float(os.environ.get("SUGGESTIONS_INTERVAL_HOURS", "6"))
        self.notify_webhook_url = os.environ.get("NOTIFY_WEBHOOK_URL", "")
        self.source_timeout_seconds = float(os.environ.get("SOURCE_TIMEOUT_SECONDS", "30"))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
