"""Tests for environment-driven settings."""

from app.config import Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "SUGGESTIONS_ENABLED",
            "SUGGESTIONS_EXCLUDE_NSFW",
            "SUGGESTIONS_NOTIFICATIONS",
            "SUGGESTIONS_EXCLUDE_TAGS",
            "SUGGESTIONS_INTERVAL_HOURS",
            "NOTIFY_WEBHOOK_URL",
            "SOURCE_TIMEOUT_SECONDS",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = Settings()

        assert settings.suggestions_enabled is True
        assert settings.suggestions_exclude_nsfw is False
        assert settings.suggestions_notifications is False
        assert settings.suggestions_exclude_tags == []
        assert settings.suggestions_interval_hours == 6
        assert settings.notify_webhook_url == ""
        assert settings.source_timeout_seconds == 30

    def test_booleans(self, monkeypatch):
        monkeypatch.setenv("SUGGESTIONS_ENABLED", "off")
        monkeypatch.setenv("SUGGESTIONS_EXCLUDE_NSFW", "Yes")
        monkeypatch.setenv("SUGGESTIONS_NOTIFICATIONS", "1")

        settings = Settings()

        assert settings.suggestions_enabled is False
        assert settings.suggestions_exclude_nsfw is True
        assert settings.suggestions_notifications is True

    def test_blank_boolean_uses_default(self, monkeypatch):
        monkeypatch.setenv("SUGGESTIONS_ENABLED", "  ")
        assert Settings().suggestions_enabled is True

    def test_exclude_tags_list(self, monkeypatch):
        monkeypatch.setenv("SUGGESTIONS_EXCLUDE_TAGS", " Horror, ,Gore ,")
        assert Settings().suggestions_exclude_tags == ["Horror", "Gore"]

    def test_numbers(self, monkeypatch):
        monkeypatch.setenv("SUGGESTIONS_INTERVAL_HOURS", "0.5")
        monkeypatch.setenv("SOURCE_TIMEOUT_SECONDS", "10")
        settings = Settings()
        assert settings.suggestions_interval_hours == 0.5
        assert settings.source_timeout_seconds == 10.0
