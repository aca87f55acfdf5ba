"""Suggestion notifications: payload building and delivery sinks."""

import html
import logging
import re
from dataclasses import asdict, dataclass
from typing import Protocol

import httpx

from app.config import get_settings
from app.services.sources import MangaItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuggestionNotification:
    """Everything needed to present one suggested manga to the user."""

    manga_id: str
    source: str
    url: str
    title: str
    tags_text: str
    description: str | None
    chapters_count: int
    cover_url: str | None
    is_secret: bool  # NSFW titles are hidden from lock screens and previews

    def to_dict(self) -> dict:
        return asdict(self)


def sanitize_description(value: str | None) -> str | None:
    """Strip HTML markup and collapse whitespace in a source description."""
    if not value:
        return None
    text = re.sub(r"<br\s*/?>|</p>", "\n", value, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(line for line in lines if line)
    return text or None


def build_notification(manga: MangaItem) -> SuggestionNotification:
    """Build the notification payload for a manga with loaded details."""
    tags_text = ", ".join(tag.title for tag in manga.tags)
    return SuggestionNotification(
        manga_id=manga.id,
        source=manga.source,
        url=manga.url,
        title=f"Suggestion: {manga.title}",
        tags_text=tags_text,
        description=sanitize_description(manga.description),
        chapters_count=len(manga.chapters or ()),
        cover_url=manga.cover_url,
        is_secret=manga.is_nsfw,
    )


class NotificationSink(Protocol):
    """Delivers suggestion notifications."""

    async def notify(self, payload: SuggestionNotification) -> None: ...


class LogNotificationSink:
    """Writes notifications to the application log."""

    def __init__(self):
        self.sent: list[SuggestionNotification] = []

    async def notify(self, payload: SuggestionNotification) -> None:
        self.sent.append(payload)
        logger.info(
            "%s [%s] %d chapters",
            payload.title,
            payload.tags_text,
            payload.chapters_count,
        )


class WebhookNotificationSink:
    """POSTs notifications as JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def notify(self, payload: SuggestionNotification) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload.to_dict())
            response.raise_for_status()
        logger.info("Sent suggestion notification for %s", payload.manga_id)


def get_notification_sink() -> NotificationSink | None:
    """Return the configured sink, or None when notifications are disabled."""
    settings = get_settings()
    if not settings.suggestions_notifications:
        return None
    if settings.notify_webhook_url:
        return WebhookNotificationSink(settings.notify_webhook_url)
    return LogNotificationSink()
