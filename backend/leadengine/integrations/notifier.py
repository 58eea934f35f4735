# leadengine/integrations/notifier.py
from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import settings
from .base import DeliveryResult, Notifier
from .webhook import WebhookSink

log = logging.getLogger(__name__)


class LogNotifier(Notifier):
    """Used when no owner webhook is configured. Always succeeds."""

    async def notify(self, title: str, content: str, details: dict[str, Any] | None = None) -> DeliveryResult:
        log.warning("ALERT %s: %s", title, content)
        return DeliveryResult(ok=True)


class WebhookNotifier(Notifier):
    def __init__(self, sink: WebhookSink) -> None:
        self.sink = sink

    async def notify(self, title: str, content: str, details: dict[str, Any] | None = None) -> DeliveryResult:
        return await self.sink.deliver("alert", {"title": title, "content": content, "details": details or {}})


def build_notifier(client: httpx.AsyncClient | None = None) -> Notifier:
    if settings.NOTIFY_WEBHOOK_URL:
        return WebhookNotifier(WebhookSink(settings.NOTIFY_WEBHOOK_URL, client=client))
    return LogNotifier()


def build_crm_relay(client: httpx.AsyncClient | None = None) -> WebhookSink | None:
    if not (settings.RELAY_DISTRESSED_LEADS and settings.CRM_WEBHOOK_URL):
        return None
    return WebhookSink(settings.CRM_WEBHOOK_URL, secret=settings.CRM_WEBHOOK_SECRET, client=client)
