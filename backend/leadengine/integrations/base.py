# leadengine/integrations/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: str | None = None


class EventSink(Protocol):
    """One-way push of a JSON event (CRM relay, owner notifications)."""

    async def deliver(self, event_type: str, payload: dict[str, Any]) -> DeliveryResult:
        ...


class Notifier(Protocol):
    async def notify(self, title: str, content: str, details: dict[str, Any] | None = None) -> DeliveryResult:
        ...
