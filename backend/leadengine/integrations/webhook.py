# leadengine/integrations/webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from ..config import settings
from .base import DeliveryResult, EventSink


class WebhookSink(EventSink):
    """
    POSTs {"type": ..., "data": ...}. When a secret is configured the raw body is
    signed with HMAC-SHA256 and sent as X-LeadEngine-Signature.
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout_s: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.secret = secret
        self.timeout_s = float(timeout_s if timeout_s is not None else settings.HTTP_RELAY_TIMEOUT_S)
        self._client = client

    def _sign(self, body: bytes) -> str | None:
        if not self.secret:
            return None
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    async def _post(self, client: httpx.AsyncClient, body: bytes, headers: dict[str, str]) -> httpx.Response:
        return await client.post(self.url, content=body, headers=headers, timeout=self.timeout_s)

    async def deliver(self, event_type: str, payload: dict[str, Any]) -> DeliveryResult:
        body = json.dumps({"type": event_type, "data": payload}, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        sig = self._sign(body)
        if sig:
            headers["X-LeadEngine-Signature"] = sig

        try:
            if self._client is not None:
                r = await self._post(self._client, body, headers)
            else:
                async with httpx.AsyncClient() as client:
                    r = await self._post(client, body, headers)
        except httpx.HTTPError as e:
            return DeliveryResult(ok=False, error=f"{type(e).__name__}: {e}")

        if r.is_success:
            return DeliveryResult(ok=True)
        return DeliveryResult(ok=False, error=f"HTTP {r.status_code}: {r.text[:500]}")
