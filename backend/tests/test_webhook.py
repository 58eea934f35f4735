import hashlib
import hmac
import json

import httpx

from leadengine.integrations.notifier import LogNotifier, WebhookNotifier
from leadengine.integrations.webhook import WebhookSink


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_delivery_is_signed():
    captured = {}

    def handler(request):
        captured["body"] = request.content
        captured["sig"] = request.headers.get("X-LeadEngine-Signature")
        return httpx.Response(204)

    sink = WebhookSink("https://crm.example.com/hook", secret="s3cret", client=_client(handler))
    res = await sink.deliver("distressed_listing", {"property_id": 1})

    assert res.ok is True
    assert json.loads(captured["body"]) == {"type": "distressed_listing", "data": {"property_id": 1}}
    expected = hmac.new(b"s3cret", captured["body"], hashlib.sha256).hexdigest()
    assert captured["sig"] == expected


async def test_non_2xx_is_a_soft_failure():
    sink = WebhookSink("https://crm.example.com/hook", client=_client(lambda r: httpx.Response(500, text="nope")))
    res = await sink.deliver("x", {})
    assert res.ok is False
    assert "HTTP 500" in res.error


async def test_network_error_is_a_soft_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    res = await WebhookSink("https://crm.example.com/hook", client=_client(handler)).deliver("x", {})
    assert res.ok is False
    assert "ConnectError" in res.error


async def test_notifiers():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    notifier = WebhookNotifier(WebhookSink("https://owner.example.com/n", client=_client(handler)))
    assert (await notifier.notify("Title", "Body", {"k": 1})).ok
    assert bodies == [{"type": "alert", "data": {"title": "Title", "content": "Body", "details": {"k": 1}}}]
    assert (await LogNotifier().notify("Title", "Body")).ok
