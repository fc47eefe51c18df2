"""
Tests for webhook notifications.

Uses httpx.MockTransport, so no request leaves the process.
"""

import asyncio
import json
from datetime import datetime

import httpx

from src.notify.webhook import NullNotifier, WebhookNotifier


def make_notifier(handler) -> WebhookNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotifier("https://hooks.example.com/calls", client=client)


def test_posts_event_with_timestamp_and_context():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append((request.method, str(request.url), json.loads(request.content)))
        return httpx.Response(200, text="ok")

    async def scenario():
        notifier = make_notifier(handler)
        notifier.notify("media_stream_start", start={"streamSid": "SD123"})
        await notifier.aclose()

    asyncio.run(scenario())

    assert len(received) == 1
    method, url, payload = received[0]
    assert method == "POST"
    assert url == "https://hooks.example.com/calls"
    assert payload["type"] == "media_stream_start"
    assert payload["start"] == {"streamSid": "SD123"}
    assert datetime.fromisoformat(payload["at"]).tzinfo is not None


def test_notify_does_not_wait_for_delivery():
    release = asyncio.Event()
    received = []

    async def handler(request: httpx.Request) -> httpx.Response:
        await release.wait()
        received.append(json.loads(request.content)["type"])
        return httpx.Response(204)

    async def scenario():
        notifier = make_notifier(handler)
        notifier.notify("call_started")
        notifier.notify("call_ended", reason="stop")
        await asyncio.sleep(0)
        assert received == []
        release.set()
        await notifier.aclose()

    asyncio.run(scenario())
    assert sorted(received) == ["call_ended", "call_started"]


def test_delivery_failures_are_contained(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        if json.loads(request.content)["type"] == "call_started":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(500)

    async def scenario():
        notifier = make_notifier(handler)
        notifier.notify("call_started")
        notifier.notify("call_ended")
        await notifier.aclose()

    asyncio.run(scenario())

    failures = [r for r in caplog.records if "Webhook post failed" in r.getMessage()]
    assert len(failures) == 2


def test_unserializable_context_is_logged_not_raised(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    async def scenario():
        notifier = make_notifier(handler)
        notifier.notify("call_ended", reason="stop", when=object())
        deliveries = set(notifier._inflight)
        await notifier.aclose()
        return deliveries

    deliveries = asyncio.run(scenario())

    assert all(task.exception() is None for task in deliveries)
    failures = [r for r in caplog.records if "Webhook post failed (call_ended)" in r.getMessage()]
    assert len(failures) == 1


def test_aclose_drops_stuck_deliveries():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200)

    async def scenario():
        notifier = make_notifier(handler)
        notifier.notify("call_started")
        await notifier.aclose(timeout=0.05)
        assert not notifier._inflight

    asyncio.run(scenario())


def test_from_settings_without_url_is_noop(settings):
    notifier = WebhookNotifier.from_settings(settings)
    assert isinstance(notifier, NullNotifier)
    assert notifier.notify("call_started") is None


def test_from_settings_with_url(settings):
    settings = settings.model_copy(update={"webhook_url": "https://hooks.example.com/x"})

    async def scenario():
        notifier = WebhookNotifier.from_settings(settings)
        assert isinstance(notifier, WebhookNotifier)
        assert notifier.url == "https://hooks.example.com/x"
        await notifier.aclose()

    asyncio.run(scenario())
