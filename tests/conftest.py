"""
Shared fixtures: in-memory stand-ins for both legs of a relay session.
"""

import asyncio
import json

import pytest

from src.utils.config import Settings
from src.voice.errors import InferenceConnectError, LegClosedError
from src.voice.events import parse_realtime_message

HANGUP = object()


class FakeCaller:
    """Twilio side of the call, shaped like a Starlette WebSocket."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.close_calls = 0
        self.closed = False

    def push(self, message) -> None:
        """Queue a frame: dicts are sent as JSON text, bytes as a binary frame."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self.incoming.put_nowait(message)

    def hang_up(self) -> None:
        self.incoming.put_nowait(HANGUP)

    async def receive(self) -> dict:
        item = await self.incoming.get()
        if item is HANGUP:
            self.closed = True
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("Cannot send once the socket is closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.close_calls += 1
        if self.closed:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.closed = True


class FakeInference:
    """Realtime API side of the call. ``open()`` blocks until ``ready`` is set."""

    def __init__(self, fail_open: bool = False):
        self.ready = asyncio.Event()
        self.fail_open = fail_open
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.opened = False
        self.close_calls = 0
        self.closed = False

    def push(self, message) -> None:
        if isinstance(message, dict):
            message = json.dumps(message)
        self.incoming.put_nowait(message)

    def disconnect(self) -> None:
        self.incoming.put_nowait(HANGUP)

    @property
    def sent_types(self) -> list[str]:
        return [event["type"] for event in self.sent]

    async def open(self) -> None:
        await self.ready.wait()
        if self.fail_open:
            raise InferenceConnectError("ConnectionRefusedError: refused")
        self.opened = True

    async def send(self, event: dict) -> None:
        if self.closed:
            raise LegClosedError("Not connected to OpenAI Realtime API")
        self.sent.append(event)

    async def events(self):
        while True:
            item = await self.incoming.get()
            if item is HANGUP:
                return
            event = parse_realtime_message(item)
            if event is None:
                continue
            yield event

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    @property
    def types(self) -> list[str]:
        return [event_type for event_type, _ in self.events]

    def notify(self, event_type: str, **context) -> None:
        self.events.append((event_type, context))

    async def aclose(self) -> None:
        return None


@pytest.fixture
def caller():
    return FakeCaller()


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        public_wss_base_url="wss://relay.example.com",
    )


@pytest.fixture
def failing_inference():
    return FakeInference(fail_open=True)


class EchoInference(FakeInference):
    """Opens immediately and answers every audio append with that audio reversed."""

    def __init__(self, fail_open: bool = False):
        super().__init__(fail_open=fail_open)
        self.ready.set()

    async def send(self, event: dict) -> None:
        await super().send(event)
        if event["type"] == "input_audio_buffer.append":
            self.push({"type": "response.audio.delta", "delta": event["audio"][::-1]})


@pytest.fixture
def echo_factory():
    """Inference factory that remembers every connection it hands out."""
    created = []

    def factory(fail_open: bool = False):
        def make():
            inference = EchoInference(fail_open=fail_open)
            created.append(inference)
            return inference
        return make

    factory.created = created
    return factory


class SlowInference(FakeInference):
    """Opens immediately; every send takes ``delay`` seconds to complete."""

    def __init__(self, delay: float = 0.3):
        super().__init__()
        self.delay = delay
        self.ready.set()

    async def send(self, event: dict) -> None:
        await asyncio.sleep(self.delay)
        await super().send(event)


class BrokenInference(FakeInference):
    """Fails with an exception outside the relay's own error types."""

    def __init__(self, open_error: Exception = None, events_error: Exception = None):
        super().__init__()
        self.open_error = open_error
        self.events_error = events_error
        self.ready.set()

    async def open(self) -> None:
        await super().open()
        if self.open_error is not None:
            raise self.open_error

    async def events(self):
        async for event in super().events():
            yield event
        if self.events_error is not None:
            raise self.events_error


@pytest.fixture
def slow_inference():
    return SlowInference(delay=0.3)


@pytest.fixture
def broken_inference():
    return BrokenInference
