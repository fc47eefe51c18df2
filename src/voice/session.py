"""
Session Relay: one per Twilio Media Streams connection.

Owns the caller leg (Twilio WebSocket) and the inference leg (OpenAI
Realtime API) for a single call and moves events between them:

- Caller events are translated into Realtime events and queued until the
  inference leg is open, then flushed in arrival order.
- Audio deltas from the Realtime API are reframed as Twilio ``media``
  events addressed to the caller's stream.
- Whichever side ends first, both legs are closed exactly once.

Concurrency inside a session (all on one event loop):

- caller reader: sole reader of the caller leg
- inference reader: sole reader of the inference leg, sole writer to the caller
- writer: sole writer to the inference leg, drains ``_outbox`` in order
- watchdog: optional idle / max-duration timer
"""

import asyncio
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol

from ..notify.webhook import NullNotifier
from .errors import InferenceConnectError, RelayError
from .events import (
    CallerEventType,
    RealtimeEvent,
    RealtimeEventType,
    caller_media,
    input_audio_append,
    input_audio_commit,
    parse_caller_message,
    response_create,
    session_update,
)
from .prompts import AGENT_INSTRUCTIONS, GREETING_INSTRUCTIONS

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle of a relay session."""
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class CallerConnection(Protocol):
    """The subset of a FastAPI/Starlette WebSocket the relay uses."""

    async def receive(self) -> dict: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class InferenceConnection(Protocol):
    """The subset of OpenAIRealtimeClient the relay uses."""

    async def open(self) -> None: ...

    async def send(self, event: dict) -> None: ...

    def events(self) -> AsyncIterator[RealtimeEvent]: ...

    async def close(self) -> None: ...


class Notifier(Protocol):
    def notify(self, event_type: str, **context: Any) -> None: ...


@dataclass
class RelayOptions:
    """Per-session behaviour of the relay."""
    instructions: str = AGENT_INSTRUCTIONS
    language: str = "sv-SE"
    voice: str = "alloy"
    audio_format: str = "g711_ulaw"
    sample_rate_hz: int = 8000
    greeting_enabled: bool = True
    greeting_instructions: Optional[str] = GREETING_INSTRUCTIONS
    idle_timeout: Optional[float] = None
    max_duration: Optional[float] = None
    stop_flush_timeout: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "RelayOptions":
        """Build options from application Settings."""
        return cls(
            instructions=settings.agent_instructions,
            language=settings.agent_language,
            voice=settings.openai_realtime_voice,
            audio_format=settings.audio_format,
            sample_rate_hz=settings.audio_sample_rate_hz,
            greeting_enabled=settings.greeting_enabled,
            greeting_instructions=settings.greeting_instructions,
            idle_timeout=settings.session_idle_timeout_seconds,
            max_duration=settings.session_max_duration_seconds,
            stop_flush_timeout=settings.stop_flush_timeout_seconds,
        )


class SessionRelay:
    """
    Relays one call between Twilio Media Streams and the OpenAI Realtime API.

    States: CONNECTING -> READY -> CLOSED. Inference-bound events produced
    while CONNECTING wait in ``pending``; becoming READY moves them into the
    writer's outbox in the same step, so nothing is sent twice or lost.
    """

    def __init__(
        self,
        caller: CallerConnection,
        inference: InferenceConnection,
        notifier: Optional[Notifier] = None,
        options: Optional[RelayOptions] = None,
        connection_id: Optional[str] = None,
    ):
        """
        Initialize the relay.

        Args:
            caller: Accepted Twilio WebSocket
            inference: Realtime client, not yet opened
            notifier: Call lifecycle notifier (defaults to a no-op)
            options: Session behaviour (defaults to RelayOptions())
            connection_id: Identifier used in log lines
        """
        self.connection_id = connection_id or str(uuid.uuid4())[:8]
        self.caller = caller
        self.inference = inference
        self.notifier = notifier or NullNotifier()
        self.options = options or RelayOptions()

        self.state = SessionState.CONNECTING
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self._stopping = False

        self.pending: deque[dict] = deque()
        self._outbox: asyncio.Queue[dict] = asyncio.Queue()
        self._primed = False

        self._tasks: list[asyncio.Task] = []
        self._closed = asyncio.Event()
        self._started_at = 0.0
        self._last_activity = 0.0

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Run the session until both legs are closed."""
        loop = asyncio.get_running_loop()
        self._started_at = self._last_activity = loop.time()
        logger.info(f"[{self.connection_id}] Session started, connecting to Realtime API")

        self._spawn(self._read_caller(), "caller-reader")
        self._spawn(self._connect_inference(), "inference-connect")
        if self.options.idle_timeout or self.options.max_duration:
            self._spawn(self._watchdog(), "watchdog")

        try:
            await self._closed.wait()
        finally:
            if not self.is_closed:
                await self.close("cancelled")
            await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info(f"[{self.connection_id}] Session finished ({self.stop_reason})")

    async def close(self, reason: str) -> None:
        """
        Tear down both legs. Only the first call has any effect.

        Args:
            reason: Why the session ended (kept in ``stop_reason``)
        """
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.stop_reason = reason
        self.pending.clear()
        logger.info(f"[{self.connection_id}] Closing session: {reason}")

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

        await self.inference.close()
        try:
            await self.caller.close()
        except Exception as e:
            # Starlette raises if the socket is already closed
            logger.debug(f"[{self.connection_id}] Twilio WebSocket already closed: {e!r}")

        self._closed.set()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{name}-{self.connection_id}")
        self._tasks.append(task)
        return task

    # =========================================================================
    # Inference leg
    # =========================================================================

    async def _connect_inference(self) -> None:
        try:
            await self.inference.open()
        except InferenceConnectError as e:
            logger.error(f"[{self.connection_id}] Realtime API connection failed: {e.detail}")
            await self.close("inference_connect_failed")
            return
        except Exception as e:
            logger.error(f"[{self.connection_id}] Unexpected error connecting to Realtime API: {e!r}")
            await self.close("inference_connect_failed")
            return

        if self.is_closed:
            await self.inference.close()
            return

        self._become_ready()
        self.notifier.notify("call_started", streamSid=self.stream_sid)
        self._spawn(self._write_inference(), "inference-writer")
        self._spawn(self._read_inference(), "inference-reader")

    def _become_ready(self) -> None:
        # No await in here: caller events either land in pending before the
        # move or go straight to the outbox after it.
        self.state = SessionState.READY
        flushed = len(self.pending)
        while self.pending:
            self._outbox.put_nowait(self.pending.popleft())
        logger.info(f"[{self.connection_id}] Realtime API ready, flushed {flushed} pending events")

    def _enqueue(self, event: dict) -> None:
        if self.state is SessionState.CONNECTING:
            self.pending.append(event)
        elif self.state is SessionState.READY:
            self._outbox.put_nowait(event)

    async def _write_inference(self) -> None:
        while True:
            event = await self._outbox.get()
            try:
                await self.inference.send(event)
            except (RelayError, OSError) as e:
                logger.info(f"[{self.connection_id}] Realtime API send failed: {e}")
                await self.close("inference_closed")
                return
            finally:
                self._outbox.task_done()

    async def _read_inference(self) -> None:
        try:
            async for event in self.inference.events():
                if self.is_closed:
                    return
                if event.is_audio_delta:
                    await self._forward_audio(event.audio_delta)
                elif event.is_error:
                    logger.error(f"[{self.connection_id}] OpenAI error: {event.error_message}")
                elif event.type == RealtimeEventType.SESSION_CREATED:
                    logger.info(f"[{self.connection_id}] Realtime session created")
                elif event.type == RealtimeEventType.SESSION_UPDATED:
                    logger.info(f"[{self.connection_id}] Realtime session configured")
        except (RelayError, OSError) as e:
            logger.error(f"[{self.connection_id}] Error receiving Realtime events: {e}")
        except Exception as e:
            logger.error(f"[{self.connection_id}] Error in Realtime reader: {e!r}")
        logger.info(f"[{self.connection_id}] Realtime connection ended")
        await self.close("inference_closed")

    async def _forward_audio(self, delta: Optional[str]) -> None:
        if not delta:
            return
        if self.stream_sid is None:
            logger.debug(f"[{self.connection_id}] Dropping audio delta, stream not started")
            return
        try:
            await self.caller.send_text(json.dumps(caller_media(self.stream_sid, delta)))
        except Exception as e:
            logger.info(f"[{self.connection_id}] Failed to send audio to Twilio: {e!r}")
            await self.close("caller_closed")

    # =========================================================================
    # Caller leg
    # =========================================================================

    async def _read_caller(self) -> None:
        loop = asyncio.get_running_loop()
        while not self.is_closed:
            try:
                message = await self.caller.receive()
            except Exception as e:
                # Starlette raises once the disconnect has been received
                logger.info(f"[{self.connection_id}] Twilio WebSocket closed: {e!r}")
                await self.close("caller_closed")
                return

            if self.is_closed:
                return
            if message.get("type") == "websocket.disconnect":
                logger.info(f"[{self.connection_id}] Twilio WebSocket closed (code {message.get('code')})")
                await self.close("caller_closed")
                return
            self._last_activity = loop.time()

            # Binary frames go through the same parser as text
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            data = parse_caller_message(raw)
            if data is None:
                logger.warning(f"[{self.connection_id}] Ignoring malformed Twilio message")
                continue
            await self._handle_caller_event(data)

    async def _handle_caller_event(self, data: dict) -> None:
        event = data["event"]

        if event == CallerEventType.START:
            self._handle_start(data.get("start"))

        elif event == CallerEventType.MEDIA:
            media = data.get("media")
            payload = media.get("payload") if isinstance(media, dict) else None
            if isinstance(payload, str) and payload:
                self._prime_session()
                self._enqueue(input_audio_append(payload))

        elif event == CallerEventType.MARK:
            self._request_response()

        elif event == CallerEventType.STOP:
            logger.info(f"[{self.connection_id}] Twilio stream stopped")
            await self._stop("stop")

        else:
            logger.debug(f"[{self.connection_id}] Ignoring Twilio event: {event}")

    def _handle_start(self, start: Any) -> None:
        if not isinstance(start, dict):
            start = {}
        if self.stream_sid is not None:
            logger.debug(f"[{self.connection_id}] Ignoring repeated start event")
            return

        stream_sid = start.get("streamSid")
        if isinstance(stream_sid, str) and stream_sid:
            self.stream_sid = stream_sid
            self.call_sid = start.get("callSid")
            logger.info(f"[{self.connection_id}] Twilio stream started: {stream_sid}")
            self.notifier.notify("media_stream_start", start=start)
        self._prime_session()

    def _prime_session(self) -> None:
        """Queue the session configuration and greeting, once per session."""
        if self._primed:
            return
        self._primed = True
        opts = self.options
        self._enqueue(
            session_update(
                instructions=opts.instructions,
                language=opts.language,
                voice=opts.voice,
                audio_format=opts.audio_format,
                sample_rate_hz=opts.sample_rate_hz,
            )
        )
        if opts.greeting_enabled:
            self._enqueue(response_create(opts.greeting_instructions))

    def _request_response(self) -> None:
        self._enqueue(input_audio_commit())
        self._enqueue(response_create())

    async def _stop(self, reason: str) -> None:
        if self.is_closed or self._stopping:
            return
        self._stopping = True
        self._request_response()
        self.notifier.notify("call_ended", reason=reason, streamSid=self.stream_sid)
        if self.state is SessionState.READY:
            await self._flush_outbox()
        await self.close(reason)

    async def _flush_outbox(self) -> None:
        try:
            await asyncio.wait_for(self._outbox.join(), self.options.stop_flush_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{self.connection_id}] Gave up waiting for {self._outbox.qsize()} queued events"
            )

    async def _watchdog(self) -> None:
        loop = asyncio.get_running_loop()
        while not self.is_closed:
            deadlines = []
            if self.options.max_duration:
                deadlines.append((self._started_at + self.options.max_duration, "max_duration"))
            if self.options.idle_timeout:
                deadlines.append((self._last_activity + self.options.idle_timeout, "idle_timeout"))
            deadline, reason = min(deadlines)

            now = loop.time()
            if now >= deadline:
                logger.info(f"[{self.connection_id}] Session timed out: {reason}")
                await self._stop(reason)
                return
            await asyncio.sleep(deadline - now)
