"""
OpenAI Realtime API WebSocket client: the inference leg of a relay session.

Opens a bearer-authenticated WebSocket, sends client events, and yields
parsed server events. Audio is passed through as base64 text in whatever
format the session was configured with.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import InferenceConnectError, LegClosedError
from .events import RealtimeEvent, parse_realtime_message

logger = logging.getLogger(__name__)


class OpenAIRealtimeClient:
    """
    Client for the OpenAI Realtime API.

    Usage:
        client = OpenAIRealtimeClient(api_key, url)
        await client.open()
        await client.send({"type": "input_audio_buffer.commit"})
        async for event in client.events():
            ...
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        url: str,
        open_timeout: float = 10.0,
        ping_interval: Optional[float] = 20.0,
    ):
        """
        Initialize the Realtime client.

        Args:
            api_key: Bearer credential for the Realtime API
            url: Full WebSocket URL including the model query parameter
            open_timeout: Seconds allowed for the opening handshake
            ping_interval: Keepalive ping interval (None disables pings)
        """
        self.api_key = api_key
        self.url = url
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval

        self._ws = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings) -> "OpenAIRealtimeClient":
        return cls(api_key=settings.openai_api_key, url=settings.openai_realtime_url)

    @property
    def is_connected(self) -> bool:
        """Check if connected to the Realtime API."""
        return self._ws is not None and not self._closed

    async def open(self) -> None:
        """
        Connect to the OpenAI Realtime API.

        Returns once the WebSocket handshake has completed, which is the
        signal that the leg can accept events.

        Raises:
            InferenceConnectError: If the connection cannot be established
        """
        if self._closed:
            raise InferenceConnectError("Client already closed")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        logger.info(f"Connecting to OpenAI Realtime API: {self.url}")
        try:
            ws = await websockets.connect(
                self.url,
                additional_headers=headers,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_interval,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise InferenceConnectError(f"{type(e).__name__}: {e}") from e

        if self._closed:
            await ws.close()
            raise InferenceConnectError("Client closed while connecting")

        self._ws = ws
        logger.info("Connected to OpenAI Realtime API")

    async def send(self, event: dict) -> None:
        """
        Send a client event to the Realtime API.

        Raises:
            LegClosedError: If the connection is not open
        """
        if not self.is_connected:
            raise LegClosedError("Not connected to OpenAI Realtime API")

        try:
            await self._ws.send(json.dumps(event))
        except ConnectionClosed as e:
            raise LegClosedError(f"Realtime connection closed: {e}") from e

    async def events(self) -> AsyncIterator[RealtimeEvent]:
        """
        Receive events from the Realtime API.

        Malformed messages are logged and skipped. Iteration ends when the
        connection closes.

        Yields:
            RealtimeEvent objects for each received event
        """
        if self._ws is None:
            raise LegClosedError("Not connected to OpenAI Realtime API")

        try:
            async for message in self._ws:
                event = parse_realtime_message(message)
                if event is None:
                    logger.warning("Ignoring malformed Realtime message")
                    continue
                yield event
        except ConnectionClosed as e:
            logger.info(f"Realtime connection closed: {e}")

    async def close(self) -> None:
        """Close the connection. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True

        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing Realtime connection: {e}")
