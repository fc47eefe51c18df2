"""
Fire-and-forget webhook notifications for call lifecycle events.

Each notification is POSTed as JSON from a background task:

    {"type": "call_started" | "media_stream_start" | "call_ended",
     "at": "<ISO-8601 UTC>", ...context}

Delivery failures are logged and dropped. Nothing here ever raises into,
or waits inside, the session that asked for the notification.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


CALL_EVENT_TYPES = ("call_started", "media_stream_start", "call_ended")


class NullNotifier:
    """Notifier used when no webhook URL is configured."""

    def notify(self, event_type: str, **context: Any) -> None:
        return None

    async def aclose(self) -> None:
        return None


class WebhookNotifier:
    """Posts call lifecycle events to a webhook, shared by all sessions."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the notifier.

        Args:
            url: Destination for the POST requests
            timeout: Per-request timeout in seconds
            client: Optional preconfigured client (closed by aclose)
        """
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._inflight: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings):
        """Create a notifier for the configured webhook, or a no-op one."""
        if not settings.webhook_url:
            return NullNotifier()
        return cls(settings.webhook_url, timeout=settings.webhook_timeout_seconds)

    def notify(self, event_type: str, **context: Any) -> None:
        """Schedule delivery of an event and return immediately."""
        if event_type not in CALL_EVENT_TYPES:
            logger.warning(f"Unknown webhook event type: {event_type}")
        payload = {
            "type": event_type,
            "at": datetime.now(timezone.utc).isoformat(),
            **context,
        }
        task = asyncio.get_running_loop().create_task(self._post(payload))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _post(self, payload: dict) -> None:
        try:
            response = await self._client.post(self.url, json=payload)
            response.raise_for_status()
            logger.debug(f"Webhook delivered: {payload['type']}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Webhook post failed ({payload['type']}): {e}")
        except Exception as e:
            logger.error(f"Webhook post failed ({payload['type']}): {e!r}")

    async def aclose(self, timeout: float = 5.0) -> None:
        """Wait for in-flight deliveries, then close the HTTP client."""
        if self._inflight:
            _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(f"Dropped {len(pending)} undelivered webhook notifications")
        await self._client.aclose()
