"""
FastAPI application for the BranchLink Realtime relay.

Provides:
- Health check endpoints
- TwiML webhook endpoint that points Twilio at the media stream
- WebSocket endpoint for Twilio Media Streams (one SessionRelay per connection)
"""

import logging

# Reduce noise from verbose libraries - set this BEFORE they're imported
logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("websockets.client").setLevel(logging.WARNING)
logging.getLogger("websockets.server").setLevel(logging.WARNING)
logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

import uuid
from contextlib import asynccontextmanager
from typing import Callable, Optional
from xml.sax.saxutils import quoteattr

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse, Response

from ..notify.webhook import WebhookNotifier
from ..utils.config import Settings, get_settings
from .openai_realtime import OpenAIRealtimeClient
from .session import InferenceConnection, RelayOptions, SessionRelay

logger = logging.getLogger(__name__)


HEALTH_MESSAGE = "BranchLink Realtime proxy is running."

InferenceFactory = Callable[[], InferenceConnection]


def configure_logging(debug: bool = False) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    inference_factory: Optional[InferenceFactory] = None,
    notifier=None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Application settings (defaults to get_settings())
        inference_factory: Returns a fresh, unopened inference connection
            per call (defaults to OpenAIRealtimeClient.from_settings)
        notifier: Call lifecycle notifier (defaults to one built from
            settings.webhook_url; created at startup, drained at shutdown)
    """
    settings = settings or get_settings()
    if inference_factory is None:
        def inference_factory() -> InferenceConnection:
            return OpenAIRealtimeClient.from_settings(settings)

    relay_options = RelayOptions.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting BranchLink Realtime relay...")
        logger.info(f"Media stream URL: {settings.twilio_stream_url}")
        app.state.notifier = notifier or WebhookNotifier.from_settings(settings)
        yield
        logger.info("Shutting down BranchLink Realtime relay...")
        await app.state.notifier.aclose()

    app = FastAPI(
        title="BranchLink Realtime Relay",
        description="Relays Twilio Media Streams to the OpenAI Realtime API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.active_sessions = {}

    # =========================================================================
    # Health Check Endpoints
    # =========================================================================

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        """Root endpoint - liveness probe."""
        return HEALTH_MESSAGE

    @app.get("/health")
    async def health_check():
        """Detailed health check endpoint."""
        return {
            "status": "healthy",
            "active_sessions": len(app.state.active_sessions),
            "config": {
                "realtime_model": settings.openai_realtime_model,
                "voice": settings.openai_realtime_voice,
                "language": settings.agent_language,
                "webhook_enabled": bool(settings.webhook_url),
            },
        }

    # =========================================================================
    # Twilio Webhook Endpoint
    # =========================================================================

    @app.post("/twilio/voice")
    async def twilio_voice(request: Request):
        """
        Twilio voice webhook - returns TwiML to start a Media Stream.

        Called when Twilio receives an incoming call; the response tells
        Twilio to open a bidirectional stream to this service.
        """
        form_data = await request.form()
        call_sid = form_data.get("CallSid", "unknown")
        logger.info(f"Incoming call: {call_sid} from {form_data.get('From', 'unknown')}")

        twiml = f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Connect>
        <Stream url={quoteattr(settings.twilio_stream_url)}>
            <Parameter name="callSid" value={quoteattr(str(call_sid))} />
        </Stream>
    </Connect>
</Response>"""
        return Response(content=twiml, media_type="application/xml")

    # =========================================================================
    # WebSocket Endpoint for Media Streams
    # =========================================================================

    @app.websocket(settings.stream_path)
    async def media_stream(websocket: WebSocket):
        """
        WebSocket endpoint for Twilio Media Streams.

        Runs one SessionRelay for the lifetime of the connection.
        """
        await websocket.accept()

        connection_id = str(uuid.uuid4())[:8]
        logger.info(f"WebSocket connection opened: {connection_id}")

        relay = SessionRelay(
            caller=websocket,
            inference=inference_factory(),
            notifier=app.state.notifier,
            options=relay_options,
            connection_id=connection_id,
        )
        app.state.active_sessions[connection_id] = relay
        try:
            await relay.run()
        finally:
            app.state.active_sessions.pop(connection_id, None)
            logger.info(f"WebSocket connection finished: {connection_id} ({relay.stop_reason})")

    return app


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the relay server."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.debug)
    uvicorn.run(
        "src.voice.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
