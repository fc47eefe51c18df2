#!/usr/bin/env python3
"""
Run script for the BranchLink Realtime relay.

Usage:
    python run_relay.py

Make sure to:
1. Put OPENAI_API_KEY (and optionally WEBHOOK_URL) in .env
2. Start a tunnel, e.g.: ngrok http 3000
3. Set PUBLIC_WSS_BASE_URL in .env to the tunnel's wss:// URL
4. Point your Twilio number's voice webhook at POST /twilio/voice
"""

import logging
import os
import sys

# Configure logging VERY early, before any other imports that might use it
logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("websockets.client").setLevel(logging.WARNING)
logging.getLogger("websockets.server").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Add src to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def main():
    """Run the relay server."""
    import uvicorn
    from src.utils.config import get_settings
    from src.voice.app import configure_logging

    settings = get_settings()
    configure_logging(settings.debug)

    print("=" * 60)
    print("BranchLink Realtime Relay")
    print("=" * 60)
    print(f"Server: http://{settings.host}:{settings.port}")
    print(f"Media stream URL: {settings.twilio_stream_url}")
    print(f"OpenAI Model: {settings.openai_realtime_model}")
    print(f"Voice: {settings.openai_realtime_voice} ({settings.agent_language})")
    print(f"Webhook: {settings.webhook_url or 'disabled'}")
    print("=" * 60)
    print()
    print("Endpoints:")
    print(f"  - Health: http://{settings.host}:{settings.port}/")
    print(f"  - Twilio Voice: POST /twilio/voice")
    print(f"  - Twilio Stream: WS {settings.stream_path}")
    print()

    # Use "info" log level for uvicorn to avoid verbose websocket frame logging
    uvicorn.run(
        "src.voice.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info",
    )


if __name__ == "__main__":
    main()
