"""
Voice relay between phone calls and a realtime voice agent.

This module provides:
- Twilio Media Streams as the caller leg
- OpenAI Realtime API as the inference leg
- SessionRelay, which runs one call between the two
"""

from .openai_realtime import OpenAIRealtimeClient
from .session import RelayOptions, SessionRelay, SessionState

__all__ = ["OpenAIRealtimeClient", "RelayOptions", "SessionRelay", "SessionState"]
