"""
Message vocabularies for both legs of the relay.

Caller leg: Twilio Media Streams events, keyed by ``event``.
Inference leg: OpenAI Realtime API events, keyed by ``type``.

Parsing never raises; malformed input comes back as ``None`` so the
caller can log it and carry on.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class CallerEventType(str, Enum):
    """Twilio Media Streams event types."""
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    STOP = "stop"
    DTMF = "dtmf"


class RealtimeEventType(str, Enum):
    """OpenAI Realtime API event types."""
    # Client events
    SESSION_UPDATE = "session.update"
    RESPONSE_CREATE = "response.create"
    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"

    # Session events
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"

    # Response events
    RESPONSE_AUDIO_DELTA = "response.audio.delta"

    # Error events
    ERROR = "error"


@dataclass
class RealtimeEvent:
    """Represents an event from the OpenAI Realtime API."""
    type: str
    data: dict = field(default_factory=dict)

    @property
    def is_audio_delta(self) -> bool:
        return self.type == RealtimeEventType.RESPONSE_AUDIO_DELTA

    @property
    def is_error(self) -> bool:
        return self.type == RealtimeEventType.ERROR

    @property
    def audio_delta(self) -> Optional[str]:
        """Get the base64-encoded audio delta if present and non-empty."""
        if not self.is_audio_delta:
            return None
        delta = self.data.get("delta")
        if isinstance(delta, str) and delta:
            return delta
        return None

    @property
    def error_message(self) -> Optional[str]:
        """Get the error message if this is an error event."""
        if not self.is_error:
            return None
        error = self.data.get("error") or {}
        if isinstance(error, dict):
            return error.get("message", str(error))
        return str(error)


def _load_object(text: Any) -> Optional[dict]:
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(text, str):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return data


def parse_caller_message(text: Any) -> Optional[dict]:
    """
    Parse a Twilio Media Streams message.

    Returns:
        The decoded event, or None if the message is not a JSON object
        carrying a string ``event`` tag.
    """
    data = _load_object(text)
    if data is None or not isinstance(data.get("event"), str):
        return None
    return data


def parse_realtime_message(text: Any) -> Optional[RealtimeEvent]:
    """
    Parse an OpenAI Realtime API message.

    Returns:
        A RealtimeEvent, or None if the message is not a JSON object
        carrying a string ``type`` tag.
    """
    data = _load_object(text)
    if data is None or not isinstance(data.get("type"), str):
        return None
    return RealtimeEvent(type=data["type"], data=data)


# =============================================================================
# Outbound builders
# =============================================================================


def session_update(
    instructions: str,
    language: str,
    voice: str,
    audio_format: str = "g711_ulaw",
    sample_rate_hz: int = 8000,
    modalities: Optional[list[str]] = None,
) -> dict:
    """Build the one-time session configuration event."""
    audio = {"type": audio_format, "sample_rate_hz": sample_rate_hz}
    return {
        "type": RealtimeEventType.SESSION_UPDATE.value,
        "session": {
            "instructions": instructions,
            "language": language,
            "modalities": list(modalities) if modalities else ["audio"],
            "voice": voice,
            "input_audio_format": dict(audio),
            "output_audio_format": dict(audio),
        },
    }


def response_create(instructions: Optional[str] = None) -> dict:
    """Ask the model to generate a response, optionally with canned instructions."""
    event: dict[str, Any] = {"type": RealtimeEventType.RESPONSE_CREATE.value}
    if instructions:
        event["response"] = {"instructions": instructions}
    return event


def input_audio_append(audio_b64: str) -> dict:
    return {
        "type": RealtimeEventType.INPUT_AUDIO_BUFFER_APPEND.value,
        "audio": audio_b64,
    }


def input_audio_commit() -> dict:
    return {"type": RealtimeEventType.INPUT_AUDIO_BUFFER_COMMIT.value}


def caller_media(stream_sid: str, payload: str) -> dict:
    """Frame an audio increment for playback on a Twilio stream."""
    return {
        "event": CallerEventType.MEDIA.value,
        "streamSid": stream_sid,
        "media": {"payload": payload},
    }
