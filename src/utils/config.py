"""
Configuration management using pydantic-settings.

Loads settings from environment variables and .env files.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..voice.prompts import AGENT_INSTRUCTIONS, GREETING_INSTRUCTIONS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenAI Configuration
    openai_api_key: str = Field(
        ...,
        description="OpenAI API key presented as bearer credential to the Realtime API",
    )
    openai_realtime_model: str = Field(
        default="gpt-4o-realtime-preview",
        description="Model to use for OpenAI Realtime API",
    )
    openai_realtime_base_url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime API WebSocket endpoint (model is appended as query parameter)",
    )
    openai_realtime_voice: str = Field(
        default="alloy",
        description="Voice to use for OpenAI Realtime (alloy, echo, shimmer, ...)",
    )

    # Agent Configuration
    agent_language: str = Field(
        default="sv-SE",
        description="Target spoken language tag sent in the session configuration",
    )
    agent_instructions: str = Field(
        default=AGENT_INSTRUCTIONS,
        description="System instructions for the voice agent",
    )
    greeting_enabled: bool = Field(
        default=True,
        description="Ask the agent to greet the caller once the stream has started",
    )
    greeting_instructions: str = Field(
        default=GREETING_INSTRUCTIONS,
        description="Instructions attached to the one-time greeting response",
    )

    # Audio format (passed through untouched, both legs must agree)
    audio_format: str = Field(default="g711_ulaw", description="Codec for input and output audio")
    audio_sample_rate_hz: int = Field(default=8000, description="Sample rate for input and output audio")

    # Webhook notifications
    webhook_url: Optional[str] = Field(
        default=None,
        description="Destination for call lifecycle notifications. Disabled when unset.",
    )
    webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    # Session limits
    session_idle_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="End the call when the caller leg is silent this long",
    )
    session_max_duration_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Hard upper bound on call duration",
    )
    stop_flush_timeout_seconds: float = Field(
        default=2.0,
        ge=0,
        description="How long a stopping session waits for queued events to reach the Realtime API",
    )

    # Public URLs (for Twilio webhooks)
    public_wss_base_url: str = Field(
        default="ws://localhost:3000",
        description="Public WebSocket URL for Twilio Media Streams",
    )
    stream_path: str = Field(default="/stream", description="Path of the Media Streams endpoint")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    @property
    def openai_realtime_url(self) -> str:
        """Get the OpenAI Realtime WebSocket URL."""
        return f"{self.openai_realtime_base_url}?model={self.openai_realtime_model}"

    @property
    def twilio_stream_url(self) -> str:
        """Get the Twilio Media Stream WebSocket URL."""
        base = self.public_wss_base_url.rstrip("/")
        return f"{base}{self.stream_path}"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-reading environment on every call.
    """
    return Settings()
