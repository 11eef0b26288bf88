"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +1415...")
    call_api_key: str | None = Field(
        default=None,
        description="Optional API key required to call the call-trigger endpoint.",
    )

    # Speech service (OpenAI Realtime)
    openai_api_key: str | None = Field(default=None)
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    realtime_model: str = Field(default="gpt-4o-realtime-preview")
    realtime_voice: str = Field(default="alloy")
    system_instructions: str = Field(
        default=(
            "You are a friendly, upbeat outbound phone agent. "
            "Greet the caller immediately and keep every answer under ten seconds."
        ),
    )

    # Bridge tuning
    speech_input_sample_rate: Literal[8000, 16000] = Field(
        default=16000, description="Rate of linear audio submitted to the speech service (Hz)."
    )
    speech_output_sample_rate: Literal[8000, 16000] = Field(
        default=16000, description="Rate of linear audio the speech service returns (Hz)."
    )
    telephony_frame_ms: int = Field(default=20, gt=0, description="Telephony frame duration (ms).")
    inbound_commit_ms: int = Field(
        default=200, gt=0, description="Minimum caller audio per submission (ms)."
    )
    inbound_max_buffer_ms: int = Field(
        default=10_000, gt=0, description="Hard cap on buffered caller audio; oldest dropped (ms)."
    )
    commit_ingest_delay_ms: int = Field(
        default=50, ge=0, description="Wait between append and commit (ms)."
    )
    keepalive_interval_s: float = Field(default=15.0, gt=0)
    first_response_policy: Literal["greet_first", "listen_first"] = Field(default="greet_first")
    response_timeout_s: float = Field(
        default=0.0,
        ge=0.0,
        description="Force the turn back to idle after this long without completion. 0 disables.",
    )

    # Outbound-path diagnostics
    test_tone_on_start: bool = Field(default=False)
    test_tone_hz: float = Field(default=440.0, gt=0)
    test_tone_ms: int = Field(default=2000, ge=0)
    test_tone_amplitude: int = Field(default=6000, ge=0, le=32767)

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/") or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
