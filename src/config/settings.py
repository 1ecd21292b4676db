"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WAKE_PHRASE = "hey assistant"


def parse_wake_phrases(raw_list: str | None, default_phrase: str | None) -> list[str]:
    """Split a comma separated phrase list, falling back to the single default phrase."""

    if raw_list and raw_list.strip():
        return [phrase.strip().lower() for phrase in raw_list.split(",") if phrase.strip()]
    phrase = (default_phrase or "").strip().lower()
    return [phrase] if phrase else []


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO")

    # Public endpoints Twilio calls back into
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks and audio playback (e.g. https://<ngrok>.ngrok-free.app).",
    )
    public_ws_url: str | None = Field(
        default=None,
        description="Public wss:// URL of the media stream websocket.",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_number: str | None = Field(default=None, description="E.164 caller id for outbound legs.")

    # Wake phrase detection
    wake_phrase: str = Field(default=DEFAULT_WAKE_PHRASE)
    wake_phrases: str | None = Field(
        default=None,
        description="Comma separated list of wake phrases. Overrides WAKE_PHRASE when set.",
    )
    wake_throttle_seconds: float = Field(default=8.0, gt=0.0)
    wake_debounce_seconds: float = Field(default=2.5, gt=0.0)

    # ElevenLabs
    eleven_api_key: str | None = Field(default=None)
    eleven_api_base: str = Field(default="https://api.elevenlabs.io")

    # ElevenLabs realtime speech recognition
    eleven_ws_url: str | None = Field(
        default=None,
        description="Realtime speech-to-text websocket endpoint.",
    )
    eleven_model_id: str = Field(default="scribe_v2_realtime")
    eleven_sample_rate: int = Field(default=8000)
    eleven_language_code: str | None = Field(default="en")
    eleven_commit_strategy: Literal["vad", "manual"] = Field(default="vad")

    # ElevenLabs text to speech
    eleven_voice_id: str | None = Field(default=None)
    eleven_tts_model_id: str = Field(default="eleven_flash_v2_5")
    audio_retention_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="How long synthesized replies stay downloadable.",
    )

    # ElevenLabs conversational agent
    eleven_agent_id: str | None = Field(default=None)
    agent_reply_timeout_seconds: float = Field(default=15.0, gt=0.0)

    @field_validator("public_base_url", "public_ws_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("eleven_language_code")
    @classmethod
    def empty_language_is_auto(cls, value: str | None) -> str | None:
        return value or None

    @property
    def wake_phrase_list(self) -> list[str]:
        return parse_wake_phrases(self.wake_phrases, self.wake_phrase)

    @property
    def agent_ws_base(self) -> str:
        base = self.eleven_api_base.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base.removeprefix("https://")
        if base.startswith("http://"):
            return "ws://" + base.removeprefix("http://")
        return base

    @property
    def transcription_enabled(self) -> bool:
        return bool(self.eleven_ws_url and self.eleven_api_key)

    @property
    def agent_enabled(self) -> bool:
        return bool(self.eleven_agent_id and self.eleven_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
