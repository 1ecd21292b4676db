"""Text-to-speech synthesis for agent replies."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from agents.errors import TTSFailedError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers."""

    media_type: str = "audio/mpeg"

    @abstractmethod
    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize speech for the given text."""


class ElevenLabsSynthesizer(BaseSynthesizer):
    """ElevenLabs streaming TTS endpoint, collected into a single MP3 payload."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        voice_id: str | None = None,
        api_base: str | None = None,
        model_id: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.eleven_api_key
        self._voice_id = voice_id or settings.eleven_voice_id
        if not self._api_key or not self._voice_id:
            raise ValueError("ELEVEN_API_KEY and ELEVEN_VOICE_ID must be configured.")
        self._api_base = (api_base or settings.eleven_api_base).rstrip("/")
        self._model_id = model_id or settings.eleven_tts_model_id
        self._timeout = timeout
        self._transport = transport

    def _endpoint(self, voice: str) -> str:
        return f"{self._api_base}/v1/text-to-speech/{voice}/stream"

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        headers = {"xi-api-key": self._api_key, "Content-Type": "application/json"}
        payload = {"text": text, "model_id": self._model_id}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._endpoint(voice or self._voice_id),
                    json=payload,
                    headers=headers,
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error(
                "ElevenLabs TTS failed: %s %s",
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise TTSFailedError(f"TTS request failed with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            LOGGER.error("ElevenLabs TTS request error: %s", exc)
            raise TTSFailedError(str(exc)) from exc

        return response.content


def build_synthesizer() -> BaseSynthesizer | None:
    """Factory returning the configured synthesizer, or ``None`` when TTS is not configured."""

    settings = get_settings()
    if not settings.eleven_api_key or not settings.eleven_voice_id:
        return None
    return ElevenLabsSynthesizer()
