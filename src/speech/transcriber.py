"""Realtime speech-to-text over the ElevenLabs Scribe websocket."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agents.errors import TranscriberConnectionError
from config.settings import Settings
from speech.relay import AudioRelay, RelayState
from speech.transcripts import TranscriptClassifier, TranscriptHandler, WakeCandidateHandler, WakePhraseMatcher

LOGGER = logging.getLogger(__name__)


class RealtimeTranscriber:
    """One streaming recognition connection per call.

    Audio handed to ``send_audio`` before the socket is open is buffered by the
    relay and flushed in order once ``connect`` succeeds. Incoming messages are
    passed to the transcript classifier.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        wake_phrases: Iterable[str],
        model_id: str = "scribe_v2_realtime",
        sample_rate: int = 8000,
        audio_format: str = "ulaw_8000",
        language_code: str | None = None,
        commit_strategy: str | None = "vad",
        include_timestamps: bool = False,
        include_language_detection: bool = False,
        connector=None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._model_id = model_id
        self._sample_rate = sample_rate
        self._audio_format = audio_format
        self._language_code = language_code
        self._commit_strategy = commit_strategy
        self._include_timestamps = include_timestamps
        self._include_language_detection = include_language_detection
        self._connector = connector or websockets.connect

        self._classifier = TranscriptClassifier(WakePhraseMatcher(wake_phrases))
        self._relay = AudioRelay(self._send_chunk)
        self._connect_lock = asyncio.Lock()
        self._ws: Any = None
        self._receive_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> RealtimeTranscriber:
        if not settings.eleven_ws_url or not settings.eleven_api_key:
            raise ValueError("ELEVEN_WS_URL and ELEVEN_API_KEY must be configured.")
        kwargs: dict[str, Any] = {
            "url": settings.eleven_ws_url,
            "api_key": settings.eleven_api_key,
            "wake_phrases": settings.wake_phrase_list,
            "model_id": settings.eleven_model_id,
            "sample_rate": settings.eleven_sample_rate,
            "language_code": settings.eleven_language_code,
            "commit_strategy": settings.eleven_commit_strategy,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def relay(self) -> AudioRelay:
        return self._relay

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    def on_transcript(self, handler: TranscriptHandler | None) -> None:
        self._classifier.on_transcript(handler)

    def on_wake(self, handler: WakeCandidateHandler | None) -> None:
        self._classifier.on_wake(handler)

    def build_url(self) -> str:
        parts = urlsplit(self._url)
        query = dict(parse_qsl(parts.query))
        query.update(
            {
                "model_id": self._model_id,
                "audio_format": self._audio_format,
                "sample_rate": str(self._sample_rate),
                "include_timestamps": str(self._include_timestamps).lower(),
                "include_language_detection": str(self._include_language_detection).lower(),
            }
        )
        if self._language_code:
            query["language_code"] = self._language_code
        if self._commit_strategy:
            query["commit_strategy"] = self._commit_strategy
        return urlunsplit(parts._replace(query=urlencode(query)))

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None or self._closed or self._relay.state is RelayState.CLOSED:
                return
            try:
                ws = await self._connector(
                    self.build_url(),
                    additional_headers={"xi-api-key": self._api_key},
                )
            except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                self._relay.mark_closed()
                raise TranscriberConnectionError(f"Speech recognition connect failed: {exc}") from exc

            if self._closed:
                await ws.close()
                return

            self._ws = ws
            self._receive_task = asyncio.create_task(self._receive_loop(ws))
            await self._relay.mark_ready()

    async def send_audio(self, frame: bytes) -> None:
        await self._relay.send(frame)

    async def close(self) -> None:
        self._closed = True
        self._relay.mark_closed()
        ws, self._ws = self._ws, None
        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done():
            task.cancel()
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                LOGGER.debug("Recognition websocket close error: %s", exc)

    def _audio_message(self, frame: bytes) -> str:
        return json.dumps(
            {
                "message_type": "input_audio_chunk",
                "audio_base_64": base64.b64encode(frame).decode("ascii"),
                "commit": False,
                "sample_rate": self._sample_rate,
            }
        )

    async def _send_chunk(self, frame: bytes) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            await ws.send(self._audio_message(frame))
        except ConnectionClosed as exc:
            LOGGER.warning("Recognition websocket closed while sending audio: %s", exc)
            self._drop_connection(ws)

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    self._classifier.handle_raw(raw)
                except Exception:
                    LOGGER.exception("Recognition message handler failed")
        except ConnectionClosed as exc:
            LOGGER.info("Recognition websocket closed: %s", exc)
        finally:
            self._drop_connection(ws)

    def _drop_connection(self, ws) -> None:
        if self._ws is ws:
            self._ws = None
            self._relay.mark_closed()
