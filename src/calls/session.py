from __future__ import annotations

import asyncio
import logging

from agents.errors import TranscriberConnectionError
from calls.wake import WakeDebouncer, WakeHandler, WakePolicy
from speech.transcriber import RealtimeTranscriber

LOGGER = logging.getLogger(__name__)


class CallSession:
    """Live state of one call's media stream.

    Owns the recognition connection and the wake debouncer. The recognition
    connection is opened in the background so audio arriving meanwhile is
    buffered by its relay instead of stalling the media stream.
    """

    def __init__(
        self,
        call_sid: str,
        *,
        caller: str | None,
        on_wake: WakeHandler,
        transcriber: RealtimeTranscriber | None = None,
        wake_policy: WakePolicy | None = None,
    ) -> None:
        self.call_sid = call_sid
        self.caller = caller
        self.transcriber = transcriber
        self.debouncer = WakeDebouncer(call_sid, on_wake, policy=wake_policy)
        self._connect_task: asyncio.Task | None = None
        self.closed = False

        if transcriber is not None:
            transcriber.on_transcript(self._log_transcript)
            transcriber.on_wake(self.debouncer.submit)

    @property
    def label(self) -> str:
        return self.caller or self.call_sid

    def start(self) -> None:
        if self.transcriber is None or self._connect_task is not None:
            return
        self._connect_task = asyncio.create_task(self._connect_transcriber())

    async def _connect_transcriber(self) -> None:
        try:
            await self.transcriber.connect()
        except TranscriberConnectionError as exc:
            LOGGER.error("Speech recognition unavailable for %s: %s", self.call_sid, exc)
            return
        LOGGER.info("Speech recognition connected for %s", self.call_sid)

    async def relay_audio(self, frame: bytes) -> None:
        if self.closed or self.transcriber is None:
            return
        await self.transcriber.send_audio(frame)

    def _log_transcript(self, text: str) -> None:
        LOGGER.info("[transcript %s] %s", self.label, text)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.debouncer.close()
        if self.transcriber is not None:
            await self.transcriber.close()
