from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 5 * 60


@dataclass(frozen=True)
class PlaybackBlob:
    blob_id: str
    audio: bytes
    media_type: str
    expires_at: float


class AudioBlobStore:
    """In-memory store for synthesized replies that Twilio fetches by URL.

    Every blob is deleted ``retention_seconds`` after it was stored, whether or not
    it was ever fetched. Lookups also check the expiry, so an entry whose deletion
    callback has not run yet is already unreachable.

    Note: This is a single-process store. For multi-worker deployments, replace
    with Redis or another shared store.
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._blobs: dict[str, PlaybackBlob] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def retention_seconds(self) -> float:
        return self._retention_seconds

    @staticmethod
    def new_blob_id() -> str:
        return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}"

    async def put(self, audio: bytes, *, media_type: str = "audio/mpeg") -> PlaybackBlob:
        blob = PlaybackBlob(
            blob_id=self.new_blob_id(),
            audio=bytes(audio),
            media_type=media_type,
            expires_at=self._clock() + self._retention_seconds,
        )
        async with self._lock:
            self._blobs[blob.blob_id] = blob
            loop = asyncio.get_running_loop()
            self._timers[blob.blob_id] = loop.call_later(
                self._retention_seconds, self._expire, blob.blob_id
            )
        return blob

    async def get(self, blob_id: str) -> PlaybackBlob | None:
        async with self._lock:
            blob = self._blobs.get(blob_id)
            if blob is None:
                return None
            if self._clock() >= blob.expires_at:
                self._discard(blob_id)
                return None
            return blob

    async def delete(self, blob_id: str) -> bool:
        async with self._lock:
            return self._discard(blob_id)

    def __len__(self) -> int:
        return len(self._blobs)

    def _expire(self, blob_id: str) -> None:
        if self._discard(blob_id):
            LOGGER.debug("Audio blob %s expired", blob_id)

    def _discard(self, blob_id: str) -> bool:
        timer = self._timers.pop(blob_id, None)
        if timer is not None:
            timer.cancel()
        return self._blobs.pop(blob_id, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._blobs.clear()
