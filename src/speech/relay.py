"""Ordered forwarding of call audio frames to a speech recognition connection."""

from __future__ import annotations

import enum
import logging
from collections import deque
from collections.abc import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

FrameSender = Callable[[bytes], Awaitable[None]]


class RelayState(enum.Enum):
    CONNECTING = "connecting"
    FLUSHING = "flushing"
    OPEN = "open"
    CLOSED = "closed"


class AudioRelay:
    """Forwards frames in arrival order, queueing them while the link is not ready.

    A relay starts in ``CONNECTING``. ``mark_ready`` drains the queue (frames that
    arrive during the drain are appended and drained too) before switching to
    ``OPEN``; ``mark_closed`` discards whatever is still queued. Frames received
    after close are dropped.
    """

    def __init__(self, sender: FrameSender) -> None:
        self._sender = sender
        self._pending: deque[bytes] = deque()
        self._state = RelayState.CONNECTING
        self.dropped_frames = 0

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send(self, frame: bytes) -> None:
        if self._state is RelayState.CLOSED:
            self.dropped_frames += 1
            return
        if self._state is not RelayState.OPEN:
            self._pending.append(frame)
            return
        await self._sender(frame)

    async def mark_ready(self) -> None:
        if self._state is not RelayState.CONNECTING:
            return
        self._state = RelayState.FLUSHING
        flushed = 0
        while self._pending:
            if self._state is not RelayState.FLUSHING:
                return
            await self._sender(self._pending.popleft())
            flushed += 1
        if self._state is RelayState.FLUSHING:
            self._state = RelayState.OPEN
        if flushed:
            LOGGER.debug("Flushed %d buffered audio frames", flushed)

    def mark_closed(self) -> None:
        if self._pending:
            LOGGER.info("Discarding %d buffered audio frames", len(self._pending))
        self._pending.clear()
        self._state = RelayState.CLOSED
