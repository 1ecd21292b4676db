"""Wake phrase debouncing and throttling.

``WakePolicy`` is the per-call state machine, driven with explicit timestamps so it
can be exercised without a clock. ``WakeDebouncer`` binds a policy to the event
loop: it owns the debounce timer and dispatches fired wakes as tasks.

Rules, per call:

* a committed match fires at once unless a wake fired less than the throttle
  window ago; firing cancels any pending partial candidate;
* a partial match outside the throttle window (re)starts the debounce timer with
  the newest text; the candidate fires when the timer elapses, unless it was
  superseded or a wake fired in the meantime.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from speech.transcripts import TranscriptEvent

LOGGER = logging.getLogger(__name__)

DEFAULT_THROTTLE_SECONDS = 8.0
DEFAULT_DEBOUNCE_SECONDS = 2.5


class WakeState(enum.Enum):
    IDLE = "idle"
    PARTIAL_PENDING = "partial_pending"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class WakeTrigger:
    call_sid: str
    text: str


@dataclass(frozen=True)
class PendingWake:
    text: str
    generation: int
    due_at: float


class WakePolicy:
    def __init__(
        self,
        *,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.throttle_seconds = throttle_seconds
        self.debounce_seconds = debounce_seconds
        self.last_fired_at: float | None = None
        self.pending: PendingWake | None = None
        self._generation = 0

    def is_throttled(self, now: float) -> bool:
        return self.last_fired_at is not None and now - self.last_fired_at < self.throttle_seconds

    def state(self, now: float) -> WakeState:
        if self.pending is not None:
            return WakeState.PARTIAL_PENDING
        if self.is_throttled(now):
            return WakeState.THROTTLED
        return WakeState.IDLE

    def on_committed(self, text: str, now: float) -> str | None:
        """Return the text to fire, or ``None`` when suppressed."""

        if self.is_throttled(now):
            return None
        self.pending = None
        self.last_fired_at = now
        return text

    def on_partial(self, text: str, now: float) -> PendingWake | None:
        """Record a partial candidate and return it for scheduling, or ``None`` when throttled."""

        if self.is_throttled(now):
            return None
        self._generation += 1
        self.pending = PendingWake(text=text, generation=self._generation, due_at=now + self.debounce_seconds)
        return self.pending

    def on_timer(self, generation: int, now: float) -> str | None:
        """Resolve a debounce timer; stale or re-throttled timers return ``None``."""

        pending = self.pending
        if pending is None or pending.generation != generation:
            return None
        self.pending = None
        if self.is_throttled(now):
            return None
        self.last_fired_at = now
        return pending.text

    def cancel_pending(self) -> None:
        self.pending = None


WakeHandler = Callable[[WakeTrigger], Awaitable[None]]


class WakeDebouncer:
    """Event-loop driver for a single call's ``WakePolicy``."""

    def __init__(
        self,
        call_sid: str,
        on_wake: WakeHandler,
        *,
        policy: WakePolicy | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._call_sid = call_sid
        self._on_wake = on_wake
        self._policy = policy or WakePolicy()
        self._clock = clock
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def policy(self) -> WakePolicy:
        return self._policy

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    def submit(self, event: TranscriptEvent) -> None:
        if self._closed:
            return
        now = self._now()
        if event.committed:
            text = self._policy.on_committed(event.text, now)
            if text is None:
                LOGGER.debug("Wake suppressed for %s (throttled)", self._call_sid)
                return
            self._cancel_timer()
            self._dispatch(text)
            return

        pending = self._policy.on_partial(event.text, now)
        if pending is None:
            LOGGER.debug("Partial wake ignored for %s (throttled)", self._call_sid)
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            max(0.0, pending.due_at - now), self._on_timer, pending.generation
        )

    def _on_timer(self, generation: int) -> None:
        if self._closed:
            return
        self._timer = None
        text = self._policy.on_timer(generation, self._now())
        if text is None:
            return
        LOGGER.info("Partial wake trigger for %s (speaker paused): %s", self._call_sid, text)
        self._dispatch(text)

    def _dispatch(self, text: str) -> None:
        trigger = WakeTrigger(call_sid=self._call_sid, text=text)
        task = asyncio.create_task(self._run(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, trigger: WakeTrigger) -> None:
        try:
            await self._on_wake(trigger)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Wake handling failed for %s", trigger.call_sid)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def close(self) -> None:
        self._closed = True
        self._cancel_timer()
        self._policy.cancel_pending()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
