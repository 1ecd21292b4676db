from __future__ import annotations

import asyncio

from calls.wake import WakeDebouncer, WakePolicy, WakeTrigger
from speech.transcripts import TranscriptEvent


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _recorder():
    fired: list[WakeTrigger] = []

    async def on_wake(trigger: WakeTrigger) -> None:
        fired.append(trigger)

    return fired, on_wake


def test_committed_wake_dispatches_immediately_and_throttles():
    async def scenario():
        fired, on_wake = _recorder()
        clock = ManualClock()
        debouncer = WakeDebouncer("CA1", on_wake, clock=clock)

        debouncer.submit(TranscriptEvent("hey assistant status", committed=True))
        clock.now = 4.0
        debouncer.submit(TranscriptEvent("hey assistant status again", committed=True))
        clock.now = 9.0
        debouncer.submit(TranscriptEvent("hey assistant next item", committed=True))
        await asyncio.sleep(0.01)
        await debouncer.close()
        return fired

    fired = asyncio.run(scenario())

    assert [trigger.text for trigger in fired] == ["hey assistant status", "hey assistant next item"]
    assert all(trigger.call_sid == "CA1" for trigger in fired)


def test_partial_wake_fires_after_speaker_pauses():
    async def scenario():
        fired, on_wake = _recorder()
        debouncer = WakeDebouncer("CA1", on_wake, policy=WakePolicy(debounce_seconds=0.2))

        debouncer.submit(TranscriptEvent("hey assist", committed=False))
        await asyncio.sleep(0.1)
        debouncer.submit(TranscriptEvent("hey assistant please", committed=False))
        await asyncio.sleep(0.15)
        before = list(fired)
        await asyncio.sleep(0.2)
        await debouncer.close()
        return before, fired

    before, fired = asyncio.run(scenario())

    assert before == []
    assert [trigger.text for trigger in fired] == ["hey assistant please"]


def test_commit_supersedes_pending_partial():
    async def scenario():
        fired, on_wake = _recorder()
        debouncer = WakeDebouncer("CA1", on_wake, policy=WakePolicy(debounce_seconds=0.05))

        debouncer.submit(TranscriptEvent("hey assistant", committed=False))
        debouncer.submit(TranscriptEvent("hey assistant book it", committed=True))
        await asyncio.sleep(0.15)
        await debouncer.close()
        return fired

    fired = asyncio.run(scenario())

    assert [trigger.text for trigger in fired] == ["hey assistant book it"]


def test_close_cancels_pending_timer():
    async def scenario():
        fired, on_wake = _recorder()
        debouncer = WakeDebouncer("CA1", on_wake, policy=WakePolicy(debounce_seconds=0.05))

        debouncer.submit(TranscriptEvent("hey assistant", committed=False))
        await debouncer.close()
        await asyncio.sleep(0.1)
        debouncer.submit(TranscriptEvent("hey assistant", committed=True))
        await asyncio.sleep(0.01)
        return fired

    assert asyncio.run(scenario()) == []


def test_handler_errors_do_not_break_later_wakes():
    async def scenario():
        texts: list[str] = []
        clock = ManualClock()

        async def on_wake(trigger: WakeTrigger) -> None:
            texts.append(trigger.text)
            raise RuntimeError("playback exploded")

        debouncer = WakeDebouncer("CA1", on_wake, clock=clock)
        debouncer.submit(TranscriptEvent("hey assistant one", committed=True))
        await asyncio.sleep(0.01)
        clock.now = 10.0
        debouncer.submit(TranscriptEvent("hey assistant two", committed=True))
        await asyncio.sleep(0.01)
        await debouncer.close()
        return texts

    assert asyncio.run(scenario()) == ["hey assistant one", "hey assistant two"]
