from __future__ import annotations

import asyncio

from agents.errors import AgentConnectionError, PlaybackFailedError
from calls.orchestrator import AGENT_ERROR_TEXT, NO_REPLY_TEXT, CallOrchestrator, acknowledgement_text
from calls.registry import SessionRegistry
from calls.wake import WakePolicy
from fakes import FakeConnector, RecordingAnnouncer
from playback.store import AudioBlobStore
from speech.transcriber import RealtimeTranscriber


class ScriptedCoordinator:
    def __init__(self, *, reply=None, error=None) -> None:
        self.reply = reply
        self.error = error
        self.wakes: list[tuple[str, str]] = []
        self.closed: list[str] = []
        self.subsequent_handler = None

    def set_subsequent_reply_handler(self, handler) -> None:
        self.subsequent_handler = handler

    async def on_wake(self, session, text: str):
        self.wakes.append((session.call_sid, text))
        if self.error is not None:
            raise self.error
        return self.reply

    async def close(self, call_sid: str) -> None:
        self.closed.append(call_sid)

    async def close_all(self) -> None:
        return None


class FailingAnnouncer:
    async def announce(self, call_sid: str, text: str):
        raise PlaybackFailedError("all strategies failed")


def _orchestrator(*, announcer=None, coordinator=None, connector=None, registry=None) -> CallOrchestrator:
    transcriber_factory = None
    if connector is not None:
        def transcriber_factory():
            return RealtimeTranscriber(
                url="wss://stt.example.com/v1/speech-to-text/realtime",
                api_key="test-key",
                wake_phrases=["hey assistant"],
                connector=connector,
            )

    return CallOrchestrator(
        registry=registry or SessionRegistry(),
        store=AudioBlobStore(),
        announcer=announcer or RecordingAnnouncer(),
        coordinator=coordinator,
        transcriber_factory=transcriber_factory,
        wake_policy_factory=lambda: WakePolicy(debounce_seconds=0.05),
    )


def test_wake_without_agent_plays_acknowledgement():
    async def scenario():
        announcer = RecordingAnnouncer()
        orchestrator = _orchestrator(announcer=announcer)
        session = await orchestrator.open_session("CA1", custom_parameters={"from": "+15550001111"})
        await orchestrator.handle_wake(session, "hey assistant")
        await orchestrator.close_all()
        return announcer.calls

    assert asyncio.run(scenario()) == [("CA1", "Hello +15550001111, I heard your request.")]


def test_acknowledgement_without_caller():
    assert acknowledgement_text(None) == "Hello there, I heard your request."


def test_agent_reply_is_played():
    async def scenario():
        announcer = RecordingAnnouncer()
        coordinator = ScriptedCoordinator(reply="The meeting ends at noon.")
        orchestrator = _orchestrator(announcer=announcer, coordinator=coordinator)
        session = await orchestrator.open_session("CA1")
        await orchestrator.handle_wake(session, "hey assistant when do we end")
        await orchestrator.close_all()
        return announcer.calls, coordinator.wakes

    calls, wakes = asyncio.run(scenario())

    assert wakes == [("CA1", "hey assistant when do we end")]
    assert calls == [("CA1", "The meeting ends at noon.")]


def test_missing_agent_reply_plays_fallback():
    async def scenario():
        announcer = RecordingAnnouncer()
        orchestrator = _orchestrator(announcer=announcer, coordinator=ScriptedCoordinator(reply=None))
        session = await orchestrator.open_session("CA1")
        await orchestrator.handle_wake(session, "hey assistant")
        await orchestrator.close_all()
        return announcer.calls

    assert asyncio.run(scenario()) == [("CA1", NO_REPLY_TEXT)]


def test_agent_failure_plays_error_text():
    async def scenario():
        announcer = RecordingAnnouncer()
        coordinator = ScriptedCoordinator(error=AgentConnectionError("agent unreachable"))
        orchestrator = _orchestrator(announcer=announcer, coordinator=coordinator)
        session = await orchestrator.open_session("CA1")
        await orchestrator.handle_wake(session, "hey assistant")
        await orchestrator.close_all()
        return announcer.calls

    assert asyncio.run(scenario()) == [("CA1", AGENT_ERROR_TEXT)]


def test_playback_failure_is_contained():
    async def scenario():
        orchestrator = _orchestrator(announcer=FailingAnnouncer())
        return await orchestrator.play("CA1", "hello")

    assert asyncio.run(scenario()) is None


def test_subsequent_agent_reply_is_played():
    async def scenario():
        announcer = RecordingAnnouncer()
        coordinator = ScriptedCoordinator(reply="first")
        _orchestrator(announcer=announcer, coordinator=coordinator)
        await coordinator.subsequent_handler("CA1", "one more thing")
        return announcer.calls

    assert asyncio.run(scenario()) == [("CA1", "one more thing")]


def test_open_session_records_stream_parameters_and_close_clears_them():
    async def scenario():
        registry = SessionRegistry()
        await registry.upsert("CA1", caller="+15550001111", conference_name="CA1")
        coordinator = ScriptedCoordinator()
        orchestrator = _orchestrator(registry=registry, coordinator=coordinator)

        session = await orchestrator.open_session(
            "CA1",
            caller="unknown",
            custom_parameters={"from": "unknown", "conferenceSid": "CF1", "conferenceName": "standup"},
        )
        opened = (session.caller, await registry.get("CA1"), orchestrator.session_count)

        await orchestrator.close_session("CA1")
        closed = (await registry.get("CA1"), orchestrator.session_count, coordinator.closed)
        return opened, closed

    (caller, meta, count), (meta_after, count_after, closed) = asyncio.run(scenario())

    assert caller == "+15550001111"
    assert meta.conference_sid == "CF1"
    assert meta.conference_name == "standup"
    assert count == 1
    assert meta_after is None
    assert count_after == 0
    assert closed == ["CA1"]


def test_reopening_a_call_replaces_the_previous_session():
    async def scenario():
        orchestrator = _orchestrator()
        first = await orchestrator.open_session("CA1")
        second = await orchestrator.open_session("CA1")
        result = (first.closed, second.closed, orchestrator.get_session("CA1") is second)
        await orchestrator.close_all()
        return result

    assert asyncio.run(scenario()) == (True, False, True)


def test_spoken_wake_phrase_flows_from_audio_to_playback():
    async def scenario():
        connector = FakeConnector()
        announcer = RecordingAnnouncer()
        orchestrator = _orchestrator(announcer=announcer, connector=connector)

        session = await orchestrator.open_session(
            "CA1", custom_parameters={"from": "+15550001111", "conferenceName": "CA1"}
        )
        await session.relay_audio(b"\x7f\x7f")
        await asyncio.sleep(0.01)
        ws = connector.sockets[0]
        ws.feed({"message_type": "committed_transcript", "text": "Hey assistant, what's the status?"})
        await asyncio.sleep(0.02)

        await orchestrator.close_session("CA1")
        return ws, announcer.calls

    ws, calls = asyncio.run(scenario())

    assert len(ws.sent_json()) == 1
    assert calls == [("CA1", "Hello +15550001111, I heard your request.")]
    assert ws.closed
