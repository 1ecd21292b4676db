"""Process-wide coordination of call sessions, the agent and reply playback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from agents.coordinator import AgentTurnCoordinator
from agents.errors import BridgeError, PlaybackFailedError
from calls.registry import SessionRegistry
from calls.session import CallSession
from calls.wake import WakePolicy, WakeTrigger
from config.settings import Settings
from integrations.twilio_client import build_twilio_client
from playback.announcer import PlaybackAnnouncer, PlaybackResult
from playback.store import AudioBlobStore
from speech.transcriber import RealtimeTranscriber
from speech.tts import build_synthesizer

LOGGER = logging.getLogger(__name__)

NO_REPLY_TEXT = "I'm here, but I didn't get a response. Please try again."
AGENT_ERROR_TEXT = "Sorry, I encountered an error. Please try again."


def acknowledgement_text(caller: str | None) -> str:
    return f"Hello {caller or 'there'}, I heard your request."


TranscriberFactory = Callable[[], RealtimeTranscriber | None]
WakePolicyFactory = Callable[[], WakePolicy]


class CallOrchestrator:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        store: AudioBlobStore,
        announcer: PlaybackAnnouncer,
        coordinator: AgentTurnCoordinator | None = None,
        transcriber_factory: TranscriberFactory | None = None,
        wake_policy_factory: WakePolicyFactory = WakePolicy,
    ) -> None:
        self.registry = registry
        self.store = store
        self.announcer = announcer
        self.coordinator = coordinator
        self._transcriber_factory = transcriber_factory or (lambda: None)
        self._wake_policy_factory = wake_policy_factory
        self._sessions: dict[str, CallSession] = {}
        if coordinator is not None:
            coordinator.set_subsequent_reply_handler(self._play_subsequent)

    @classmethod
    def from_settings(cls, settings: Settings) -> CallOrchestrator:
        registry = SessionRegistry()
        store = AudioBlobStore(settings.audio_retention_seconds)
        announcer = PlaybackAnnouncer(
            registry=registry,
            store=store,
            synthesizer=build_synthesizer(),
            twilio_client=build_twilio_client(),
            public_base_url=settings.public_base_url,
        )
        coordinator = (
            AgentTurnCoordinator.from_settings(settings, registry) if settings.agent_enabled else None
        )

        def transcriber_factory() -> RealtimeTranscriber | None:
            if not settings.transcription_enabled:
                return None
            return RealtimeTranscriber.from_settings(settings)

        def wake_policy_factory() -> WakePolicy:
            return WakePolicy(
                throttle_seconds=settings.wake_throttle_seconds,
                debounce_seconds=settings.wake_debounce_seconds,
            )

        return cls(
            registry=registry,
            store=store,
            announcer=announcer,
            coordinator=coordinator,
            transcriber_factory=transcriber_factory,
            wake_policy_factory=wake_policy_factory,
        )

    def get_session(self, call_sid: str) -> CallSession | None:
        return self._sessions.get(call_sid)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def open_session(
        self,
        call_sid: str,
        *,
        caller: str | None = None,
        custom_parameters: Mapping[str, str] | None = None,
    ) -> CallSession:
        params = custom_parameters or {}
        caller = params.get("from") or caller
        meta = await self.registry.get(call_sid)
        if (not caller or caller == "unknown") and meta is not None and meta.caller:
            caller = meta.caller

        if params.get("conferenceSid") or params.get("conferenceName"):
            changes: dict[str, str | None] = {"caller": caller}
            if params.get("conferenceSid"):
                changes["conference_sid"] = params["conferenceSid"]
            if params.get("conferenceName"):
                changes["conference_name"] = params["conferenceName"]
            await self.registry.upsert(call_sid, **changes)

        previous = self._sessions.pop(call_sid, None)
        if previous is not None:
            LOGGER.warning("Replacing existing media session for %s", call_sid)
            await previous.close()

        session = CallSession(
            call_sid,
            caller=caller,
            on_wake=self._on_wake,
            transcriber=self._transcriber_factory(),
            wake_policy=self._wake_policy_factory(),
        )
        self._sessions[call_sid] = session
        session.start()
        LOGGER.info("Media session opened for %s (caller=%s)", call_sid, caller)
        return session

    async def close_session(self, call_sid: str) -> None:
        session = self._sessions.pop(call_sid, None)
        if session is not None:
            await session.close()
        if self.coordinator is not None:
            await self.coordinator.close(call_sid)
        await self.registry.remove(call_sid)
        LOGGER.info("Media session closed for %s", call_sid)

    async def close_all(self) -> None:
        for call_sid in list(self._sessions):
            await self.close_session(call_sid)
        if self.coordinator is not None:
            await self.coordinator.close_all()
        await self.store.clear()

    async def _on_wake(self, trigger: WakeTrigger) -> None:
        session = self._sessions.get(trigger.call_sid)
        if session is None:
            LOGGER.info("Ignoring wake for closed call %s", trigger.call_sid)
            return
        await self.handle_wake(session, trigger.text)

    async def handle_wake(self, session: CallSession, text: str) -> None:
        LOGGER.info("Wake phrase from %s: %s", session.label, text)
        if self.coordinator is None:
            reply = acknowledgement_text(session.caller)
        else:
            try:
                reply = await self.coordinator.on_wake(session, text) or NO_REPLY_TEXT
            except BridgeError as exc:
                LOGGER.error("Agent turn failed for %s: %s", session.call_sid, exc)
                reply = AGENT_ERROR_TEXT
        await self.play(session.call_sid, reply)

    async def play(self, call_sid: str, text: str) -> PlaybackResult | None:
        try:
            return await self.announcer.announce(call_sid, text)
        except PlaybackFailedError:
            LOGGER.exception("Playback failed for %s", call_sid)
        except BridgeError as exc:
            LOGGER.error("Playback error for %s: %s", call_sid, exc)
        return None

    async def _play_subsequent(self, call_sid: str, text: str) -> None:
        LOGGER.info("Agent subsequent reply for %s: %s", call_sid, text)
        await self.play(call_sid, text)
