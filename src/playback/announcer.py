"""Plays synthesized replies into a call's Twilio conference.

Strategies, in order of preference:

1. conference-wide announcement (everyone hears the reply);
2. participant announcement targeted at the triggering call;
3. replacing the call's TwiML with ``<Play>`` followed by a re-dial into the same
   conference. The caller briefly leaves the conference, so this is a last resort.

The conference SID is looked up by friendly name before every playback, since the
SID captured from webhooks goes stale when a conference is torn down and recreated.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass

from twilio.base.exceptions import TwilioException

from agents.errors import PlaybackFailedError
from calls.registry import CallMetadata, SessionRegistry
from integrations.twilio_client import twiml_play_and_rejoin
from playback.store import AudioBlobStore
from speech.tts import BaseSynthesizer

LOGGER = logging.getLogger(__name__)

AUDIO_ROUTE_PREFIX = "/api/audio"


class PlaybackTier(enum.Enum):
    CONFERENCE = "conference"
    PARTICIPANT = "participant"
    TWIML = "twiml"


@dataclass(frozen=True)
class PlaybackResult:
    tier: PlaybackTier | None = None
    audio_url: str | None = None
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class PlaybackAnnouncer:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        store: AudioBlobStore,
        synthesizer: BaseSynthesizer | None,
        twilio_client,
        public_base_url: str | None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._synthesizer = synthesizer
        self._twilio = twilio_client
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def audio_url(self, blob_id: str) -> str:
        return f"{self._public_base_url}{AUDIO_ROUTE_PREFIX}/{blob_id}.mp3"

    def _skip_reason(self, meta: CallMetadata | None) -> str | None:
        if self._twilio is None:
            return "twilio client not configured"
        if not self._public_base_url:
            return "PUBLIC_BASE_URL not set"
        if self._synthesizer is None:
            return "speech synthesis not configured"
        if meta is None:
            return "no call metadata"
        return None

    async def announce(self, call_sid: str, text: str) -> PlaybackResult:
        meta = await self._registry.get(call_sid)
        reason = self._skip_reason(meta)
        if reason is not None:
            LOGGER.warning("Playback skipped for %s: %s", call_sid, reason)
            return PlaybackResult(skipped_reason=reason)

        LOGGER.info("Playback start for %s: %s", call_sid, text)
        audio = await self._synthesizer.synthesize(text)
        blob = await self._store.put(audio, media_type=self._synthesizer.media_type)
        url = self.audio_url(blob.blob_id)
        LOGGER.info("Playback synthesized for %s: %d bytes at %s", call_sid, len(audio), url)

        conference_name = meta.effective_conference_name
        conference_sid = await self.resolve_conference_sid(call_sid, meta)

        if conference_sid:
            try:
                await asyncio.to_thread(self._announce_to_conference, conference_sid, url)
                LOGGER.info("Conference announcement started for %s (%s)", call_sid, conference_sid)
                return PlaybackResult(tier=PlaybackTier.CONFERENCE, audio_url=url)
            except (TwilioException, OSError) as exc:
                LOGGER.warning("Conference announcement failed for %s, trying participant: %s", call_sid, exc)

            try:
                await asyncio.to_thread(self._announce_to_participant, conference_sid, call_sid, url)
                LOGGER.info("Participant announcement started for %s", call_sid)
                return PlaybackResult(tier=PlaybackTier.PARTICIPANT, audio_url=url)
            except (TwilioException, OSError) as exc:
                LOGGER.warning("Participant announcement failed for %s: %s", call_sid, exc)

        LOGGER.warning("Falling back to TwiML update for %s (caller will rejoin %s)", call_sid, conference_name)
        twiml = twiml_play_and_rejoin(audio_url=url, conference_name=conference_name)
        try:
            await asyncio.to_thread(self._update_call_twiml, call_sid, twiml)
        except (TwilioException, OSError) as exc:
            LOGGER.error("TwiML playback failed for %s: %s", call_sid, exc)
            raise PlaybackFailedError(f"All playback strategies failed for {call_sid}: {exc}") from exc

        LOGGER.info("TwiML playback issued for %s", call_sid)
        return PlaybackResult(tier=PlaybackTier.TWIML, audio_url=url)

    async def resolve_conference_sid(self, call_sid: str, meta: CallMetadata) -> str | None:
        conference_sid = meta.conference_sid
        try:
            found = await asyncio.to_thread(self._find_in_progress_conference, meta.effective_conference_name)
        except (TwilioException, OSError) as exc:
            LOGGER.warning("Conference lookup failed for %s: %s", call_sid, exc)
            return conference_sid

        if found and found != conference_sid:
            await self._registry.upsert(call_sid, conference_sid=found)
        return found or conference_sid

    def _find_in_progress_conference(self, friendly_name: str) -> str | None:
        conferences = self._twilio.conferences.list(
            friendly_name=friendly_name,
            status="in-progress",
            limit=1,
        )
        if not conferences:
            return None
        return conferences[0].sid

    def _announce_to_conference(self, conference_sid: str, url: str) -> None:
        self._twilio.conferences(conference_sid).update(announce_url=url, announce_method="GET")

    def _announce_to_participant(self, conference_sid: str, call_sid: str, url: str) -> None:
        self._twilio.conferences(conference_sid).participants(call_sid).update(announce_url=url)

    def _update_call_twiml(self, call_sid: str, twiml: str) -> None:
        self._twilio.calls(call_sid).update(twiml=twiml)
