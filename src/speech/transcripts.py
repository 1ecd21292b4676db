"""Classification of realtime speech recognition events into transcripts and wake candidates."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

LOGGER = logging.getLogger(__name__)

COMMITTED_MESSAGE_TYPES = frozenset({"committed_transcript", "committed_transcript_with_timestamps"})
PARTIAL_MESSAGE_TYPES = frozenset({"partial_transcript"})
_TEXT_KEYS = ("text", "transcript", "message", "partial")


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    committed: bool


TranscriptHandler = Callable[[str], None]
WakeCandidateHandler = Callable[[TranscriptEvent], None]


def extract_text(message: dict[str, Any]) -> str:
    for key in _TEXT_KEYS:
        value = message.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def classify_message(message: dict[str, Any]) -> TranscriptEvent | None:
    """Return a transcript event for partial/committed messages, ``None`` otherwise."""

    message_type = message.get("message_type")
    if message_type in COMMITTED_MESSAGE_TYPES:
        committed = True
    elif message_type in PARTIAL_MESSAGE_TYPES:
        committed = False
    else:
        return None
    text = extract_text(message)
    if not text:
        return None
    return TranscriptEvent(text=text, committed=committed)


class WakePhraseMatcher:
    """Case-insensitive substring match against a list of wake phrases."""

    def __init__(self, phrases: Iterable[str]) -> None:
        self._phrases = tuple(p.strip().lower() for p in phrases if p and p.strip())

    @property
    def phrases(self) -> tuple[str, ...]:
        return self._phrases

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase in lowered for phrase in self._phrases)


class TranscriptClassifier:
    """Observer over one recognition connection's raw message stream.

    Exactly one transcript sink and one wake-candidate handler can be registered;
    registering again replaces the previous handler.
    """

    def __init__(self, matcher: WakePhraseMatcher) -> None:
        self._matcher = matcher
        self._transcript_handler: TranscriptHandler | None = None
        self._wake_handler: WakeCandidateHandler | None = None

    def on_transcript(self, handler: TranscriptHandler | None) -> None:
        self._transcript_handler = handler

    def on_wake(self, handler: WakeCandidateHandler | None) -> None:
        self._wake_handler = handler

    def handle_raw(self, raw: str | bytes) -> TranscriptEvent | None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            LOGGER.warning("Dropping non-JSON recognition message: %.200r", raw)
            return None
        if not isinstance(message, dict):
            LOGGER.warning("Dropping unexpected recognition message: %.200r", raw)
            return None
        return self.handle_message(message)

    def handle_message(self, message: dict[str, Any]) -> TranscriptEvent | None:
        LOGGER.debug("Recognition message type=%s", message.get("message_type"))
        text = extract_text(message)
        if text and self._transcript_handler is not None:
            self._transcript_handler(text)

        event = classify_message(message)
        if event is None or not self._matcher.matches(event.text):
            return None

        LOGGER.info(
            "Wake phrase hit (%s): %s",
            "committed" if event.committed else "partial",
            event.text,
        )
        if self._wake_handler is not None:
            self._wake_handler(event)
        return event
