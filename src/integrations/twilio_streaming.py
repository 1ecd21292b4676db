from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamStart:
    call_sid: str | None
    stream_sid: str | None
    custom_parameters: dict[str, str] = field(default_factory=dict)


def parse_twilio_ws_message(text: str | bytes) -> dict[str, Any] | None:
    """Decode a Media Streams frame; malformed frames are logged and yield ``None``."""

    try:
        message = json.loads(text)
    except (TypeError, ValueError):
        LOGGER.warning("Media stream message is not JSON: %.200r", text)
        return None
    if not isinstance(message, dict):
        LOGGER.warning("Media stream message is not an object: %.200r", text)
        return None
    return message


def parse_start(message: dict[str, Any]) -> StreamStart:
    start = message.get("start") or {}
    params = start.get("customParameters") or {}
    return StreamStart(
        call_sid=start.get("callSid") or params.get("callSid"),
        stream_sid=start.get("streamSid") or message.get("streamSid"),
        custom_parameters={str(k): str(v) for k, v in params.items() if v is not None},
    )


def decode_media_payload(message: dict[str, Any]) -> bytes | None:
    """Return the inbound mu-law frame carried by a ``media`` message, if any."""

    media = message.get("media") or {}
    if media.get("track") and media.get("track") != "inbound":
        return None
    payload = media.get("payload")
    if not isinstance(payload, str) or not payload:
        return None
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        LOGGER.warning("Dropping media frame with invalid base64 payload")
        return None
