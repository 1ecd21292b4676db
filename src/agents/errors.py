"""Domain-specific exceptions for the call bridge.

These exceptions are safe to import from API layers without opening any connection.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Call bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TranscriberConnectionError(BridgeError):
    status_code = 503
    default_detail = "Speech recognition connection failed."


class AgentConnectionError(BridgeError):
    status_code = 503
    default_detail = "Conversational agent connection failed."


class TTSFailedError(BridgeError):
    status_code = 503
    default_detail = "Speech synthesis failed."


class PlaybackFailedError(BridgeError):
    status_code = 502
    default_detail = "All playback strategies failed."
