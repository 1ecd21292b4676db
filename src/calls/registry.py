from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class CallMetadata:
    call_sid: str
    caller: str | None = None
    conference_sid: str | None = None
    conference_name: str | None = None

    @property
    def effective_conference_name(self) -> str:
        return self.conference_name or self.call_sid


_UPDATABLE_FIELDS = frozenset(f.name for f in fields(CallMetadata)) - {"call_sid"}


class SessionRegistry:
    """In-memory call metadata shared by the webhook, conference and media handlers.

    Entries are immutable; ``upsert`` swaps in a merged copy under the lock, so two
    writers touching different fields of the same call never lose each other's update.
    Single-process only.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: dict[str, CallMetadata] = {}

    async def upsert(self, call_sid: str, **changes: str | None) -> CallMetadata:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown call metadata fields: {sorted(unknown)}")

        async with self._lock:
            current = self._entries.get(call_sid) or CallMetadata(call_sid=call_sid)
            updated = replace(current, **changes)
            self._entries[call_sid] = updated
            return updated

    async def get(self, call_sid: str) -> CallMetadata | None:
        async with self._lock:
            return self._entries.get(call_sid)

    async def remove(self, call_sid: str) -> CallMetadata | None:
        async with self._lock:
            return self._entries.pop(call_sid, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
