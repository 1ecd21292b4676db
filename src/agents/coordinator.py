"""Per-call ownership of agent conversations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from agents.conversation import AgentConversation
from calls.registry import CallMetadata, SessionRegistry
from config.settings import Settings

LOGGER = logging.getLogger(__name__)

SubsequentReplyHandler = Callable[[str, str], Awaitable[None]]
ConversationFactory = Callable[..., AgentConversation]


class WakeSource(Protocol):
    call_sid: str
    caller: str | None


def build_dynamic_variables(session: WakeSource, meta: CallMetadata | None) -> dict[str, str]:
    conference_name = (meta.conference_name if meta else None) or session.call_sid
    conference_sid = (meta.conference_sid if meta else None) or conference_name
    return {
        "conference_sid": conference_sid,
        "conference_name": conference_name,
        "caller_number": session.caller or "",
        "call_sid": session.call_sid,
    }


class AgentTurnCoordinator:
    """Creates at most one agent connection per call and routes its replies.

    ``on_wake`` answers synchronously with the reply to the triggering turn.
    Replies the agent pushes afterwards go to ``on_subsequent_reply(call_sid, text)``.
    """

    def __init__(
        self,
        *,
        api_key: str,
        agent_id: str,
        base_url: str,
        registry: SessionRegistry,
        on_subsequent_reply: SubsequentReplyHandler | None = None,
        reply_timeout: float = 15.0,
        conversation_factory: ConversationFactory = AgentConversation,
        connector: Any = None,
    ) -> None:
        self._api_key = api_key
        self._agent_id = agent_id
        self._base_url = base_url
        self._registry = registry
        self._on_subsequent_reply = on_subsequent_reply
        self._reply_timeout = reply_timeout
        self._factory = conversation_factory
        self._connector = connector
        self._lock = asyncio.Lock()
        self._conversations: dict[str, AgentConversation] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        registry: SessionRegistry,
        **kwargs: Any,
    ) -> AgentTurnCoordinator:
        if not settings.agent_enabled:
            raise ValueError("ELEVEN_AGENT_ID and ELEVEN_API_KEY must be configured.")
        return cls(
            api_key=settings.eleven_api_key,
            agent_id=settings.eleven_agent_id,
            base_url=settings.agent_ws_base,
            registry=registry,
            reply_timeout=settings.agent_reply_timeout_seconds,
            **kwargs,
        )

    def set_subsequent_reply_handler(self, handler: SubsequentReplyHandler | None) -> None:
        self._on_subsequent_reply = handler

    def has_conversation(self, call_sid: str) -> bool:
        return call_sid in self._conversations

    async def _conversation_for(self, session: WakeSource) -> AgentConversation:
        async with self._lock:
            conversation = self._conversations.get(session.call_sid)
            if conversation is not None:
                return conversation

            meta = await self._registry.get(session.call_sid)
            kwargs: dict[str, Any] = {
                "api_key": self._api_key,
                "agent_id": self._agent_id,
                "base_url": self._base_url,
                "dynamic_variables": build_dynamic_variables(session, meta),
                "reply_timeout": self._reply_timeout,
                "call_sid": session.call_sid,
            }
            if self._connector is not None:
                kwargs["connector"] = self._connector
            conversation = self._factory(**kwargs)
            conversation.on_subsequent_response(self._subsequent_handler_for(session.call_sid))
            self._conversations[session.call_sid] = conversation

        await conversation.connect()
        return conversation

    def _subsequent_handler_for(self, call_sid: str):
        async def _handle(reply: str) -> None:
            if self._on_subsequent_reply is not None:
                await self._on_subsequent_reply(call_sid, reply)

        return _handle

    async def on_wake(self, session: WakeSource, text: str) -> str | None:
        conversation = await self._conversation_for(session)
        reply = await conversation.send_text(text)
        LOGGER.info("Agent reply for %s: %s", session.call_sid, reply)
        return reply

    async def close(self, call_sid: str) -> None:
        async with self._lock:
            conversation = self._conversations.pop(call_sid, None)
        if conversation is not None:
            await conversation.close()

    async def close_all(self) -> None:
        async with self._lock:
            conversations = list(self._conversations.values())
            self._conversations.clear()
        for conversation in conversations:
            await conversation.close()
