"""Turn-based client for the ElevenLabs Conversational AI websocket.

Protocol notes:
- Endpoint: ``wss://api.elevenlabs.io/v1/convai/conversation?agent_id=...``
- Auth: ``xi-api-key`` header
- Per-call context goes out as ``conversation_initiation_client_data`` right after connect
- Replies stream as ``agent_chat_response_part`` start/delta/stop fragments
- ``ping`` must be answered with a ``pong`` carrying the same ``event_id``
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agents.errors import AgentConnectionError

LOGGER = logging.getLogger(__name__)

DEFAULT_AGENT_WS_BASE = "wss://api.elevenlabs.io"
DEFAULT_REPLY_TIMEOUT_SECONDS = 15.0

ReplyHandler = Callable[[str], Awaitable[None]]


class AgentConversation:
    """One agent websocket for one call.

    ``send_text`` returns the first fully assembled reply after the user turn, or
    ``None`` when none completes within ``reply_timeout``. The timeout is soft: the
    socket stays open and a late reply is delivered to the subsequent-reply
    handler instead. Turns are serialized, so a second ``send_text`` waits for the
    first to resolve.
    """

    def __init__(
        self,
        *,
        api_key: str,
        agent_id: str,
        base_url: str = DEFAULT_AGENT_WS_BASE,
        dynamic_variables: dict[str, str] | None = None,
        reply_timeout: float = DEFAULT_REPLY_TIMEOUT_SECONDS,
        call_sid: str | None = None,
        connector=None,
    ) -> None:
        self._api_key = api_key
        self._agent_id = agent_id
        self._base_url = base_url.rstrip("/")
        self._dynamic_variables = dict(dynamic_variables or {})
        self._reply_timeout = reply_timeout
        self._call_sid = call_sid or "-"
        self._connector = connector or websockets.connect

        self._ws: Any = None
        self._receive_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._turn_lock = asyncio.Lock()
        self._pending_reply: asyncio.Future[str] | None = None
        self._first_resolved = False
        self._buffer = ""
        self._streaming = False
        self._stream_predates_turn = False
        self._subsequent_handler: ReplyHandler | None = None
        self._handler_tasks: set[asyncio.Task] = set()
        self.conversation_id: str | None = None

    @property
    def url(self) -> str:
        return f"{self._base_url}/v1/convai/conversation?{urlencode({'agent_id': self._agent_id})}"

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def on_subsequent_response(self, handler: ReplyHandler | None) -> None:
        self._subsequent_handler = handler

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            try:
                ws = await self._connector(self.url, additional_headers={"xi-api-key": self._api_key})
            except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
                raise AgentConnectionError(f"Agent connect failed: {exc}") from exc

            self._ws = ws
            LOGGER.info("[agent] [%s] websocket open", self._call_sid)
            self._receive_task = asyncio.create_task(self._receive_loop(ws))
            await self._send_init_data(ws)

    async def _send_init_data(self, ws) -> None:
        if not self._dynamic_variables:
            return
        message = {
            "type": "conversation_initiation_client_data",
            "dynamic_variables": self._dynamic_variables,
        }
        LOGGER.debug("[agent] [%s] sending init data %s", self._call_sid, message)
        await self._send(ws, message)

    async def send_text(self, text: str) -> str | None:
        async with self._turn_lock:
            if self._ws is None:
                await self.connect()
            ws = self._ws
            if ws is None:
                raise AgentConnectionError("Agent websocket closed before the turn was sent.")

            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._pending_reply = future
            # A reply already streaming belongs to an earlier, timed-out turn.
            self._stream_predates_turn = self._streaming
            try:
                LOGGER.info("[agent] [%s] user turn: %s", self._call_sid, text)
                await self._send(ws, {"type": "user_message", "text": text})
                return await asyncio.wait_for(future, self._reply_timeout)
            except asyncio.TimeoutError:
                LOGGER.warning(
                    "[agent] [%s] no reply within %.1fs; leaving connection open",
                    self._call_sid,
                    self._reply_timeout,
                )
                return None
            finally:
                self._pending_reply = None
                self._first_resolved = True

    async def _send(self, ws, message: dict[str, Any]) -> None:
        try:
            await ws.send(json.dumps(message))
        except ConnectionClosed as exc:
            raise AgentConnectionError(f"Agent websocket closed: {exc}") from exc

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    await self._handle_message(ws, raw)
                except AgentConnectionError as exc:
                    LOGGER.warning("[agent] [%s] %s", self._call_sid, exc)
                except Exception:
                    LOGGER.exception("[agent] [%s] message handling failed", self._call_sid)
        except ConnectionClosed as exc:
            LOGGER.info("[agent] [%s] websocket closed: %s", self._call_sid, exc)
        finally:
            if self._ws is ws:
                self._ws = None
            pending = self._pending_reply
            if pending is not None and not pending.done():
                pending.set_exception(AgentConnectionError("Agent websocket closed while awaiting a reply."))

    async def _handle_message(self, ws, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            LOGGER.warning("[agent] [%s] non-JSON message: %.200r", self._call_sid, raw)
            return
        if not isinstance(message, dict):
            return

        message_type = message.get("type")
        if message_type == "conversation_initiation_metadata":
            event = message.get("conversation_initiation_metadata_event") or {}
            self.conversation_id = event.get("conversation_id")
            LOGGER.info("[agent] [%s] conversation %s", self._call_sid, self.conversation_id)
        elif message_type == "agent_chat_response_part":
            self._handle_response_part(message.get("text_response_part") or {})
        elif message_type == "ping":
            event = message.get("ping_event") or {}
            await self._send(ws, {"type": "pong", "event_id": event.get("event_id")})
        elif message_type == "agent_response":
            event = message.get("agent_response_event") or {}
            LOGGER.debug("[agent] [%s] agent_response: %s", self._call_sid, event.get("agent_response"))
        else:
            LOGGER.debug("[agent] [%s] unhandled message type: %s", self._call_sid, message_type)

    def _handle_response_part(self, part: dict[str, Any]) -> None:
        part_type = part.get("type")
        if part_type == "start":
            self._buffer = ""
            self._streaming = True
            self._stream_predates_turn = False
        elif part_type == "delta":
            self._buffer += part.get("text") or ""
        elif part_type == "stop":
            reply, self._buffer = self._buffer, ""
            late = self._stream_predates_turn
            self._streaming = False
            self._stream_predates_turn = False
            if reply:
                self._deliver(reply, late=late)

    def _deliver(self, reply: str, *, late: bool = False) -> None:
        pending = self._pending_reply
        if not late and pending is not None and not pending.done():
            pending.set_result(reply)
            return
        if not self._first_resolved or self._subsequent_handler is None:
            LOGGER.info("[agent] [%s] dropping unsolicited reply: %s", self._call_sid, reply)
            return
        LOGGER.info("[agent] [%s] subsequent reply: %s", self._call_sid, reply)
        task = asyncio.create_task(self._run_subsequent(reply))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _run_subsequent(self, reply: str) -> None:
        handler = self._subsequent_handler
        if handler is None:
            return
        try:
            await handler(reply)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("[agent] [%s] subsequent reply handler failed", self._call_sid)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        task, self._receive_task = self._receive_task, None
        if task is not None and not task.done():
            task.cancel()
        for handler_task in list(self._handler_tasks):
            handler_task.cancel()
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                LOGGER.debug("[agent] [%s] websocket close error: %s", self._call_sid, exc)
        LOGGER.info("[agent] [%s] closed", self._call_sid)
