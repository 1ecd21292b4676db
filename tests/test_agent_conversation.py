from __future__ import annotations

import asyncio

import pytest

from agents.conversation import AgentConversation
from agents.errors import AgentConnectionError
from fakes import FakeConnector, agent_reply


def _conversation(connector, **kwargs) -> AgentConversation:
    kwargs.setdefault("dynamic_variables", {"call_sid": "CA1", "caller_number": "+15550001111"})
    return AgentConversation(
        api_key="test-key",
        agent_id="agent_123",
        call_sid="CA1",
        connector=connector,
        **kwargs,
    )


def _user_turns(ws) -> list[str]:
    return [m["text"] for m in ws.sent_json() if m["type"] == "user_message"]


def test_connect_sends_conversation_initiation_data():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector)
        await conversation.connect()
        await conversation.connect()
        ws = connector.sockets[0]
        await conversation.close()
        return connector, ws

    connector, ws = asyncio.run(scenario())

    assert len(connector.calls) == 1
    url, kwargs = connector.calls[0]
    assert url == "wss://api.elevenlabs.io/v1/convai/conversation?agent_id=agent_123"
    assert kwargs["additional_headers"] == {"xi-api-key": "test-key"}
    assert ws.sent_json()[0] == {
        "type": "conversation_initiation_client_data",
        "dynamic_variables": {"call_sid": "CA1", "caller_number": "+15550001111"},
    }


def test_send_text_returns_assembled_reply():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector)
        await conversation.connect()
        ws = connector.sockets[0]

        turn = asyncio.create_task(conversation.send_text("hey assistant what's the status"))
        await asyncio.sleep(0.01)
        ws.feed({"type": "conversation_initiation_metadata",
                 "conversation_initiation_metadata_event": {"conversation_id": "conv_1"}})
        agent_reply(ws, "All ", "systems ", "nominal.")
        reply = await turn
        await conversation.close()
        return conversation, ws, reply

    conversation, ws, reply = asyncio.run(scenario())

    assert reply == "All systems nominal."
    assert conversation.conversation_id == "conv_1"
    assert _user_turns(ws) == ["hey assistant what's the status"]


def test_timeout_returns_none_and_late_reply_goes_to_subsequent_handler():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector, reply_timeout=0.05)
        subsequent: list[str] = []

        async def on_subsequent(reply: str) -> None:
            subsequent.append(reply)

        conversation.on_subsequent_response(on_subsequent)
        result = await conversation.send_text("hey assistant")
        agent_reply(connector.sockets[0], "late answer")
        await asyncio.sleep(0.02)
        connected = conversation.is_connected
        await conversation.close()
        return result, subsequent, connected

    result, subsequent, connected = asyncio.run(scenario())

    assert result is None
    assert subsequent == ["late answer"]
    assert connected


def test_unsolicited_reply_before_first_turn_is_dropped():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector)
        subsequent: list[str] = []

        async def on_subsequent(reply: str) -> None:
            subsequent.append(reply)

        conversation.on_subsequent_response(on_subsequent)
        await conversation.connect()
        agent_reply(connector.sockets[0], "welcome message")
        await asyncio.sleep(0.01)
        await conversation.close()
        return subsequent

    assert asyncio.run(scenario()) == []


def test_ping_is_answered_with_pong():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector, dynamic_variables={})
        await conversation.connect()
        ws = connector.sockets[0]
        ws.feed({"type": "ping", "ping_event": {"event_id": 7}})
        await asyncio.sleep(0.01)
        await conversation.close()
        return ws.sent_json()

    assert asyncio.run(scenario()) == [{"type": "pong", "event_id": 7}]


def test_turns_are_serialized():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector)
        await conversation.connect()
        ws = connector.sockets[0]

        first = asyncio.create_task(conversation.send_text("one"))
        second = asyncio.create_task(conversation.send_text("two"))
        await asyncio.sleep(0.01)
        turns_while_waiting = _user_turns(ws)

        agent_reply(ws, "reply one")
        first_reply = await first
        await asyncio.sleep(0.01)
        agent_reply(ws, "reply two")
        second_reply = await second
        await conversation.close()
        return turns_while_waiting, first_reply, second_reply, _user_turns(ws)

    waiting, first_reply, second_reply, turns = asyncio.run(scenario())

    assert waiting == ["one"]
    assert first_reply == "reply one"
    assert second_reply == "reply two"
    assert turns == ["one", "two"]


def test_agent_disconnect_while_waiting_raises():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector)
        await conversation.connect()

        turn = asyncio.create_task(conversation.send_text("hey assistant"))
        await asyncio.sleep(0.01)
        await connector.sockets[0].close()
        with pytest.raises(AgentConnectionError):
            await turn
        return conversation

    conversation = asyncio.run(scenario())

    assert not conversation.is_connected


def test_connect_failure_raises_agent_connection_error():
    async def scenario():
        conversation = _conversation(FakeConnector(fail=True))
        with pytest.raises(AgentConnectionError):
            await conversation.send_text("hey assistant")

    asyncio.run(scenario())


def test_timeout_without_stop_fragment_returns_none_not_partial_text():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector, reply_timeout=0.05)
        await conversation.connect()
        ws = connector.sockets[0]

        turn = asyncio.create_task(conversation.send_text("hey assistant"))
        await asyncio.sleep(0.01)
        ws.feed({"type": "agent_chat_response_part", "text_response_part": {"type": "start"}})
        ws.feed({"type": "agent_chat_response_part", "text_response_part": {"type": "delta", "text": "half an"}})
        result = await turn
        await conversation.close()
        return result

    assert asyncio.run(scenario()) is None


def test_reply_streaming_before_next_turn_goes_to_subsequent_handler():
    async def scenario():
        connector = FakeConnector()
        conversation = _conversation(connector, reply_timeout=0.2)
        subsequent: list[str] = []

        async def on_subsequent(reply: str) -> None:
            subsequent.append(reply)

        conversation.on_subsequent_response(on_subsequent)
        first_reply = await conversation.send_text("turn one")
        ws = connector.sockets[0]

        ws.feed({"type": "agent_chat_response_part", "text_response_part": {"type": "start"}})
        ws.feed({"type": "agent_chat_response_part", "text_response_part": {"type": "delta", "text": "answer to one"}})
        await asyncio.sleep(0.01)

        second = asyncio.create_task(conversation.send_text("turn two"))
        await asyncio.sleep(0.01)
        ws.feed({"type": "agent_chat_response_part", "text_response_part": {"type": "stop"}})
        agent_reply(ws, "answer to two")
        second_reply = await second
        await asyncio.sleep(0.01)
        await conversation.close()
        return first_reply, second_reply, subsequent

    first_reply, second_reply, subsequent = asyncio.run(scenario())

    assert first_reply is None
    assert second_reply == "answer to two"
    assert subsequent == ["answer to one"]
