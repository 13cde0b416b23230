from datetime import UTC, datetime, timedelta

import pytest

from omnichannel.channels.webchat.adapter import WebChatAdapter
from omnichannel.channels.webchat.sessions import SessionRegistry
from omnichannel.errors import AccessDeniedError, ChannelError, WebhookAuthError
from omnichannel.models import ChannelConnection, ChannelType
from omnichannel.realtime import Scope


async def _connected(storage, publisher) -> tuple[WebChatAdapter, ChannelConnection]:
    connection = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type=ChannelType.WEBCHAT.value)
    )
    adapter = WebChatAdapter(storage, publisher)
    assert await adapter.connect(connection.id) is True
    return adapter, connection


def _payload(token: str, event_type: str = "message", **data) -> dict:
    return {"token": token, "eventType": event_type, "data": {"sessionId": "sess-1", **data}}


@pytest.mark.asyncio
async def test_connect_issues_and_reuses_widget_token(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]
    assert token.startswith("wc_")
    assert len(token) == 3 + 48
    assert connection.status == "active"
    assert adapter.is_active(connection.id)

    await adapter.connect(connection.id)
    assert connection.connection_data["widgetToken"] == token


@pytest.mark.asyncio
async def test_disconnect_clears_token_and_sessions(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]
    await adapter.process_webhook(_payload(token, "session_start"))
    assert len(adapter.sessions) == 1

    await adapter.disconnect(connection.id)
    assert connection.status == "disconnected"
    assert connection.connection_data["widgetToken"] is None
    assert len(adapter.sessions) == 0
    assert await adapter.verify_widget_token(token) is None


@pytest.mark.asyncio
async def test_webhook_rejections(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]

    with pytest.raises(WebhookAuthError, match="Missing widget token"):
        await adapter.process_webhook({"eventType": "message", "data": {"sessionId": "s"}})
    with pytest.raises(WebhookAuthError, match="Invalid token"):
        await adapter.process_webhook(_payload("wc_bogus"))
    with pytest.raises(AccessDeniedError, match="Access denied"):
        await adapter.process_webhook(_payload(token), company_id="co_other")
    with pytest.raises(ChannelError, match="Missing sessionId"):
        await adapter.process_webhook({"token": token, "eventType": "message", "data": {}})


@pytest.mark.asyncio
async def test_long_message_truncated_to_limit(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]

    result = await adapter.process_webhook(_payload(token, message="a" * 6000))

    assert len(result.messages) == 1
    stored = result.messages[0]
    assert len(stored.content) == 5000
    assert stored.direction == "inbound"
    assert stored.metadata["sessionId"] == "sess-1"
    conversation = await storage.get_conversation(stored.conversation_id)
    assert "newMessage" in publisher.types(Scope.company("co_1"))
    assert "newMessage" in publisher.types(Scope.conversation(conversation.id))


@pytest.mark.asyncio
async def test_typing_is_idempotent(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]

    await adapter.process_webhook(_payload(token, "typing", visitorName="Ada"))
    await adapter.process_webhook(_payload(token, "typing"))

    contact = await storage.get_contact_by_identifier("co_1", "sess-1", "webchat")
    assert contact is not None
    assert contact.name == "Ada"
    conversation = await storage.get_conversation_by_contact_and_channel(contact.id, connection.id)
    assert conversation is not None
    assert await storage.list_messages(conversation.id) == []
    assert len(publisher.of_type("newConversation")) == 1


@pytest.mark.asyncio
async def test_unknown_events_are_noops(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]

    for event_type in ("session_end", "file_upload", "mystery"):
        result = await adapter.process_webhook(_payload(token, event_type))
        assert result.messages == []
    assert await storage.get_contact_by_identifier("co_1", "sess-1", "webchat") is None


@pytest.mark.asyncio
async def test_send_message_reaches_visitor_session(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)

    message = await adapter.send_message(connection.id, "sess-9", "Hello there", user_id="usr_1")

    assert message.direction == "outbound"
    assert message.sender_type == "user"
    events = publisher.of_type("webchatMessage")
    assert len(events) == 1
    payload, scope = events[0]
    assert scope == Scope.session("sess-9")
    assert payload["data"]["content"] == "Hello there"
    contact = await storage.get_contact_by_identifier("co_1", "sess-9", "webchat")
    assert contact.name == "Website Visitor"


@pytest.mark.asyncio
async def test_initialize_all_connections_issues_missing_tokens(storage, publisher) -> None:
    pending = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type="webchat", status="active")
    )
    await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type="webchat", status="disconnected")
    )
    adapter = WebChatAdapter(storage, publisher)

    assert await adapter.initialize_all_connections() == 1
    assert pending.connection_data["widgetToken"].startswith("wc_")
    assert adapter.is_active(pending.id)


@pytest.mark.asyncio
async def test_outbound_then_inbound_share_one_conversation(storage, publisher) -> None:
    adapter, connection = await _connected(storage, publisher)
    token = connection.connection_data["widgetToken"]

    sent = await adapter.send_message(connection.id, "sess-1", "hi")
    result = await adapter.process_webhook(_payload(token, message="hi"))

    received = result.messages[0]
    assert received.conversation_id == sent.conversation_id
    messages = await storage.list_messages(sent.conversation_id)
    assert [m.direction for m in messages] == ["outbound", "inbound"]
    assert [m.content for m in messages] == ["hi", "hi"]


@pytest.mark.asyncio
async def test_idle_sessions_do_not_accumulate(storage, publisher) -> None:
    now = [datetime(2026, 1, 1, tzinfo=UTC)]
    connection = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type=ChannelType.WEBCHAT.value)
    )
    adapter = WebChatAdapter(
        storage, publisher, sessions=SessionRegistry(60, clock=lambda: now[0])
    )
    await adapter.connect(connection.id)
    token = connection.connection_data["widgetToken"]

    for n in range(100):
        payload = {"token": token, "eventType": "typing", "data": {"sessionId": f"s{n}"}}
        await adapter.process_webhook(payload)
        now[0] += timedelta(hours=1)

    assert len(adapter.sessions) == 1
    status = await adapter.get_connection_status(connection.id)
    assert status["sessions"] == 0
