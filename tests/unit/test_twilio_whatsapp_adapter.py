import json
from urllib.parse import parse_qs

import httpx
import pytest

from omnichannel.channels.base import ReplyTarget
from omnichannel.channels.whatsapp_twilio import TwilioWhatsAppAdapter
from omnichannel.models import ChannelConnection, Conversation, ReplyOptions

SERVICE = "IS0000000000000000000000000000000"


def _connection(**data) -> ChannelConnection:
    return ChannelConnection(
        company_id="co_1",
        channel_type="whatsapp_twilio",
        status="active",
        connection_data={
            "accountSid": "AC123",
            "authToken": "secret",
            "conversationServiceSid": SERVICE,
            "whatsappNumber": "+1 415 523 8886",
            **data,
        },
    )


class TwilioRecorder:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.endswith(f"/Services/{SERVICE}"):
            return httpx.Response(200, json={"sid": SERVICE, "friendly_name": "Inbox"})
        if path.endswith("/Conversations"):
            return httpx.Response(201, json={"sid": "CH111"})
        if path.endswith("/Participants"):
            return httpx.Response(201, json={"sid": "MB222"})
        if path.endswith("/Messages"):
            return httpx.Response(201, json={"sid": "IM333"})
        return httpx.Response(404, json={"message": "not found"})

    def form(self, index: int) -> dict[str, list[str]]:
        return parse_qs(self.requests[index].content.decode())


@pytest.mark.asyncio
async def test_send_message_makes_three_calls_in_order(storage, publisher) -> None:
    recorder = TwilioRecorder()
    connection = await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher, transport=httpx.MockTransport(recorder))

    message = await adapter.send_message(connection.id, "+1 (555) 010-2030", "hi", user_id="usr_1")

    paths = [r.url.path for r in recorder.requests]
    assert paths == [
        f"/v1/Services/{SERVICE}/Conversations",
        f"/v1/Services/{SERVICE}/Conversations/CH111/Participants",
        f"/v1/Services/{SERVICE}/Conversations/CH111/Messages",
    ]
    participant = recorder.form(1)
    assert participant["MessagingBinding.Address"] == ["whatsapp:+15550102030"]
    assert participant["MessagingBinding.ProxyAddress"] == ["whatsapp:+14155238886"]
    posted = recorder.form(2)
    assert posted["Author"] == ["whatsapp:+14155238886"]
    assert posted["Body"] == ["hi"]
    assert recorder.requests[0].headers["authorization"].startswith("Basic ")

    assert message.external_id == "IM333"
    assert message.metadata["twilioConversationSid"] == "CH111"
    contact = await storage.get_contact_by_identifier("co_1", "15550102030", "whatsapp")
    assert contact is not None


@pytest.mark.asyncio
async def test_reply_prefixes_quote_excerpt(storage, publisher) -> None:
    recorder = TwilioRecorder()
    connection = await storage.add_channel_connection(_connection())
    conversation = await storage.create_conversation(
        Conversation(company_id="co_1", channel_id=connection.id, channel_type="whatsapp_twilio")
    )
    adapter = TwilioWhatsAppAdapter(storage, publisher, transport=httpx.MockTransport(recorder))

    message = await adapter.send_reply(
        ReplyTarget(conversation, connection, "15550102030", "usr_1"),
        "Sure thing",
        ReplyOptions(original_message_id="msg_1", original_content="z" * 60),
    )

    expected = f'"{"z" * 50}..."\n\nSure thing'
    assert message.content == expected
    assert recorder.form(2)["Body"] == [expected]


@pytest.mark.asyncio
async def test_connect_failure_records_error(storage, publisher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Authenticate"})

    connection = await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher, transport=httpx.MockTransport(handler))

    assert await adapter.connect(connection.id) is False
    assert connection.status == "error"
    assert connection.connection_data["lastError"] == "Twilio API error: Authenticate"
    assert "lastErrorAt" in connection.connection_data
    assert adapter.is_active(connection.id) is False


@pytest.mark.asyncio
async def test_connect_success_marks_active(storage, publisher) -> None:
    recorder = TwilioRecorder()
    connection = await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher, transport=httpx.MockTransport(recorder))

    assert await adapter.connect(connection.id) is True
    assert adapter.active_connections() == [connection.id]
    status = await adapter.get_connection_status(connection.id)
    assert status["status"] == "connected"
    assert status["serviceInfo"]["friendlyName"] == "Inbox"


@pytest.mark.asyncio
async def test_initialize_connection_merges_config_then_connects(storage, publisher) -> None:
    recorder = TwilioRecorder()
    connection = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type="whatsapp_twilio")
    )
    adapter = TwilioWhatsAppAdapter(storage, publisher, transport=httpx.MockTransport(recorder))

    ok = await adapter.initialize_connection(
        connection.id,
        {"accountSid": "AC123", "authToken": "secret", "conversationServiceSid": SERVICE},
    )

    assert ok is True
    stored = await storage.get_channel_connection(connection.id)
    assert stored.connection_data["conversationServiceSid"] == SERVICE
    assert adapter.is_active(connection.id)


def _inbound(author: str, **extra) -> dict:
    return {
        "EventType": "onMessageAdded",
        "ChatServiceSid": SERVICE,
        "ConversationSid": "CH999",
        "MessageSid": extra.pop("MessageSid", "IM777"),
        "Author": author,
        "Body": "hello",
        **extra,
    }


@pytest.mark.asyncio
async def test_inbound_from_own_number_is_ignored(storage, publisher) -> None:
    await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher)

    result = await adapter.process_webhook(_inbound("whatsapp:+14155238886"))

    assert result.messages == []
    assert publisher.events == []


@pytest.mark.asyncio
async def test_inbound_message_persisted_with_media_type(storage, publisher) -> None:
    connection = await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher)
    media = json.dumps([{"ContentType": "image/png", "Url": "https://media.example/1.png"}])

    result = await adapter.process_webhook(
        _inbound("whatsapp:+15550102030", Body="", Media=media)
    )

    assert len(result.messages) == 1
    message = result.messages[0]
    assert message.type == "image"
    assert message.content == "[IMAGE]"
    assert message.media_url == "https://media.example/1.png"
    conversation = await storage.get_conversation(message.conversation_id)
    assert conversation.channel_id == connection.id
    assert conversation.status == "active"

    again = await adapter.process_webhook(
        _inbound("whatsapp:+15550102030", Body="", Media=media)
    )
    assert again.messages == []


@pytest.mark.asyncio
async def test_message_updated_does_not_change_status(storage, publisher) -> None:
    await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher)
    result = await adapter.process_webhook(_inbound("whatsapp:+15550102030"))
    message = result.messages[0]

    await adapter.process_webhook({"EventType": "onMessageUpdated", "MessageSid": "IM777"})

    assert (await storage.get_message_by_id(message.id)).status == "delivered"


class FailingExecutor:
    async def process_incoming(self, message, conversation, contact, connection) -> None:
        raise RuntimeError("flow engine down")


@pytest.mark.asyncio
async def test_flow_failure_becomes_warning(storage, publisher) -> None:
    await storage.add_channel_connection(_connection())
    adapter = TwilioWhatsAppAdapter(storage, publisher, flow_executor=FailingExecutor())

    result = await adapter.process_webhook(_inbound("whatsapp:+15550102030"))

    assert len(result.messages) == 1
    assert result.warnings == ["flow executor failed: flow engine down"]
