"""ChannelManager: tenant checks, capability gates, signatures and delete bookkeeping."""

from datetime import timedelta
from typing import Any

import httpx
import pytest

from omnichannel.channels.base import ReplyTarget
from omnichannel.channels.manager import ChannelManager, agent_display_name, signed_content
from omnichannel.channels.registry import ChannelRegistry, build_default_registry
from omnichannel.channels.whatsapp.adapter import TOO_OLD_TO_DELETE
from omnichannel.errors import ProviderError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Contact,
    Conversation,
    Message,
    ReplyOptions,
    User,
    utcnow,
)
from omnichannel.realtime import Scope
from omnichannel.storage import InMemoryStorage


class FakeAdapter:
    provider_name = "Fake"

    def __init__(self, channel_type: ChannelType, *, deletes: bool = True) -> None:
        self.channel_type = channel_type
        self.deletes = deletes
        self.replies: list[tuple[ReplyTarget, str, ReplyOptions]] = []
        self.deleted: list[str] = []
        self.fail_with: Exception | None = None

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        if self.fail_with is not None:
            raise self.fail_with
        self.replies.append((target, content, options))
        return Message(
            conversation_id=target.conversation.id,
            direction="outbound",
            content=content,
            external_id="ext_1",
        )

    async def delete_message(
        self, message: Message, conversation: Conversation, connection: ChannelConnection
    ) -> bool:
        self.deleted.append(message.id)
        return self.deletes


async def _conversation(
    storage: InMemoryStorage,
    channel_type: str = "whatsapp_unofficial",
    *,
    company_id: str = "co_1",
    **fields: Any,
) -> Conversation:
    connection = await storage.add_channel_connection(
        ChannelConnection(company_id=company_id, channel_type=channel_type)
    )
    contact = await storage.get_or_create_contact(
        Contact(company_id=company_id, identifier="15550102030", identifier_type="phone")
    )
    return await storage.create_conversation(
        Conversation(
            company_id=company_id,
            channel_id=connection.id,
            channel_type=channel_type,
            contact_id=contact.id,
            **fields,
        )
    )


def _manager(storage, publisher, *adapters) -> ChannelManager:
    registry = ChannelRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return ChannelManager(storage, registry, publisher)


def _options() -> ReplyOptions:
    return ReplyOptions(
        original_message_id="msg_orig",
        original_content="hello",
        original_sender="Ada",
        quoted_message={"key": {"id": "IN1"}},
    )


def test_agent_display_name_fallback_chain() -> None:
    def name(**fields: str) -> str | None:
        return agent_display_name(User(id="usr_1", company_id="co_1", **fields))

    assert name(full_name="Ada L", name="x") == "Ada L"
    assert name(name="Ada") == "Ada"
    assert name(first_name="Ada", last_name="L") == "Ada L"
    assert name(display_name="ada") == "ada"
    assert name(email="ada@example.com") == "ada"
    assert name() is None
    assert signed_content("Ada", "hi") == "> *Ada*\n\nhi"


@pytest.mark.asyncio
async def test_cross_tenant_reply_never_reaches_provider(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage, company_id="co_other")

    result = await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "hi", _options(), "usr_1", company_id="co_1"
    )

    assert result.success is False
    assert result.error == "Access denied: Conversation does not belong to your company"
    assert adapter.replies == []


@pytest.mark.asyncio
async def test_company_resolved_from_user_record(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    await storage.add_user(User(id="usr_9", company_id="co_other"))
    conversation = await _conversation(storage)

    result = await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "hi", _options(), "usr_9"
    )

    assert result.success is False
    assert result.error.startswith("Access denied")


@pytest.mark.asyncio
async def test_reply_prefixes_agent_signature(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    await storage.add_user(User(id="usr_1", company_id="co_1", first_name="Ada", last_name="L"))
    conversation = await _conversation(storage)

    result = await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "On it", _options(), "usr_1", company_id="co_1"
    )

    assert result.success is True
    target, content, _ = adapter.replies[0]
    assert content == "> *Ada L*\n\nOn it"
    assert target.recipient == "15550102030"
    assert result.data["replyFormat"] == "quoted"
    assert result.data["externalId"] == "ext_1"


@pytest.mark.asyncio
async def test_signature_disabled_by_company_setting(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    await storage.add_user(User(id="usr_1", company_id="co_1", name="Ada"))
    await storage.set_company_setting("co_1", "inbox_agent_signature_enabled", "false")
    conversation = await _conversation(storage)

    await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "On it", _options(), "usr_1", company_id="co_1"
    )

    assert adapter.replies[0][1] == "On it"


class BrokenSettingsStorage(InMemoryStorage):
    async def get_company_setting(self, company_id: str, key: str) -> Any:
        raise RuntimeError("settings table unavailable")


@pytest.mark.asyncio
async def test_signature_failure_becomes_warning(publisher) -> None:
    storage = BrokenSettingsStorage()
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage)

    result = await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "On it", _options(), "usr_1", company_id="co_1"
    )

    assert result.success is True
    assert adapter.replies[0][1] == "On it"
    assert result.warnings == ["agent signature skipped: settings table unavailable"]


@pytest.mark.asyncio
async def test_missing_records_report_specific_errors(storage, publisher) -> None:
    manager = _manager(storage, publisher, FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL))

    result = await manager.send_reply("cnv_missing", "hi", _options(), "usr_1", "co_1")
    assert result.error == "Conversation not found"

    orphan = await storage.create_conversation(
        Conversation(company_id="co_1", channel_id="chn_gone", channel_type="whatsapp_unofficial")
    )
    result = await manager.send_reply(orphan.id, "hi", _options(), "usr_1", "co_1")
    assert result.error == "Channel connection not found"

    no_contact = await _conversation(storage)
    await storage.update_conversation(no_contact.id, contact_id=None)
    result = await manager.send_reply(no_contact.id, "hi", _options(), "usr_1", "co_1")
    assert result.error == "Contact ID not found in conversation"

    dangling = await _conversation(storage)
    await storage.update_conversation(dangling.id, contact_id="cnt_gone")
    result = await manager.send_reply(dangling.id, "hi", _options(), "usr_1", "co_1")
    assert result.error == "Contact not found"


@pytest.mark.asyncio
async def test_unknown_channel_type_cannot_reply(storage, publisher) -> None:
    conversation = await _conversation(storage, "carrier_pigeon")

    result = await _manager(storage, publisher).send_reply(
        conversation.id, "hi", _options(), "usr_1", "co_1"
    )

    assert result.error == "Channel does not support replies"


@pytest.mark.asyncio
async def test_supported_channel_without_adapter(storage, publisher) -> None:
    conversation = await _conversation(storage, "tiktok")

    result = await _manager(storage, publisher).send_reply(
        conversation.id, "hi", _options(), "usr_1", "co_1"
    )

    assert result.error == "Unsupported channel type for replies"


@pytest.mark.asyncio
async def test_messenger_group_reply_rejected(storage, publisher, settings) -> None:
    registry = build_default_registry(storage, publisher, settings=settings)
    conversation = await _conversation(
        storage, "messenger", is_group=True, group_jid="thread_1"
    )

    result = await ChannelManager(storage, registry, publisher).send_reply(
        conversation.id, "hi", _options(), "usr_1", "co_1"
    )

    assert result.success is False
    assert result.error == "Messenger does not support group chat replies"


@pytest.mark.asyncio
async def test_provider_error_is_returned_not_raised(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    adapter.fail_with = ProviderError("WhatsApp API error: session closed")
    conversation = await _conversation(storage)

    result = await _manager(storage, publisher, adapter).send_reply(
        conversation.id, "hi", _options(), "usr_1", "co_1"
    )

    assert result.success is False
    assert result.error == "WhatsApp API error: session closed"


async def _stored_message(storage, conversation: Conversation, minutes_old: float) -> Message:
    return await storage.create_message(
        Message(
            conversation_id=conversation.id,
            direction="outbound",
            content="sent earlier",
            external_id="WA_1",
            sent_at=utcnow() - timedelta(minutes=minutes_old),
        )
    )


@pytest.mark.asyncio
async def test_delete_unsupported_channel_never_reaches_provider(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_OFFICIAL)
    conversation = await _conversation(storage, "whatsapp_official")
    message = await _stored_message(storage, conversation, 1)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.error == "Message deletion is not supported for this channel"
    assert adapter.deleted == []
    assert await storage.get_message_by_id(message.id) is not None


@pytest.mark.asyncio
async def test_delete_past_capability_limit(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage)
    message = await _stored_message(storage, conversation, 4321)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.error == "Message is too old to be deleted"
    assert adapter.deleted == []


@pytest.mark.asyncio
async def test_delete_inside_capability_limit_hits_whatsapp_window(
    storage, publisher, settings
) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"ok": True})

    registry = build_default_registry(
        storage, publisher, settings=settings, transport=httpx.MockTransport(handler)
    )
    conversation = await _conversation(storage)
    message = await _stored_message(storage, conversation, 4319)

    result = await ChannelManager(storage, registry, publisher).delete_message(
        message.id, "usr_1", "co_1"
    )

    assert result.success is False
    assert result.error == TOO_OLD_TO_DELETE
    assert calls == []


@pytest.mark.asyncio
async def test_delete_success_broadcasts_to_company(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage)
    message = await _stored_message(storage, conversation, 5)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.success is True
    assert result.data == {"conversationId": conversation.id, "deletedRemotely": True}
    assert await storage.get_message_by_id(message.id) is None
    [(payload, scope)] = publisher.of_type("messageDeleted")
    assert scope == Scope.company("co_1")
    assert payload["data"] == {"messageId": message.id, "conversationId": conversation.id}


@pytest.mark.asyncio
async def test_delete_local_fallback_when_provider_cannot(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL, deletes=False)
    conversation = await _conversation(storage)
    message = await _stored_message(storage, conversation, 5)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.success is True
    assert result.data["deletedRemotely"] is False
    assert await storage.get_message_by_id(message.id) is None


class StickyStorage(InMemoryStorage):
    async def delete_message(self, message_id: str) -> bool:
        return False


@pytest.mark.asyncio
async def test_remote_delete_but_database_failure(publisher) -> None:
    storage = StickyStorage()
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage)
    message = await _stored_message(storage, conversation, 5)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.error == "Message deleted from Fake but failed to delete from database"
    assert publisher.of_type("messageDeleted") == []


@pytest.mark.asyncio
async def test_cross_tenant_delete_denied(storage, publisher) -> None:
    adapter = FakeAdapter(ChannelType.WHATSAPP_UNOFFICIAL)
    conversation = await _conversation(storage, company_id="co_other")
    message = await _stored_message(storage, conversation, 5)

    result = await _manager(storage, publisher, adapter).delete_message(message.id, "usr_1", "co_1")

    assert result.error == "Access denied: Conversation does not belong to your company"
    assert adapter.deleted == []
