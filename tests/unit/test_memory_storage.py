import pytest

from omnichannel.errors import NotFoundError
from omnichannel.models import ChannelConnection, Contact, Conversation, Message


@pytest.mark.asyncio
async def test_contact_lookups_are_tenant_scoped(storage) -> None:
    created = await storage.get_or_create_contact(
        Contact(
            company_id="co_1",
            identifier="15550102030",
            identifier_type="phone",
            phone="15550102030",
        )
    )
    again = await storage.get_or_create_contact(
        Contact(company_id="co_1", identifier="15550102030", identifier_type="phone")
    )

    assert again.id == created.id
    assert (await storage.get_contact_by_phone("15550102030", "co_1")).id == created.id
    assert await storage.get_contact_by_phone("15550102030", "co_2") is None


@pytest.mark.asyncio
async def test_conversation_lookup_by_contact_and_group(storage) -> None:
    connection = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type="whatsapp_unofficial")
    )
    direct = await storage.create_conversation(
        Conversation(
            company_id="co_1",
            channel_id=connection.id,
            channel_type="whatsapp_unofficial",
            contact_id="cnt_1",
        )
    )
    group = await storage.create_conversation(
        Conversation(
            company_id="co_1",
            channel_id=connection.id,
            channel_type="whatsapp_unofficial",
            is_group=True,
            group_jid="120@g.us",
        )
    )

    found = await storage.get_conversation_by_contact_and_channel("cnt_1", connection.id)
    assert found.id == direct.id
    assert (await storage.get_conversation_by_group_jid(connection.id, "120@g.us")).id == group.id


@pytest.mark.asyncio
async def test_message_delete_and_external_lookup(storage) -> None:
    message = await storage.create_message(
        Message(conversation_id="cnv_1", direction="inbound", content="hi", external_id="ext_1")
    )

    assert (await storage.get_message_by_external_id("ext_1")).id == message.id
    assert await storage.delete_message(message.id) is True
    assert await storage.delete_message(message.id) is False
    assert await storage.get_message_by_id(message.id) is None


@pytest.mark.asyncio
async def test_updates_reject_unknown_records_and_fields(storage) -> None:
    with pytest.raises(NotFoundError):
        await storage.update_conversation("cnv_missing", status="closed")

    connection = await storage.add_channel_connection(
        ChannelConnection(company_id="co_1", channel_type="email")
    )
    with pytest.raises(AttributeError):
        await storage.update_channel_connection(connection.id, colour="blue")
