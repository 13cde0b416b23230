"""Storage protocol: the query surface the channel layer needs from persistence."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from omnichannel.models import ChannelConnection, Contact, Conversation, Message, User


@runtime_checkable
class Storage(Protocol):
    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def get_conversation_by_contact_and_channel(
        self, contact_id: str, channel_id: str
    ) -> Conversation | None: ...

    async def get_conversation_by_group_jid(
        self, channel_id: str, group_jid: str
    ) -> Conversation | None: ...

    async def create_conversation(self, conversation: Conversation) -> Conversation: ...

    async def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation: ...

    async def get_channel_connection(self, connection_id: str) -> ChannelConnection | None: ...

    async def get_channel_connections_by_type(
        self, channel_type: str
    ) -> list[ChannelConnection]: ...

    async def update_channel_connection(
        self, connection_id: str, **changes: Any
    ) -> ChannelConnection: ...

    async def get_contact(self, contact_id: str) -> Contact | None: ...

    async def get_contact_by_phone(self, phone: str, company_id: str) -> Contact | None: ...

    async def get_contact_by_identifier(
        self, company_id: str, identifier: str, identifier_type: str
    ) -> Contact | None: ...

    async def get_or_create_contact(self, contact: Contact) -> Contact:
        """Return the stored contact with the same (company, identifier, type) or insert."""
        ...

    async def update_contact(self, contact_id: str, **changes: Any) -> Contact: ...

    async def create_message(self, message: Message) -> Message: ...

    async def update_message(self, message_id: str, **changes: Any) -> Message: ...

    async def delete_message(self, message_id: str) -> bool: ...

    async def get_message_by_id(self, message_id: str) -> Message | None: ...

    async def get_message_by_external_id(self, external_id: str) -> Message | None: ...

    async def list_messages(self, conversation_id: str) -> list[Message]: ...

    async def get_company_setting(self, company_id: str, key: str) -> Any: ...

    async def get_user(self, user_id: str) -> User | None: ...
