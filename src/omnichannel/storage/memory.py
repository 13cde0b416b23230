"""Process-local storage used by the dev server and the test suite."""

from __future__ import annotations

import copy
from typing import Any

from omnichannel.errors import NotFoundError
from omnichannel.models import ChannelConnection, Contact, Conversation, Message, User, utcnow


class InMemoryStorage:
    def __init__(self) -> None:
        self._connections: dict[str, ChannelConnection] = {}
        self._contacts: dict[str, Contact] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}
        self._users: dict[str, User] = {}
        self._settings: dict[tuple[str, str], Any] = {}

    # Seeding helpers used by the runtime bootstrap and tests.

    async def add_channel_connection(self, connection: ChannelConnection) -> ChannelConnection:
        self._connections[connection.id] = connection
        return connection

    async def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def set_company_setting(self, company_id: str, key: str, value: Any) -> None:
        self._settings[(company_id, key)] = value

    # Conversations

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def get_conversation_by_contact_and_channel(
        self, contact_id: str, channel_id: str
    ) -> Conversation | None:
        for conversation in self._conversations.values():
            if (
                conversation.contact_id == contact_id
                and conversation.channel_id == channel_id
                and not conversation.is_group
            ):
                return conversation
        return None

    async def get_conversation_by_group_jid(
        self, channel_id: str, group_jid: str
    ) -> Conversation | None:
        for conversation in self._conversations.values():
            if conversation.channel_id == channel_id and conversation.group_jid == group_jid:
                return conversation
        return None

    async def create_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.id] = conversation
        return conversation

    async def update_conversation(self, conversation_id: str, **changes: Any) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        _apply(conversation, changes)
        return conversation

    # Channel connections

    async def get_channel_connection(self, connection_id: str) -> ChannelConnection | None:
        return self._connections.get(connection_id)

    async def get_channel_connections_by_type(self, channel_type: str) -> list[ChannelConnection]:
        return [c for c in self._connections.values() if c.channel_type == channel_type]

    async def update_channel_connection(
        self, connection_id: str, **changes: Any
    ) -> ChannelConnection:
        connection = self._connections.get(connection_id)
        if connection is None:
            raise NotFoundError("Channel connection not found")
        if "connection_data" in changes:
            changes["connection_data"] = copy.deepcopy(changes["connection_data"])
        _apply(connection, changes)
        connection.updated_at = utcnow()
        return connection

    # Contacts

    async def get_contact(self, contact_id: str) -> Contact | None:
        return self._contacts.get(contact_id)

    async def get_contact_by_phone(self, phone: str, company_id: str) -> Contact | None:
        for contact in self._contacts.values():
            if contact.company_id == company_id and phone in (contact.phone, contact.identifier):
                return contact
        return None

    async def get_contact_by_identifier(
        self, company_id: str, identifier: str, identifier_type: str
    ) -> Contact | None:
        for contact in self._contacts.values():
            if (
                contact.company_id == company_id
                and contact.identifier == identifier
                and contact.identifier_type == identifier_type
            ):
                return contact
        return None

    async def get_or_create_contact(self, contact: Contact) -> Contact:
        existing = await self.get_contact_by_identifier(
            contact.company_id, contact.identifier, contact.identifier_type
        )
        if existing is not None:
            return existing
        self._contacts[contact.id] = contact
        return contact

    async def update_contact(self, contact_id: str, **changes: Any) -> Contact:
        contact = self._contacts.get(contact_id)
        if contact is None:
            raise NotFoundError("Contact not found")
        _apply(contact, changes)
        return contact

    # Messages

    async def create_message(self, message: Message) -> Message:
        self._messages[message.id] = message
        return message

    async def update_message(self, message_id: str, **changes: Any) -> Message:
        message = self._messages.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        _apply(message, changes)
        return message

    async def delete_message(self, message_id: str) -> bool:
        return self._messages.pop(message_id, None) is not None

    async def get_message_by_id(self, message_id: str) -> Message | None:
        return self._messages.get(message_id)

    async def get_message_by_external_id(self, external_id: str) -> Message | None:
        for message in self._messages.values():
            if message.external_id == external_id:
                return message
        return None

    async def list_messages(self, conversation_id: str) -> list[Message]:
        rows = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        return sorted(rows, key=lambda m: m.created_at)

    # Companies and users

    async def get_company_setting(self, company_id: str, key: str) -> Any:
        return self._settings.get((company_id, key))

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)


def _apply(record: Any, changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        if not hasattr(record, key):
            raise AttributeError(f"{type(record).__name__} has no field {key!r}")
        setattr(record, key, value)
