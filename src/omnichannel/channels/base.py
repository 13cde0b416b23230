"""Channel adapter protocol and the plumbing every provider adapter shares."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol, runtime_checkable

import httpx

from omnichannel.channels.capabilities import get_capabilities
from omnichannel.channels.pool import ConnectionPool
from omnichannel.config import Settings, get_settings
from omnichannel.errors import ChannelError, NotFoundError
from omnichannel.flows import FlowExecutor, hand_off
from omnichannel.models import (
    ChannelCapabilities,
    ChannelConnection,
    ChannelType,
    Contact,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
    utcnow,
)
from omnichannel.realtime import Publisher, Scope, event
from omnichannel.storage.base import Storage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReplyTarget:
    """Where a reply goes, resolved and authorized by the channel manager."""

    conversation: Conversation
    connection: ChannelConnection
    recipient: str
    user_id: str
    contact: Contact | None = None

    @property
    def is_group(self) -> bool:
        return bool(self.conversation.is_group)


@dataclass(slots=True)
class WebhookResult:
    """Outcome of one inbound webhook delivery."""

    messages: list[Message] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    status_updates: int = 0

    def add(self, message: Message, warning: str | None = None) -> None:
        self.messages.append(message)
        if warning:
            self.warnings.append(warning)

    def as_dict(self) -> dict[str, Any]:
        return {
            "accepted": True,
            "messages": [m.id for m in self.messages],
            "statusUpdates": self.status_updates,
            "warnings": list(self.warnings),
        }


@runtime_checkable
class ChannelAdapter(Protocol):
    """Protocol that all provider adapters implement."""

    @property
    def channel_type(self) -> ChannelType: ...

    @property
    def provider_name(self) -> str: ...

    def capabilities(self) -> ChannelCapabilities: ...

    def is_active(self, connection_id: str) -> bool: ...

    async def connect(self, connection_id: str) -> bool: ...

    async def disconnect(self, connection_id: str) -> bool: ...

    async def get_connection_status(self, connection_id: str) -> dict[str, Any]: ...

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message: ...

    async def send_media(
        self,
        connection_id: str,
        recipient: str,
        media_type: str,
        media_url: str,
        *,
        caption: str | None = None,
        user_id: str | None = None,
    ) -> Message: ...

    async def send_reply(
        self, target: ReplyTarget, content: str, options: ReplyOptions
    ) -> Message: ...

    async def delete_message(
        self, message: Message, conversation: Conversation, connection: ChannelConnection
    ) -> bool:
        """Delete at the provider. Returns False when the channel has no remote delete."""
        ...

    async def process_webhook(self, payload: dict[str, Any], **context: Any) -> WebhookResult: ...


class BaseAdapter:
    """Shared persistence, broadcast and connection bookkeeping for adapters."""

    channel_type: ClassVar[ChannelType]
    provider_name: ClassVar[str]
    supports_groups: ClassVar[bool] = False
    identifier_type: ClassVar[str] = "phone"

    def __init__(
        self,
        storage: Storage,
        publisher: Publisher,
        *,
        settings: Settings | None = None,
        pool: ConnectionPool | None = None,
        flow_executor: FlowExecutor | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._storage = storage
        self._publisher = publisher
        self._settings = settings or get_settings()
        self._pool = pool or ConnectionPool()
        self._flow_executor = flow_executor
        self._transport = transport

    @property
    def _timeout(self) -> float:
        return float(self._settings.http_timeout_seconds)

    def capabilities(self) -> ChannelCapabilities:
        return get_capabilities(self.channel_type)

    def is_active(self, connection_id: str) -> bool:
        return self._pool.is_active(connection_id)

    def active_connections(self) -> list[str]:
        return self._pool.active_ids()

    async def get_connection_status(self, connection_id: str) -> dict[str, Any]:
        connection = await self._load_connection(connection_id)
        return {
            "connectionId": connection.id,
            "channelType": self.channel_type.value,
            "status": connection.status,
            "active": self.is_active(connection_id),
        }

    async def delete_message(
        self, message: Message, conversation: Conversation, connection: ChannelConnection
    ) -> bool:
        return False

    # Lookup helpers

    async def _load_connection(self, connection_id: str) -> ChannelConnection:
        connection = await self._storage.get_channel_connection(connection_id)
        if connection is None:
            raise NotFoundError("Channel connection not found")
        return connection

    def _reject_group(self, target: ReplyTarget) -> None:
        if target.is_group and not self.supports_groups:
            raise ChannelError(f"{self.provider_name} does not support group chat replies")

    async def _set_status(
        self, connection: ChannelConnection, status: str, **data: Any
    ) -> ChannelConnection:
        changes: dict[str, Any] = {"status": status}
        if data:
            changes["connection_data"] = {**connection.connection_data, **data}
        return await self._storage.update_channel_connection(connection.id, **changes)

    async def _record_connection_error(
        self, connection: ChannelConnection, exc: Exception
    ) -> None:
        self._pool.mark_inactive(connection.id)
        await self._set_status(
            connection,
            "error",
            lastError=str(exc),
            lastErrorAt=utcnow().isoformat(),
        )

    async def _ensure_contact_and_conversation(
        self,
        connection: ChannelConnection,
        identifier: str,
        *,
        name: str = "",
        phone: str | None = None,
        email: str | None = None,
        identifier_type: str | None = None,
        conversation_status: str = "open",
    ) -> tuple[Contact, Conversation, bool]:
        """Get-or-create the contact and its 1:1 conversation on this connection."""
        contact = await self._storage.get_or_create_contact(
            Contact(
                company_id=connection.company_id,
                identifier=identifier,
                identifier_type=identifier_type or self.identifier_type,
                name=name or identifier,
                phone=phone,
                email=email,
                source=self.channel_type.value,
            )
        )
        conversation = await self._storage.get_conversation_by_contact_and_channel(
            contact.id, connection.id
        )
        created = False
        if conversation is None:
            conversation = await self._storage.create_conversation(
                Conversation(
                    company_id=connection.company_id,
                    channel_id=connection.id,
                    channel_type=self.channel_type.value,
                    contact_id=contact.id,
                    status=conversation_status,
                    last_message_at=utcnow(),
                )
            )
            created = True
            self._publisher.publish(
                event("newConversation", {"conversationId": conversation.id, "contactId": contact.id}),
                Scope.company(connection.company_id),
            )
        return contact, conversation, created

    async def _ensure_group_conversation(
        self, connection: ChannelConnection, group_jid: str, group_name: str | None = None
    ) -> Conversation:
        conversation = await self._storage.get_conversation_by_group_jid(connection.id, group_jid)
        if conversation is not None:
            return conversation
        conversation = await self._storage.create_conversation(
            Conversation(
                company_id=connection.company_id,
                channel_id=connection.id,
                channel_type=self.channel_type.value,
                is_group=True,
                group_jid=group_jid,
                group_name=group_name,
                last_message_at=utcnow(),
            )
        )
        self._publisher.publish(
            event("newConversation", {"conversationId": conversation.id, "groupJid": group_jid}),
            Scope.company(connection.company_id),
        )
        return conversation

    # Persistence helpers

    async def _record_outbound(
        self,
        conversation: Conversation,
        content: str,
        *,
        user_id: str | None = None,
        message_type: str = "text",
        media_url: str | None = None,
        external_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        **fields: Any,
    ) -> Message:
        now = utcnow()
        message = await self._storage.create_message(
            Message(
                conversation_id=conversation.id,
                direction="outbound",
                content=content,
                type=message_type,
                status=MessageStatus.SENT.value,
                sender_type="user",
                sender_id=user_id,
                media_url=media_url,
                external_id=external_id,
                metadata={"channelType": self.channel_type.value, **(metadata or {})},
                sent_at=now,
                **fields,
            )
        )
        await self._storage.update_conversation(conversation.id, last_message_at=now)
        self._broadcast_message(conversation, message)
        return message

    async def _record_inbound(
        self,
        connection: ChannelConnection,
        conversation: Conversation,
        contact: Contact | None,
        message: Message,
        result: WebhookResult,
        *,
        conversation_status: str = "open",
    ) -> Message:
        """Persist an inbound message, refresh the conversation, broadcast, hand off."""
        stored = await self._storage.create_message(message)
        conversation = await self._storage.update_conversation(
            conversation.id, last_message_at=stored.created_at, status=conversation_status
        )
        self._broadcast_message(conversation, stored)
        warning = await hand_off(self._flow_executor, stored, conversation, contact, connection)
        result.add(stored, warning)
        return stored

    async def _is_duplicate(self, external_id: str | None) -> bool:
        if not external_id:
            return False
        return await self._storage.get_message_by_external_id(external_id) is not None

    async def _apply_status_update(
        self, external_id: str, status: str, *, error: str | None = None
    ) -> Message | None:
        message = await self._storage.get_message_by_external_id(external_id)
        if message is None:
            logger.debug("%s status %s for unknown message %s", self.provider_name, status, external_id)
            return None
        changes: dict[str, Any] = {"status": status}
        if status == MessageStatus.READ.value:
            changes["read_at"] = utcnow()
        if error:
            changes["metadata"] = {**message.metadata, "error": error}
        message = await self._storage.update_message(message.id, **changes)
        conversation = await self._storage.get_conversation(message.conversation_id)
        if conversation is not None:
            self._publisher.publish(
                event(
                    "messageStatusUpdate",
                    {"messageId": message.id, "conversationId": conversation.id, "status": status},
                ),
                Scope.company(conversation.company_id),
            )
        return message

    def _broadcast_message(self, conversation: Conversation, message: Message) -> None:
        payload = event("newMessage", message.to_event())
        self._publisher.publish(payload, Scope.conversation(conversation.id))
        self._publisher.publish(payload, Scope.company(conversation.company_id))
