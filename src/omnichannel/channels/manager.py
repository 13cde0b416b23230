"""Channel-agnostic reply, delete and connection operations for the inbox.

Every public coroutine returns a ``ChannelResult`` and never raises: domain errors
from adapters and storage are converted at the outermost handler, and
best-effort steps (agent signature) surface as warnings.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from omnichannel.channels.base import ReplyTarget
from omnichannel.channels.capabilities import get_capabilities
from omnichannel.channels.registry import ChannelRegistry
from omnichannel.errors import (
    AccessDeniedError,
    ChannelError,
    NotFoundError,
    OmnichannelError,
    ProviderError,
    UnsupportedOperationError,
)
from omnichannel.models import (
    ChannelCapabilities,
    ChannelConnection,
    ChannelResult,
    ChannelType,
    Contact,
    Conversation,
    Message,
    ReplyOptions,
    User,
    utcnow,
)
from omnichannel.realtime import Publisher, Scope, event
from omnichannel.storage.base import Storage

logger = logging.getLogger(__name__)

SIGNATURE_SETTING = "inbox_agent_signature_enabled"


def agent_display_name(user: User) -> str | None:
    """First non-empty of full name, name, first+last, display name, email local part."""
    if user.full_name:
        return user.full_name
    if user.name:
        return user.name
    joined = " ".join(part for part in (user.first_name, user.last_name) if part)
    if joined:
        return joined
    if user.display_name:
        return user.display_name
    if user.email:
        return user.email.split("@", 1)[0]
    return None


def signed_content(name: str, content: str) -> str:
    return f"> *{name}*\n\n{content}"


def _signature_enabled(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in {"false", "0", "no", "off", ""}
    return bool(value)


def _message_age_minutes(message: Message) -> float | None:
    sent: datetime | None = message.sent_at or message.created_at
    if sent is None:
        return None
    return (utcnow() - sent).total_seconds() / 60


class ChannelManager:
    def __init__(
        self, storage: Storage, registry: ChannelRegistry, publisher: Publisher
    ) -> None:
        self._storage = storage
        self._registry = registry
        self._publisher = publisher

    def get_capabilities(self, channel_type: str | ChannelType | None) -> ChannelCapabilities:
        return get_capabilities(channel_type)

    # Authorization helpers

    async def _company_for(self, user_id: str, company_id: str | None) -> str | None:
        if company_id:
            return company_id
        user = await self._storage.get_user(user_id)
        return user.company_id if user is not None else None

    @staticmethod
    def _check_tenant(owner_company_id: str, company_id: str | None, what: str) -> None:
        if company_id is not None and owner_company_id != company_id:
            raise AccessDeniedError(f"Access denied: {what} does not belong to your company")

    async def _load_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self._storage.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def _load_connection(
        self, connection_id: str, company_id: str | None
    ) -> ChannelConnection:
        connection = await self._storage.get_channel_connection(connection_id)
        if connection is None:
            raise NotFoundError("Channel connection not found")
        self._check_tenant(connection.company_id, company_id, "Channel connection")
        return connection

    async def _recipient(self, conversation: Conversation) -> tuple[str, Contact | None]:
        if conversation.is_group:
            if not conversation.group_jid:
                raise ChannelError("Group conversation missing group JID")
            return conversation.group_jid, None
        if not conversation.contact_id:
            raise NotFoundError("Contact ID not found in conversation")
        contact = await self._storage.get_contact(conversation.contact_id)
        if contact is None:
            raise NotFoundError("Contact not found")
        recipient = contact.identifier or contact.phone
        if not recipient:
            raise ChannelError("No phone number found for contact")
        return recipient, contact

    async def _apply_signature(
        self, content: str, user_id: str, company_id: str, warnings: list[str]
    ) -> str:
        try:
            enabled = await self._storage.get_company_setting(company_id, SIGNATURE_SETTING)
            if not _signature_enabled(enabled):
                return content
            user = await self._storage.get_user(user_id)
            name = agent_display_name(user) if user is not None else None
            if not name:
                return content
            return signed_content(name, content)
        except Exception as exc:
            logger.warning("Agent signature skipped for user %s: %s", user_id, exc)
            warnings.append(f"agent signature skipped: {exc}")
            return content

    # Operations

    async def send_reply(
        self,
        conversation_id: str,
        content: str,
        options: ReplyOptions,
        user_id: str,
        company_id: str | None = None,
    ) -> ChannelResult:
        warnings: list[str] = []
        try:
            company_id = await self._company_for(user_id, company_id)
            conversation = await self._load_conversation(conversation_id)
            self._check_tenant(conversation.company_id, company_id, "Conversation")
            connection = await self._load_connection(conversation.channel_id, company_id)
            recipient, contact = await self._recipient(conversation)

            capabilities = get_capabilities(conversation.channel_type)
            if not capabilities.supports_reply:
                raise UnsupportedOperationError("Channel does not support replies")
            adapter = self._registry.get(conversation.channel_type)
            if adapter is None:
                raise UnsupportedOperationError("Unsupported channel type for replies")

            content = await self._apply_signature(
                content, user_id, conversation.company_id, warnings
            )
            target = ReplyTarget(
                conversation=conversation,
                connection=connection,
                recipient=recipient,
                user_id=user_id,
                contact=contact,
            )
            message = await adapter.send_reply(target, content, options)
        except ProviderError as exc:
            logger.exception("Reply in conversation %s failed at provider", conversation_id)
            return ChannelResult.fail(str(exc), warnings)
        except OmnichannelError as exc:
            logger.warning("Reply in conversation %s rejected: %s", conversation_id, exc)
            return ChannelResult.fail(str(exc), warnings)
        except Exception as exc:
            logger.exception("Reply in conversation %s failed", conversation_id)
            return ChannelResult.fail(str(exc), warnings)

        return ChannelResult.ok(
            message_id=message.id,
            data={
                "conversationId": conversation.id,
                "channelType": adapter.channel_type.value,
                "externalId": message.external_id,
                "content": message.content,
                "replyFormat": capabilities.reply_format,
            },
            warnings=warnings,
        )

    async def delete_message(
        self, message_id: str, user_id: str, company_id: str | None = None
    ) -> ChannelResult:
        try:
            company_id = await self._company_for(user_id, company_id)
            message = await self._storage.get_message_by_id(message_id)
            if message is None:
                raise NotFoundError("Message not found")
            conversation = await self._load_conversation(message.conversation_id)
            self._check_tenant(conversation.company_id, company_id, "Conversation")
            connection = await self._load_connection(conversation.channel_id, company_id)

            capabilities = get_capabilities(conversation.channel_type)
            if not capabilities.supports_delete:
                raise UnsupportedOperationError(
                    "Message deletion is not supported for this channel"
                )
            if capabilities.delete_time_limit is not None:
                age = _message_age_minutes(message)
                if age is None:
                    raise ChannelError("Message timestamp is missing")
                if age > capabilities.delete_time_limit:
                    raise ChannelError("Message is too old to be deleted")

            adapter = self._registry.get(conversation.channel_type)
            if adapter is None:
                raise UnsupportedOperationError("Unsupported channel type")
            deleted_remotely = await adapter.delete_message(message, conversation, connection)

            if not await self._storage.delete_message(message.id):
                if deleted_remotely:
                    raise ChannelError(
                        f"Message deleted from {adapter.provider_name} "
                        "but failed to delete from database"
                    )
                raise ChannelError("Failed to delete message from database")
        except ProviderError as exc:
            logger.exception("Delete of message %s failed at provider", message_id)
            return ChannelResult.fail(str(exc))
        except OmnichannelError as exc:
            logger.warning("Delete of message %s rejected: %s", message_id, exc)
            return ChannelResult.fail(str(exc))
        except Exception as exc:
            logger.exception("Delete of message %s failed", message_id)
            return ChannelResult.fail(str(exc))

        self._publisher.publish(
            event("messageDeleted", {"messageId": message.id, "conversationId": conversation.id}),
            Scope.company(conversation.company_id),
        )
        logger.info("Deleted message %s from conversation %s", message.id, conversation.id)
        return ChannelResult.ok(
            message_id=message.id,
            data={"conversationId": conversation.id, "deletedRemotely": deleted_remotely},
        )

    # Connection lifecycle, tenant-checked for the API

    async def _connection_call(
        self, action: str, connection_id: str, user_id: str, company_id: str | None
    ) -> ChannelResult:
        try:
            company_id = await self._company_for(user_id, company_id)
            connection = await self._load_connection(connection_id, company_id)
            adapter = self._registry.get(connection.channel_type)
            if adapter is None:
                raise UnsupportedOperationError("Unsupported channel type")
            if action == "status":
                return ChannelResult.ok(data=await adapter.get_connection_status(connection_id))
            ok = await getattr(adapter, action)(connection_id)
            refreshed = await self._storage.get_channel_connection(connection_id)
            status = refreshed.status if refreshed is not None else connection.status
            if not ok:
                error = refreshed.connection_data.get("lastError") if refreshed else None
                return ChannelResult.fail(str(error or f"Failed to {action} channel"))
            return ChannelResult.ok(data={"connectionId": connection_id, "status": status})
        except OmnichannelError as exc:
            logger.warning("%s of connection %s failed: %s", action, connection_id, exc)
            return ChannelResult.fail(str(exc))
        except Exception as exc:
            logger.exception("%s of connection %s failed", action, connection_id)
            return ChannelResult.fail(str(exc))

    async def connect(
        self, connection_id: str, user_id: str, company_id: str | None = None
    ) -> ChannelResult:
        return await self._connection_call("connect", connection_id, user_id, company_id)

    async def disconnect(
        self, connection_id: str, user_id: str, company_id: str | None = None
    ) -> ChannelResult:
        return await self._connection_call("disconnect", connection_id, user_id, company_id)

    async def connection_status(
        self, connection_id: str, user_id: str, company_id: str | None = None
    ) -> ChannelResult:
        return await self._connection_call("status", connection_id, user_id, company_id)
