"""Embeddable website chat widget channel."""

from __future__ import annotations

import logging
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import media_placeholder
from omnichannel.channels.webchat.sessions import SessionInfo, SessionRegistry
from omnichannel.errors import AccessDeniedError, ChannelError, WebhookAuthError
from omnichannel.ids import new_id, new_widget_token
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Contact,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
    utcnow,
)
from omnichannel.realtime import Scope, event

logger = logging.getLogger(__name__)

DEFAULT_VISITOR_NAME = "Website Visitor"


class WebChatAdapter(BaseAdapter):
    channel_type = ChannelType.WEBCHAT
    provider_name = "WebChat"
    identifier_type = "webchat"

    def __init__(self, *args: Any, sessions: SessionRegistry | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.sessions = sessions or SessionRegistry(self._settings.webchat_session_ttl_seconds)

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        token = connection.connection_data.get("widgetToken") or new_widget_token()
        await self._set_status(connection, "active", widgetToken=token)
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        logger.info("WebChat connection %s active", connection_id)
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        await self._set_status(connection, "disconnected", widgetToken=None)
        evicted = self.sessions.evict_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        logger.info("WebChat connection %s disconnected (%d sessions evicted)", connection_id, evicted)
        return True

    async def initialize_all_connections(self) -> int:
        """Issue tokens for webchat connections that lack one and mark active ones live."""
        initialized = 0
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            if connection.status == "disconnected":
                continue
            if not connection.connection_data.get("widgetToken"):
                await self._set_status(connection, connection.status, widgetToken=new_widget_token())
            if connection.status == "active":
                self._pool.mark_active(connection.id, company_id=connection.company_id)
            initialized += 1
        return initialized

    async def get_connection_status(self, connection_id: str) -> dict[str, Any]:
        status = await super().get_connection_status(connection_id)
        connection = await self._load_connection(connection_id)
        status["hasWidgetToken"] = bool(connection.connection_data.get("widgetToken"))
        status["sessions"] = len(self.sessions.for_connection(connection_id))
        return status

    async def verify_widget_token(self, token: str) -> ChannelConnection | None:
        if not token:
            return None
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            if connection.connection_data.get("widgetToken") == token:
                return connection
        return None

    # Sessions

    def register_session(
        self,
        connection: ChannelConnection,
        session_id: str,
        *,
        visitor_name: str | None = None,
        visitor_email: str | None = None,
        visitor_phone: str | None = None,
    ) -> SessionInfo:
        return self.sessions.register(
            session_id,
            connection.id,
            connection.company_id,
            visitor_name=visitor_name,
            visitor_email=visitor_email,
            visitor_phone=visitor_phone,
        )

    async def _ensure_session_records(
        self, connection: ChannelConnection, session: SessionInfo
    ) -> tuple[Contact, Conversation]:
        contact, conversation, _ = await self._ensure_contact_and_conversation(
            connection,
            session.session_id,
            name=session.visitor_name or DEFAULT_VISITOR_NAME,
            phone=session.visitor_phone,
            email=session.visitor_email,
        )
        session.contact_id = contact.id
        session.conversation_id = conversation.id
        return contact, conversation

    # Inbound

    async def process_webhook(
        self, payload: dict[str, Any], *, company_id: str | None = None, **_: Any
    ) -> WebhookResult:
        token = str(payload.get("token") or "")
        if not token:
            raise WebhookAuthError("Missing widget token")
        connection = await self.verify_widget_token(token)
        if connection is None:
            raise WebhookAuthError("Invalid token")
        if company_id is not None and connection.company_id != company_id:
            raise AccessDeniedError("Access denied")

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        session_id = str(data.get("sessionId") or "").strip()
        if not session_id:
            raise ChannelError("Missing sessionId")

        session = self.register_session(
            connection,
            session_id,
            visitor_name=data.get("visitorName"),
            visitor_email=data.get("visitorEmail"),
            visitor_phone=data.get("visitorPhone"),
        )
        event_type = str(payload.get("eventType") or "")
        result = WebhookResult()
        if event_type == "message":
            contact, conversation = await self._ensure_session_records(connection, session)
            await self._record_inbound(
                connection,
                conversation,
                contact,
                self._inbound_message(conversation, session_id, data),
                result,
            )
        elif event_type in {"typing", "session_start"}:
            await self._ensure_session_records(connection, session)
        else:
            logger.debug("WebChat event %r ignored for session %s", event_type, session_id)
        return result

    def _inbound_message(
        self, conversation: Conversation, session_id: str, data: dict[str, Any]
    ) -> Message:
        limit = self._settings.webchat_max_message_length
        message_type = str(data.get("messageType") or "text")
        content = str(data.get("message") or "")[:limit]
        media_url = data.get("mediaUrl")
        if not content and media_url:
            content = media_placeholder(message_type)
        now = utcnow()
        return Message(
            conversation_id=conversation.id,
            direction="inbound",
            content=content,
            type=message_type,
            status=MessageStatus.DELIVERED.value,
            sender_type="contact",
            sender_id=conversation.contact_id,
            media_url=media_url,
            external_id=new_id("webchat"),
            metadata={
                "channelType": self.channel_type.value,
                "sessionId": session_id,
                "timestamp": now.isoformat(),
            },
            sent_at=now,
        )

    # Outbound

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        return await self._deliver(connection, recipient, content, user_id=user_id)

    async def send_media(
        self,
        connection_id: str,
        recipient: str,
        media_type: str,
        media_url: str,
        *,
        caption: str | None = None,
        user_id: str | None = None,
    ) -> Message:
        connection = await self._load_connection(connection_id)
        return await self._deliver(
            connection,
            recipient,
            caption or media_placeholder(media_type),
            user_id=user_id,
            message_type=media_type,
            media_url=media_url,
        )

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        self._reject_group(target)
        return await self._deliver(target.connection, target.recipient, content, user_id=target.user_id)

    async def _deliver(
        self,
        connection: ChannelConnection,
        session_id: str,
        content: str,
        *,
        user_id: str | None,
        message_type: str = "text",
        media_url: str | None = None,
    ) -> Message:
        session = self.sessions.get(session_id) or self.register_session(connection, session_id)
        _, conversation = await self._ensure_session_records(connection, session)
        message = await self._record_outbound(
            conversation,
            content,
            user_id=user_id,
            message_type=message_type,
            media_url=media_url,
            external_id=new_id("webchat"),
            metadata={"sessionId": session_id},
        )
        self._publisher.publish(
            event(
                "webchatMessage",
                {
                    "id": message.id,
                    "content": message.content,
                    "type": message.type,
                    "mediaUrl": message.media_url,
                    "direction": message.direction,
                    "createdAt": message.created_at.isoformat(),
                },
            ),
            Scope.session(session_id),
        )
        return message
