"""WhatsApp through the Twilio Conversations API."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import (
    classify_mime,
    digits_only,
    media_placeholder,
    quote_excerpt,
)
from omnichannel.channels.http import request_json
from omnichannel.errors import ConfigError, OmnichannelError, ProviderError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

PROVIDER = "Twilio"


@dataclass(slots=True, frozen=True)
class TwilioWhatsAppConfig:
    account_sid: str
    auth_token: str
    conversation_service_sid: str
    whatsapp_number: str

    @classmethod
    def from_connection(
        cls, connection: ChannelConnection, default_number: str
    ) -> TwilioWhatsAppConfig:
        data = connection.connection_data
        account_sid = str(data.get("accountSid") or "")
        auth_token = str(data.get("authToken") or "")
        service_sid = str(data.get("conversationServiceSid") or "")
        if not (account_sid and auth_token and service_sid):
            raise ConfigError("Missing required Twilio configuration")
        return cls(
            account_sid=account_sid,
            auth_token=auth_token,
            conversation_service_sid=service_sid,
            whatsapp_number=whatsapp_address(str(data.get("whatsappNumber") or default_number)),
        )


def whatsapp_address(phone: str) -> str:
    return f"whatsapp:+{digits_only(phone)}"


def _first_media(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, str) and raw.strip():
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    elif isinstance(raw, dict) and raw and not any(k in raw for k in ("ContentType", "content_type")):
        raw = next(iter(raw.values()))
    return raw if isinstance(raw, dict) else None


class TwilioWhatsAppAdapter(BaseAdapter):
    channel_type = ChannelType.WHATSAPP_TWILIO
    provider_name = "Twilio WhatsApp"
    identifier_type = "whatsapp"

    def _config(self, connection: ChannelConnection) -> TwilioWhatsAppConfig:
        return TwilioWhatsAppConfig.from_connection(
            connection, self._settings.twilio_default_whatsapp_number
        )

    def _service_url(self, config: TwilioWhatsAppConfig) -> str:
        base = self._settings.twilio_conversations_url.rstrip("/")
        return f"{base}/Services/{config.conversation_service_sid}"

    async def _call(
        self, config: TwilioWhatsAppConfig, method: str, url: str, data: dict[str, str] | None = None
    ) -> dict[str, Any]:
        return await request_json(
            method,
            url,
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            auth=(config.account_sid, config.auth_token),
            data=data,
        )

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            config = self._config(connection)
            service = await self._call(config, "GET", self._service_url(config))
        except OmnichannelError as exc:
            logger.warning("Twilio connection %s failed: %s", connection_id, exc)
            await self._record_connection_error(connection, exc)
            return False
        self._pool.mark_active(
            connection_id,
            company_id=connection.company_id,
            service=service.get("friendly_name"),
        )
        await self._set_status(connection, "active")
        logger.info("Twilio WhatsApp connection %s active", connection_id)
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "inactive")
        return True

    async def initialize_connection(self, connection_id: str, config: dict[str, Any]) -> bool:
        connection = await self._load_connection(connection_id)
        await self._storage.update_channel_connection(
            connection_id, connection_data={**connection.connection_data, **config}
        )
        return await self.connect(connection_id)

    async def get_connection_status(self, connection_id: str) -> dict[str, Any]:
        connection = await self._load_connection(connection_id)
        try:
            config = self._config(connection)
            service = await self._call(config, "GET", self._service_url(config))
        except OmnichannelError as exc:
            return {"status": "error", "message": str(exc), "active": False}
        return {
            "status": "connected",
            "message": "Connected to Twilio Conversations",
            "active": self.is_active(connection_id),
            "serviceInfo": {
                "sid": service.get("sid"),
                "friendlyName": service.get("friendly_name"),
            },
        }

    # Outbound

    async def _deliver(
        self,
        connection: ChannelConnection,
        to: str,
        *,
        body: str | None = None,
        media_url: str | None = None,
    ) -> dict[str, str]:
        """Create conversation, add participant, post message. Returns the Twilio SIDs."""
        config = self._config(connection)
        address = whatsapp_address(to)
        conversations_url = f"{self._service_url(config)}/Conversations"
        created = await self._call(
            config,
            "POST",
            conversations_url,
            {
                "FriendlyName": f"WhatsApp {address}",
                "UniqueName": f"whatsapp_{digits_only(to)}_{int(time.time() * 1000)}",
            },
        )
        conversation_sid = str(created.get("sid") or "")
        if not conversation_sid:
            raise ProviderError("Twilio did not return a conversation SID", provider=PROVIDER)
        await self._call(
            config,
            "POST",
            f"{conversations_url}/{conversation_sid}/Participants",
            {
                "MessagingBinding.Address": address,
                "MessagingBinding.ProxyAddress": config.whatsapp_number,
            },
        )
        data = {"Author": config.whatsapp_number}
        if body:
            data["Body"] = body
        if media_url:
            data["MediaUrl"] = media_url
        posted = await self._call(
            config, "POST", f"{conversations_url}/{conversation_sid}/Messages", data
        )
        return {
            "twilioConversationSid": conversation_sid,
            "twilioMessageSid": str(posted.get("sid") or ""),
        }

    async def _outbound_conversation(
        self, connection: ChannelConnection, to: str
    ) -> Conversation:
        phone = digits_only(to)
        _, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone, conversation_status="active"
        )
        return conversation

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        sids = await self._deliver(connection, recipient, body=content)
        conversation = await self._outbound_conversation(connection, recipient)
        return await self._record_outbound(
            conversation,
            content,
            user_id=user_id,
            external_id=sids["twilioMessageSid"] or None,
            metadata=sids,
        )

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
        sids = await self._deliver(connection, recipient, body=caption, media_url=media_url)
        conversation = await self._outbound_conversation(connection, recipient)
        return await self._record_outbound(
            conversation,
            caption or media_placeholder(media_type),
            user_id=user_id,
            message_type=media_type,
            media_url=media_url,
            external_id=sids["twilioMessageSid"] or None,
            metadata=sids,
        )

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        self._reject_group(target)
        body = f'"{quote_excerpt(options.original_content)}"\n\n{content}'
        sids = await self._deliver(target.connection, target.recipient, body=body)
        return await self._record_outbound(
            target.conversation,
            body,
            user_id=target.user_id,
            external_id=sids["twilioMessageSid"] or None,
            metadata={**sids, "replyToMessageId": options.original_message_id},
        )

    # Inbound

    async def _find_connection(self, payload: dict[str, Any]) -> ChannelConnection | None:
        connections = [
            c
            for c in await self._storage.get_channel_connections_by_type(self.channel_type.value)
            if c.status == "active"
        ]
        service_sid = str(payload.get("ChatServiceSid") or "")
        if service_sid:
            for connection in connections:
                if connection.connection_data.get("conversationServiceSid") == service_sid:
                    return connection
        return connections[0] if connections else None

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        event_type = payload.get("EventType")
        if event_type == "onMessageAdded":
            await self._on_message_added(payload, result)
        elif event_type == "onMessageUpdated":
            await self._on_message_updated(payload)
        else:
            logger.debug("Ignoring Twilio event %r", event_type)
        return result

    async def _on_message_added(self, payload: dict[str, Any], result: WebhookResult) -> None:
        author = str(payload.get("Author") or "")
        message_sid = str(payload.get("MessageSid") or "")
        if not (payload.get("ConversationSid") and message_sid and author):
            logger.debug("Twilio onMessageAdded missing identifiers; skipped")
            return
        connection = await self._find_connection(payload)
        if connection is None:
            logger.warning("No active Twilio WhatsApp connection for inbound %s", message_sid)
            return
        config = self._config(connection)
        if digits_only(author) == digits_only(config.whatsapp_number):
            return
        if await self._is_duplicate(message_sid):
            return

        phone = digits_only(author)
        contact, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone, conversation_status="active"
        )
        message_type = "text"
        content = str(payload.get("Body") or "")
        media_url = None
        media = _first_media(payload.get("Media"))
        if media is not None:
            media_url = media.get("Url") or media.get("url")
            message_type = classify_mime(media.get("ContentType") or media.get("content_type"))
            if not content:
                content = media_placeholder(message_type)

        await self._record_inbound(
            connection,
            conversation,
            contact,
            Message(
                conversation_id=conversation.id,
                direction="inbound",
                content=content,
                type=message_type,
                status=MessageStatus.DELIVERED.value,
                sender_type="contact",
                sender_id=contact.id,
                media_url=media_url,
                external_id=message_sid,
                metadata={
                    "channelType": self.channel_type.value,
                    "twilioConversationSid": payload.get("ConversationSid"),
                    "twilioMessageSid": message_sid,
                    "author": author,
                    "dateCreated": payload.get("DateCreated"),
                    "source": payload.get("Source"),
                    "index": payload.get("Index"),
                },
            ),
            result,
            conversation_status="active",
        )

    async def _on_message_updated(self, payload: dict[str, Any]) -> None:
        # Delivery state is not propagated for Twilio; the lookup only confirms the join key.
        message_sid = str(payload.get("MessageSid") or "")
        if not message_sid:
            return
        message = await self._storage.get_message_by_external_id(message_sid)
        logger.debug(
            "Twilio onMessageUpdated for %s (known=%s)", message_sid, message is not None
        )
