"""Unofficial WhatsApp (linked-device session through the Baileys sidecar)."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import digits_only, media_placeholder
from omnichannel.channels.whatsapp.baileys_client import BaileysClient
from omnichannel.errors import ChannelError, OmnichannelError
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

logger = logging.getLogger(__name__)

# Delete-for-everyone is accepted by WhatsApp for a much shorter window than the
# capability table advertises; this is the gate applied before calling the sidecar.
DELETE_WINDOW = timedelta(minutes=72)
TOO_OLD_TO_DELETE = (
    "Message is too old to be deleted. "
    "WhatsApp only allows deletion within 72 minutes of sending."
)
NO_WHATSAPP_ID = "Message has no WhatsApp id"

_MEDIA_KEYS = {
    "imageMessage": "image",
    "videoMessage": "video",
    "audioMessage": "audio",
    "documentMessage": "document",
    "stickerMessage": "image",
}
_PROTOCOL_ONLY = {"protocolMessage", "senderKeyDistributionMessage", "messageContextInfo"}

# Baileys WebMessageInfo.Status
_RECEIPT_STATUS = {
    2: MessageStatus.SENT.value,
    3: MessageStatus.DELIVERED.value,
    4: MessageStatus.READ.value,
    5: MessageStatus.READ.value,
}


def to_jid(recipient: str) -> str:
    if "@" in recipient:
        return recipient
    return f"{digits_only(recipient)}@s.whatsapp.net"


def _message_key(response: dict[str, Any]) -> dict[str, Any]:
    key = response.get("key")
    if isinstance(key, dict):
        return key
    message_id = response.get("id") or response.get("messageId")
    return {"id": message_id} if message_id else {}


class WhatsAppAdapter(BaseAdapter):
    channel_type = ChannelType.WHATSAPP_UNOFFICIAL
    provider_name = "WhatsApp"
    supports_groups = True
    identifier_type = "whatsapp"

    def __init__(self, *args: Any, client: BaileysClient | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client = client or BaileysClient(
            self._settings.baileys_api_url,
            api_key=self._settings.baileys_api_key,
            timeout=self._timeout,
            transport=self._transport,
        )

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            payload = await self._client.start_session(connection_id)
        except OmnichannelError as exc:
            await self._record_connection_error(connection, exc)
            return False
        state = str(payload.get("state") or payload.get("status") or "connecting")
        self._pool.mark_active(connection_id, company_id=connection.company_id, state=state)
        await self._set_status(connection, "active", sessionState=state)
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            await self._client.disconnect(connection_id)
        except OmnichannelError:
            logger.warning("Sidecar disconnect failed for %s", connection_id, exc_info=True)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "disconnected")
        return True

    async def get_connection_status(self, connection_id: str) -> dict[str, Any]:
        status = await super().get_connection_status(connection_id)
        try:
            sidecar = await self._client.status(connection_id)
        except OmnichannelError as exc:
            status["sessionState"] = "unreachable"
            status["message"] = str(exc)
            return status
        status["sessionState"] = sidecar.get("state") or sidecar.get("status") or "unknown"
        return status

    # Outbound

    async def _conversation_for(self, connection: ChannelConnection, recipient: str) -> Conversation:
        if recipient.endswith("@g.us"):
            return await self._ensure_group_conversation(connection, recipient)
        phone = digits_only(recipient)
        _, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone
        )
        return conversation

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        jid = to_jid(recipient)
        response = await self._client.send_text(connection_id, jid, content)
        key = _message_key(response)
        conversation = await self._conversation_for(connection, jid)
        return await self._record_outbound(
            conversation,
            content,
            user_id=user_id,
            external_id=key.get("id"),
            metadata={"whatsappMessage": {"key": key}, "remoteJid": jid},
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
        jid = to_jid(recipient)
        response = await self._client.send_media(
            connection_id, jid, media_type=media_type, media_url=media_url, caption=caption or ""
        )
        key = _message_key(response)
        conversation = await self._conversation_for(connection, jid)
        return await self._record_outbound(
            conversation,
            caption or media_placeholder(media_type),
            user_id=user_id,
            message_type=media_type,
            media_url=media_url,
            external_id=key.get("id"),
            metadata={"whatsappMessage": {"key": key}, "remoteJid": jid},
        )

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        quoted = options.quoted_message
        if not quoted:
            raise ChannelError("No quoted message object provided for WhatsApp reply")
        if not isinstance(quoted.get("key"), dict):
            raise ChannelError("Invalid quoted message object - missing key")
        if not content.strip():
            raise ChannelError("Message content cannot be empty")

        jid = to_jid(target.recipient)
        response = await self._client.send_text(target.connection.id, jid, content, quoted=quoted)
        key = _message_key(response)
        if not key:
            raise ChannelError(
                "Failed to send WhatsApp quoted reply - sendQuotedMessage returned null"
            )
        return await self._record_outbound(
            target.conversation,
            content,
            user_id=target.user_id,
            external_id=key.get("id"),
            metadata={
                "whatsappMessage": {"key": key},
                "remoteJid": jid,
                "quotedMessageId": options.original_message_id,
                "quotedMessage": quoted,
            },
        )

    async def delete_message(
        self, message: Message, conversation: Conversation, connection: ChannelConnection
    ) -> bool:
        recipient = await self._delete_recipient(conversation)
        sent = message.sent_at or message.created_at
        if sent is None:
            raise ChannelError("Message timestamp is missing")
        if utcnow() - sent > DELETE_WINDOW:
            raise ChannelError(TOO_OLD_TO_DELETE)

        key = self._native_key(message, recipient)
        await self._client.delete_message(connection.id, recipient, key)
        logger.info("Deleted WhatsApp message %s for everyone", message.id)
        return True

    async def _delete_recipient(self, conversation: Conversation) -> str:
        if conversation.is_group:
            if not conversation.group_jid:
                raise ChannelError("Group conversation missing group JID")
            return conversation.group_jid
        contact = (
            await self._storage.get_contact(conversation.contact_id)
            if conversation.contact_id
            else None
        )
        phone = (contact.phone or contact.identifier) if contact else None
        if not phone:
            raise ChannelError("Contact phone number not found")
        return to_jid(phone)

    @staticmethod
    def _native_key(message: Message, recipient: str) -> dict[str, Any]:
        stored = message.metadata.get("whatsappMessage")
        if isinstance(stored, dict) and isinstance(stored.get("key"), dict) and stored["key"]:
            return dict(stored["key"])
        if not message.external_id:
            raise ChannelError(NO_WHATSAPP_ID)
        return {
            "remoteJid": recipient,
            "fromMe": message.direction == "outbound",
            "id": message.external_id,
        }

    # Inbound

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        connection_id = str(payload.get("sessionId") or payload.get("connectionId") or "")
        connection = await self._storage.get_channel_connection(connection_id)
        if connection is None or connection.channel_type not in {
            self.channel_type.value,
            "whatsapp",
        }:
            logger.warning("WhatsApp webhook for unknown session %r", connection_id)
            return result

        event_name = str(payload.get("event") or "")
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        if event_name == "messages.upsert":
            if data.get("type") == "append":
                return result
            for record in data.get("messages") or []:
                if isinstance(record, dict):
                    await self._handle_record(connection, record, result)
        elif event_name == "messages.update":
            for update in data.get("updates") or []:
                if await self._handle_receipt(update):
                    result.status_updates += 1
        elif event_name == "connection.update":
            await self._handle_connection_update(connection, data)
        return result

    async def _handle_connection_update(
        self, connection: ChannelConnection, data: dict[str, Any]
    ) -> None:
        state = str(data.get("connection") or data.get("state") or "")
        if state == "open":
            self._pool.mark_active(connection.id, company_id=connection.company_id, state=state)
            await self._set_status(connection, "active", sessionState=state)
        elif state == "close":
            self._pool.mark_inactive(connection.id)
            await self._set_status(connection, "disconnected", sessionState=state)

    async def _handle_receipt(self, update: Any) -> bool:
        if not isinstance(update, dict):
            return False
        key = update.get("key") if isinstance(update.get("key"), dict) else {}
        detail = update.get("update") if isinstance(update.get("update"), dict) else {}
        status = _RECEIPT_STATUS.get(detail.get("status"))
        if not key.get("id") or status is None:
            return False
        return await self._apply_status_update(str(key["id"]), status) is not None

    async def _handle_record(
        self, connection: ChannelConnection, record: dict[str, Any], result: WebhookResult
    ) -> None:
        key = record.get("key") if isinstance(record.get("key"), dict) else {}
        body = record.get("message") if isinstance(record.get("message"), dict) else {}
        message_id = str(key.get("id") or "")
        if not message_id or not body or body.keys() <= _PROTOCOL_ONLY:
            return
        if await self._is_duplicate(message_id):
            return

        remote_jid = str(key.get("remoteJidAlt") or key.get("remoteJid") or "")
        if not remote_jid.endswith("@s.whatsapp.net") and not remote_jid.endswith("@g.us"):
            remote_jid = str(key.get("remoteJid") or remote_jid)
        is_group = remote_jid.endswith("@g.us")
        sender_jid = str(key.get("participant") or "") if is_group else remote_jid
        from_me = key.get("fromMe") is True

        contact: Contact | None = None
        if is_group:
            conversation = await self._ensure_group_conversation(connection, remote_jid)
            if sender_jid and not from_me:
                phone = digits_only(sender_jid.split("@", 1)[0])
                contact = await self._storage.get_or_create_contact(
                    Contact(
                        company_id=connection.company_id,
                        identifier=phone,
                        identifier_type=self.identifier_type,
                        name=str(record.get("pushName") or phone),
                        phone=phone,
                        source=self.channel_type.value,
                    )
                )
        else:
            phone = digits_only(remote_jid.split("@", 1)[0])
            contact, conversation, _ = await self._ensure_contact_and_conversation(
                connection, phone, phone=phone, name=str(record.get("pushName") or phone)
            )

        message_type, content = self._extract_content(body)
        timestamp = record.get("messageTimestamp")
        message = Message(
            conversation_id=conversation.id,
            direction="outbound" if from_me else "inbound",
            content=content,
            type=message_type,
            status=MessageStatus.SENT.value if from_me else MessageStatus.DELIVERED.value,
            sender_type="user" if from_me else "contact",
            sender_id=None if from_me or contact is None else contact.id,
            media_url=record.get("mediaUrl"),
            external_id=message_id,
            metadata={
                "channelType": self.channel_type.value,
                "whatsappMessage": {"key": key},
                "remoteJid": remote_jid,
                "participant": sender_jid if is_group else None,
                "pushName": record.get("pushName"),
                "messageTimestamp": timestamp,
                "fromPhone": from_me,
            },
        )
        if from_me:
            stored = await self._storage.create_message(message)
            await self._storage.update_conversation(conversation.id, last_message_at=stored.created_at)
            self._broadcast_message(conversation, stored)
            result.add(stored)
            return
        await self._record_inbound(connection, conversation, contact, message, result)

    @staticmethod
    def _extract_content(body: dict[str, Any]) -> tuple[str, str]:
        if "conversation" in body:
            return "text", str(body.get("conversation") or "")
        extended = body.get("extendedTextMessage")
        if isinstance(extended, dict):
            return "text", str(extended.get("text") or "")
        for media_key, message_type in _MEDIA_KEYS.items():
            media = body.get(media_key)
            if isinstance(media, dict):
                caption = str(media.get("caption") or "")
                return message_type, caption or media_placeholder(message_type)
        buttons = body.get("buttonsResponseMessage") or body.get("listResponseMessage")
        if isinstance(buttons, dict):
            return "text", str(buttons.get("selectedDisplayText") or buttons.get("title") or "")
        return "text", media_placeholder("unsupported")
