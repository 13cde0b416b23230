"""Shared send/receive logic for providers speaking the WhatsApp Cloud API format.

WhatsApp Official (Meta Graph) and 360Dialog accept the same message bodies and
deliver the same ``entry[].changes[].value`` webhook shape; subclasses supply the
transport (URL and auth) and how a webhook is matched to a stored connection.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import digits_only, media_placeholder, quote_excerpt
from omnichannel.models import (
    ChannelConnection,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video", "audio", "document", "sticker")

_STATUS_MAP = {
    "sent": MessageStatus.SENT.value,
    "delivered": MessageStatus.DELIVERED.value,
    "read": MessageStatus.READ.value,
    "failed": MessageStatus.FAILED.value,
}


def quoted_body(original_content: str, content: str) -> str:
    return f'↩️ Replying to: "{quote_excerpt(original_content)}"\n\n{content}'


def parse_cloud_message(raw: dict[str, Any]) -> tuple[str, str, dict[str, Any]]:
    """Return (type, content, extra metadata) for one Cloud API inbound message."""
    kind = str(raw.get("type") or "text")
    if kind == "text":
        return "text", str((raw.get("text") or {}).get("body") or ""), {}
    if kind in MEDIA_TYPES:
        media = raw.get(kind) or {}
        message_type = "image" if kind == "sticker" else kind
        content = str(media.get("caption") or "") or media_placeholder(message_type)
        return message_type, content, {
            "mediaId": media.get("id"),
            "mimeType": media.get("mime_type"),
            "filename": media.get("filename"),
        }
    if kind == "location":
        location = raw.get("location") or {}
        label = location.get("name") or location.get("address") or "Location"
        content = f"{label} ({location.get('latitude')}, {location.get('longitude')})"
        return "location", content, {"location": location}
    if kind == "interactive":
        interactive = raw.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return "text", str(reply.get("title") or ""), {
            "interactive": {"type": interactive.get("type"), "id": reply.get("id")}
        }
    if kind == "button":
        button = raw.get("button") or {}
        return "text", str(button.get("text") or ""), {"buttonPayload": button.get("payload")}
    return "text", media_placeholder(kind), {}


class CloudApiAdapter(BaseAdapter, ABC):
    identifier_type = "whatsapp"

    @abstractmethod
    async def _post_message(
        self, connection: ChannelConnection, body: dict[str, Any]
    ) -> dict[str, Any]:
        """POST one Cloud API message body to the provider."""

    @abstractmethod
    async def _match_connection(self, value: dict[str, Any]) -> ChannelConnection | None:
        """Find the stored connection a webhook `value` block belongs to."""

    # Outbound

    async def _send(
        self, connection: ChannelConnection, to: str, message: dict[str, Any]
    ) -> str | None:
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": digits_only(to),
            **message,
        }
        response = await self._post_message(connection, body)
        sent = response.get("messages") or []
        if sent and isinstance(sent[0], dict):
            return sent[0].get("id")
        return None

    async def _outbound_conversation(
        self, connection: ChannelConnection, to: str
    ) -> Conversation:
        phone = digits_only(to)
        _, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone
        )
        return conversation

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        external_id = await self._send(
            connection, recipient, {"type": "text", "text": {"preview_url": False, "body": content}}
        )
        conversation = await self._outbound_conversation(connection, recipient)
        return await self._record_outbound(
            conversation, content, user_id=user_id, external_id=external_id
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
        media: dict[str, Any] = {"link": media_url}
        if caption and media_type != "audio":
            media["caption"] = caption
        external_id = await self._send(connection, recipient, {"type": media_type, media_type: media})
        conversation = await self._outbound_conversation(connection, recipient)
        return await self._record_outbound(
            conversation,
            caption or media_placeholder(media_type),
            user_id=user_id,
            message_type=media_type,
            media_url=media_url,
            external_id=external_id,
        )

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        self._reject_group(target)
        body = quoted_body(options.original_content, content)
        external_id = await self._send(
            target.connection, target.recipient, {"type": "text", "text": {"body": body}}
        )
        return await self._record_outbound(
            target.conversation,
            body,
            user_id=target.user_id,
            external_id=external_id,
            metadata={"replyToMessageId": options.original_message_id},
        )

    # Inbound

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                if change.get("field", "messages") != "messages":
                    continue
                value = change.get("value") or {}
                connection = await self._match_connection(value)
                if connection is None:
                    logger.warning(
                        "%s webhook for unknown phone number %s",
                        self.provider_name,
                        (value.get("metadata") or {}).get("phone_number_id"),
                    )
                    continue
                await self._handle_value(connection, value, result)
        return result

    async def _handle_value(
        self, connection: ChannelConnection, value: dict[str, Any], result: WebhookResult
    ) -> None:
        profiles = {
            str(c.get("wa_id")): str((c.get("profile") or {}).get("name") or "")
            for c in value.get("contacts") or []
        }
        for raw in value.get("messages") or []:
            external_id = raw.get("id")
            if await self._is_duplicate(external_id):
                continue
            phone = digits_only(raw.get("from"))
            contact, conversation, _ = await self._ensure_contact_and_conversation(
                connection, phone, phone=phone, name=profiles.get(phone, "")
            )
            message_type, content, extra = parse_cloud_message(raw)
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
                    external_id=external_id,
                    metadata={
                        "channelType": self.channel_type.value,
                        "timestamp": raw.get("timestamp"),
                        "context": raw.get("context"),
                        **extra,
                    },
                ),
                result,
            )
        for status in value.get("statuses") or []:
            mapped = _STATUS_MAP.get(str(status.get("status") or ""))
            if mapped is None or not status.get("id"):
                continue
            errors = status.get("errors") or []
            error = errors[0].get("title") if errors and isinstance(errors[0], dict) else None
            if await self._apply_status_update(str(status["id"]), mapped, error=error):
                result.status_updates += 1
