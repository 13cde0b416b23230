"""SMS through the Twilio Programmable Messaging API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import classify_mime, digits_only, media_placeholder, to_e164
from omnichannel.channels.http import request_json
from omnichannel.errors import ChannelError, ConfigError, OmnichannelError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Contact,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

PROVIDER = "Twilio"
OPT_OUT_TAG = "sms_opted_out"
OPT_OUT_BLOCKED = "Contact has opted out of SMS (STOP). Outbound message blocked."

STOP_KEYWORDS = frozenset({"STOP", "STOPALL", "UNSUBSCRIBE", "CANCEL", "END", "QUIT"})
START_KEYWORDS = frozenset({"START", "UNSTOP", "YES"})
HELP_KEYWORDS = frozenset({"HELP", "INFO"})
KEYWORDS = STOP_KEYWORDS | START_KEYWORDS | HELP_KEYWORDS

_STATUS_MAP = {
    "queued": MessageStatus.SENT.value,
    "accepted": MessageStatus.SENT.value,
    "sending": MessageStatus.SENT.value,
    "sent": MessageStatus.SENT.value,
    "delivered": MessageStatus.DELIVERED.value,
    "undelivered": MessageStatus.FAILED.value,
    "failed": MessageStatus.FAILED.value,
}


@dataclass(slots=True, frozen=True)
class TwilioSmsConfig:
    account_sid: str
    auth_token: str
    from_number: str
    status_callback_url: str = ""

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> TwilioSmsConfig:
        data = connection.connection_data
        account_sid = str(data.get("accountSid") or "")
        auth_token = str(data.get("authToken") or "")
        from_number = str(data.get("fromNumber") or "")
        if not (account_sid and auth_token and from_number):
            raise ConfigError("Missing required Twilio SMS configuration")
        return cls(
            account_sid=account_sid,
            auth_token=auth_token,
            from_number=from_number,
            status_callback_url=str(data.get("statusCallbackUrl") or ""),
        )


def twilio_signature(auth_token: str, url: str, params: dict[str, Any]) -> str:
    """X-Twilio-Signature: base64 HMAC-SHA1 of the URL followed by sorted key/value pairs."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def media_count(raw: Any) -> int:
    try:
        return int(str(raw or 0).strip())
    except ValueError:
        return 0


def keyword(body: str) -> str:
    return body.strip().upper()


class TwilioSmsAdapter(BaseAdapter):
    channel_type = ChannelType.TWILIO_SMS
    provider_name = "SMS"
    identifier_type = "phone"

    async def _call(
        self, config: TwilioSmsConfig, method: str, path: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        base = self._settings.twilio_api_url.rstrip("/")
        return await request_json(
            method,
            f"{base}/Accounts/{config.account_sid}{path}",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            auth=(config.account_sid, config.auth_token),
            data=data,
        )

    async def _deliver(
        self,
        connection: ChannelConnection,
        to: str,
        *,
        body: str | None = None,
        media_url: str | None = None,
    ) -> dict[str, Any]:
        config = TwilioSmsConfig.from_connection(connection)
        contact = await self._storage.get_contact_by_identifier(
            connection.company_id, digits_only(to), self.identifier_type
        )
        if contact is not None and OPT_OUT_TAG in contact.tags:
            raise ChannelError(OPT_OUT_BLOCKED)
        data: dict[str, Any] = {"To": to_e164(to), "From": config.from_number}
        if body:
            data["Body"] = body
        if media_url:
            data["MediaUrl"] = media_url
        if config.status_callback_url:
            data["StatusCallback"] = config.status_callback_url
        return await self._call(config, "POST", "/Messages.json", data)

    async def _conversation_for(
        self, connection: ChannelConnection, to: str
    ) -> Conversation:
        phone = digits_only(to)
        _, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone
        )
        return conversation

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            config = TwilioSmsConfig.from_connection(connection)
            account = await self._call(config, "GET", ".json")
        except OmnichannelError as exc:
            logger.warning("Twilio SMS connection %s failed: %s", connection_id, exc)
            await self._record_connection_error(connection, exc)
            return False
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        await self._set_status(connection, "active", accountName=account.get("friendly_name"))
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "inactive")
        return True

    # Outbound

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        sent = await self._deliver(connection, recipient, body=content)
        conversation = await self._conversation_for(connection, recipient)
        return await self._record_outbound(
            conversation,
            content,
            user_id=user_id,
            external_id=sent.get("sid"),
            metadata={"twilioStatus": sent.get("status")},
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
        sent = await self._deliver(connection, recipient, body=caption, media_url=media_url)
        conversation = await self._conversation_for(connection, recipient)
        return await self._record_outbound(
            conversation,
            caption or media_placeholder(media_type),
            user_id=user_id,
            message_type=media_type,
            media_url=media_url,
            external_id=sent.get("sid"),
            metadata={"twilioStatus": sent.get("status")},
        )

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        self._reject_group(target)
        sent = await self._deliver(target.connection, target.recipient, body=content)
        return await self._record_outbound(
            target.conversation,
            content,
            user_id=target.user_id,
            external_id=sent.get("sid"),
            metadata={
                "twilioStatus": sent.get("status"),
                "replyToMessageId": options.original_message_id,
            },
        )

    # Inbound

    async def _match_connection(self, to: str) -> ChannelConnection | None:
        target = digits_only(to)
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            if digits_only(connection.connection_data.get("fromNumber")) == target:
                return connection
        return None

    async def verify_signature(self, url: str, params: dict[str, Any], header: str | None) -> bool:
        if int(self._settings.twilio_validate_signatures) != 1:
            return True
        connection = await self._match_connection(str(params.get("To") or ""))
        if connection is None or not header:
            return False
        token = str(connection.connection_data.get("authToken") or "")
        return hmac.compare_digest(twilio_signature(token, url, params), header)

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        if payload.get("MessageStatus") and payload.get("SmsStatus") != "received":
            status = _STATUS_MAP.get(str(payload["MessageStatus"]).lower())
            sid = payload.get("MessageSid")
            if status and sid and await self._apply_status_update(
                str(sid), status, error=payload.get("ErrorMessage") or payload.get("ErrorCode")
            ):
                result.status_updates += 1
            return result

        connection = await self._match_connection(str(payload.get("To") or ""))
        if connection is None:
            logger.warning("Inbound SMS for unknown number %s", payload.get("To"))
            return result
        sid = payload.get("MessageSid") or payload.get("SmsSid")
        if await self._is_duplicate(sid):
            return result

        phone = digits_only(payload.get("From"))
        contact, conversation, _ = await self._ensure_contact_and_conversation(
            connection, phone, phone=phone
        )
        body = str(payload.get("Body") or "")
        word = keyword(body)
        contact = await self._apply_keyword(contact, word)

        message_type = "text"
        media_url = None
        if media_count(payload.get("NumMedia")) > 0:
            media_url = payload.get("MediaUrl0")
            message_type = classify_mime(payload.get("MediaContentType0"))
            body = body or media_placeholder(message_type)

        await self._record_inbound(
            connection,
            conversation,
            contact,
            Message(
                conversation_id=conversation.id,
                direction="inbound",
                content=body,
                type=message_type,
                status=MessageStatus.DELIVERED.value,
                sender_type="contact",
                sender_id=contact.id,
                media_url=media_url,
                external_id=sid,
                metadata={
                    "channelType": self.channel_type.value,
                    "from": payload.get("From"),
                    "to": payload.get("To"),
                    "keyword": word if word in KEYWORDS else None,
                },
            ),
            result,
        )
        return result

    async def _apply_keyword(self, contact: Contact, word: str) -> Contact:
        if word in STOP_KEYWORDS and OPT_OUT_TAG not in contact.tags:
            logger.info("Contact %s opted out of SMS", contact.id)
            return await self._storage.update_contact(contact.id, tags=[*contact.tags, OPT_OUT_TAG])
        if word in START_KEYWORDS and OPT_OUT_TAG in contact.tags:
            logger.info("Contact %s opted back in to SMS", contact.id)
            tags = [tag for tag in contact.tags if tag != OPT_OUT_TAG]
            return await self._storage.update_contact(contact.id, tags=tags)
        return contact
