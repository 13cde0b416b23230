"""TikTok Business messaging."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import media_placeholder
from omnichannel.channels.http import request_json
from omnichannel.channels.meta import mention_body
from omnichannel.errors import ConfigError, OmnichannelError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

PROVIDER = "TikTok"
TOKEN_REFRESH_BUFFER_MS = 5 * 60 * 1000

_STATUS_EVENTS = {
    "message.delivered": MessageStatus.DELIVERED.value,
    "message.read": MessageStatus.READ.value,
    "message.failed": MessageStatus.FAILED.value,
}


@dataclass(slots=True, frozen=True)
class TikTokConfig:
    access_token: str
    refresh_token: str = ""
    token_expires_at: int = 0
    open_id: str = ""
    union_id: str = ""

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> TikTokConfig:
        data = connection.connection_data
        token = str(data.get("accessToken") or connection.access_token or "")
        if not token:
            raise ConfigError("Missing TikTok access token")
        return cls(
            access_token=token,
            refresh_token=str(data.get("refreshToken") or ""),
            token_expires_at=int(data.get("tokenExpiresAt") or 0),
            open_id=str(data.get("openId") or ""),
            union_id=str(data.get("unionId") or ""),
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


class TikTokAdapter(BaseAdapter):
    channel_type = ChannelType.TIKTOK
    provider_name = "TikTok"
    identifier_type = "tiktok"

    async def _valid_token(self, connection: ChannelConnection) -> str:
        """Return an access token, refreshing and persisting it when close to expiry."""
        config = TikTokConfig.from_connection(connection)
        expires_at = config.token_expires_at
        if not expires_at or expires_at > _now_ms() + TOKEN_REFRESH_BUFFER_MS:
            return config.access_token
        if not config.refresh_token:
            raise ConfigError("TikTok access token expired and no refresh token is stored")
        logger.info("Refreshing TikTok token for connection %s", connection.id)
        try:
            token = await request_json(
                "POST",
                self._settings.tiktok_oauth_url,
                provider=PROVIDER,
                timeout=self._timeout,
                transport=self._transport,
                data={
                    "client_key": self._settings.tiktok_client_key,
                    "client_secret": self._settings.tiktok_client_secret,
                    "refresh_token": config.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except OmnichannelError as exc:
            await self._record_connection_error(connection, exc)
            raise
        access_token = str(token.get("access_token") or "")
        now = _now_ms()
        await self._storage.update_channel_connection(
            connection.id,
            access_token=access_token,
            connection_data={
                **connection.connection_data,
                "accessToken": access_token,
                "refreshToken": token.get("refresh_token") or config.refresh_token,
                "tokenExpiresAt": now + int(token.get("expires_in") or 0) * 1000,
                "lastSyncAt": now,
            },
        )
        return access_token

    async def _send(
        self, connection: ChannelConnection, recipient_id: str, message: dict[str, Any]
    ) -> str | None:
        access_token = await self._valid_token(connection)
        response = await request_json(
            "POST",
            f"{self._settings.tiktok_api_url.rstrip('/')}/v2/messages",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {access_token}"},
            json={"recipient": {"id": recipient_id}, "message": message},
        )
        data = response.get("data") if isinstance(response.get("data"), dict) else response
        return data.get("message_id") or data.get("id")

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            await self._valid_token(connection)
        except OmnichannelError as exc:
            await self._record_connection_error(connection, exc)
            return False
        connection = await self._load_connection(connection_id)
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        await self._set_status(connection, "active")
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
        external_id = await self._send(connection, recipient, {"type": "text", "text": content})
        _, conversation, _ = await self._ensure_contact_and_conversation(connection, recipient)
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
        external_id = await self._send(
            connection,
            recipient,
            {"type": media_type, "attachment": {"type": media_type, "payload": {"url": media_url}}},
        )
        _, conversation, _ = await self._ensure_contact_and_conversation(connection, recipient)
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
        body = mention_body(options.original_sender, content)
        external_id = await self._send(
            target.connection, target.recipient, {"type": "text", "text": body}
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
        event_type = str(payload.get("event_type") or payload.get("type") or "")
        if event_type in {"message", "message.received"}:
            await self._handle_message(payload, result)
        elif event_type in _STATUS_EVENTS:
            message = payload.get("message") or {}
            external_id = message.get("id") or message.get("message_id") or payload.get("message_id")
            error_info = payload.get("error")
            error = error_info.get("message") if isinstance(error_info, dict) else None
            if external_id and await self._apply_status_update(
                str(external_id), _STATUS_EVENTS[event_type], error=error
            ):
                result.status_updates += 1
        else:
            logger.warning("Unknown TikTok webhook event type: %s", event_type)
        return result

    async def _handle_message(self, payload: dict[str, Any], result: WebhookResult) -> None:
        message = payload.get("message") or {}
        sender = payload.get("sender") or message.get("from") or {}
        recipient = payload.get("recipient") or message.get("to") or {}
        recipient_id = str(recipient.get("id") or "")
        connection = None
        for candidate in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            data = candidate.connection_data
            if recipient_id and recipient_id in (data.get("openId"), data.get("unionId")):
                connection = candidate
                break
        if connection is None:
            logger.warning("No TikTok connection found for recipient %s", recipient_id)
            return
        external_id = message.get("id") or message.get("message_id")
        if await self._is_duplicate(external_id):
            return

        sender_id = str(sender.get("id") or "")
        contact, conversation, _ = await self._ensure_contact_and_conversation(
            connection,
            sender_id,
            name=str(sender.get("name") or sender.get("display_name") or "TikTok User"),
        )
        await self._record_inbound(
            connection,
            conversation,
            contact,
            Message(
                conversation_id=conversation.id,
                direction="inbound",
                content=str(message.get("text") or message.get("content") or ""),
                type=str(message.get("type") or "text"),
                status=MessageStatus.DELIVERED.value,
                sender_type="contact",
                sender_id=contact.id,
                external_id=external_id,
                metadata={
                    "channelType": self.channel_type.value,
                    "senderId": sender_id,
                    "timestamp": message.get("timestamp"),
                },
            ),
            result,
        )
