"""Facebook Messenger and Instagram Direct through the Meta Send API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.channels.common import media_placeholder, verify_hub_signature
from omnichannel.channels.http import request_json
from omnichannel.errors import ConfigError, OmnichannelError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

_ATTACHMENT_TYPES = {"image": "image", "video": "video", "audio": "audio", "document": "file"}
_INBOUND_TYPES = {"image": "image", "video": "video", "audio": "audio", "file": "document"}


@dataclass(slots=True, frozen=True)
class MetaPageConfig:
    access_token: str
    account_id: str


def mention_body(original_sender: str, content: str) -> str:
    if not original_sender:
        return content
    return f"@{original_sender} {content}"


class MetaMessagingAdapter(BaseAdapter):
    """Messenger and Instagram differ only in the account key and send endpoint."""

    account_key: ClassVar[str]
    webhook_object: ClassVar[str]

    def _config(self, connection: ChannelConnection) -> MetaPageConfig:
        data = connection.connection_data
        token = str(data.get("accessToken") or connection.access_token or "")
        account_id = str(data.get(self.account_key) or "")
        if not (token and account_id):
            raise ConfigError(f"Missing {self.provider_name} access token or {self.account_key}")
        return MetaPageConfig(access_token=token, account_id=account_id)

    def _send_path(self, config: MetaPageConfig) -> str:
        raise NotImplementedError

    async def _graph(
        self,
        config: MetaPageConfig,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return await request_json(
            method,
            f"{self._settings.meta_api_base()}/{path.lstrip('/')}",
            provider=self.provider_name,
            timeout=self._timeout,
            transport=self._transport,
            params={**(params or {}), "access_token": config.access_token},
            **kwargs,
        )

    async def _send(
        self, connection: ChannelConnection, recipient_id: str, message: dict[str, Any]
    ) -> str | None:
        config = self._config(connection)
        response = await self._graph(
            config,
            "POST",
            self._send_path(config),
            json={
                "recipient": {"id": recipient_id},
                "message": message,
                "messaging_type": "RESPONSE",
            },
        )
        return response.get("message_id")

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            config = self._config(connection)
            account = await self._graph(
                config, "GET", config.account_id, params={"fields": "id,name"}
            )
        except OmnichannelError as exc:
            logger.warning("%s connection %s failed: %s", self.provider_name, connection_id, exc)
            await self._record_connection_error(connection, exc)
            return False
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        await self._set_status(connection, "active", accountName=account.get("name"))
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "inactive")
        return True

    async def verify_signature(self, body: bytes, header: str | None) -> bool:
        secrets = [
            str(c.connection_data.get("appSecret") or "")
            for c in await self._storage.get_channel_connections_by_type(self.channel_type.value)
        ]
        if not any(secrets):
            return True
        return verify_hub_signature(body, header, secrets)

    # Outbound

    async def send_message(
        self, connection_id: str, recipient: str, content: str, *, user_id: str | None = None
    ) -> Message:
        connection = await self._load_connection(connection_id)
        external_id = await self._send(connection, recipient, {"text": content})
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
            {
                "attachment": {
                    "type": _ATTACHMENT_TYPES.get(media_type, "file"),
                    "payload": {"url": media_url, "is_reusable": True},
                }
            },
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
        external_id = await self._send(target.connection, target.recipient, {"text": body})
        return await self._record_outbound(
            target.conversation,
            body,
            user_id=target.user_id,
            external_id=external_id,
            metadata={"replyToMessageId": options.original_message_id},
        )

    # Inbound

    async def _match_connection(self, account_id: str) -> ChannelConnection | None:
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            if str(connection.connection_data.get(self.account_key) or "") == account_id:
                return connection
        return None

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        if payload.get("object") not in {self.webhook_object, None}:
            return result
        for entry in payload.get("entry") or []:
            for event in entry.get("messaging") or []:
                await self._handle_event(str(entry.get("id") or ""), event, result)
        return result

    async def _handle_event(
        self, entry_id: str, event: dict[str, Any], result: WebhookResult
    ) -> None:
        message = event.get("message") or {}
        postback = event.get("postback") or {}
        if message.get("is_echo") or "delivery" in event or "read" in event:
            return
        if not message and not postback:
            return
        account_id = str((event.get("recipient") or {}).get("id") or entry_id)
        connection = await self._match_connection(account_id)
        if connection is None:
            logger.warning("%s webhook for unknown account %s", self.provider_name, account_id)
            return
        external_id = message.get("mid") or postback.get("mid")
        if await self._is_duplicate(external_id):
            return

        sender_id = str((event.get("sender") or {}).get("id") or "")
        contact, conversation, _ = await self._ensure_contact_and_conversation(
            connection, sender_id
        )
        message_type = "text"
        media_url = None
        content = str(message.get("text") or postback.get("title") or "")
        attachments = message.get("attachments") or []
        if attachments:
            first = attachments[0]
            message_type = _INBOUND_TYPES.get(str(first.get("type")), "document")
            media_url = (first.get("payload") or {}).get("url")
            content = content or media_placeholder(message_type)

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
                external_id=external_id,
                metadata={
                    "channelType": self.channel_type.value,
                    "senderId": sender_id,
                    "timestamp": event.get("timestamp"),
                    "postbackPayload": postback.get("payload"),
                },
            ),
            result,
        )


class MessengerAdapter(MetaMessagingAdapter):
    channel_type = ChannelType.MESSENGER
    provider_name = "Messenger"
    identifier_type = "messenger"
    account_key = "pageId"
    webhook_object = "page"

    def _send_path(self, config: MetaPageConfig) -> str:
        return "me/messages"


class InstagramAdapter(MetaMessagingAdapter):
    channel_type = ChannelType.INSTAGRAM
    provider_name = "Instagram"
    identifier_type = "instagram"
    account_key = "instagramAccountId"
    webhook_object = "instagram"

    def _send_path(self, config: MetaPageConfig) -> str:
        return f"{config.account_id}/messages"
