"""Email channel: SMTP delivery with RFC 5322 threading headers, inbound via relay webhook."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any

import aiosmtplib

from omnichannel.channels.base import BaseAdapter, ReplyTarget, WebhookResult
from omnichannel.errors import ChannelError, ConfigError, ProviderError
from omnichannel.models import (
    ChannelConnection,
    ChannelType,
    Conversation,
    Message,
    MessageStatus,
    ReplyOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "(No Subject)"

SmtpSender = Callable[..., Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class EmailConfig:
    smtp_host: str
    smtp_port: int
    username: str
    password: str
    from_email: str
    from_name: str = ""
    use_tls: bool = False
    start_tls: bool = True

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> EmailConfig:
        data = connection.connection_data
        host = str(data.get("smtpHost") or "")
        username = str(data.get("smtpUsername") or data.get("emailAddress") or "")
        from_email = str(data.get("emailAddress") or data.get("fromEmail") or username)
        if not (host and from_email):
            raise ConfigError("Missing SMTP host or sender address")
        port = int(data.get("smtpPort") or 587)
        return cls(
            smtp_host=host,
            smtp_port=port,
            username=username,
            password=str(data.get("smtpPassword") or ""),
            from_email=from_email,
            from_name=str(data.get("displayName") or ""),
            use_tls=bool(data.get("smtpSecure")) and port == 465,
            start_tls=port != 465,
        )


def reply_subject(subject: str | None) -> str:
    value = (subject or "").strip() or DEFAULT_SUBJECT
    if value.lower().startswith("re:"):
        return value
    return f"Re: {value}"


def reply_references(original: Message) -> str | None:
    if original.email_references and original.email_message_id:
        return f"{original.email_references} {original.email_message_id}"
    return original.email_message_id


class EmailAdapter(BaseAdapter):
    channel_type = ChannelType.EMAIL
    provider_name = "Email"
    supports_groups = True
    identifier_type = "email"

    def __init__(self, *args: Any, smtp_send: SmtpSender | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._smtp_send = smtp_send or aiosmtplib.send

    async def _deliver(
        self,
        config: EmailConfig,
        to: str,
        subject: str,
        body: str,
        *,
        in_reply_to: str | None = None,
        references: str | None = None,
    ) -> str:
        domain = config.from_email.rsplit("@", 1)[-1]
        message_id = make_msgid(domain=domain)
        mail = EmailMessage()
        mail["From"] = formataddr((config.from_name, config.from_email))
        mail["To"] = to
        mail["Subject"] = subject
        mail["Message-ID"] = message_id
        if in_reply_to:
            mail["In-Reply-To"] = in_reply_to
        if references:
            mail["References"] = references
        mail.set_content(body)
        try:
            await self._smtp_send(
                mail,
                hostname=config.smtp_host,
                port=config.smtp_port,
                username=config.username or None,
                password=config.password or None,
                use_tls=config.use_tls,
                start_tls=config.start_tls,
                timeout=self._timeout,
            )
        except aiosmtplib.SMTPException as exc:
            raise ProviderError(f"SMTP delivery failed: {exc}", provider="SMTP") from exc
        return message_id

    # Lifecycle

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            EmailConfig.from_connection(connection)
        except ConfigError as exc:
            await self._record_connection_error(connection, exc)
            return False
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
        self,
        connection_id: str,
        recipient: str,
        content: str,
        *,
        user_id: str | None = None,
        subject: str | None = None,
    ) -> Message:
        connection = await self._load_connection(connection_id)
        config = EmailConfig.from_connection(connection)
        subject = (subject or "").strip() or DEFAULT_SUBJECT
        message_id = await self._deliver(config, recipient, subject, content)
        _, conversation, created = await self._ensure_contact_and_conversation(
            connection, recipient.lower(), email=recipient
        )
        if created:
            await self._storage.update_conversation(conversation.id, email_subject=subject)
        return await self._record_outbound(
            conversation,
            content,
            user_id=user_id,
            external_id=message_id,
            email_subject=subject,
            email_message_id=message_id,
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
        body = f"{caption}\n\n{media_url}" if caption else media_url
        return await self.send_message(connection_id, recipient, body, user_id=user_id)

    async def send_reply(self, target: ReplyTarget, content: str, options: ReplyOptions) -> Message:
        original = await self._storage.get_message_by_id(options.original_message_id)
        if original is None:
            raise ChannelError("Original message not found for reply")
        config = EmailConfig.from_connection(target.connection)
        subject = reply_subject(original.email_subject or target.conversation.email_subject)
        references = reply_references(original)
        message_id = await self._deliver(
            config,
            target.recipient,
            subject,
            content,
            in_reply_to=original.email_message_id,
            references=references,
        )
        return await self._record_outbound(
            target.conversation,
            content,
            user_id=target.user_id,
            external_id=message_id,
            metadata={"replyToMessageId": original.id},
            email_subject=subject,
            email_message_id=message_id,
            email_references=references,
            email_in_reply_to=original.email_message_id,
        )

    # Inbound

    async def _match_connection(self, payload: dict[str, Any]) -> ChannelConnection | None:
        connection_id = payload.get("connectionId")
        if connection_id:
            return await self._storage.get_channel_connection(str(connection_id))
        to = str(payload.get("to") or "").lower()
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            data = connection.connection_data
            address = str(data.get("emailAddress") or data.get("fromEmail") or "").lower()
            if address and address in to:
                return connection
        return None

    async def _thread_conversation(
        self, payload: dict[str, Any], fallback: Conversation
    ) -> Conversation:
        parent_id = payload.get("inReplyTo")
        if parent_id:
            parent = await self._storage.get_message_by_external_id(str(parent_id))
            if parent is not None:
                conversation = await self._storage.get_conversation(parent.conversation_id)
                if conversation is not None and conversation.company_id == fallback.company_id:
                    return conversation
        return fallback

    async def process_webhook(self, payload: dict[str, Any], **_: Any) -> WebhookResult:
        result = WebhookResult()
        connection = await self._match_connection(payload)
        if connection is None or connection.channel_type != self.channel_type.value:
            logger.warning("Inbound email for unknown mailbox %r", payload.get("to"))
            return result
        message_id = str(payload.get("messageId") or "") or None
        if await self._is_duplicate(message_id):
            return result

        sender = str(payload.get("from") or "").strip()
        if not sender:
            raise ChannelError("Inbound email missing sender")
        subject = str(payload.get("subject") or "") or DEFAULT_SUBJECT
        contact, conversation, created = await self._ensure_contact_and_conversation(
            connection, sender.lower(), name=str(payload.get("fromName") or sender), email=sender
        )
        if created:
            conversation = await self._storage.update_conversation(
                conversation.id, email_subject=subject
            )
        conversation = await self._thread_conversation(payload, conversation)
        references = payload.get("references")
        if isinstance(references, list):
            references = " ".join(str(r) for r in references)
        await self._record_inbound(
            connection,
            conversation,
            contact,
            Message(
                conversation_id=conversation.id,
                direction="inbound",
                content=str(payload.get("text") or payload.get("html") or ""),
                type="email",
                status=MessageStatus.DELIVERED.value,
                sender_type="contact",
                sender_id=contact.id,
                external_id=message_id,
                metadata={
                    "channelType": self.channel_type.value,
                    "html": payload.get("html"),
                    "attachments": payload.get("attachments") or [],
                },
                email_subject=subject,
                email_message_id=message_id,
                email_references=references or None,
                email_in_reply_to=payload.get("inReplyTo"),
            ),
            result,
        )
        return result
