"""Canonical inbox records shared by every channel adapter."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from omnichannel.ids import new_id

ReplyFormat = Literal["quoted", "threaded", "mention"]
Direction = Literal["inbound", "outbound"]


def utcnow() -> datetime:
    return datetime.now(UTC)


class ChannelType(str, Enum):
    WHATSAPP_UNOFFICIAL = "whatsapp_unofficial"
    WHATSAPP_OFFICIAL = "whatsapp_official"
    WHATSAPP_TWILIO = "whatsapp_twilio"
    WHATSAPP_360DIALOG = "whatsapp_360dialog"
    MESSENGER = "messenger"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    EMAIL = "email"
    TWILIO_SMS = "twilio_sms"
    WEBCHAT = "webchat"

    @classmethod
    def parse(cls, value: str | ChannelType | None) -> ChannelType | None:
        """Map a stored channel_type string to the enum; legacy "whatsapp" is unofficial."""
        if value is None:
            return None
        if isinstance(value, ChannelType):
            return value
        raw = str(value).strip().lower()
        if raw == "whatsapp":
            return cls.WHATSAPP_UNOFFICIAL
        try:
            return cls(raw)
        except ValueError:
            return None


class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


@dataclass(slots=True)
class ChannelConnection:
    company_id: str
    channel_type: str
    connection_data: dict[str, Any] = field(default_factory=dict)
    status: str = ConnectionStatus.INACTIVE.value
    access_token: str | None = None
    user_id: str | None = None
    account_name: str = ""
    id: str = field(default_factory=lambda: new_id("chn"))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Contact:
    company_id: str
    identifier: str
    identifier_type: str
    name: str = ""
    phone: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    source: str = ""
    tags: list[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("cnt"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Conversation:
    company_id: str
    channel_id: str
    channel_type: str
    contact_id: str | None = None
    is_group: bool = False
    group_jid: str | None = None
    group_name: str | None = None
    status: str = "open"
    bot_disabled: bool = False
    last_message_at: datetime | None = None
    email_subject: str | None = None
    id: str = field(default_factory=lambda: new_id("cnv"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Message:
    conversation_id: str
    direction: Direction
    content: str
    type: str = "text"
    status: str = MessageStatus.SENT.value
    sender_type: str = "contact"
    sender_id: str | None = None
    media_url: str | None = None
    external_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime | None = None
    read_at: datetime | None = None
    email_subject: str | None = None
    email_message_id: str | None = None
    email_references: str | None = None
    email_in_reply_to: str | None = None
    id: str = field(default_factory=lambda: new_id("msg"))
    created_at: datetime = field(default_factory=utcnow)

    def to_event(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("sent_at", "read_at", "created_at"):
            value = payload.get(key)
            if isinstance(value, datetime):
                payload[key] = value.isoformat()
        return payload


@dataclass(slots=True)
class User:
    id: str
    company_id: str
    full_name: str | None = None
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    email: str | None = None


@dataclass(slots=True, frozen=True)
class ChannelCapabilities:
    supports_reply: bool
    supports_delete: bool
    supports_quoted_messages: bool
    reply_format: ReplyFormat
    delete_time_limit: int | None = None


@dataclass(slots=True)
class ReplyOptions:
    original_message_id: str
    original_content: str = ""
    original_sender: str = ""
    quoted_message: dict[str, Any] | None = None


@dataclass(slots=True)
class ChannelResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    data: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(
        cls,
        message_id: str | None = None,
        data: dict[str, Any] | None = None,
        warnings: list[str] | None = None,
    ) -> ChannelResult:
        return cls(success=True, message_id=message_id, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error: str, warnings: list[str] | None = None) -> ChannelResult:
        return cls(success=False, error=error, warnings=list(warnings or []))

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.message_id is not None:
            out["messageId"] = self.message_id
        if self.error is not None:
            out["error"] = self.error
        if self.data is not None:
            out["data"] = self.data
        if self.warnings:
            out["warnings"] = list(self.warnings)
        return out
