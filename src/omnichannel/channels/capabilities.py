"""Static reply/delete capability table per channel type."""

from __future__ import annotations

from omnichannel.models import ChannelCapabilities, ChannelType

# WhatsApp allows delete-for-everyone for 72 hours on the coarse gate.
WHATSAPP_DELETE_LIMIT_MINUTES = 4320

_QUOTED_NO_DELETE = ChannelCapabilities(
    supports_reply=True,
    supports_delete=False,
    supports_quoted_messages=True,
    reply_format="quoted",
)
_MENTION = ChannelCapabilities(
    supports_reply=True,
    supports_delete=False,
    supports_quoted_messages=False,
    reply_format="mention",
)
_FLAT = ChannelCapabilities(
    supports_reply=True,
    supports_delete=False,
    supports_quoted_messages=False,
    reply_format="threaded",
)

FALLBACK = ChannelCapabilities(
    supports_reply=False,
    supports_delete=False,
    supports_quoted_messages=False,
    reply_format="mention",
)

CAPABILITIES: dict[ChannelType, ChannelCapabilities] = {
    ChannelType.WHATSAPP_UNOFFICIAL: ChannelCapabilities(
        supports_reply=True,
        supports_delete=True,
        supports_quoted_messages=True,
        reply_format="quoted",
        delete_time_limit=WHATSAPP_DELETE_LIMIT_MINUTES,
    ),
    ChannelType.WHATSAPP_OFFICIAL: _QUOTED_NO_DELETE,
    ChannelType.WHATSAPP_TWILIO: _QUOTED_NO_DELETE,
    ChannelType.WHATSAPP_360DIALOG: _QUOTED_NO_DELETE,
    ChannelType.MESSENGER: _MENTION,
    ChannelType.INSTAGRAM: _MENTION,
    ChannelType.TIKTOK: _MENTION,
    ChannelType.EMAIL: ChannelCapabilities(
        supports_reply=True,
        supports_delete=False,
        supports_quoted_messages=True,
        reply_format="threaded",
    ),
    ChannelType.TWILIO_SMS: _FLAT,
    ChannelType.WEBCHAT: _FLAT,
}


def get_capabilities(channel_type: str | ChannelType | None) -> ChannelCapabilities:
    parsed = ChannelType.parse(channel_type)
    if parsed is None:
        return FALLBACK
    return CAPABILITIES.get(parsed, FALLBACK)
