"""Channel adapter registry: maps ChannelType values to adapter instances."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from omnichannel.channels.email import EmailAdapter
from omnichannel.channels.meta import InstagramAdapter, MessengerAdapter
from omnichannel.channels.pool import ConnectionPool
from omnichannel.channels.sms import TwilioSmsAdapter
from omnichannel.channels.tiktok import TikTokAdapter
from omnichannel.channels.webchat.adapter import WebChatAdapter
from omnichannel.channels.webchat.sessions import SessionRegistry
from omnichannel.channels.whatsapp.adapter import WhatsAppAdapter
from omnichannel.channels.whatsapp_360dialog import Dialog360Adapter
from omnichannel.channels.whatsapp_official import WhatsAppOfficialAdapter
from omnichannel.channels.whatsapp_twilio import TwilioWhatsAppAdapter
from omnichannel.config import Settings, get_settings
from omnichannel.models import ChannelType

if TYPE_CHECKING:
    import httpx

    from omnichannel.channels.base import ChannelAdapter
    from omnichannel.flows import FlowExecutor
    from omnichannel.realtime import Publisher
    from omnichannel.storage.base import Storage

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Instance-scoped adapter map owned by the application runtime."""

    def __init__(self) -> None:
        self._adapters: dict[ChannelType, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        if adapter.channel_type in self._adapters:
            logger.warning("Replacing adapter for %s", adapter.channel_type.value)
        self._adapters[adapter.channel_type] = adapter

    def get(self, channel_type: str | ChannelType | None) -> ChannelAdapter | None:
        """Look up an adapter; legacy "whatsapp" resolves to the unofficial adapter."""
        parsed = ChannelType.parse(channel_type)
        if parsed is None:
            return None
        return self._adapters.get(parsed)

    def all(self) -> dict[ChannelType, ChannelAdapter]:
        return dict(self._adapters)

    def __contains__(self, channel_type: object) -> bool:
        if not isinstance(channel_type, (str, ChannelType)):
            return False
        return self.get(channel_type) is not None

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(
    storage: Storage,
    publisher: Publisher,
    *,
    settings: Settings | None = None,
    flow_executor: FlowExecutor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChannelRegistry:
    """Wire one adapter per channel type, each with its own connection pool."""
    settings = settings or get_settings()
    common = {
        "settings": settings,
        "flow_executor": flow_executor,
        "transport": transport,
    }
    registry = ChannelRegistry()
    for adapter_cls in (
        WhatsAppAdapter,
        WhatsAppOfficialAdapter,
        TwilioWhatsAppAdapter,
        Dialog360Adapter,
        MessengerAdapter,
        InstagramAdapter,
        TikTokAdapter,
        EmailAdapter,
        TwilioSmsAdapter,
    ):
        registry.register(adapter_cls(storage, publisher, pool=ConnectionPool(), **common))
    registry.register(
        WebChatAdapter(
            storage,
            publisher,
            pool=ConnectionPool(),
            sessions=SessionRegistry(settings.webchat_session_ttl_seconds),
            **common,
        )
    )
    logger.info("Registered %d channel adapters", len(registry))
    return registry
