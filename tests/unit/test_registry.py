from omnichannel.channels.registry import ChannelRegistry, build_default_registry
from omnichannel.channels.webchat.adapter import WebChatAdapter
from omnichannel.channels.whatsapp.adapter import WhatsAppAdapter
from omnichannel.models import ChannelType


def test_default_registry_covers_every_channel(storage, publisher, settings) -> None:
    registry = build_default_registry(storage, publisher, settings=settings)

    assert len(registry) == len(ChannelType)
    for channel_type in ChannelType:
        adapter = registry.get(channel_type)
        assert adapter is not None
        assert adapter.channel_type is channel_type
    assert isinstance(registry.get("webchat"), WebChatAdapter)


def test_legacy_whatsapp_resolves_to_unofficial(storage, publisher, settings) -> None:
    registry = build_default_registry(storage, publisher, settings=settings)

    assert isinstance(registry.get("whatsapp"), WhatsAppAdapter)
    assert "whatsapp" in registry
    assert "fax" not in registry
    assert registry.get(None) is None


def test_register_replaces_existing(storage, publisher, settings) -> None:
    registry = ChannelRegistry()
    first = WhatsAppAdapter(storage, publisher, settings=settings)
    second = WhatsAppAdapter(storage, publisher, settings=settings)

    registry.register(first)
    registry.register(second)

    assert registry.get(ChannelType.WHATSAPP_UNOFFICIAL) is second
    assert len(registry.all()) == 1
