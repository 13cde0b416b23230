"""Process-wide objects owned by the application: storage, hub, adapters, manager."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import Request, WebSocket

from omnichannel.channels.manager import ChannelManager
from omnichannel.channels.registry import ChannelRegistry, build_default_registry
from omnichannel.channels.webchat.adapter import WebChatAdapter
from omnichannel.config import Settings
from omnichannel.models import ChannelType
from omnichannel.realtime import WebSocketHub
from omnichannel.storage import InMemoryStorage, Storage

if TYPE_CHECKING:
    import httpx

    from omnichannel.flows import FlowExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    storage: Storage
    hub: WebSocketHub
    registry: ChannelRegistry
    manager: ChannelManager

    @property
    def webchat(self) -> WebChatAdapter:
        adapter = self.registry.get(ChannelType.WEBCHAT)
        if not isinstance(adapter, WebChatAdapter):
            raise RuntimeError("webchat adapter not registered")
        return adapter


def build_runtime(
    settings: Settings,
    *,
    storage: Storage | None = None,
    flow_executor: FlowExecutor | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    storage = storage or InMemoryStorage()
    hub = WebSocketHub()
    registry = build_default_registry(
        storage,
        hub,
        settings=settings,
        flow_executor=flow_executor,
        transport=transport,
    )
    return Runtime(
        settings=settings,
        storage=storage,
        hub=hub,
        registry=registry,
        manager=ChannelManager(storage, registry, hub),
    )


async def start_runtime(runtime: Runtime) -> None:
    issued = await runtime.webchat.initialize_all_connections()
    logger.info("WebChat initialized (%d widget tokens issued)", issued)


async def stop_runtime(runtime: Runtime) -> None:
    await runtime.hub.drain()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_ws_runtime(websocket: WebSocket) -> Runtime:
    return websocket.app.state.runtime
