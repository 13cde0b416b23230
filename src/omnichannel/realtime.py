"""Fire-and-forget event fan-out to connected inbox clients and widget sessions."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)

ScopeKind = Literal["company", "conversation", "session", "all"]


@dataclass(slots=True, frozen=True)
class Scope:
    kind: ScopeKind
    key: str = ""

    @classmethod
    def company(cls, company_id: str) -> Scope:
        return cls("company", company_id)

    @classmethod
    def conversation(cls, conversation_id: str) -> Scope:
        return cls("conversation", conversation_id)

    @classmethod
    def session(cls, session_id: str) -> Scope:
        return cls("session", session_id)

    @classmethod
    def everyone(cls) -> Scope:
        return cls("all")


def event(event_type: str, data: Any) -> dict[str, Any]:
    return {"type": event_type, "data": data}


@runtime_checkable
class Publisher(Protocol):
    def publish(self, payload: dict[str, Any], scope: Scope) -> None:
        """Queue payload for every client subscribed to scope. Must not block or raise."""
        ...


class WebSocketHub:
    def __init__(self) -> None:
        self._subscribers: dict[Scope, set[WebSocket]] = defaultdict(set)
        self._socket_scopes: dict[WebSocket, set[Scope]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    async def subscribe(self, websocket: WebSocket, scope: Scope) -> None:
        async with self._lock:
            self._subscribers[scope].add(websocket)
            self._socket_scopes[websocket].add(scope)

    async def unsubscribe(self, websocket: WebSocket, scope: Scope) -> None:
        async with self._lock:
            self._drop(websocket, scope)
            scopes = self._socket_scopes.get(websocket)
            if scopes is not None:
                scopes.discard(scope)
                if not scopes:
                    del self._socket_scopes[websocket]

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for scope in list(self._socket_scopes.get(websocket, set())):
                self._drop(websocket, scope)
            self._socket_scopes.pop(websocket, None)

    def subscriber_count(self, scope: Scope) -> int:
        return len(self._subscribers.get(scope, ()))

    async def broadcast(self, scope: Scope, payload: dict[str, Any]) -> None:
        async with self._lock:
            if scope.kind == "all":
                sockets = list(self._socket_scopes)
            else:
                sockets = list(self._subscribers.get(scope, set()))
        stale: list[WebSocket] = []
        for socket in sockets:
            try:
                await socket.send_json(payload)
            except Exception:
                stale.append(socket)
        for socket in stale:
            await self.disconnect(socket)

    def publish(self, payload: dict[str, Any], scope: Scope) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; dropped %s event", payload.get("type"))
            return
        task = loop.create_task(self.broadcast(scope, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for queued broadcasts; used on shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _drop(self, websocket: WebSocket, scope: Scope) -> None:
        sockets = self._subscribers.get(scope)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            self._subscribers.pop(scope, None)
