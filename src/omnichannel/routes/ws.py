"""WebSocket endpoint for inbox clients and webchat widget sessions."""

import logging

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect

from omnichannel.realtime import Scope
from omnichannel.runtime import Runtime, get_ws_runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ws"])


async def _authorize(
    runtime: Runtime, websocket: WebSocket
) -> tuple[str | None, str | None]:
    """Return (company_id, widget_connection_id); both None means reject."""
    widget_token = websocket.query_params.get("widgetToken", "").strip()
    if widget_token:
        connection = await runtime.webchat.verify_widget_token(widget_token)
        if connection is None:
            return None, None
        return connection.company_id, connection.id
    company_id = websocket.query_params.get("companyId", "").strip()
    return company_id or None, None


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    runtime: Runtime = Depends(get_ws_runtime),  # noqa: B008
) -> None:
    company_id, widget_connection_id = await _authorize(runtime, websocket)
    if company_id is None:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    await websocket.send_json(
        {"type": "auth.ok", "companyId": company_id, "widget": widget_connection_id is not None}
    )
    hub = runtime.hub
    try:
        while True:
            data = await websocket.receive_json()
            action = str(data.get("action", ""))
            scope = await _requested_scope(runtime, data, company_id, widget_connection_id)
            if action not in {"subscribe", "unsubscribe"}:
                await websocket.send_json({"type": "error", "detail": "unknown action"})
            elif scope is None:
                await websocket.send_json({"type": "error", "detail": "forbidden"})
            elif action == "subscribe":
                await hub.subscribe(websocket, scope)
                await websocket.send_json(
                    {"type": "subscribed", "scope": scope.kind, "key": scope.key}
                )
            else:
                await hub.unsubscribe(websocket, scope)
                await websocket.send_json(
                    {"type": "unsubscribed", "scope": scope.kind, "key": scope.key}
                )
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        logger.exception("WebSocket session failed")
        await hub.disconnect(websocket)


async def _requested_scope(
    runtime: Runtime,
    data: dict[str, object],
    company_id: str,
    widget_connection_id: str | None,
) -> Scope | None:
    kind = str(data.get("scope", ""))
    key = str(data.get("id", "")).strip()
    if widget_connection_id is not None:
        # Widgets may only follow their own session.
        if kind != "session" or not key:
            return None
        session = runtime.webchat.sessions.get(key)
        if session is not None and session.connection_id != widget_connection_id:
            return None
        return Scope.session(key)
    if kind == "company":
        return Scope.company(company_id)
    if kind == "conversation" and key:
        conversation = await runtime.storage.get_conversation(key)
        if conversation is None or conversation.company_id != company_id:
            return None
        return Scope.conversation(key)
    return None
