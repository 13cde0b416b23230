"""HTTP client for the Baileys sidecar that drives unofficial WhatsApp sessions."""

from __future__ import annotations

from typing import Any

import httpx

from omnichannel.channels.http import request_json

PROVIDER = "WhatsApp"


class BaileysClient:
    """One sidecar hosts many sessions; the session id is the connection id."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        return headers

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await request_json(
            "POST",
            f"{self._base_url}{path}",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            json=payload,
            headers=self._headers(),
        )

    async def start_session(self, session_id: str) -> dict[str, Any]:
        return await self._post("/start", {"sessionId": session_id})

    async def status(self, session_id: str) -> dict[str, Any]:
        return await request_json(
            "GET",
            f"{self._base_url}/status",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            params={"sessionId": session_id},
            headers=self._headers(),
        )

    async def disconnect(self, session_id: str) -> dict[str, Any]:
        return await self._post("/disconnect", {"sessionId": session_id})

    async def send_text(
        self,
        session_id: str,
        jid: str,
        text: str,
        *,
        quoted: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"sessionId": session_id, "number": jid, "text": text}
        if quoted is not None:
            payload["quoted"] = quoted
        return await self._post("/sendText", payload)

    async def send_media(
        self,
        session_id: str,
        jid: str,
        *,
        media_type: str,
        media_url: str,
        caption: str = "",
    ) -> dict[str, Any]:
        return await self._post(
            "/sendMedia",
            {
                "sessionId": session_id,
                "number": jid,
                "mediaType": media_type,
                "mediaUrl": media_url,
                "caption": caption,
            },
        )

    async def delete_message(
        self, session_id: str, jid: str, key: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._post(
            "/deleteMessage", {"sessionId": session_id, "number": jid, "key": key}
        )
