"""WhatsApp through the 360Dialog partner API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from omnichannel.channels.cloud_api import CloudApiAdapter
from omnichannel.channels.http import request_json
from omnichannel.errors import ConfigError, OmnichannelError
from omnichannel.models import ChannelConnection, ChannelType

logger = logging.getLogger(__name__)

PROVIDER = "360Dialog"


@dataclass(slots=True, frozen=True)
class Dialog360Config:
    api_key: str
    phone_number_id: str = ""
    phone_number: str = ""

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> Dialog360Config:
        data = connection.connection_data
        api_key = str(data.get("apiKey") or connection.access_token or "")
        if not api_key:
            raise ConfigError("Missing 360Dialog API key")
        return cls(
            api_key=api_key,
            phone_number_id=str(data.get("phoneNumberId") or ""),
            phone_number=str(data.get("phoneNumber") or ""),
        )


class Dialog360Adapter(CloudApiAdapter):
    channel_type = ChannelType.WHATSAPP_360DIALOG
    provider_name = "360Dialog WhatsApp"

    async def _call(
        self, config: Dialog360Config, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        return await request_json(
            method,
            f"{self._settings.dialog360_api_url.rstrip('/')}/{path.lstrip('/')}",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            headers={"D360-API-KEY": config.api_key},
            **kwargs,
        )

    async def _post_message(
        self, connection: ChannelConnection, body: dict[str, Any]
    ) -> dict[str, Any]:
        config = Dialog360Config.from_connection(connection)
        return await self._call(config, "POST", "messages", json=body)

    async def _match_connection(self, value: dict[str, Any]) -> ChannelConnection | None:
        metadata = value.get("metadata") or {}
        phone_number_id = str(metadata.get("phone_number_id") or "")
        display_number = str(metadata.get("display_phone_number") or "")
        active: list[ChannelConnection] = []
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            data = connection.connection_data
            if phone_number_id and str(data.get("phoneNumberId") or "") == phone_number_id:
                return connection
            if display_number and str(data.get("phoneNumber") or "").lstrip("+") == display_number:
                return connection
            if connection.status == "active":
                active.append(connection)
        return active[0] if len(active) == 1 else None

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            config = Dialog360Config.from_connection(connection)
            webhook = await self._call(config, "GET", "v1/configs/webhook")
        except OmnichannelError as exc:
            logger.warning("360Dialog connection %s failed: %s", connection_id, exc)
            await self._record_connection_error(connection, exc)
            return False
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        await self._set_status(connection, "active", webhookUrl=webhook.get("url"))
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "inactive")
        return True
