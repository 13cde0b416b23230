"""WhatsApp Business Cloud API (Meta Graph)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from omnichannel.channels.cloud_api import CloudApiAdapter
from omnichannel.channels.common import verify_hub_signature
from omnichannel.channels.http import request_json
from omnichannel.errors import ConfigError, OmnichannelError
from omnichannel.models import ChannelConnection, ChannelType

logger = logging.getLogger(__name__)

PROVIDER = "WhatsApp Cloud"


@dataclass(slots=True, frozen=True)
class WhatsAppOfficialConfig:
    access_token: str
    phone_number_id: str
    business_account_id: str = ""

    @classmethod
    def from_connection(cls, connection: ChannelConnection) -> WhatsAppOfficialConfig:
        data = connection.connection_data
        token = str(data.get("accessToken") or connection.access_token or "")
        phone_number_id = str(data.get("phoneNumberId") or "")
        if not (token and phone_number_id):
            raise ConfigError("Missing WhatsApp Business API access token or phone number ID")
        return cls(
            access_token=token,
            phone_number_id=phone_number_id,
            business_account_id=str(data.get("businessAccountId") or data.get("wabaId") or ""),
        )


class WhatsAppOfficialAdapter(CloudApiAdapter):
    channel_type = ChannelType.WHATSAPP_OFFICIAL
    provider_name = "WhatsApp Official"

    async def _graph(
        self, config: WhatsAppOfficialConfig, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        return await request_json(
            method,
            f"{self._settings.meta_api_base()}/{path.lstrip('/')}",
            provider=PROVIDER,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {config.access_token}"},
            **kwargs,
        )

    async def _post_message(
        self, connection: ChannelConnection, body: dict[str, Any]
    ) -> dict[str, Any]:
        config = WhatsAppOfficialConfig.from_connection(connection)
        return await self._graph(config, "POST", f"{config.phone_number_id}/messages", json=body)

    async def _match_connection(self, value: dict[str, Any]) -> ChannelConnection | None:
        phone_number_id = str((value.get("metadata") or {}).get("phone_number_id") or "")
        if not phone_number_id:
            return None
        for connection in await self._storage.get_channel_connections_by_type(
            self.channel_type.value
        ):
            if str(connection.connection_data.get("phoneNumberId") or "") == phone_number_id:
                return connection
        return None

    async def connect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        try:
            config = WhatsAppOfficialConfig.from_connection(connection)
            profile = await self._graph(
                config,
                "GET",
                f"{config.phone_number_id}/whatsapp_business_profile",
                params={"fields": "about,description,vertical"},
            )
        except OmnichannelError as exc:
            logger.warning("WhatsApp Official connection %s failed: %s", connection_id, exc)
            await self._record_connection_error(connection, exc)
            return False
        self._pool.mark_active(connection_id, company_id=connection.company_id)
        await self._set_status(connection, "active", businessProfile=profile.get("data"))
        return True

    async def disconnect(self, connection_id: str) -> bool:
        connection = await self._load_connection(connection_id)
        self._pool.mark_inactive(connection_id)
        await self._set_status(connection, "inactive")
        return True

    async def verify_signature(self, body: bytes, header: str | None) -> bool:
        """Connections without an app secret accept unsigned deliveries."""
        secrets = [
            str(c.connection_data.get("appSecret") or "")
            for c in await self._storage.get_channel_connections_by_type(self.channel_type.value)
        ]
        if not any(secrets):
            return True
        return verify_hub_signature(body, header, secrets)
