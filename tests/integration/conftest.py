import asyncio
from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from omnichannel.config import get_settings
from omnichannel.main import create_app
from omnichannel.models import ChannelConnection, Contact, Conversation, User
from omnichannel.runtime import Runtime, build_runtime
from omnichannel.storage import InMemoryStorage

WIDGET_TOKEN = "widget-token-1"


@pytest.fixture
def runtime() -> Runtime:
    storage = InMemoryStorage()

    async def seed() -> None:
        await storage.add_user(User(id="usr_1", company_id="co_1", name="Ada"))
        await storage.add_channel_connection(
            ChannelConnection(
                id="chn_web",
                company_id="co_1",
                channel_type="webchat",
                status="active",
                connection_data={"widgetToken": WIDGET_TOKEN},
            )
        )
        await storage.add_channel_connection(
            ChannelConnection(
                id="chn_sms",
                company_id="co_1",
                channel_type="twilio_sms",
                status="active",
                connection_data={
                    "accountSid": "AC123",
                    "authToken": "sms-token",
                    "fromNumber": "+15550009999",
                },
            )
        )
        await storage.add_channel_connection(
            ChannelConnection(id="chn_other", company_id="co_2", channel_type="webchat")
        )
        contact = await storage.get_or_create_contact(
            Contact(company_id="co_2", identifier="visitor", identifier_type="phone")
        )
        await storage.create_conversation(
            Conversation(
                id="cnv_other",
                company_id="co_2",
                channel_id="chn_other",
                channel_type="webchat",
                contact_id=contact.id,
            )
        )

    asyncio.run(seed())
    return build_runtime(get_settings(), storage=storage)


@pytest.fixture
def client(runtime: Runtime) -> Iterator[TestClient]:
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


@pytest.fixture
def caller() -> dict[str, str]:
    return {"X-User-Id": "usr_1", "X-Company-Id": "co_1"}


@pytest.fixture
def widget_token() -> str:
    return WIDGET_TOKEN
