from typing import Any

import pytest

from omnichannel.config import Settings, get_settings
from omnichannel.realtime import Scope
from omnichannel.storage import InMemoryStorage


class RecordingPublisher:
    """Publisher that keeps every event instead of sending it."""

    def __init__(self) -> None:
        self.events: list[tuple[dict[str, Any], Scope]] = []

    def publish(self, payload: dict[str, Any], scope: Scope) -> None:
        self.events.append((payload, scope))

    def types(self, scope: Scope | None = None) -> list[str]:
        return [
            str(payload["type"])
            for payload, target in self.events
            if scope is None or target == scope
        ]

    def of_type(self, event_type: str) -> list[tuple[dict[str, Any], Scope]]:
        return [(p, s) for p, s in self.events if p["type"] == event_type]


@pytest.fixture(autouse=True)
def test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("META_VERIFY_TOKEN", "test-verify-token")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://inbox.example.com")
    monkeypatch.setenv("BAILEYS_API_URL", "http://baileys.local")
    monkeypatch.setenv("BAILEYS_API_KEY", "")
    monkeypatch.setenv("EMAIL_INBOUND_SECRET", "")
    monkeypatch.delenv("WEBHOOK_RATE_LIMIT", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()
