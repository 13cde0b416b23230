"""Tests for error hierarchy."""

from omnichannel.errors import (
    AccessDeniedError,
    ChannelError,
    ConfigError,
    NotFoundError,
    OmnichannelError,
    ProviderError,
    UnsupportedOperationError,
    WebhookAuthError,
)


def test_hierarchy() -> None:
    for cls in (
        ProviderError,
        ChannelError,
        ConfigError,
        NotFoundError,
        AccessDeniedError,
        UnsupportedOperationError,
        WebhookAuthError,
    ):
        assert issubclass(cls, OmnichannelError)


def test_retryable_default() -> None:
    assert OmnichannelError("test").retryable is False
    assert ProviderError("test").retryable is True
    assert ChannelError("test").retryable is False
    assert NotFoundError("test").retryable is False


def test_provider_error_carries_context() -> None:
    err = ProviderError(
        "TikTok API error: bad token", provider="TikTok", status_code=401, retryable=False
    )
    assert str(err) == "TikTok API error: bad token"
    assert err.provider == "TikTok"
    assert err.status_code == 401
    assert err.retryable is False


def test_catch_as_omnichannel_error() -> None:
    try:
        raise AccessDeniedError("Access denied")
    except OmnichannelError as exc:
        assert str(exc) == "Access denied"
