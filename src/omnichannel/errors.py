"""Omnichannel exception hierarchy.

Adapters and storage raise these; the channel manager and the webhook
routes are the only places that turn them into result objects or HTTP
responses.
"""


class OmnichannelError(Exception):
    """Base exception for all omnichannel errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(OmnichannelError):
    """Error talking to a messaging provider's API."""

    def __init__(
        self,
        message: str = "",
        *,
        provider: str = "",
        status_code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.provider = provider
        self.status_code = status_code


class ChannelError(OmnichannelError):
    """A channel rejected the operation (groups, missing quote, opt-out)."""


class ConfigError(OmnichannelError):
    """Invalid or missing connection configuration."""


class NotFoundError(OmnichannelError):
    """A conversation, contact, message or connection does not exist."""


class AccessDeniedError(OmnichannelError):
    """Cross-tenant access attempt."""


class UnsupportedOperationError(OmnichannelError):
    """The channel does not support the requested operation."""


class WebhookAuthError(OmnichannelError):
    """Inbound webhook failed token or signature verification."""
