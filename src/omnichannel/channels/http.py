"""HTTP plumbing for provider REST calls."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from omnichannel.errors import ProviderError

logger = logging.getLogger(__name__)


def safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text}
    if isinstance(data, dict):
        return data
    return {"data": data}


def _provider_message(provider: str, status_code: int, payload: dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return f"{provider} API error: {error['message']}"
    if isinstance(error, str) and error:
        return f"{provider} API error: {error}"
    if payload.get("message"):
        return f"{provider} API error: {payload['message']}"
    errors = payload.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        detail = errors[0].get("details") or errors[0].get("title") or errors[0].get("message")
        if detail:
            return f"{provider} API error: {detail}"
    return f"{provider} API error: HTTP {status_code}"


async def request_json(
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float = 20,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """Issue one request and return the decoded body; non-2xx raises ProviderError."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise ProviderError(
            f"{provider} request failed: {exc}", provider=provider
        ) from exc
    payload = safe_json(response)
    if response.status_code >= 400:
        logger.warning(
            "%s %s %s returned HTTP %d", provider, method, url, response.status_code
        )
        raise ProviderError(
            _provider_message(provider, response.status_code, payload),
            provider=provider,
            status_code=response.status_code,
            retryable=response.status_code >= 500 or response.status_code == 429,
        )
    return payload
