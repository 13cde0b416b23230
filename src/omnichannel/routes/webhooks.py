"""Inbound provider webhooks."""

import hmac
import json
import logging
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from omnichannel.config import get_settings
from omnichannel.errors import (
    AccessDeniedError,
    OmnichannelError,
    ProviderError,
    WebhookAuthError,
)
from omnichannel.ids import new_id
from omnichannel.logging import bind_context, clear_context
from omnichannel.models import ChannelType
from omnichannel.runtime import Runtime, get_runtime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
_limiter = Limiter(key_func=get_remote_address)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _webhook_limit() -> str:
    return get_settings().webhook_rate_limit


def _error_status(exc: OmnichannelError) -> int:
    if isinstance(exc, WebhookAuthError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, AccessDeniedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ProviderError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_400_BAD_REQUEST


async def _dispatch(
    runtime: Runtime, channel_type: ChannelType, payload: dict[str, Any], **context: Any
) -> JSONResponse:
    adapter = runtime.registry.get(channel_type)
    if adapter is None:
        return JSONResponse(
            status_code=500,
            content={"accepted": False, "error": "adapter_missing"},
        )
    bind_context(trace_id=new_id("trc"), channel_type=channel_type.value)
    try:
        result = await adapter.process_webhook(payload, **context)
    except OmnichannelError as exc:
        logger.warning("%s webhook rejected: %s", adapter.provider_name, exc)
        return JSONResponse(
            status_code=_error_status(exc),
            content={"accepted": False, "error": str(exc)},
        )
    finally:
        clear_context()
    return JSONResponse(status_code=200, content=result.as_dict())


async def _json_body(request: Request) -> tuple[bytes, dict[str, Any]]:
    body = await request.body()
    if not body:
        return body, {}
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="invalid json body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="json object expected")
    return body, payload


async def _form_or_json(request: Request) -> dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        _, payload = await _json_body(request)
        return payload
    body = await request.body()
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="invalid form body") from exc
    return dict(parse_qsl(text, keep_blank_values=True))


def _verify_hub_challenge(request: Request) -> Response:
    settings = get_settings()
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")
    if mode == "subscribe" and token == settings.meta_verify_token and challenge:
        return Response(content=challenge, media_type="text/plain")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="verification failed")


async def _meta_inbound(
    request: Request, runtime: Runtime, channel_type: ChannelType, signature: str | None
) -> JSONResponse:
    body, payload = await _json_body(request)
    adapter = runtime.registry.get(channel_type)
    verify = getattr(adapter, "verify_signature", None)
    if verify is not None and not await verify(body, signature):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"accepted": False, "error": "invalid_signature"},
        )
    return await _dispatch(runtime, channel_type, payload)


# Unofficial WhatsApp (Baileys sidecar)


@router.post("/whatsapp")
@_limiter.limit(_webhook_limit)
async def whatsapp_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_api_key: str | None = Header(default=None),
) -> JSONResponse:
    required = runtime.settings.baileys_api_key.strip()
    provided = str(x_api_key or "").strip()
    if required and (not provided or not hmac.compare_digest(provided, required)):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"accepted": False, "error": "invalid_api_key"},
        )
    _, payload = await _json_body(request)
    return await _dispatch(runtime, ChannelType.WHATSAPP_UNOFFICIAL, payload)


# Meta Graph webhooks


@router.get("/whatsapp-official")
async def whatsapp_official_verify(request: Request) -> Response:
    return _verify_hub_challenge(request)


@router.post("/whatsapp-official")
@_limiter.limit(_webhook_limit)
async def whatsapp_official_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_hub_signature_256: str | None = Header(default=None),
) -> JSONResponse:
    return await _meta_inbound(
        request, runtime, ChannelType.WHATSAPP_OFFICIAL, x_hub_signature_256
    )


@router.get("/messenger")
async def messenger_verify(request: Request) -> Response:
    return _verify_hub_challenge(request)


@router.post("/messenger")
@_limiter.limit(_webhook_limit)
async def messenger_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_hub_signature_256: str | None = Header(default=None),
) -> JSONResponse:
    return await _meta_inbound(request, runtime, ChannelType.MESSENGER, x_hub_signature_256)


@router.get("/instagram")
async def instagram_verify(request: Request) -> Response:
    return _verify_hub_challenge(request)


@router.post("/instagram")
@_limiter.limit(_webhook_limit)
async def instagram_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_hub_signature_256: str | None = Header(default=None),
) -> JSONResponse:
    return await _meta_inbound(request, runtime, ChannelType.INSTAGRAM, x_hub_signature_256)


# Other providers


@router.post("/360dialog")
@_limiter.limit(_webhook_limit)
async def dialog360_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    _, payload = await _json_body(request)
    return await _dispatch(runtime, ChannelType.WHATSAPP_360DIALOG, payload)


@router.post("/twilio/whatsapp")
@_limiter.limit(_webhook_limit)
async def twilio_whatsapp_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    payload = await _form_or_json(request)
    return await _dispatch(runtime, ChannelType.WHATSAPP_TWILIO, payload)


@router.post("/twilio/sms")
@_limiter.limit(_webhook_limit)
async def twilio_sms_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_twilio_signature: str | None = Header(default=None),
) -> Response:
    payload = await _form_or_json(request)
    adapter = runtime.registry.get(ChannelType.TWILIO_SMS)
    verify = getattr(adapter, "verify_signature", None)
    url = f"{runtime.settings.public_base_url.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    if verify is not None and not await verify(url, payload, x_twilio_signature):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"accepted": False, "error": "invalid_signature"},
        )
    response = await _dispatch(runtime, ChannelType.TWILIO_SMS, payload)
    if response.status_code != 200:
        return response
    return Response(content=EMPTY_TWIML, media_type="application/xml")


@router.post("/tiktok")
@_limiter.limit(_webhook_limit)
async def tiktok_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    _, payload = await _json_body(request)
    return await _dispatch(runtime, ChannelType.TIKTOK, payload)


@router.post("/email")
@_limiter.limit(_webhook_limit)
async def email_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
    x_email_secret: str | None = Header(default=None),
) -> JSONResponse:
    required = runtime.settings.email_inbound_secret.strip()
    provided = str(x_email_secret or "").strip()
    if required and (not provided or not hmac.compare_digest(provided, required)):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"accepted": False, "error": "invalid_webhook_secret"},
        )
    _, payload = await _json_body(request)
    return await _dispatch(runtime, ChannelType.EMAIL, payload)


@router.post("/webchat")
@_limiter.limit(_webhook_limit)
async def webchat_inbound(
    request: Request,
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    _, payload = await _json_body(request)
    company_id = payload.get("companyId")
    return await _dispatch(
        runtime,
        ChannelType.WEBCHAT,
        payload,
        company_id=str(company_id) if company_id else None,
    )
