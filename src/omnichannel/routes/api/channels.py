"""Channel connection lifecycle routes."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from omnichannel.routes.api.context import CallerContext, require_caller, result_response
from omnichannel.runtime import Runtime, get_runtime

router = APIRouter(prefix="/connections", tags=["api-channels"])
_limiter = Limiter(key_func=get_remote_address)


@router.post("/{connection_id}/connect")
@_limiter.limit("10/minute")
async def connect(
    request: Request,
    connection_id: str,
    ctx: CallerContext = Depends(require_caller),  # noqa: B008
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    result = await runtime.manager.connect(connection_id, ctx.user_id, ctx.company_id)
    return result_response(result)


@router.post("/{connection_id}/disconnect")
@_limiter.limit("10/minute")
async def disconnect(
    request: Request,
    connection_id: str,
    ctx: CallerContext = Depends(require_caller),  # noqa: B008
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    result = await runtime.manager.disconnect(connection_id, ctx.user_id, ctx.company_id)
    return result_response(result)


@router.get("/{connection_id}/status")
async def connection_status(
    connection_id: str,
    ctx: CallerContext = Depends(require_caller),  # noqa: B008
    runtime: Runtime = Depends(get_runtime),  # noqa: B008
) -> JSONResponse:
    result = await runtime.manager.connection_status(
        connection_id, ctx.user_id, ctx.company_id
    )
    return result_response(result)
