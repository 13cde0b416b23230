"""Caller identity supplied by the upstream auth layer."""

from dataclasses import dataclass

from fastapi import Header, HTTPException, status
from fastapi.responses import JSONResponse

from omnichannel.models import ChannelResult


@dataclass(frozen=True, slots=True)
class CallerContext:
    user_id: str
    company_id: str | None = None


def require_caller(
    x_user_id: str | None = Header(default=None),
    x_company_id: str | None = Header(default=None),
) -> CallerContext:
    user_id = str(x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing caller identity",
        )
    company_id = str(x_company_id or "").strip() or None
    return CallerContext(user_id=user_id, company_id=company_id)


def result_response(result: ChannelResult) -> JSONResponse:
    """Render a ChannelResult; failures map to 404 / 403 / 400 by their error text."""
    if result.success:
        return JSONResponse(status_code=200, content=result.as_dict())
    error = result.error or ""
    if error.startswith("Access denied"):
        code = status.HTTP_403_FORBIDDEN
    elif error.endswith("not found"):
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=result.as_dict())
