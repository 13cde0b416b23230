"""API v1 router aggregation."""

from fastapi import APIRouter

from omnichannel.routes.api import channels, messages

router = APIRouter(prefix="/api/v1", tags=["api"])
router.include_router(messages.router)
router.include_router(channels.router)
