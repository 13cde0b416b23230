"""Health route."""

from fastapi import APIRouter, Depends

from omnichannel.runtime import Runtime, get_runtime

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz(runtime: Runtime = Depends(get_runtime)) -> dict[str, object]:  # noqa: B008
    return {
        "ok": True,
        "channels": sorted(channel.value for channel in runtime.registry.all()),
    }
