"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from omnichannel.config import get_settings, validate_settings_for_env
from omnichannel.logging import configure_logging
from omnichannel.routes.api import router as api_router
from omnichannel.routes.health import router as health_router
from omnichannel.routes.webhooks import router as webhooks_router
from omnichannel.routes.ws import router as ws_router
from omnichannel.runtime import Runtime, build_runtime, start_runtime, stop_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    runtime: Runtime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime(settings)
        app.state.runtime = runtime
    await start_runtime(runtime)
    logger.info("Omnichannel API started (%d channel adapters)", len(runtime.registry))
    yield
    await stop_runtime(runtime)


limiter = Limiter(key_func=get_remote_address)


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "rate limit exceeded", "detail": str(exc.detail)},
    )


def create_app(runtime: Runtime | None = None) -> FastAPI:
    """Build the app; a prebuilt runtime (tests) skips the default in-memory wiring."""
    app = FastAPI(title="Omnichannel Inbox", version="0.1.0", lifespan=lifespan)
    app.state.limiter = limiter
    if runtime is not None:
        app.state.runtime = runtime
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    settings = get_settings()
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(api_router)
    app.include_router(ws_router)
    return app


app = create_app()
