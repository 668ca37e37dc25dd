from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from elsie.api.error_handling import register_exception_handlers
from elsie.api.routes import router
from elsie.config import get_settings
from elsie.logging import get_logger, set_correlation_id
from elsie.service.errors import ServiceError

logger = get_logger(__name__)

_settings = get_settings()

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the user cache sweeper on startup and stop it on shutdown."""
    from elsie.service.runtime import get_runtime

    runtime = get_runtime()
    await runtime.start()
    logger.info("server_started", port=_settings.port, env=_settings.app_env.value)

    yield

    try:
        await runtime.stop()
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Elsie API", version=__version__, lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def attach_auth_context(request: Request, call_next):
    """Resolve the bearer token, if any, onto ``request.state.auth``.

    A failed user lookup is kept on ``request.state.auth_error`` for
    ``require_user``; public routes carry on without an identity.
    """
    from elsie.service.runtime import get_runtime

    request.state.auth = None
    request.state.auth_error = None
    try:
        request.state.auth = await get_runtime().authenticator.authenticate(
            request.headers.get("Authorization")
        )
    except ServiceError as exc:
        logger.error("auth_context_failed", error=str(exc), path=request.url.path)
        request.state.auth_error = exc
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
        response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, private")
    return response


# registered last so it wraps the others and every log line carries the id
@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag the request with ``X-Request-ID``, taken from the client or generated."""
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    """Unwrapped health report for load balancers and probes."""
    from elsie.service.runtime import get_runtime

    return await get_runtime().health.check()


def create_app() -> FastAPI:
    return app


def main() -> None:
    uvicorn.run("elsie.app:app", host=_settings.host, port=_settings.port)


if __name__ == "__main__":
    main()
