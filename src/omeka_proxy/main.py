"""Application factory and entry point.

``create_app`` assembles the proxy: a lifespan owning the Redis connection,
the service bundle and the invalidation loop; CORS and request logging
middleware; error rendering; the health and proxy routers.
"""

import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from omeka_proxy.api import health, routes
from omeka_proxy.config import Settings, get_settings
from omeka_proxy.core.exceptions import ProxyError
from omeka_proxy.core.logging import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    get_logger,
)
from omeka_proxy.dependencies import build_services

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the Redis connection and the services for the app's lifetime."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    redis = Redis.from_url(settings.redis_url)
    services = build_services(settings, redis)
    app.state.services = services
    if settings.invalidation_enabled:
        services.invalidation.start()

    logger.info(
        "proxy_started",
        version=settings.app_version,
        environment=settings.app_env.value,
        omeka_api=settings.omeka_api,
        invalidation=settings.invalidation_enabled,
    )
    try:
        yield
    finally:
        await services.aclose()
        await redis.aclose()
        logger.info("proxy_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the proxy application.

    Args:
        settings: Settings to use instead of the environment (tests)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Read-through caching proxy for an Omeka-S collection: mirrored "
            "facets, localized and searchable item listings."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings

    install_middleware(app, settings)
    install_error_handlers(app)
    app.include_router(health.router)
    app.include_router(routes.router)
    return app


# =============================================================================
# Middleware
# =============================================================================


def install_middleware(app: FastAPI, settings: Settings) -> None:
    """CORS for the configured origins, then per-request logging."""
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex="|".join(f"(?:{p})" for p in settings.origin_patterns) or None,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    request_logger = get_logger("omeka_proxy.request")

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        bind_request_id(request_id)
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        request_logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            query=str(request.query_params) or None,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            request_logger.error(
                "request_failed",
                path=request.url.path,
                duration_ms=elapsed_ms(),
                error=str(exc),
            )
            raise
        else:
            request_logger.info(
                "request_completed",
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=elapsed_ms(),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_request_context()


# =============================================================================
# Errors
# =============================================================================


def install_error_handlers(app: FastAPI) -> None:
    """Render errors as ``{"error": {code, message, request_id, details}}``."""
    error_logger = get_logger("omeka_proxy.errors")

    @app.exception_handler(ProxyError)
    async def handle_proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
        log = error_logger.error if exc.status_code >= 500 else error_logger.warning
        log("request_error", code=exc.code, status_code=exc.status_code, path=request.url.path)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=getattr(request.state, "request_id", None)),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        error_logger.exception("unhandled_error", error_type=type(exc).__name__)
        unexpected = ProxyError(code="INTERNAL_SERVER_ERROR")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=unexpected.to_dict(request_id=getattr(request.state, "request_id", None)),
        )


app = create_app()


def cli() -> None:
    """``omeka-proxy`` console script: serve ``app`` with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "omeka_proxy.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
