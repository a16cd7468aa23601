"""Service info and health probes."""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from omeka_proxy.config import Settings
from omeka_proxy.dependencies import ProxyServices

router = APIRouter(tags=["Health"])


@router.get("/", summary="Service info")
async def service_info(request: Request) -> dict[str, str]:
    settings: Settings = request.app.state.settings
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health/live",
    }


@router.get("/health/live", summary="Liveness probe")
async def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready", summary="Readiness probe")
async def readiness(request: Request) -> JSONResponse:
    """503 until Redis answers a ping."""
    services: ProxyServices | None = getattr(request.app.state, "services", None)
    redis_ok = services is not None and await services.cache.ping()
    check = "ok" if redis_ok else "error"
    return JSONResponse(
        status_code=status.HTTP_200_OK if redis_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": check, "checks": {"redis": check}},
    )
