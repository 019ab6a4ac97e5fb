"""GET /health: Health check against the real services."""

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

from autoflow.api.schemas import HealthResponse
from autoflow.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Check health of the services this process was started with."""
    services: dict[str, bool] = {"api": True}

    async_session = getattr(request.app.state, "async_session", None)
    if async_session is not None:
        services["database"] = False
        try:
            async with async_session() as session:
                await session.execute(text("SELECT 1"))
            services["database"] = True
        except Exception as exc:
            logger.warning(f"[health] DB check failed: {exc}")

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        services["redis"] = await redis_client.health()

    overall = "ok" if all(services.values()) else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
