"""Health check endpoints."""

from fastapi import APIRouter

from shopagent.core.config import settings
from shopagent.core.deps import SessionStoreDep
from shopagent.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(store: SessionStoreDep) -> HealthResponse:
    """
    Health check endpoint.

    Checks the session store backend and returns service status.
    """
    health_status = HealthResponse(
        status="healthy",
        version=settings.version,
        environment=settings.environment,
        checks={},
    )

    backend = getattr(store, "backend", "sessions")
    try:
        await store.ping()
        health_status.checks[backend] = "healthy"
    except Exception as e:
        health_status.status = "unhealthy"
        health_status.checks[backend] = f"unhealthy: {str(e)}"

    return health_status


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness probe for Kubernetes/container orchestration.

    Simple check that the service is running.
    """
    return {"status": "alive"}
