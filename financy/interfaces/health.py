"""
Health check router.

Provides a simple health endpoint for liveness/readiness probes.
Reports the scheduler state alongside the version.
"""

from fastapi import APIRouter, Request

from financy.core.config import settings
from financy.interfaces.trading.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns application health status, version and scheduler state.",
)
def health_check(request: Request) -> HealthResponse:
    """Return current application health status."""
    services = getattr(request.app.state, "services", None)
    scheduler = services.scheduler if services is not None else None
    return HealthResponse(
        status="ok",
        version=settings.version,
        scheduler_running=scheduler is not None and scheduler.is_running,
    )
