"""
Health check routes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import Response

from eventpipe import __version__
from eventpipe.api.dependencies import QueueDep
from eventpipe.errors import BackendUnavailable
from eventpipe.observability.metrics import get_metrics
from eventpipe.types.api import HealthResponse

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API and job store connection.",
)
async def health_check(queue: QueueDep) -> HealthResponse:
    """
    Perform a health check.

    Checks job store connectivity and returns service status.
    """
    db_status = "healthy"
    try:
        await queue.get_job_stats()
    except BackendUnavailable:
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(queue: QueueDep) -> dict:
    """Kubernetes readiness probe endpoint."""
    try:
        await queue.get_job_stats()
        return {"ready": True}
    except BackendUnavailable:
        return {"ready": False}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
