"""
Health check endpoints for the clip worker.
"""

from fastapi import APIRouter, Request

from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()

SERVICE_VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version=SERVICE_VERSION,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Ready once the worker pool is running and can pick up jobs.
    """
    queue = getattr(request.app.state, "job_queue", None)
    running = queue is not None and queue.is_running

    return ReadinessResponse(
        ready=running,
        workers_running=running,
        active_jobs=queue.active_jobs if queue is not None else 0,
    )
