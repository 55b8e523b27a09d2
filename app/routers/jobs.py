"""
Jobs API Router - Submit clip jobs and follow their progress.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.auth import ensure_owner, get_acting_user, verify_api_key
from app.models import ClipJobPayload, Job
from app.schemas.requests import JobCreateRequest
from app.schemas.responses import JobListResponse, JobResponse
from app.services.job_queue import ClipJobQueue, DuplicateJobError
from app.services.job_store import InMemoryJobStore, JobNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


# ============================================================================
# Dependencies
# ============================================================================


async def get_job_store(request: Request) -> InMemoryJobStore:
    """Get the job store from app state (initialized at startup)."""
    store = getattr(request.app.state, "job_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job store not initialized",
        )
    return store


async def get_job_queue(request: Request) -> ClipJobQueue:
    """Get the job queue from app state (initialized at startup)."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue not initialized",
        )
    return queue


# ============================================================================
# Endpoints
# ============================================================================


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: JobCreateRequest,
    store: InMemoryJobStore = Depends(get_job_store),
    queue: ClipJobQueue = Depends(get_job_queue),
    _: None = Depends(verify_api_key),
    acting_user: Optional[str] = Depends(get_acting_user),
) -> JobResponse:
    """
    Create a clip job and queue it for processing.

    The job starts PENDING; poll GET /jobs/{job_id} for progress and clips.
    A user-scoped caller may only submit jobs for itself.
    """
    ensure_owner(acting_user, request.user_id, "jobs of another user")

    job = Job(
        user_id=request.user_id,
        source_key=request.source_key,
        source_url=request.source_url,
        duration_seconds=request.duration_seconds,
        style_preset=request.style_preset.value,
        target_formats=[f.value for f in request.target_formats],
    )
    job = await store.create_job(job)

    try:
        await queue.enqueue(ClipJobPayload.from_job(job))
    except DuplicateJobError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(
        f"Job {job.id} submitted by {job.user_id}: {job.source_key} "
        f"({job.style_preset}, {job.target_formats})"
    )
    return JobResponse.from_job(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    store: InMemoryJobStore = Depends(get_job_store),
    acting_user: Optional[str] = Depends(get_acting_user),
) -> JobResponse:
    """
    Get a job with its clips.

    Clips of a FAILED job are valid but may be incomplete.
    """
    try:
        job = await store.get_job(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    ensure_owner(acting_user, job.user_id, f"job {job_id}")
    clips = await store.list_clips(job_id)
    return JobResponse.from_job(job, clips)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    user_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    store: InMemoryJobStore = Depends(get_job_store),
    acting_user: Optional[str] = Depends(get_acting_user),
) -> JobListResponse:
    """List jobs newest first, optionally for one user; user-scoped callers see their own."""
    if acting_user is not None:
        if user_id is not None:
            ensure_owner(acting_user, user_id, "jobs of another user")
        user_id = acting_user

    jobs, total = await store.list_jobs(user_id=user_id, limit=limit, offset=offset)
    return JobListResponse(
        jobs=[JobResponse.from_job(j) for j in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
