"""
Job Store - Persistence for Job and Clip records.

Only simple per-record get/create/update operations are assumed. The in-memory
store backs the service in a single process (use a database in production).
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from app.models import Clip, Job, JobStatus, UnitFailure

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    """Record store contract consumed by the clip pipeline and the API."""

    async def create_job(self, job: Job) -> Job:
        ...

    async def get_job(self, job_id: str) -> Job:
        ...

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        error_message: Optional[str] = None,
        unit_failures: Optional[list[UnitFailure]] = None,
    ) -> Job:
        ...

    async def create_clip(self, clip: Clip) -> Clip:
        ...

    async def list_clips(self, job_id: str) -> list[Clip]:
        ...


class InMemoryJobStore:
    """
    Dict-backed store for jobs and clips.

    Records are copied on the way in and out so callers never mutate stored
    state directly. Progress may only move forward while a job is PROCESSING;
    a lower value is ignored with a warning.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._clips: dict[str, Clip] = {}
        self._clips_by_job: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._jobs:
                raise DuplicateRecordError(f"Job already exists: {job.id}")
            self._jobs[job.id] = replace(job)
            self._clips_by_job[job.id] = []
        logger.debug(f"Created job {job.id} for user {job.user_id}")
        return replace(job)

    async def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return replace(job, unit_failures=list(job.unit_failures))

    async def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        error_message: Optional[str] = None,
        unit_failures: Optional[list[UnitFailure]] = None,
    ) -> Job:
        """
        Update a job's status and, optionally, its progress and error details.

        Args:
            job_id: Job to update
            status: New status
            progress: New progress (0-100); omitted keeps the current value
            error_message: Error text recorded with a FAILED/PARTIAL status
            unit_failures: Per-unit failures recorded when failures are isolated

        Raises:
            JobNotFoundError: If the job does not exist
        """
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")

            now = datetime.now(timezone.utc)
            if status == JobStatus.PROCESSING and job.status != JobStatus.PROCESSING:
                # A re-delivered attempt starts over from 0
                job.started_at = now
                job.completed_at = None
                job.error_message = None
                job.unit_failures = []
                job.progress = 0

            if progress is not None:
                progress = max(0, min(100, int(progress)))
                if status == JobStatus.PROCESSING and job.status == JobStatus.PROCESSING and progress < job.progress:
                    logger.warning(
                        f"Ignoring progress regression for job {job_id}: {job.progress} -> {progress}"
                    )
                else:
                    job.progress = progress

            job.status = status
            if error_message is not None:
                job.error_message = error_message
            if unit_failures is not None:
                job.unit_failures = list(unit_failures)
            if status.is_terminal:
                job.completed_at = now

            logger.debug(f"Job {job_id}: {job.status.value} ({job.progress}%)")
            return replace(job, unit_failures=list(job.unit_failures))

    async def list_jobs(
        self,
        user_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """Jobs newest first, optionally for one user, with the total before paging."""
        # Insertion order breaks created_at ties
        jobs = [j for j in reversed(self._jobs.values()) if user_id is None or j.user_id == user_id]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        page = jobs[offset:offset + limit]
        return [replace(j) for j in page], len(jobs)

    async def create_clip(self, clip: Clip) -> Clip:
        async with self._lock:
            if clip.job_id not in self._jobs:
                raise JobNotFoundError(f"Job not found: {clip.job_id}")
            self._clips[clip.id] = replace(clip)
            self._clips_by_job[clip.job_id].append(clip.id)
        return replace(clip)

    async def list_clips(self, job_id: str) -> list[Clip]:
        """Clips of a job in the order they were persisted."""
        return [replace(self._clips[clip_id]) for clip_id in self._clips_by_job.get(job_id, [])]

    async def get_clip(self, clip_id: str) -> Clip:
        clip = self._clips.get(clip_id)
        if clip is None:
            raise ClipNotFoundError(f"Clip not found: {clip_id}")
        return replace(clip)

    async def increment_clip_views(self, clip_id: str) -> Clip:
        async with self._lock:
            clip = self._clips.get(clip_id)
            if clip is None:
                raise ClipNotFoundError(f"Clip not found: {clip_id}")
            clip.views += 1
            return replace(clip)

    async def increment_clip_downloads(self, clip_id: str) -> Clip:
        async with self._lock:
            clip = self._clips.get(clip_id)
            if clip is None:
                raise ClipNotFoundError(f"Clip not found: {clip_id}")
            clip.downloads += 1
            return replace(clip)


class JobNotFoundError(Exception):
    """Exception raised when a job lookup misses."""
    pass


class ClipNotFoundError(Exception):
    """Exception raised when a clip lookup misses."""
    pass


class DuplicateRecordError(Exception):
    """Exception raised when a record with the same id already exists."""
    pass
