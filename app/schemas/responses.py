"""
Response schemas for the clip jobs API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models import Clip, Job


class ClipResponse(BaseModel):
    """A persisted clip with its storage locations and counters."""

    id: str
    job_id: str
    format: str
    start_time: float
    end_time: float
    duration: float
    size_bytes: int
    clip_url: str
    subtitles_url: str
    transcription: str
    views: int = 0
    downloads: int = 0
    created_at: datetime

    @classmethod
    def from_clip(cls, clip: Clip) -> "ClipResponse":
        return cls(
            id=clip.id,
            job_id=clip.job_id,
            format=clip.format,
            start_time=clip.start_time,
            end_time=clip.end_time,
            duration=clip.duration,
            size_bytes=clip.size_bytes,
            clip_url=clip.clip_url,
            subtitles_url=clip.subtitles_url,
            transcription=clip.transcription,
            views=clip.views,
            downloads=clip.downloads,
            created_at=clip.created_at,
        )


class UnitFailureResponse(BaseModel):
    """A clip unit that failed while the rest of the job went on."""

    window_start: float
    format: str
    error: str


class JobResponse(BaseModel):
    """Job status, progress and (when requested) its clips."""

    id: str
    user_id: str
    source_key: str
    duration_seconds: float
    style_preset: str
    target_formats: list[str]
    status: str = Field(..., description="PENDING, PROCESSING, COMPLETED, PARTIAL or FAILED")
    progress: int = Field(..., ge=0, le=100)
    error_message: Optional[str] = None
    unit_failures: list[UnitFailureResponse] = []
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    clips: Optional[list[ClipResponse]] = None

    @classmethod
    def from_job(cls, job: Job, clips: Optional[list[Clip]] = None) -> "JobResponse":
        return cls(
            id=job.id,
            user_id=job.user_id,
            source_key=job.source_key,
            duration_seconds=job.duration_seconds,
            style_preset=job.style_preset,
            target_formats=list(job.target_formats),
            status=job.status.value,
            progress=job.progress,
            error_message=job.error_message,
            unit_failures=[
                UnitFailureResponse(window_start=f.window_start, format=f.format, error=f.error)
                for f in job.unit_failures
            ],
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            clips=[ClipResponse.from_clip(c) for c in clips] if clips is not None else None,
        )


class JobListResponse(BaseModel):
    """Page of jobs, newest first."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class ClipDownloadResponse(BaseModel):
    """Presigned download link for a clip's media file."""

    clip_id: str
    download_url: str
    expires_in: int = Field(..., description="URL lifetime in seconds")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool = Field(..., description="Whether the service is ready to accept jobs")
    workers_running: bool = Field(..., description="Whether the worker pool is running")
    active_jobs: int = Field(..., description="Jobs queued, running or awaiting re-delivery")
