"""
Domain models for clip production jobs.

Jobs and clips are the two persisted records; the queue payload is what a
worker receives for one delivery attempt.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Lifecycle state of a clip production job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    PARTIAL = "PARTIAL"  # Only reachable with per-unit failure isolation
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.PARTIAL, JobStatus.FAILED)


class StylePreset(str, Enum):
    AUTO = "auto"
    VIRAL = "viral"
    EDUCATIONAL = "educational"
    PODCAST = "podcast"


class TargetFormat(str, Enum):
    VERTICAL = "vertical"
    FEED = "feed"
    LANDSCAPE = "landscape"


@dataclass
class UnitFailure:
    """A (window, format) unit that failed while failures were isolated."""

    window_start: float
    format: str
    error: str


@dataclass
class Job:
    """One request to turn a source video into clips."""

    user_id: str
    source_key: str
    duration_seconds: float
    style_preset: str
    target_formats: list[str]
    source_url: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error_message: Optional[str] = None
    unit_failures: list[UnitFailure] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class Clip:
    """One persisted (window, format) output artifact with its caption file."""

    job_id: str
    format: str
    start_time: float
    end_time: float
    size_bytes: int
    clip_key: str
    clip_url: str
    subtitles_key: str
    subtitles_url: str
    transcription: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    views: int = 0
    downloads: int = 0
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class ClipJobPayload:
    """Queue payload for one job, handed to the pipeline as-is."""

    job_id: str
    user_id: str
    source_key: str
    duration_seconds: float
    style_preset: str
    target_formats: list[str]
    source_locator: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "ClipJobPayload":
        return cls(
            job_id=job.id,
            user_id=job.user_id,
            source_key=job.source_key,
            duration_seconds=job.duration_seconds,
            style_preset=job.style_preset,
            target_formats=list(job.target_formats),
            source_locator=job.source_url,
        )

