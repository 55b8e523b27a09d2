"""
Pydantic schemas for request/response models.
"""

from app.schemas.requests import JobCreateRequest
from app.schemas.responses import (
    ClipDownloadResponse,
    ClipResponse,
    HealthResponse,
    JobListResponse,
    JobResponse,
    ReadinessResponse,
)

__all__ = [
    "JobCreateRequest",
    "JobResponse",
    "JobListResponse",
    "ClipResponse",
    "ClipDownloadResponse",
    "HealthResponse",
    "ReadinessResponse",
]
