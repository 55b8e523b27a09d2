"""
Clips API Router - Preview and download persisted clips.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.auth import ensure_owner, get_acting_user, verify_api_key
from app.config import get_settings
from app.models import Clip
from app.routers.jobs import get_job_store
from app.schemas.responses import ClipDownloadResponse, ClipResponse
from app.services.job_store import ClipNotFoundError, InMemoryJobStore
from app.services.s3_client import S3Client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clips", tags=["Clips"])


async def get_storage(request: Request) -> S3Client:
    """Get the object store client from app state (initialized at startup)."""
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage not initialized",
        )
    return storage


async def _get_owned_clip(
    store: InMemoryJobStore,
    clip_id: str,
    acting_user: Optional[str],
) -> Clip:
    """Look up a clip; 404 when missing, 403 when its job belongs to someone else."""
    try:
        clip = await store.get_clip(clip_id)
    except ClipNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if acting_user is not None:
        job = await store.get_job(clip.job_id)
        ensure_owner(acting_user, job.user_id, f"clip {clip_id}")
    return clip


@router.get("/{clip_id}/preview", response_model=ClipResponse)
async def preview_clip(
    clip_id: str,
    store: InMemoryJobStore = Depends(get_job_store),
    acting_user: Optional[str] = Depends(get_acting_user),
) -> ClipResponse:
    """Return a clip for playback and count the view."""
    await _get_owned_clip(store, clip_id, acting_user)
    clip = await store.increment_clip_views(clip_id)
    return ClipResponse.from_clip(clip)


@router.get("/{clip_id}/download", response_model=ClipDownloadResponse)
async def download_clip(
    clip_id: str,
    store: InMemoryJobStore = Depends(get_job_store),
    storage: S3Client = Depends(get_storage),
    _: None = Depends(verify_api_key),
    acting_user: Optional[str] = Depends(get_acting_user),
) -> ClipDownloadResponse:
    """Presigned URL for the clip's media file; counts the download."""
    clip = await _get_owned_clip(store, clip_id, acting_user)

    expires_in = get_settings().presigned_url_expiration_seconds
    loop = asyncio.get_event_loop()
    url = await loop.run_in_executor(
        None,
        lambda: storage.get_presigned_url(clip.clip_key, expires_in),
    )

    await store.increment_clip_downloads(clip_id)
    logger.info(f"Download link issued for clip {clip_id}")

    return ClipDownloadResponse(clip_id=clip_id, download_url=url, expires_in=expires_in)
