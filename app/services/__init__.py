"""
Services for the clip worker.

Includes:
- Window selection, transcription, captions and rendering
- Storage (S3) and job records
- The per-job pipeline and the worker queue
"""

from app.services.caption_generator import CaptionGeneratorService
from app.services.clip_pipeline import ClipPipeline
from app.services.job_queue import ClipJobQueue, RateLimiter
from app.services.job_store import InMemoryJobStore
from app.services.rendering_service import RenderingService
from app.services.s3_client import S3Client
from app.services.transcription_service import GroqSpeechEngine, TranscriptionService
from app.services.window_selector import select_windows

__all__ = [
    "select_windows",
    "TranscriptionService",
    "GroqSpeechEngine",
    "CaptionGeneratorService",
    "RenderingService",
    "S3Client",
    "InMemoryJobStore",
    "ClipPipeline",
    "ClipJobQueue",
    "RateLimiter",
]
