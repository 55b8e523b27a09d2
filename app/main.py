"""
FastAPI application entry point for the ReelCutter clip worker.

The worker turns an uploaded source video into short clips:
1. Candidate windows cut on a style-preset grid
2. Whole-source transcription via Groq Whisper
3. FFmpeg cut/reformat per (window, format) with SRT captions
4. Upload of clips and captions to S3
"""

import logging
import os
import shutil
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import clips, health, jobs
from app.services.clip_pipeline import ClipPipeline
from app.services.job_queue import ClipJobQueue
from app.services.job_store import InMemoryJobStore
from app.services.rendering_service import RenderingService
from app.services.s3_client import S3Client

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for startup and shutdown events.
    Builds the store, storage client, pipeline and worker pool.
    """
    settings = get_settings()
    logger.info("Starting ReelCutter worker...")

    # Create temp directory
    os.makedirs(settings.temp_directory, exist_ok=True)
    logger.info(f"Temp directory: {settings.temp_directory}")

    # Verify external tools
    _verify_external_tools()

    job_store = InMemoryJobStore()
    storage = S3Client()
    pipeline = ClipPipeline(
        store=job_store,
        storage=storage,
        transcoder=RenderingService(verify_ffmpeg=False),
    )
    job_queue = ClipJobQueue(pipeline.process_job)

    # Store in app state for dependency injection
    app.state.job_store = job_store
    app.state.storage = storage
    app.state.pipeline = pipeline
    app.state.job_queue = job_queue

    await job_queue.start()
    logger.info(
        f"Worker pool ready: {settings.max_concurrent_jobs} jobs, "
        f"{settings.max_concurrent_units} units per job"
    )

    yield

    # Cleanup on shutdown
    logger.info("Shutting down ReelCutter worker...")
    await job_queue.stop()
    app.state.job_queue = None

    # Clean up temp directory
    if os.path.isdir(settings.temp_directory):
        try:
            shutil.rmtree(settings.temp_directory)
        except OSError as e:
            logger.warning(f"Failed to clean up temp directory: {e}")

    logger.info("Shutdown complete")


def _verify_external_tools():
    """Verify that required external tools are available."""
    tools = {
        "ffmpeg": "FFmpeg for audio extraction and clip rendering",
    }

    for tool, description in tools.items():
        if shutil.which(tool):
            logger.info(f"✓ {description} available")
        else:
            logger.warning(f"✗ {description} NOT FOUND - jobs will fail")


# Create FastAPI application
app = FastAPI(
    title="ReelCutter Worker",
    description="""
ReelCutter - turns long videos into short captioned clips.

## Usage

1. Submit a job: `POST /jobs`
2. Poll status: `GET /jobs/{job_id}`
3. Preview or download clips: `GET /clips/{clip_id}/preview`, `GET /clips/{clip_id}/download`
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(jobs.router)
app.include_router(clips.router)


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    settings = get_settings()
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }
