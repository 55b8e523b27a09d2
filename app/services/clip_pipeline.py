"""
Clip Pipeline - Orchestrator for one delivered clip production job.

This service drives a job through its stages:
1. Source download into a job-scoped working area
2. Candidate window selection (style preset grid)
3. Whole-source transcription (Groq Whisper)
4. Per (window, format) unit: cut, captions, upload, persist Clip
5. Working area removal and final status

Every stage failure is recorded on the job and re-raised so the queue can
decide on re-delivery.
"""

import asyncio
import contextvars
import logging
import os
import shutil
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

from app.config import Settings, get_format_spec, get_settings
from app.models import Clip, ClipJobPayload, Job, JobStatus, UnitFailure
from app.services.caption_generator import CaptionGeneratorService, caption_text
from app.services.job_store import JobStore
from app.services.rendering_service import ClipTranscoder, RenderingService
from app.services.s3_client import ObjectStore, clip_caption_key, clip_media_key
from app.services.transcription_service import (
    TranscriptSegment,
    TranscriptionResult,
    TranscriptionService,
)
from app.services.window_selector import CandidateWindow, select_windows

logger = logging.getLogger(__name__)


# Progress milestones (percent)
PROGRESS_SOURCE_READY = 10
PROGRESS_WINDOWS_READY = 20
PROGRESS_TRANSCRIBED = 40
PROGRESS_UNITS_SPAN = 50

# Loggers whose output is copied into the per-job log file
JOB_LOGGERS = [
    "app.services.clip_pipeline",
    "app.services.transcription_service",
    "app.services.caption_generator",
    "app.services.rendering_service",
    "app.services.s3_client",
    "app.services.job_store",
]

# Job whose run the current task belongs to; unit tasks inherit it
current_job_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "current_job_id", default=None
)


class JobLogFilter(logging.Filter):
    """Pass only records emitted while the given job is the current one."""

    def __init__(self, job_id: str):
        super().__init__()
        self.job_id = job_id

    def filter(self, record: logging.LogRecord) -> bool:
        return current_job_id.get() == self.job_id


class SourceTranscriber(Protocol):
    """Whole-source transcription capability."""

    async def transcribe(self, video_path: str, work_dir: str) -> TranscriptionResult:
        ...


@dataclass
class ClipUnit:
    """One (window, format) pair of a job, in processing order."""

    index: int
    window: CandidateWindow
    format: str


def build_units(windows: list[CandidateWindow], target_formats: list[str]) -> list[ClipUnit]:
    """Windows outer, formats inner."""
    units = []
    for window in windows:
        for format_id in target_formats:
            units.append(ClipUnit(index=len(units), window=window, format=format_id))
    return units


def unit_progress(units_done: int, total_units: int) -> int:
    """Progress after a unit completes: 40 + floor(done / total * 50)."""
    if total_units <= 0:
        return PROGRESS_TRANSCRIBED
    return PROGRESS_TRANSCRIBED + (units_done * PROGRESS_UNITS_SPAN) // total_units


@asynccontextmanager
async def job_workspace(job_id: str, root: Optional[str] = None) -> AsyncIterator[str]:
    """
    Job-scoped scratch directory, removed on every exit path.

    A removal failure after a successful body raises WorkspaceCleanupError.
    After a failed or cancelled body it is only logged, and the original
    exception propagates.
    """
    root = root or get_settings().temp_directory
    work_dir = os.path.join(root, job_id)

    # Leftovers from an abandoned attempt of the same job
    if os.path.isdir(work_dir):
        shutil.rmtree(work_dir)
    os.makedirs(work_dir, exist_ok=True)
    logger.debug(f"Working area created: {work_dir}")

    try:
        yield work_dir
    except BaseException:
        try:
            _remove_workspace(work_dir)
        except WorkspaceCleanupError as cleanup_error:
            logger.warning(str(cleanup_error))
        raise
    else:
        _remove_workspace(work_dir)


def _remove_workspace(work_dir: str) -> None:
    if not os.path.isdir(work_dir):
        return
    try:
        shutil.rmtree(work_dir)
    except OSError as e:
        raise WorkspaceCleanupError(f"Failed to remove working area {work_dir}: {e}") from e
    logger.debug(f"Working area removed: {work_dir}")


class ClipPipeline:
    """
    Orchestrates one job from delivery to a terminal status.

    Collaborators are injected so the pipeline can run against fakes:
    - store: Job/Clip records
    - storage: source download and artifact upload
    - transcriber: whole-source speech-to-text
    - transcoder: (window, format) cut
    """

    def __init__(
        self,
        store: JobStore,
        storage: ObjectStore,
        transcriber: Optional[SourceTranscriber] = None,
        transcoder: Optional[ClipTranscoder] = None,
        caption_generator: Optional[CaptionGeneratorService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.storage = storage
        self.transcriber = transcriber or TranscriptionService()
        self.transcoder = transcoder or RenderingService()
        self.caption_generator = caption_generator or CaptionGeneratorService()

    def _setup_job_logging(self, job_id: str) -> Optional[logging.FileHandler]:
        """
        Set up job-specific file logging.

        Creates logs/job_{job_id}_{timestamp}.log and attaches it to the
        service loggers for the duration of the run. Only records emitted
        within this job's run reach the file, so jobs running side by side
        keep separate logs.

        Returns:
            The file handler (to be removed later) or None if setup fails
        """
        try:
            logs_dir = Path(self.settings.job_log_directory)
            logs_dir.mkdir(parents=True, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_filename = logs_dir / f"job_{job_id}_{timestamp}.log"

            file_handler = logging.FileHandler(log_filename, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.addFilter(JobLogFilter(job_id))
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))

            for logger_name in JOB_LOGGERS:
                logging.getLogger(logger_name).addHandler(file_handler)

            logger.info(f"Job logging initialized: {log_filename}")
            return file_handler

        except OSError as e:
            logger.warning(f"Failed to setup job logging: {e}")
            return None

    def _cleanup_job_logging(self, file_handler: Optional[logging.FileHandler]) -> None:
        """Remove the job-specific file handler from all loggers."""
        if file_handler is None:
            return

        for logger_name in JOB_LOGGERS:
            logging.getLogger(logger_name).removeHandler(file_handler)
        file_handler.close()

    async def process_job(self, payload: ClipJobPayload) -> Job:
        """
        Run one delivered job to a terminal status.

        Args:
            payload: Queue payload of the job

        Returns:
            The job record in its final state (COMPLETED or PARTIAL)

        Raises:
            Exception: Whatever stage failed, after the job is marked FAILED
                with the error message and its last progress
        """
        job_id = payload.job_id
        job_context = current_job_id.set(job_id)
        job_log_handler = self._setup_job_logging(job_id)

        try:
            logger.info(f"Starting clip job: {job_id}")
            logger.info(
                f"Source: {payload.source_key} ({payload.duration_seconds}s), "
                f"style={payload.style_preset}, formats={payload.target_formats}"
            )
            await self.store.update_job_status(job_id, JobStatus.PROCESSING, progress=0)

            async with job_workspace(job_id, self.settings.temp_directory) as work_dir:
                unit_failures, total_units = await self._run_stages(payload, work_dir)

            if unit_failures:
                job = await self.store.update_job_status(
                    job_id,
                    JobStatus.PARTIAL,
                    progress=100,
                    error_message=f"{len(unit_failures)} of {total_units} clip units failed",
                    unit_failures=unit_failures,
                )
                logger.warning(f"Job {job_id} finished with {len(unit_failures)} failed units")
            else:
                job = await self.store.update_job_status(job_id, JobStatus.COMPLETED, progress=100)
                logger.info(f"Job {job_id} completed with {total_units} clips")

            return job

        except asyncio.CancelledError:
            logger.warning(f"Job {job_id} attempt cancelled")
            await self._mark_failed(job_id, "Job attempt cancelled")
            raise

        except Exception as e:
            logger.exception(f"Job {job_id} failed: {e}")
            await self._mark_failed(job_id, str(e) or e.__class__.__name__)
            raise

        finally:
            self._cleanup_job_logging(job_log_handler)
            current_job_id.reset(job_context)

    async def _mark_failed(self, job_id: str, message: str) -> None:
        """Persist FAILED with the error message; progress keeps its last value."""
        try:
            await self.store.update_job_status(job_id, JobStatus.FAILED, error_message=message)
        except Exception as e:
            logger.error(f"Could not record failure for job {job_id}: {e}")

    async def _run_stages(
        self,
        payload: ClipJobPayload,
        work_dir: str,
    ) -> tuple[list[UnitFailure], int]:
        job_id = payload.job_id

        # Step 1: Acquire source media
        source_path = os.path.join(work_dir, "source.mp4")
        await self.storage.download_source(payload.source_key, source_path)
        await self.store.update_job_status(job_id, JobStatus.PROCESSING, progress=PROGRESS_SOURCE_READY)

        # Step 2: Candidate windows
        windows = select_windows(payload.duration_seconds, payload.style_preset)
        logger.info(f"Selected {len(windows)} windows ({payload.style_preset})")
        await self.store.update_job_status(job_id, JobStatus.PROCESSING, progress=PROGRESS_WINDOWS_READY)

        # Step 3: Transcribe once; every unit reads the same segments
        transcription = await self.transcriber.transcribe(source_path, work_dir)
        logger.info(f"Transcription complete: {len(transcription.segments)} segments")
        await self.store.update_job_status(job_id, JobStatus.PROCESSING, progress=PROGRESS_TRANSCRIBED)

        # Step 4: Units
        units = build_units(windows, payload.target_formats)
        if not units:
            logger.info(f"No clip units for job {job_id}; source shorter than one window")
            return [], 0

        clips_dir = os.path.join(work_dir, "clips")
        os.makedirs(clips_dir, exist_ok=True)

        failures = await self._run_units(payload, units, source_path, clips_dir, transcription.segments)
        return failures, len(units)

    async def _run_units(
        self,
        payload: ClipJobPayload,
        units: list[ClipUnit],
        source_path: str,
        clips_dir: str,
        segments: list[TranscriptSegment],
    ) -> list[UnitFailure]:
        """
        Run all units with bounded concurrency.

        Clip records are persisted in unit order whatever the completion
        order: a finished unit waits until every earlier unit is settled.
        With one unit at a time this is the plain sequential loop.
        """
        job_id = payload.job_id
        total = len(units)
        isolate = self.settings.isolate_unit_failures
        unit_semaphore = asyncio.Semaphore(self.settings.max_concurrent_units)

        logger.info(
            f"Processing {total} clip units "
            f"({self.settings.max_concurrent_units} at a time, isolate_failures={isolate})"
        )

        settled: dict[int, Optional[Clip]] = {}
        commit_lock = asyncio.Lock()
        next_to_commit = 0
        units_done = 0
        failures: list[UnitFailure] = []

        async def commit_ready() -> None:
            nonlocal next_to_commit
            async with commit_lock:
                while next_to_commit in settled:
                    clip = settled.pop(next_to_commit)
                    if clip is not None:
                        await self.store.create_clip(clip)
                    next_to_commit += 1

        async def run_unit(unit: ClipUnit) -> None:
            nonlocal units_done
            async with unit_semaphore:
                try:
                    clip = await self._produce_clip(payload, unit, source_path, clips_dir, segments)
                except Exception as e:
                    if not isolate:
                        raise
                    logger.error(
                        f"Unit {unit.index + 1}/{total} failed "
                        f"(window={unit.window.start}s, format={unit.format}): {e}"
                    )
                    failures.append(UnitFailure(
                        window_start=unit.window.start,
                        format=unit.format,
                        error=str(e),
                    ))
                    clip = None

                settled[unit.index] = clip
                await commit_ready()

                units_done += 1
                await self.store.update_job_status(
                    job_id, JobStatus.PROCESSING, progress=unit_progress(units_done, total),
                )

        tasks = [asyncio.ensure_future(run_unit(unit)) for unit in units]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failures.sort(key=lambda f: (f.window_start, payload.target_formats.index(f.format)))
        return failures

    async def _produce_clip(
        self,
        payload: ClipJobPayload,
        unit: ClipUnit,
        source_path: str,
        clips_dir: str,
        segments: list[TranscriptSegment],
    ) -> Clip:
        """Cut, caption and upload one unit; returns the Clip record to persist."""
        window = unit.window
        format_spec = get_format_spec(unit.format)

        media_key = clip_media_key(payload.user_id, payload.job_id, window.start, unit.format)
        caption_key = clip_caption_key(payload.user_id, payload.job_id, window.start, unit.format)

        media_path = os.path.join(clips_dir, os.path.basename(media_key))
        caption_path = os.path.join(clips_dir, os.path.basename(caption_key))

        render_result = await self.transcoder.cut(source_path, window, format_spec, media_path)
        self.caption_generator.write_captions(segments, window, caption_path)

        media_upload = await self.storage.upload_file(media_path, media_key)
        caption_upload = await self.storage.upload_file(caption_path, caption_key)

        logger.info(
            f"Unit {unit.index + 1} done: {window.start}-{window.end}s {unit.format} "
            f"({render_result.file_size_bytes / 1024 / 1024:.1f} MB)"
        )

        return Clip(
            job_id=payload.job_id,
            format=unit.format,
            start_time=window.start,
            end_time=window.end,
            size_bytes=render_result.file_size_bytes,
            clip_key=media_upload.key,
            clip_url=media_upload.url,
            subtitles_key=caption_upload.key,
            subtitles_url=caption_upload.url,
            transcription=caption_text(segments, window),
        )


class WorkspaceCleanupError(Exception):
    """Exception raised when the job working area cannot be removed."""
    pass
