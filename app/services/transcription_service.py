"""
Transcription Service - Audio extraction and speech-to-text via Groq Whisper.

The whole source is transcribed once per job. Audio is extracted with ffmpeg,
checked against the upload ceiling, then sent to the speech-to-text engine with
a bounded number of full retries and exponential backoff between them.
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from groq import Groq

from app.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class TranscriptSegment:
    """A segment of transcribed audio with timing in seconds."""

    start: float
    end: float
    text: str


@dataclass
class TranscriptionResult:
    """Result of transcription operation."""

    segments: list[TranscriptSegment]
    full_text: str
    language: Optional[str] = None
    duration_seconds: Optional[float] = None
    attempts: int = 1
    provider: str = "groq"
    model: str = "whisper-large-v3-turbo"


class SpeechToTextEngine(Protocol):
    """Opaque speech-to-text capability: audio file in, raw verbose response out."""

    async def transcribe_file(self, audio_path: str) -> Any:
        """Return the engine's verbose response (dict or object with segments)."""


SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(failed_attempt: int) -> float:
    """
    Seconds to wait after a failed attempt before the next one.

    Attempt numbering starts at 1; the wait after attempt k is 2**k seconds
    with no upper cap.
    """
    return float(2 ** failed_attempt)


class GroqSpeechEngine:
    """
    Speech-to-text via Groq's hosted Whisper.

    Groq provides the fastest Whisper inference and accepts uploads up to
    25 MB, which is the ceiling enforced by TranscriptionService.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        settings = get_settings()
        self.model = model or settings.transcription_model
        api_key = api_key or settings.groq_api_key

        self._client: Optional[Groq] = None
        if api_key:
            self._client = Groq(api_key=api_key)
            logger.info("Groq client initialized for transcription")
        else:
            logger.warning("GROQ_API_KEY not set. Transcription calls will fail.")

    async def transcribe_file(self, audio_path: str) -> Any:
        if not self._client:
            raise TranscriptionError("Groq client not initialized. Set GROQ_API_KEY environment variable.")

        # Run in thread pool since Groq client is sync
        loop = asyncio.get_event_loop()

        def _sync_transcribe():
            with open(audio_path, "rb") as audio_file:
                return self._client.audio.transcriptions.create(
                    file=(os.path.basename(audio_path), audio_file),
                    model=self.model,
                    response_format="verbose_json",
                    timestamp_granularities=["segment"],
                )

        return await loop.run_in_executor(None, _sync_transcribe)


class TranscriptionService:
    """
    Service for transcribing a source video.

    Features:
    - ffmpeg audio extraction into the job's working directory
    - Size gate: audio above the upload ceiling is rejected, never truncated
    - Full retries with exponential backoff (injectable sleep for tests)
    - Segments sorted by start time and validated before they are returned
    """

    def __init__(
        self,
        engine: Optional[SpeechToTextEngine] = None,
        max_retries: Optional[int] = None,
        max_audio_bytes: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.settings = get_settings()
        self.engine = engine or GroqSpeechEngine()
        self.max_retries = (
            max_retries if max_retries is not None else self.settings.transcription_max_retries
        )
        self.max_audio_bytes = (
            max_audio_bytes if max_audio_bytes is not None else self.settings.max_transcription_audio_bytes
        )
        self._sleep = sleep

    async def transcribe(self, video_path: str, work_dir: str) -> TranscriptionResult:
        """
        Transcribe a video file by extracting audio first.

        Args:
            video_path: Path to source media
            work_dir: Job-scoped working directory for the extracted audio

        Returns:
            TranscriptionResult with time-ordered segments

        Raises:
            AudioTooLargeError: Extracted audio exceeds the upload ceiling
            TranscriptionFailed: Every attempt failed
            InvalidTranscriptError: Engine returned a segment with start >= end
        """
        if not os.path.isfile(video_path):
            raise TranscriptionError(f"Video file not found: {video_path}")

        audio_path = os.path.join(work_dir, "audio_extracted.mp3")

        try:
            # A failed ffmpeg run can leave a partial file behind
            await self._extract_audio_from_video(video_path, audio_path)

            audio_size = os.path.getsize(audio_path)
            logger.info(f"Audio file size: {audio_size / 1024 / 1024:.2f} MB")

            if audio_size > self.max_audio_bytes:
                # TODO: split into <=25 MiB chunks and offset segment timings by chunk start
                raise AudioTooLargeError(
                    f"Unsupported: chunking required for {audio_size / 1024 / 1024:.1f} MB audio "
                    f"(limit {self.max_audio_bytes / 1024 / 1024:.0f} MB)"
                )

            response, attempts = await self._transcribe_with_retries(audio_path)
            result = self._parse_whisper_response(response)
            result.attempts = attempts
            return result
        finally:
            if os.path.exists(audio_path):
                try:
                    os.remove(audio_path)
                except OSError as e:
                    logger.warning(f"Failed to remove extracted audio {audio_path}: {e}")

    async def _transcribe_with_retries(self, audio_path: str) -> tuple[Any, int]:
        """Call the engine up to max_retries times; each retry is a full re-upload."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                logger.info(f"Attempting transcription (attempt {attempt}/{self.max_retries})")
                response = await self.engine.transcribe_file(audio_path)
                return response, attempt
            except Exception as e:
                last_error = e
                logger.error(f"Transcription attempt {attempt} failed: {e}")

            if attempt < self.max_retries:
                delay = backoff_delay(attempt)
                logger.info(f"Retrying transcription after {delay:.0f}s")
                await self._sleep(delay)

        raise TranscriptionFailed(last_error, self.max_retries)

    async def _extract_audio_from_video(self, video_path: str, audio_path: str) -> None:
        """Extract audio track from video file using ffmpeg."""
        logger.info(f"Extracting audio from video: {video_path}")

        cmd = [
            "ffmpeg",
            "-y",
            "-i", video_path,
            "-vn",  # No video
            "-acodec", self.settings.audio_codec,
            "-ab", self.settings.audio_extract_bitrate,
            audio_path,
        ]

        # Use run_in_executor for Windows compatibility
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: subprocess.run(cmd, capture_output=True)
        )

        if result.returncode != 0:
            error_msg = result.stderr.decode()[-1000:] if result.stderr else "Unknown error"
            raise TranscriptionError(f"Failed to extract audio from video: {error_msg}")

        if not os.path.exists(audio_path):
            raise TranscriptionError("Audio extraction produced no output file")

        logger.info(f"Audio extracted to: {audio_path}")

    def _get_value(self, obj, key: str, default=None):
        """Get value from object (handles both dict and object attributes)."""
        if isinstance(obj, dict):
            return obj.get(key, default)
        return getattr(obj, key, default)

    def _parse_whisper_response(self, response) -> TranscriptionResult:
        """Parse a verbose Whisper response into sorted, validated segments."""
        segments: list[TranscriptSegment] = []

        for seg in self._get_value(response, "segments") or []:
            segments.append(TranscriptSegment(
                start=float(self._get_value(seg, "start", 0)),
                end=float(self._get_value(seg, "end", 0)),
                text=str(self._get_value(seg, "text", "")).strip(),
            ))

        # Fallback if no segments but we have text
        if not segments:
            full_text_raw = self._get_value(response, "text", "")
            duration = float(self._get_value(response, "duration", 0) or 0)
            if full_text_raw and duration > 0:
                logger.info("No segments in response, using full text as a single segment")
                segments.append(TranscriptSegment(
                    start=0.0,
                    end=duration,
                    text=str(full_text_raw).strip(),
                ))

        segments.sort(key=lambda s: s.start)

        for seg in segments:
            if seg.start >= seg.end:
                raise InvalidTranscriptError(
                    f"Invalid segment timing {seg.start:.3f}-{seg.end:.3f}: start must precede end"
                )

        full_text = " ".join(s.text for s in segments)
        logger.info(f"Transcription completed: {len(segments)} segments")

        return TranscriptionResult(
            segments=segments,
            full_text=full_text,
            language=self._get_value(response, "language"),
            duration_seconds=self._get_value(response, "duration"),
            model=getattr(self.engine, "model", self.settings.transcription_model),
        )


class TranscriptionError(Exception):
    """Exception raised when transcription fails."""
    pass


class AudioTooLargeError(TranscriptionError):
    """Extracted audio is above the upload ceiling; retrying cannot help."""
    pass


class InvalidTranscriptError(TranscriptionError):
    """Engine response contained a segment that does not satisfy start < end."""
    pass


class TranscriptionFailed(TranscriptionError):
    """Every transcription attempt failed."""

    def __init__(self, cause: Optional[Exception], attempts: int):
        self.cause = cause
        self.attempts = attempts
        super().__init__(f"Transcription failed after {attempts} attempts: {cause}")
