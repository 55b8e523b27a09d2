"""
Pytest configuration and fixtures.
"""

import os
import sys

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import Settings, get_settings
from app.models import ClipJobPayload, Job
from app.services.transcription_service import TranscriptSegment
from tests.fakes import FakeObjectStore, FakeTranscoder, FakeTranscriber


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point scratch and log directories at tmp_path and reset cached settings."""
    monkeypatch.setenv("TEMP_DIRECTORY", str(tmp_path / "work"))
    monkeypatch.setenv("JOB_LOG_DIRECTORY", str(tmp_path / "logs"))
    monkeypatch.delenv("REELCUTTER_API_KEY", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Sequential, reference-behavior settings."""
    return Settings(
        temp_directory=str(tmp_path / "work"),
        job_log_directory=str(tmp_path / "logs"),
    )


@pytest.fixture
def transcript_segments():
    """Transcript spanning [0, 50]."""
    return [
        TranscriptSegment(start=0.0, end=5.0, text="Welcome back."),
        TranscriptSegment(start=5.0, end=15.0, text="Today we cut clips."),
        TranscriptSegment(start=15.0, end=19.0, text="First the windows."),
        TranscriptSegment(start=19.5, end=20.5, text="Then captions."),
        TranscriptSegment(start=21.0, end=34.0, text="Every unit is uploaded."),
        TranscriptSegment(start=34.0, end=50.0, text="Thanks for watching."),
    ]


@pytest.fixture
def fake_transcriber(transcript_segments):
    return FakeTranscriber(transcript_segments)


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def fake_storage():
    return FakeObjectStore()


@pytest.fixture
def make_job():
    """Build a Job and its queue payload."""

    def _make(duration=50.0, style="viral", formats=("vertical",), user_id="user-1"):
        job = Job(
            user_id=user_id,
            source_key=f"uploads/{user_id}/source.mp4",
            duration_seconds=duration,
            style_preset=style,
            target_formats=list(formats),
        )
        return job, ClipJobPayload.from_job(job)

    return _make
