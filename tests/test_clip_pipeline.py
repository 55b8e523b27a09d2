"""
Tests for the clip pipeline orchestrator.
"""

import asyncio
import logging
import os

import pytest

from app.config import Settings
from app.models import JobStatus
from app.services.clip_pipeline import (
    ClipPipeline,
    WorkspaceCleanupError,
    build_units,
    job_workspace,
    unit_progress,
)
from app.services.job_store import InMemoryJobStore
from app.services.s3_client import StorageError
from app.services.transcription_service import TranscriptionFailed
from app.services.window_selector import select_windows
from tests.fakes import FakeObjectStore, FakeTranscoder, FakeTranscriber


class RecordingStore(InMemoryJobStore):
    """Store that keeps every (status, progress) write."""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def update_job_status(self, job_id, status, progress=None, error_message=None, unit_failures=None):
        self.writes.append((status, progress))
        return await super().update_job_status(job_id, status, progress, error_message, unit_failures)


@pytest.fixture
def store():
    return RecordingStore()


def _pipeline(store, storage, transcriber, transcoder, settings):
    return ClipPipeline(
        store=store,
        storage=storage,
        transcriber=transcriber,
        transcoder=transcoder,
        settings=settings,
    )


async def _submit(store, make_job, **kwargs):
    job, payload = make_job(**kwargs)
    await store.create_job(job)
    return payload


class TestHelpers:

    def test_units_windows_outer_formats_inner(self):
        units = build_units(select_windows(50, "viral"), ["vertical", "feed"])
        assert [(u.window.start, u.format) for u in units] == [
            (0, "vertical"), (0, "feed"),
            (15, "vertical"), (15, "feed"),
            (30, "vertical"), (30, "feed"),
        ]
        assert [u.index for u in units] == list(range(6))

    @pytest.mark.parametrize("done,total,expected", [
        (1, 3, 56),
        (2, 3, 73),
        (3, 3, 90),
        (1, 6, 48),
        (0, 0, 40),
    ])
    def test_unit_progress(self, done, total, expected):
        assert unit_progress(done, total) == expected


class TestEndToEnd:
    """A 50 s viral source into vertical clips."""

    @pytest.mark.asyncio
    async def test_three_clips_completed(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, duration=50, style="viral", formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        job = await pipeline.process_job(payload)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.error_message is None

        clips = await store.list_clips(payload.job_id)
        assert [(c.start_time, c.end_time) for c in clips] == [(0, 20), (15, 35), (30, 50)]
        assert all(c.format == "vertical" for c in clips)
        assert all(c.views == 0 and c.downloads == 0 for c in clips)
        assert clips[0].duration == 20
        assert clips[0].size_bytes == 1024
        assert len(fake_transcriber.calls) == 1

    @pytest.mark.asyncio
    async def test_storage_layout(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, user_id="u9", formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        prefix = f"u9/{payload.job_id}"
        assert sorted(fake_storage.uploads) == sorted([
            f"{prefix}/clip-0-vertical.mp4", f"{prefix}/clip-0-vertical.srt",
            f"{prefix}/clip-15-vertical.mp4", f"{prefix}/clip-15-vertical.srt",
            f"{prefix}/clip-30-vertical.mp4", f"{prefix}/clip-30-vertical.srt",
        ])
        assert fake_storage.downloads == [payload.source_key]

        clip = (await store.list_clips(payload.job_id))[0]
        assert clip.clip_key == f"{prefix}/clip-0-vertical.mp4"
        assert clip.subtitles_url == f"https://clips.test/{prefix}/clip-0-vertical.srt"

    @pytest.mark.asyncio
    async def test_captions_and_transcription_text(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        clips = await store.list_clips(payload.job_id)
        assert clips[0].transcription == "Welcome back. Today we cut clips. First the windows."
        srt = fake_storage.uploads[f"user-1/{payload.job_id}/clip-0-vertical.srt"].decode("utf-8")
        assert srt.startswith("1\n00:00:00,000 --> 00:00:05,000\nWelcome back.\n")
        # Crosses the 20 s edge
        assert "Then captions." not in srt

    @pytest.mark.asyncio
    async def test_progress_sequence(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        assert store.writes == [
            (JobStatus.PROCESSING, 0),
            (JobStatus.PROCESSING, 10),
            (JobStatus.PROCESSING, 20),
            (JobStatus.PROCESSING, 40),
            (JobStatus.PROCESSING, 56),
            (JobStatus.PROCESSING, 73),
            (JobStatus.PROCESSING, 90),
            (JobStatus.COMPLETED, 100),
        ]

    @pytest.mark.asyncio
    async def test_clips_in_window_then_format_order(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical", "feed"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        clips = await store.list_clips(payload.job_id)
        assert len(clips) == 6
        assert [(c.start_time, c.format) for c in clips] == [
            (0, "vertical"), (0, "feed"),
            (15, "vertical"), (15, "feed"),
            (30, "vertical"), (30, "feed"),
        ]

    @pytest.mark.asyncio
    async def test_workspace_and_job_log(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        assert not os.path.exists(os.path.join(settings.temp_directory, payload.job_id))
        log_files = os.listdir(settings.job_log_directory)
        assert len(log_files) == 1
        assert log_files[0].startswith(f"job_{payload.job_id}_")
        handlers = logging.getLogger("app.services.clip_pipeline").handlers
        assert not any(isinstance(h, logging.FileHandler) for h in handlers)


class TestJobLogs:
    """Per-job log files when jobs run side by side."""

    @pytest.mark.asyncio
    async def test_concurrent_jobs_keep_separate_logs(
        self, caplog, store, fake_storage, fake_transcriber, settings, make_job
    ):
        caplog.set_level(logging.DEBUG, logger="app")
        first = await _submit(store, make_job, formats=["vertical"])
        second = await _submit(store, make_job, formats=["vertical", "feed"])
        transcoder = FakeTranscoder(delays={(0, "vertical"): 0.01, (15, "feed"): 0.01})
        pipeline = _pipeline(store, fake_storage, fake_transcriber, transcoder, settings)

        await asyncio.gather(pipeline.process_job(first), pipeline.process_job(second))

        logs = {}
        for name in os.listdir(settings.job_log_directory):
            with open(os.path.join(settings.job_log_directory, name), encoding="utf-8") as f:
                logs[name.split("_")[1]] = f.read()

        assert set(logs) == {first.job_id, second.job_id}
        assert first.job_id in logs[first.job_id]
        assert second.job_id not in logs[first.job_id]
        assert first.job_id not in logs[second.job_id]
        # Store records from the job's own run are kept
        assert "app.services.job_store" in logs[second.job_id]
        assert f"Job {second.job_id}: COMPLETED (100%)" in logs[second.job_id]

    @pytest.mark.asyncio
    async def test_records_outside_the_run_are_not_written(
        self, caplog, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        caplog.set_level(logging.INFO, logger="app")
        payload = await _submit(store, make_job, duration=10)
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)
        handler = pipeline._setup_job_logging(payload.job_id)

        logging.getLogger("app.services.rendering_service").info("unrelated line")
        pipeline._cleanup_job_logging(handler)

        with open(handler.baseFilename, encoding="utf-8") as f:
            assert "unrelated line" not in f.read()


class TestShortSource:

    @pytest.mark.asyncio
    async def test_zero_windows_still_completes(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, duration=10, style="viral")
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        job = await pipeline.process_job(payload)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert await store.list_clips(payload.job_id) == []
        assert len(fake_transcriber.calls) == 1
        assert fake_transcoder.calls == []


class TestFailures:
    """Failures are recorded, progress kept, and the error re-raised."""

    @pytest.mark.asyncio
    async def test_transcode_failure_keeps_progress(
        self, store, fake_storage, fake_transcriber, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical"])
        transcoder = FakeTranscoder(fail_on={(15, "vertical")})
        pipeline = _pipeline(store, fake_storage, fake_transcriber, transcoder, settings)

        with pytest.raises(RuntimeError, match="transcode failed"):
            await pipeline.process_job(payload)

        job = await store.get_job(payload.job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 56
        assert "transcode failed for 15-vertical" in job.error_message
        # Units persisted before the failure stay valid
        clips = await store.list_clips(payload.job_id)
        assert [c.start_time for c in clips] == [0]
        # Third unit never ran
        assert transcoder.calls == [(0, "vertical"), (15, "vertical")]

    @pytest.mark.asyncio
    async def test_transcription_failure(
        self, store, fake_storage, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job)
        transcriber = FakeTranscriber(error=TranscriptionFailed(RuntimeError("engine down"), 3))
        pipeline = _pipeline(store, fake_storage, transcriber, fake_transcoder, settings)

        with pytest.raises(TranscriptionFailed):
            await pipeline.process_job(payload)

        job = await store.get_job(payload.job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 20
        assert job.error_message == "Transcription failed after 3 attempts: engine down"
        assert fake_transcoder.calls == []

    @pytest.mark.asyncio
    async def test_download_failure(
        self, store, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job)
        storage = FakeObjectStore(download_error=StorageError("Failed to download: 404"))
        pipeline = _pipeline(store, storage, fake_transcriber, fake_transcoder, settings)

        with pytest.raises(StorageError):
            await pipeline.process_job(payload)

        job = await store.get_job(payload.job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 0
        assert fake_transcriber.calls == []

    @pytest.mark.asyncio
    async def test_unknown_style_fails_job(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, style="cinematic")
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        with pytest.raises(ValueError):
            await pipeline.process_job(payload)

        job = await store.get_job(payload.job_id)
        assert job.status == JobStatus.FAILED
        assert job.progress == 10

    @pytest.mark.asyncio
    async def test_workspace_removed_on_failure(
        self, store, fake_storage, fake_transcriber, settings, make_job
    ):
        payload = await _submit(store, make_job)
        transcoder = FakeTranscoder(fail_on={(0, "vertical")})
        pipeline = _pipeline(store, fake_storage, fake_transcriber, transcoder, settings)

        with pytest.raises(RuntimeError):
            await pipeline.process_job(payload)

        assert not os.path.exists(os.path.join(settings.temp_directory, payload.job_id))

    @pytest.mark.asyncio
    async def test_cleanup_failure_fails_job(
        self, mocker, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)
        mocker.patch.object(
            pipeline, "_run_stages",
            side_effect=lambda *args: _patch_rmtree_then_finish(mocker),
        )

        with pytest.raises(WorkspaceCleanupError):
            await pipeline.process_job(payload)

        job = await store.get_job(payload.job_id)
        assert job.status == JobStatus.FAILED
        assert "Failed to remove working area" in job.error_message


def _patch_rmtree_then_finish(mocker):
    mocker.patch("app.services.clip_pipeline.shutil.rmtree", side_effect=OSError("device busy"))
    return [], 0


class TestUnitIsolation:

    @pytest.mark.asyncio
    async def test_failed_unit_gives_partial(
        self, store, fake_storage, fake_transcriber, settings, make_job
    ):
        settings = Settings(
            temp_directory=settings.temp_directory,
            job_log_directory=settings.job_log_directory,
            isolate_unit_failures=True,
        )
        payload = await _submit(store, make_job, formats=["vertical", "feed"])
        transcoder = FakeTranscoder(fail_on={(15, "feed")})
        pipeline = _pipeline(store, fake_storage, fake_transcriber, transcoder, settings)

        job = await pipeline.process_job(payload)

        assert job.status == JobStatus.PARTIAL
        assert job.progress == 100
        assert job.error_message == "1 of 6 clip units failed"
        assert [(f.window_start, f.format) for f in job.unit_failures] == [(15, "feed")]

        clips = await store.list_clips(payload.job_id)
        assert [(c.start_time, c.format) for c in clips] == [
            (0, "vertical"), (0, "feed"), (15, "vertical"), (30, "vertical"), (30, "feed"),
        ]


class TestBoundedFanOut:

    @pytest.mark.asyncio
    async def test_sequential_by_default(
        self, store, fake_storage, fake_transcriber, fake_transcoder, settings, make_job
    ):
        payload = await _submit(store, make_job, formats=["vertical", "feed"])
        pipeline = _pipeline(store, fake_storage, fake_transcriber, fake_transcoder, settings)

        await pipeline.process_job(payload)

        assert fake_transcoder.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_concurrent_units_persist_in_order(
        self, store, fake_storage, fake_transcriber, settings, make_job
    ):
        settings = Settings(
            temp_directory=settings.temp_directory,
            job_log_directory=settings.job_log_directory,
            max_units_per_job=3,
            max_render_workers=3,
        )
        payload = await _submit(store, make_job, formats=["vertical"])
        # First unit finishes last
        transcoder = FakeTranscoder(delays={(0, "vertical"): 0.05})
        pipeline = _pipeline(store, fake_storage, fake_transcriber, transcoder, settings)

        job = await pipeline.process_job(payload)

        assert job.status == JobStatus.COMPLETED
        assert transcoder.max_in_flight == 3
        clips = await store.list_clips(payload.job_id)
        assert [c.start_time for c in clips] == [0, 15, 30]
        progress = [p for s, p in store.writes if s == JobStatus.PROCESSING]
        assert progress == sorted(progress)

    def test_fan_out_capped_by_render_budget(self):
        settings = Settings(max_units_per_job=8, max_render_workers=2)
        assert settings.max_concurrent_units == 2


class TestJobWorkspace:

    @pytest.mark.asyncio
    async def test_removed_after_success(self, tmp_path):
        async with job_workspace("job-1", str(tmp_path)) as work_dir:
            assert os.path.isdir(work_dir)
            with open(os.path.join(work_dir, "scratch.bin"), "wb") as f:
                f.write(b"x")

        assert not os.path.exists(work_dir)

    @pytest.mark.asyncio
    async def test_removed_after_error(self, tmp_path):
        with pytest.raises(KeyError):
            async with job_workspace("job-2", str(tmp_path)) as work_dir:
                raise KeyError("boom")

        assert not os.path.exists(work_dir)

    @pytest.mark.asyncio
    async def test_cleanup_error_does_not_mask_original(self, mocker, tmp_path):
        with pytest.raises(KeyError):
            async with job_workspace("job-3", str(tmp_path)):
                mocker.patch("app.services.clip_pipeline.shutil.rmtree", side_effect=OSError("busy"))
                raise KeyError("boom")

    @pytest.mark.asyncio
    async def test_cleanup_error_after_success_raises(self, mocker, tmp_path):
        with pytest.raises(WorkspaceCleanupError):
            async with job_workspace("job-4", str(tmp_path)):
                mocker.patch("app.services.clip_pipeline.shutil.rmtree", side_effect=OSError("busy"))
