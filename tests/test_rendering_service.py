"""
Tests for the FFmpeg rendering wrapper.
"""

import os
from types import SimpleNamespace

import pytest

from app.config import get_format_spec
from app.services.rendering_service import RenderingError, RenderingService
from app.services.window_selector import CandidateWindow


@pytest.fixture
def rendering_service():
    return RenderingService(verify_ffmpeg=False)


@pytest.fixture
def window():
    return CandidateWindow(start=15, end=35, score=0.8, reason="viral-segment")


class TestFormatSpecs:

    @pytest.mark.parametrize("format_id,width,height,aspect", [
        ("vertical", 1080, 1920, "9:16"),
        ("feed", 1080, 1080, "1:1"),
        ("landscape", 1920, 1080, "16:9"),
    ])
    def test_fixed_specs(self, format_id, width, height, aspect):
        spec = get_format_spec(format_id)
        assert (spec.width, spec.height, spec.aspect_ratio) == (width, height, aspect)

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown target format"):
            get_format_spec("cinema")


class TestBuildCommand:
    """Tests for the ffmpeg argument list."""

    def test_vertical_command(self, rendering_service, window):
        cmd = rendering_service.build_ffmpeg_command(
            "/work/source.mp4", window, get_format_spec("vertical"), "/work/clips/out.mp4"
        )

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-ss") + 1] == "15.000"
        assert cmd[cmd.index("-t") + 1] == "20.000"
        assert cmd[cmd.index("-i") + 1] == "/work/source.mp4"
        assert cmd[cmd.index("-vf") + 1] == (
            "scale=1080:1920:force_original_aspect_ratio=increase,crop=1080:1920,setsar=1"
        )
        assert cmd[cmd.index("-aspect") + 1] == "9:16"
        assert cmd[-1] == "/work/clips/out.mp4"

    def test_web_optimized_encoding(self, rendering_service, window):
        cmd = rendering_service.build_ffmpeg_command(
            "/src.mp4", window, get_format_spec("feed"), "/out.mp4"
        )

        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-crf") + 1] == "23"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"


class TestCut:
    """Tests for cut() with ffmpeg mocked out."""

    @pytest.mark.asyncio
    async def test_cut_returns_size(self, mocker, rendering_service, window, tmp_path):
        output_path = str(tmp_path / "clips" / "clip-15-vertical.mp4")

        def fake_ffmpeg(cmd):
            with open(cmd[-1], "wb") as f:
                f.write(b"\x00" * 4096)

        mocker.patch.object(rendering_service, "_run_cmd", side_effect=fake_ffmpeg)

        result = await rendering_service.cut(
            "/src.mp4", window, get_format_spec("vertical"), output_path
        )

        assert result.output_path == output_path
        assert result.file_size_bytes == 4096
        assert result.duration_seconds == 20
        assert result.format == "vertical"

    @pytest.mark.asyncio
    async def test_ffmpeg_failure(self, mocker, rendering_service, window, tmp_path):
        mocker.patch(
            "app.services.rendering_service.subprocess.run",
            return_value=SimpleNamespace(returncode=1, stderr=b"Invalid data found"),
        )

        with pytest.raises(RenderingError, match="FFmpeg failed: Invalid data found"):
            await rendering_service.cut(
                "/src.mp4", window, get_format_spec("feed"), str(tmp_path / "out.mp4")
            )

    @pytest.mark.asyncio
    async def test_missing_output(self, mocker, rendering_service, window, tmp_path):
        mocker.patch(
            "app.services.rendering_service.subprocess.run",
            return_value=SimpleNamespace(returncode=0, stderr=b""),
        )
        output_path = str(tmp_path / "out.mp4")

        with pytest.raises(RenderingError, match="output file not created"):
            await rendering_service.cut("/src.mp4", window, get_format_spec("feed"), output_path)

        assert not os.path.exists(output_path)

    @pytest.mark.asyncio
    async def test_empty_window(self, rendering_service, tmp_path):
        empty = CandidateWindow(start=10, end=10, score=0.8, reason="viral-segment")

        with pytest.raises(RenderingError, match="Invalid clip duration"):
            await rendering_service.cut("/src.mp4", empty, get_format_spec("feed"), str(tmp_path / "o.mp4"))
