"""
Rendering Service - FFmpeg-based cutting and reformatting of clip windows.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

from app.config import FormatSpec, get_settings
from app.services.window_selector import CandidateWindow

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Result of rendering operation."""

    output_path: str
    file_size_bytes: int
    duration_seconds: float
    format: str


class ClipTranscoder(Protocol):
    """Opaque transcode capability: source + window + format in, encoded file out."""

    async def cut(
        self,
        source_path: str,
        window: CandidateWindow,
        format_spec: FormatSpec,
        output_path: str,
    ) -> RenderResult:
        """Encode the window of the source into output_path."""


class RenderingService:
    """
    Service for rendering clips using FFmpeg.

    Features:
    - Trims to [window.start, window.end)
    - Cover-scales and centre-crops to the target resolution
    - H.264/AAC with a fast preset and faststart (progressive) layout
    """

    def __init__(self, verify_ffmpeg: bool = True):
        self.settings = get_settings()
        if verify_ffmpeg:
            self._verify_ffmpeg()

    def _verify_ffmpeg(self):
        """Verify ffmpeg is available."""
        if not shutil.which("ffmpeg"):
            raise RuntimeError("ffmpeg not found in PATH")
        logger.info("FFmpeg available")

    async def cut(
        self,
        source_path: str,
        window: CandidateWindow,
        format_spec: FormatSpec,
        output_path: str,
    ) -> RenderResult:
        """
        Cut a window out of the source and re-encode it to a target format.

        Args:
            source_path: Local path of the source media
            window: Time range to keep
            format_spec: Target resolution/aspect
            output_path: Where the encoded clip is written

        Returns:
            RenderResult with output path and file size

        Raises:
            RenderingError: Invalid window, ffmpeg failure or missing output
        """
        duration = window.end - window.start
        if duration <= 0:
            raise RenderingError("Invalid clip duration")

        os.makedirs(os.path.dirname(output_path), exist_ok=True)

        logger.info(
            f"Rendering clip: {window.start}s-{window.end}s, "
            f"format={format_spec.name} ({format_spec.width}x{format_spec.height})"
        )

        cmd = self.build_ffmpeg_command(source_path, window, format_spec, output_path)
        await self._run_cmd(cmd)

        # Verify output and get file size
        if not os.path.isfile(output_path):
            raise RenderingError("Render failed: output file not created")

        file_size = os.path.getsize(output_path)
        logger.info(f"Clip rendered: {output_path} ({file_size / 1024 / 1024:.1f} MB)")

        return RenderResult(
            output_path=output_path,
            file_size_bytes=file_size,
            duration_seconds=duration,
            format=format_spec.name,
        )

    def build_ffmpeg_command(
        self,
        source_path: str,
        window: CandidateWindow,
        format_spec: FormatSpec,
        output_path: str,
    ) -> list[str]:
        """Build the ffmpeg argument list for one (window, format) unit."""
        width, height = format_spec.width, format_spec.height

        video_filters = [
            # Cover the target box, then crop the overflow around the centre
            f"scale={width}:{height}:force_original_aspect_ratio=increase",
            f"crop={width}:{height}",
            "setsar=1",
        ]

        return [
            "ffmpeg",
            "-y",
            "-ss", f"{window.start:.3f}",
            "-i", source_path,
            "-t", f"{window.end - window.start:.3f}",
            "-vf", ",".join(video_filters),
            "-aspect", format_spec.aspect_ratio,
            "-c:v", "libx264",
            "-preset", self.settings.ffmpeg_preset,
            "-crf", str(self.settings.ffmpeg_crf),
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", self.settings.output_audio_bitrate,
            "-movflags", "+faststart",
            output_path,
        ]

    async def _run_cmd(self, cmd: list[str]) -> None:
        """Run a command asynchronously."""
        logger.debug(f"Running: {' '.join(cmd[:10])}...")

        # Use run_in_executor for Windows compatibility
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: subprocess.run(cmd, capture_output=True)
        )

        if result.returncode != 0:
            error_msg = result.stderr.decode()[-1000:] if result.stderr else "Unknown error"
            raise RenderingError(f"FFmpeg failed: {error_msg}")


class RenderingError(Exception):
    """Exception raised when rendering fails."""
    pass
