"""
Configuration module using Pydantic Settings for environment variable management.

Only deployment-specific environment variables are exposed. Processing constants
and the style/format preset tables are hardcoded for consistency.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


# ============================================================
# STYLE PRESETS
# ============================================================

class StylePresetId:
    """
    Available style preset identifiers.

    A style preset controls how candidate windows are cut from the source:
    the target clip length and the overlap between consecutive windows.
    """
    AUTO = "auto"                    # Cycles 30s -> 60s -> 90s windows
    VIRAL = "viral"                  # Short, frequent windows
    EDUCATIONAL = "educational"      # Topic-length windows
    PODCAST = "podcast"              # Conversation-length windows


# Window lengths cycled by the auto preset, one per emitted window
AUTO_CLIP_LENGTHS = (30, 60, 90)


def get_style_preset(style_id: str) -> dict:
    """
    Get windowing configuration for a given style preset.

    Args:
        style_id: One of the StylePresetId constants

    Returns:
        Preset dict with clip_length (or clip_lengths for auto), overlap,
        score and reason

    Raises:
        ValueError: If style_id is not recognized
    """
    presets = {
        StylePresetId.VIRAL: {
            "id": StylePresetId.VIRAL,
            "clip_length": 20,
            "overlap": 5,
            "score": 0.8,
            "reason": "viral-segment",
        },
        StylePresetId.EDUCATIONAL: {
            "id": StylePresetId.EDUCATIONAL,
            "clip_length": 75,
            "overlap": 10,
            "score": 0.7,
            "reason": "educational-segment",
        },
        StylePresetId.PODCAST: {
            "id": StylePresetId.PODCAST,
            "clip_length": 105,
            "overlap": 15,
            "score": 0.6,
            "reason": "podcast-segment",
        },
        StylePresetId.AUTO: {
            "id": StylePresetId.AUTO,
            "clip_length": AUTO_CLIP_LENGTHS[0],  # Shortest window gates the loop
            "clip_lengths": AUTO_CLIP_LENGTHS,
            "overlap": 10,
            "score": 0.75,
            "reason": "auto-segment",
        },
    }

    if style_id not in presets:
        valid_styles = list(presets.keys())
        raise ValueError(f"Unknown style preset: {style_id}. Valid styles: {valid_styles}")

    return presets[style_id]


# ============================================================
# OUTPUT FORMATS
# ============================================================

class FormatSpec:
    """Output resolution and aspect ratio for one target format (hardcoded)."""

    def __init__(self, name: str, width: int, height: int, aspect_ratio: str):
        self.name = name
        self.width = width
        self.height = height
        self.aspect_ratio = aspect_ratio

    def __repr__(self) -> str:
        return f"FormatSpec({self.name}, {self.width}x{self.height}, {self.aspect_ratio})"


class TargetFormatId:
    """Available output format identifiers."""
    VERTICAL = "vertical"      # 9:16 stories/shorts
    FEED = "feed"              # 1:1 square feed posts
    LANDSCAPE = "landscape"    # 16:9 classic video


def get_format_spec(format_id: str) -> FormatSpec:
    """
    Get the FormatSpec for a given output format.

    Raises:
        ValueError: If format_id is not recognized
    """
    formats = {
        TargetFormatId.VERTICAL: FormatSpec(TargetFormatId.VERTICAL, 1080, 1920, "9:16"),
        TargetFormatId.FEED: FormatSpec(TargetFormatId.FEED, 1080, 1080, "1:1"),
        TargetFormatId.LANDSCAPE: FormatSpec(TargetFormatId.LANDSCAPE, 1920, 1080, "16:9"),
    }

    if format_id not in formats:
        valid_formats = list(formats.keys())
        raise ValueError(f"Unknown target format: {format_id}. Valid formats: {valid_formats}")

    return formats[format_id]


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All transcoding/transcription constants are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "reelcutter-worker"
    debug: bool = False
    log_level: str = "INFO"

    # Object storage (S3 or S3-compatible such as MinIO)
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_bucket_videos: str = "reelcutter-videos"
    s3_bucket_clips: str = "reelcutter-clips"

    # Speech-to-text
    groq_api_key: Optional[str] = None

    # Security - API authentication
    reelcutter_api_key: Optional[str] = None

    # Worker pool
    max_workers: int = 2  # Concurrent jobs
    max_render_workers: int = 2  # Per-job transcode budget
    max_units_per_job: int = 1  # 1 = one (window, format) unit at a time
    isolate_unit_failures: bool = False

    # Intake throttling
    rate_limit_max_jobs: int = 10
    rate_limit_window_seconds: float = 60.0

    # Re-delivery policy
    queue_attempts: int = 3
    queue_backoff_seconds: float = 5.0

    # Transcription retry budget
    transcription_max_retries: int = 3

    # Scratch space and logs
    temp_directory: str = "/tmp/reelcutter"
    job_log_directory: str = "logs"

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def max_concurrent_jobs(self) -> int:
        return self.max_workers  # Use configurable env var

    @property
    def max_concurrent_units(self) -> int:
        return max(1, min(self.max_units_per_job, self.max_render_workers))

    # Transcription Configuration (Groq Whisper)
    @property
    def transcription_model(self) -> str:
        return "whisper-large-v3-turbo"

    @property
    def max_transcription_audio_bytes(self) -> int:
        return 25 * 1024 * 1024  # 25 MiB upload ceiling

    @property
    def audio_codec(self) -> str:
        return "libmp3lame"

    @property
    def audio_extract_bitrate(self) -> str:
        return "128k"

    # Rendering Configuration
    @property
    def ffmpeg_preset(self) -> str:
        return "fast"

    @property
    def ffmpeg_crf(self) -> int:
        return 23

    @property
    def output_audio_bitrate(self) -> str:
        return "128k"

    # Storage
    @property
    def presigned_url_expiration_seconds(self) -> int:
        return 3600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
