"""
Caption Generator Service - Slices the job transcript to a window and writes SRT captions.
"""

import logging
import os

from app.services.transcription_service import TranscriptSegment
from app.services.window_selector import CandidateWindow

logger = logging.getLogger(__name__)


def format_srt_time(seconds: float) -> str:
    """
    Format seconds to SRT time notation (HH:MM:SS,mmm).

    The value is rounded to whole milliseconds first so binary float
    artifacts (3661.234 -> 3661.23399...) do not lose a millisecond.
    """
    total_ms = int(round(max(0.0, seconds) * 1000))
    total_seconds, millis = divmod(total_ms, 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def filter_segments_for_window(
    segments: list[TranscriptSegment],
    window: CandidateWindow,
) -> list[TranscriptSegment]:
    """
    Keep only segments fully inside the window.

    Segments crossing either window edge are dropped rather than truncated.
    """
    return [
        seg for seg in segments
        if seg.start >= window.start and seg.end <= window.end
    ]


def build_captions(
    segments: list[TranscriptSegment],
    window: CandidateWindow,
) -> str:
    """
    Build SRT caption content for one window from the full transcript.

    Cue times are the segments' source timestamps. Cues are numbered from 1
    in time order.
    """
    kept = filter_segments_for_window(segments, window)

    cues = []
    for index, segment in enumerate(kept, start=1):
        start_time = format_srt_time(segment.start)
        end_time = format_srt_time(segment.end)
        cues.append(f"{index}\n{start_time} --> {end_time}\n{segment.text}\n")

    return "\n".join(cues)


def caption_text(segments: list[TranscriptSegment], window: CandidateWindow) -> str:
    """Concatenated transcript text of the segments kept for a window."""
    return " ".join(seg.text for seg in filter_segments_for_window(segments, window))


class CaptionGeneratorService:
    """Writes per-window SRT caption files into the job's working directory."""

    def write_captions(
        self,
        transcript_segments: list[TranscriptSegment],
        window: CandidateWindow,
        output_path: str,
    ) -> str:
        """
        Generate SRT captions for a window and save them.

        An empty caption file is still written when no segment fits the
        window, so every clip has a companion caption artifact.

        Returns:
            Path to the written .srt file
        """
        content = build_captions(transcript_segments, window)

        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(content)

        logger.info(
            f"Generated SRT captions: {output_path} "
            f"(window={window.start}-{window.end}, bytes={len(content.encode('utf-8'))})"
        )

        return output_path
