"""
Window Selector - Deterministic, style-driven candidate windows for clipping.

Windows are cut on a fixed grid from the start of the source: each style preset
defines a clip length and the overlap between consecutive windows. No content
analysis takes place here.
"""

import logging
from dataclasses import dataclass

from app.config import StylePresetId, get_style_preset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateWindow:
    """A contiguous time range of the source chosen as a clip candidate."""

    start: float
    end: float
    score: float
    reason: str

    @property
    def duration(self) -> float:
        return self.end - self.start


def select_windows(duration: float, style: str) -> list[CandidateWindow]:
    """
    Compute candidate windows for a source of the given duration.

    A window starting at ``t`` is admitted while ``t <= duration - L`` so the
    last full-length window may end exactly at the end of the source. Sources
    shorter than one window yield no windows.

    Args:
        duration: Source duration in seconds
        style: One of the StylePresetId constants

    Returns:
        Windows ordered by strictly increasing start

    Raises:
        ValueError: If style is not recognized
    """
    preset = get_style_preset(style)

    if duration <= 0:
        return []

    if style == StylePresetId.AUTO:
        windows = _cycled_windows(
            duration,
            clip_lengths=preset["clip_lengths"],
            overlap=preset["overlap"],
            score=preset["score"],
            reason=preset["reason"],
        )
    else:
        windows = _fixed_windows(
            duration,
            clip_length=preset["clip_length"],
            overlap=preset["overlap"],
            score=preset["score"],
            reason=preset["reason"],
        )

    logger.debug(f"Selected {len(windows)} windows for {duration}s source (style={style})")
    return windows


def _fixed_windows(
    duration: float,
    clip_length: int,
    overlap: int,
    score: float,
    reason: str,
) -> list[CandidateWindow]:
    windows: list[CandidateWindow] = []
    step = clip_length - overlap
    start = 0

    while start <= duration - clip_length:
        windows.append(CandidateWindow(
            start=start,
            end=min(start + clip_length, duration),
            score=score,
            reason=reason,
        ))
        start += step

    return windows


def _cycled_windows(
    duration: float,
    clip_lengths: tuple[int, ...],
    overlap: int,
    score: float,
    reason: str,
) -> list[CandidateWindow]:
    """Window length advances through clip_lengths once per emitted window."""
    windows: list[CandidateWindow] = []
    min_length = min(clip_lengths)
    start = 0
    index = 0

    while start <= duration - min_length:
        clip_length = clip_lengths[index % len(clip_lengths)]
        windows.append(CandidateWindow(
            start=start,
            end=min(start + clip_length, duration),
            score=score,
            reason=reason,
        ))
        start += clip_length - overlap
        index += 1

    return windows
