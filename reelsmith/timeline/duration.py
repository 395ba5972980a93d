"""Duration and offset math for timelines and export graphs.

All functions are pure and derive their result from clip state alone, so
callers recompute after every mutation instead of caching.
"""

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reelsmith.timeline.model import AudioTrack, Clip, Track

DEFAULT_MIN_TIMELINE_DURATION = 60.0


def adjusted_duration(
    trim_start: float,
    trim_end: float,
    speed: float = 1.0,
    is_image: bool = False,
    display_duration: float | None = None,
) -> float:
    """Playback length of a trimmed, speed-changed source.

    Images ignore trim and speed and play for their display duration.
    """
    if is_image:
        return float(display_duration or 0.0)
    if speed <= 0:
        raise ValueError(f"speed must be positive, got {speed}")
    return (trim_end - trim_start) / speed


def effective_duration(clip: "Clip") -> float:
    """Effective timeline duration of a clip."""
    if clip.type == "image":
        return clip.duration
    return adjusted_duration(clip.trim_start, clip.trim_end, clip.speed)


def sequential_start_times(
    durations: Sequence[float],
    overlaps: Sequence[float] | None = None,
) -> list[float]:
    """Start times for clips placed back to back.

    ``overlaps[i]`` is the transition overlap between clip ``i - 1`` and clip
    ``i``; it pulls clip ``i`` earlier but never below zero.
    """
    starts: list[float] = []
    running = 0.0
    for i, duration in enumerate(durations):
        overlap = overlaps[i] if overlaps and i < len(overlaps) else 0.0
        starts.append(max(0.0, running - overlap))
        running += duration
    return starts


def calculate_timeline_duration(
    tracks: Iterable["Track"],
    audio_tracks: Iterable["AudioTrack"] = (),
    floor: float = DEFAULT_MIN_TIMELINE_DURATION,
) -> float:
    """Global timeline length: the latest clip or audio end, never below ``floor``."""
    max_end = 0.0
    for track in tracks:
        for clip in track.clips:
            max_end = max(max_end, clip.start_time + clip.duration)
    for audio in audio_tracks:
        max_end = max(max_end, audio.start_time + audio.duration)
    return max(max_end, floor)


def crossfade_offsets(
    durations: Sequence[float],
    transition_durations: Sequence[float],
) -> list[float]:
    """Join offsets for a sequential crossfade chain.

    The offset of transition ``i`` (between clip ``i`` and ``i + 1``) is the
    sum of the speed-adjusted durations of clips ``0..i`` minus that
    transition's duration. Pass adjusted durations, never raw probed ones.
    """
    if len(transition_durations) != max(len(durations) - 1, 0):
        raise ValueError(
            f"expected {max(len(durations) - 1, 0)} transitions, got {len(transition_durations)}"
        )
    offsets: list[float] = []
    running = 0.0
    for i, transition_duration in enumerate(transition_durations):
        running += durations[i]
        offsets.append(running - transition_duration)
    return offsets
