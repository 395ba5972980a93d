from reelsmith.timeline.duration import (
    calculate_timeline_duration,
    crossfade_offsets,
    effective_duration,
    sequential_start_times,
)
from reelsmith.timeline.model import (
    AudioTrack,
    Clip,
    Marker,
    Timeline,
    TimelineSnapshot,
    Track,
    Transition,
    find_nearest_snap_point,
)

__all__ = [
    "AudioTrack",
    "Clip",
    "Marker",
    "Timeline",
    "TimelineSnapshot",
    "Track",
    "Transition",
    "calculate_timeline_duration",
    "crossfade_offsets",
    "effective_duration",
    "find_nearest_snap_point",
    "sequential_start_times",
]
