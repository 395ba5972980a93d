"""
Editable timeline model with bounded undo/redo.

The timeline is the single source of truth for what the user intends to
export. It holds tracks of clips, independent audio tracks, sequential
transitions and markers. Every mutating edit snapshots
``{tracks, audio_tracks, markers, transitions}`` before it runs; selection,
zoom, playhead and playback flags are never part of history.

Consumers that only read (export builder, preview renderer) take a
``snapshot()`` and never write back.
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Literal, Optional
from uuid import uuid4

from reelsmith.config import get_settings
from reelsmith.exceptions import (
    AudioTrackNotFoundError,
    ClipNotFoundError,
    MarkerNotFoundError,
    TimelineError,
    TrackLockedError,
    TrackNotFoundError,
)
from reelsmith.timeline.duration import (
    adjusted_duration,
    calculate_timeline_duration,
    sequential_start_times,
)

logger = logging.getLogger(__name__)

ClipType = Literal["video", "image"]
TrackType = Literal["video", "audio", "text", "effects"]
AudioTrackType = Literal["music", "voice", "sfx"]

MIN_TRIM_LENGTH = 0.1
MIN_SPEED = 0.25
MAX_SPEED = 4.0
MIN_ZOOM = 0.25
MAX_ZOOM = 3.0
DEFAULT_MARKER_COLOR = "#ef4444"
PRIMARY_VIDEO_TRACK = "video-1"


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class Clip:
    """A video or image placed on a track."""

    id: str
    source_url: str
    type: ClipType
    track_id: str
    start_time: float
    duration: float
    trim_start: float
    trim_end: float
    original_duration: float
    speed: float = 1.0
    volume: float = 1.0
    muted: bool = False

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def recompute_duration(self) -> None:
        """Re-derive duration from trim and speed (video only)."""
        if self.type == "video":
            self.duration = adjusted_duration(self.trim_start, self.trim_end, self.speed)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "source_url": self.source_url,
            "type": self.type,
            "track_id": self.track_id,
            "start_time": self.start_time,
            "duration": self.duration,
            "trim_start": self.trim_start,
            "trim_end": self.trim_end,
            "original_duration": self.original_duration,
            "speed": self.speed,
            "volume": self.volume,
            "muted": self.muted,
        }


@dataclass
class Track:
    """Ordered container of clips."""

    id: str
    name: str
    type: TrackType
    locked: bool = False
    visible: bool = True
    clips: list[Clip] = field(default_factory=list)

    def sort_clips(self) -> None:
        self.clips.sort(key=lambda c: c.start_time)


@dataclass
class AudioTrack:
    """Standalone audio (music, voice, sfx) independent of video tracks."""

    id: str
    url: str
    name: str
    type: AudioTrackType
    volume: float = 1.0
    start_time: float = 0.0
    duration: float = 30.0


@dataclass
class Transition:
    """Sequential transition bound to the clip before a boundary."""

    id: str
    after_clip_id: str
    type: str = "fade"
    duration_seconds: float = 1.0


@dataclass
class Marker:
    """Annotation only; no playback effect."""

    id: str
    time: float
    label: str = ""
    color: str = DEFAULT_MARKER_COLOR


@dataclass
class SelectionState:
    """Ephemeral UI selection, never recorded in history."""

    selected_clip_ids: set[str] = field(default_factory=set)
    last_selected_clip_id: Optional[str] = None


@dataclass
class TimelineSnapshot:
    """Deep copy of the persisted part of a timeline."""

    tracks: list[Track]
    audio_tracks: list[AudioTrack]
    markers: list[Marker]
    transitions: list[Transition]

    def get_track(self, track_id: str) -> Optional[Track]:
        return next((t for t in self.tracks if t.id == track_id), None)

    @property
    def duration(self) -> float:
        return calculate_timeline_duration(
            self.tracks, self.audio_tracks, get_settings().timeline_min_duration_s
        )


def default_tracks() -> list[Track]:
    """Fresh copies of the standard track layout."""
    return [
        Track(id="video-1", name="Video 1", type="video"),
        Track(id="video-2", name="Video 2", type="video"),
        Track(id="audio-music", name="Music", type="audio"),
        Track(id="audio-voice", name="Voice", type="audio"),
        Track(id="text", name="Text", type="text"),
        Track(id="effects", name="Effects", type="effects"),
    ]


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


# ============================================================================
# Snapping
# ============================================================================


def find_nearest_snap_point(
    time: float,
    tracks: list[Track],
    current_time: float,
    exclude_clip_id: Optional[str] = None,
    threshold: float = 0.5,
) -> Optional[float]:
    """Closest snap point strictly within ``threshold`` of ``time``.

    Candidates are 0, the playhead and the start/end of every clip other
    than ``exclude_clip_id``.
    """
    snap_points = [0.0, current_time]
    for track in tracks:
        for clip in track.clips:
            if clip.id != exclude_clip_id:
                snap_points.append(clip.start_time)
                snap_points.append(clip.end_time)

    nearest: Optional[float] = None
    nearest_distance = threshold
    for point in snap_points:
        distance = abs(time - point)
        if distance < nearest_distance:
            nearest_distance = distance
            nearest = point
    return nearest


# ============================================================================
# History
# ============================================================================


class HistoryManager:
    """Bounded undo/redo stacks of timeline snapshots."""

    def __init__(self, max_history: int = 50):
        self.max_history = max_history
        self._undo_stack: deque[TimelineSnapshot] = deque(maxlen=max_history)
        self._redo_stack: list[TimelineSnapshot] = []

    def record(self, snapshot: TimelineSnapshot) -> None:
        """Store the state before an edit and drop the redo branch."""
        self._undo_stack.append(snapshot)
        self._redo_stack.clear()

    def undo(self, current: TimelineSnapshot) -> Optional[TimelineSnapshot]:
        """Return the state to restore, moving ``current`` onto the redo stack."""
        if not self._undo_stack:
            return None
        previous = self._undo_stack.pop()
        self._redo_stack.append(current)
        return previous

    def redo(self, current: TimelineSnapshot) -> Optional[TimelineSnapshot]:
        """Return the state to re-apply, moving ``current`` onto the undo stack."""
        if not self._redo_stack:
            return None
        following = self._redo_stack.pop()
        self._undo_stack.append(current)
        return following

    def can_undo(self) -> bool:
        return len(self._undo_stack) > 0

    def can_redo(self) -> bool:
        return len(self._redo_stack) > 0

    def clear(self) -> None:
        self._undo_stack.clear()
        self._redo_stack.clear()


# ============================================================================
# Timeline
# ============================================================================


class Timeline:
    """Mutable, undo-capable timeline owned by one editing session."""

    def __init__(
        self,
        tracks: Optional[list[Track]] = None,
        audio_tracks: Optional[list[AudioTrack]] = None,
        markers: Optional[list[Marker]] = None,
        transitions: Optional[list[Transition]] = None,
        max_history: Optional[int] = None,
    ):
        settings = get_settings()
        self.tracks: list[Track] = tracks if tracks is not None else default_tracks()
        self.audio_tracks: list[AudioTrack] = audio_tracks or []
        self.markers: list[Marker] = markers or []
        self.transitions: list[Transition] = transitions or []

        self.zoom = 1.0
        self.current_time = 0.0
        self.snap_enabled = True
        self.is_playing = False
        self.selection = SelectionState()

        self.snap_threshold = settings.snap_threshold_s
        self.min_duration = settings.timeline_min_duration_s
        self.history = HistoryManager(max_history or settings.history_depth)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def duration(self) -> float:
        return calculate_timeline_duration(self.tracks, self.audio_tracks, self.min_duration)

    @property
    def pixels_per_second(self) -> float:
        return 100 * self.zoom

    def snapshot(self) -> TimelineSnapshot:
        """Deep copy of tracks, audio tracks, markers and transitions."""
        return TimelineSnapshot(
            tracks=copy.deepcopy(self.tracks),
            audio_tracks=copy.deepcopy(self.audio_tracks),
            markers=copy.deepcopy(self.markers),
            transitions=copy.deepcopy(self.transitions),
        )

    def get_track(self, track_id: str) -> Track:
        for track in self.tracks:
            if track.id == track_id:
                return track
        raise TrackNotFoundError(track_id)

    def get_clip(self, clip_id: str) -> Clip:
        for track in self.tracks:
            for clip in track.clips:
                if clip.id == clip_id:
                    return clip
        raise ClipNotFoundError(clip_id)

    def find_clip(self, clip_id: str) -> Optional[Clip]:
        try:
            return self.get_clip(clip_id)
        except ClipNotFoundError:
            return None

    def selected_clips(self) -> list[Clip]:
        return [
            clip
            for track in self.tracks
            for clip in track.clips
            if clip.id in self.selection.selected_clip_ids
        ]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _record(self) -> None:
        self.history.record(self.snapshot())

    def _restore(self, snapshot: TimelineSnapshot) -> None:
        self.tracks = snapshot.tracks
        self.audio_tracks = snapshot.audio_tracks
        self.markers = snapshot.markers
        self.transitions = snapshot.transitions
        # Drop selections that point at clips the restored state lacks
        existing = {c.id for t in self.tracks for c in t.clips}
        self.selection.selected_clip_ids &= existing
        if self.selection.last_selected_clip_id not in existing:
            self.selection.last_selected_clip_id = None

    def undo(self) -> bool:
        previous = self.history.undo(self.snapshot())
        if previous is None:
            return False
        self._restore(previous)
        return True

    def redo(self) -> bool:
        following = self.history.redo(self.snapshot())
        if following is None:
            return False
        self._restore(following)
        return True

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    # ------------------------------------------------------------------
    # View state (not recorded)
    # ------------------------------------------------------------------

    def set_zoom(self, zoom: float) -> None:
        self.zoom = max(MIN_ZOOM, min(MAX_ZOOM, zoom))

    def set_current_time(self, time: float) -> None:
        self.current_time = max(0.0, min(time, self.duration))

    def set_snap_enabled(self, enabled: bool) -> None:
        self.snap_enabled = enabled

    def set_is_playing(self, playing: bool) -> None:
        self.is_playing = playing

    def toggle_track_lock(self, track_id: str) -> None:
        track = self.get_track(track_id)
        track.locked = not track.locked

    def toggle_track_visibility(self, track_id: str) -> None:
        track = self.get_track(track_id)
        track.visible = not track.visible

    # ------------------------------------------------------------------
    # Selection (not recorded)
    # ------------------------------------------------------------------

    def select_clip(self, clip_id: str, add_to_selection: bool = False) -> None:
        selected = set(self.selection.selected_clip_ids) if add_to_selection else set()
        if clip_id in selected:
            selected.discard(clip_id)
        else:
            selected.add(clip_id)
        self.selection = SelectionState(selected_clip_ids=selected, last_selected_clip_id=clip_id)

    def select_clips_in_range(
        self,
        start_time: float,
        end_time: float,
        track_ids: Optional[list[str]] = None,
    ) -> None:
        selected = {
            clip.id
            for track in self.tracks
            if track_ids is None or track.id in track_ids
            for clip in track.clips
            if clip.start_time < end_time and clip.end_time > start_time
        }
        self.selection = SelectionState(selected_clip_ids=selected)

    def clear_selection(self) -> None:
        self.selection = SelectionState()

    # ------------------------------------------------------------------
    # Clip edits
    # ------------------------------------------------------------------

    def _track_of(self, clip: Clip) -> Track:
        return self.get_track(clip.track_id)

    def _ensure_unlocked(self, track: Track) -> None:
        if track.locked:
            raise TrackLockedError(track.id)

    def add_clip(
        self,
        track_id: str,
        *,
        source_url: str,
        type: ClipType = "video",
        start_time: float = 0.0,
        original_duration: float,
        trim_start: float = 0.0,
        trim_end: Optional[float] = None,
        speed: float = 1.0,
        volume: float = 1.0,
        muted: bool = False,
        display_duration: Optional[float] = None,
    ) -> str:
        """Add a clip and return its id."""
        track = self.get_track(track_id)
        self._ensure_unlocked(track)

        trim_end = original_duration if trim_end is None else trim_end
        if not (0 <= trim_start < trim_end <= original_duration):
            raise TimelineError(
                f"Invalid trim range [{trim_start}, {trim_end}] for duration {original_duration}"
            )
        if not (MIN_SPEED <= speed <= MAX_SPEED):
            raise TimelineError(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")

        if type == "image":
            duration = display_duration or get_settings().image_display_duration_s
        else:
            duration = adjusted_duration(trim_start, trim_end, speed)

        clip = Clip(
            id=_new_id("clip"),
            source_url=source_url,
            type=type,
            track_id=track_id,
            start_time=max(0.0, start_time),
            duration=duration,
            trim_start=trim_start,
            trim_end=trim_end,
            original_duration=original_duration,
            speed=speed,
            volume=volume,
            muted=muted,
        )

        self._record()
        track.clips.append(clip)
        track.sort_clips()
        logger.debug(f"[TIMELINE] Added clip {clip.id} to {track_id} at {clip.start_time:.3f}s")
        return clip.id

    def move_clip(self, clip_id: str, new_track_id: str, new_start_time: float) -> None:
        """Move a clip to a track and time, snapping when enabled."""
        clip = self.get_clip(clip_id)
        source = self._track_of(clip)
        target = self.get_track(new_track_id)
        self._ensure_unlocked(source)
        self._ensure_unlocked(target)

        self._record()
        source.clips = [c for c in source.clips if c.id != clip_id]

        final_start = new_start_time
        if self.snap_enabled:
            snapped = find_nearest_snap_point(
                new_start_time,
                self.tracks,
                self.current_time,
                exclude_clip_id=clip_id,
                threshold=self.snap_threshold,
            )
            if snapped is not None:
                final_start = snapped

        clip.start_time = max(0.0, final_start)
        clip.track_id = new_track_id
        target.clips.append(clip)
        target.sort_clips()

    def trim_clip(self, clip_id: str, trim_start: float, trim_end: float) -> None:
        """Set trim points, clamped to the source, and re-derive duration."""
        clip = self.get_clip(clip_id)
        self._ensure_unlocked(self._track_of(clip))

        self._record()
        new_start = max(0.0, min(trim_start, clip.original_duration - MIN_TRIM_LENGTH))
        new_end = max(new_start + MIN_TRIM_LENGTH, min(trim_end, clip.original_duration))
        clip.trim_start = new_start
        clip.trim_end = new_end
        clip.recompute_duration()

    def set_clip_speed(self, clip_id: str, speed: float) -> None:
        clip = self.get_clip(clip_id)
        self._ensure_unlocked(self._track_of(clip))
        if not (MIN_SPEED <= speed <= MAX_SPEED):
            raise TimelineError(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")

        self._record()
        clip.speed = speed
        clip.recompute_duration()

    def set_clip_volume(self, clip_id: str, volume: float) -> None:
        clip = self.get_clip(clip_id)
        self._ensure_unlocked(self._track_of(clip))

        self._record()
        clip.volume = max(0.0, volume)

    def set_clip_muted(self, clip_id: str, muted: bool) -> None:
        clip = self.get_clip(clip_id)
        self._ensure_unlocked(self._track_of(clip))

        self._record()
        clip.muted = muted

    def split_clip(self, clip_id: str, split_time: float) -> Optional[str]:
        """Split a clip at an absolute time; returns the new second clip id.

        A split point outside the clip's open interval is a no-op.
        """
        clip = self.get_clip(clip_id)
        track = self._track_of(clip)
        self._ensure_unlocked(track)

        relative = split_time - clip.start_time
        if relative <= 0 or relative >= clip.duration:
            return None

        self._record()
        split_point = clip.trim_start + relative * clip.speed
        second = copy.deepcopy(clip)
        second.id = f"{clip.id}-split-{uuid4().hex[:8]}"
        second.start_time = split_time
        second.duration = clip.duration - relative
        clip.duration = relative
        if clip.type == "video":
            second.trim_start = split_point
            clip.trim_end = split_point

        index = track.clips.index(clip)
        track.clips.insert(index + 1, second)
        return second.id

    def delete_clip(self, clip_id: str) -> None:
        """Remove a clip and the transitions anchored to it."""
        clip = self.get_clip(clip_id)
        track = self._track_of(clip)

        self._record()
        track.clips = [c for c in track.clips if c.id != clip_id]
        self.transitions = [t for t in self.transitions if t.after_clip_id != clip_id]
        self.selection.selected_clip_ids.discard(clip_id)
        if self.selection.last_selected_clip_id == clip_id:
            self.selection.last_selected_clip_id = None

    def delete_selected_clips(self) -> None:
        selected = set(self.selection.selected_clip_ids)
        if not selected:
            return

        self._record()
        for track in self.tracks:
            track.clips = [c for c in track.clips if c.id not in selected]
        self.transitions = [t for t in self.transitions if t.after_clip_id not in selected]
        self.selection = SelectionState()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_transition(
        self,
        after_clip_id: str,
        type: str = "fade",
        duration_seconds: float = 1.0,
    ) -> str:
        """Attach a transition after a clip, replacing any existing one."""
        self.get_clip(after_clip_id)
        if duration_seconds <= 0:
            raise TimelineError("Transition duration must be positive")

        self._record()
        transition = Transition(
            id=_new_id("transition"),
            after_clip_id=after_clip_id,
            type=type,
            duration_seconds=duration_seconds,
        )
        self.transitions = [t for t in self.transitions if t.after_clip_id != after_clip_id]
        self.transitions.append(transition)
        return transition.id

    def update_transition(
        self,
        transition_id: str,
        type: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        transition = next((t for t in self.transitions if t.id == transition_id), None)
        if transition is None:
            raise TimelineError(f"Transition not found: {transition_id}")

        self._record()
        if type is not None:
            transition.type = type
        if duration_seconds is not None:
            transition.duration_seconds = duration_seconds

    def remove_transition(self, transition_id: str) -> None:
        if not any(t.id == transition_id for t in self.transitions):
            raise TimelineError(f"Transition not found: {transition_id}")

        self._record()
        self.transitions = [t for t in self.transitions if t.id != transition_id]

    # ------------------------------------------------------------------
    # Audio tracks
    # ------------------------------------------------------------------

    def add_audio_track(
        self,
        url: str,
        name: str,
        type: AudioTrackType = "music",
        volume: float = 1.0,
        start_time: float = 0.0,
        duration: float = 30.0,
    ) -> str:
        self._record()
        audio = AudioTrack(
            id=_new_id("audio"),
            url=url,
            name=name,
            type=type,
            volume=volume,
            start_time=max(0.0, start_time),
            duration=duration,
        )
        self.audio_tracks.append(audio)
        return audio.id

    def update_audio_track(self, audio_track_id: str, **changes: Any) -> None:
        audio = next((a for a in self.audio_tracks if a.id == audio_track_id), None)
        if audio is None:
            raise AudioTrackNotFoundError(audio_track_id)
        unknown = set(changes) - {"url", "name", "type", "volume", "start_time", "duration"}
        if unknown:
            raise TimelineError(f"Unknown audio track fields: {sorted(unknown)}")

        self._record()
        for key, value in changes.items():
            setattr(audio, key, value)

    def remove_audio_track(self, audio_track_id: str) -> None:
        if not any(a.id == audio_track_id for a in self.audio_tracks):
            raise AudioTrackNotFoundError(audio_track_id)

        self._record()
        self.audio_tracks = [a for a in self.audio_tracks if a.id != audio_track_id]

    # ------------------------------------------------------------------
    # Markers
    # ------------------------------------------------------------------

    def add_marker(self, time: float, label: str = "", color: str = DEFAULT_MARKER_COLOR) -> str:
        self._record()
        marker = Marker(id=_new_id("marker"), time=max(0.0, time), label=label, color=color)
        self.markers.append(marker)
        self.markers.sort(key=lambda m: m.time)
        return marker.id

    def remove_marker(self, marker_id: str) -> None:
        if not any(m.id == marker_id for m in self.markers):
            raise MarkerNotFoundError(marker_id)

        self._record()
        self.markers = [m for m in self.markers if m.id != marker_id]

    # ------------------------------------------------------------------
    # Legacy ordered-clip format
    # ------------------------------------------------------------------

    @classmethod
    def from_legacy(
        cls,
        ordered_clips: list[dict[str, Any]],
        clip_settings: dict[str, dict[str, Any]],
        clip_transitions: list[dict[str, Any]],
        audio_tracks: list[dict[str, Any]],
    ) -> "Timeline":
        """Build a timeline from an ordered clip list with per-clip settings.

        Clips are placed back to back on ``video-1``; a transition after clip
        ``i - 1`` pulls clip ``i`` earlier by its duration.
        """
        tracks = default_tracks()
        video_track = next(t for t in tracks if t.id == PRIMARY_VIDEO_TRACK)
        default_duration = get_settings().image_display_duration_s

        durations: list[float] = []
        overlaps: list[float] = []
        prepared: list[dict[str, Any]] = []
        for index, legacy in enumerate(ordered_clips):
            opts = clip_settings.get(legacy["id"], {})
            clip_type = legacy.get("type", "video")
            original = opts.get("original_duration") or default_duration
            trim_start = opts.get("trim_start", 0.0)
            trim_end = opts.get("trim_end", original)
            speed = opts.get("speed", 1.0)
            if clip_type == "image":
                duration = opts.get("display_duration") or original
            else:
                duration = adjusted_duration(trim_start, trim_end, speed)
            transition = next(
                (t for t in clip_transitions if t["after_clip_index"] == index - 1), None
            )
            durations.append(duration)
            overlaps.append(transition["duration_seconds"] if transition else 0.0)
            prepared.append(
                {
                    "legacy": legacy,
                    "opts": opts,
                    "type": clip_type,
                    "original": original,
                    "trim_start": trim_start,
                    "trim_end": trim_end,
                    "speed": speed,
                    "duration": duration,
                }
            )

        for item, start in zip(prepared, sequential_start_times(durations, overlaps)):
            video_track.clips.append(
                Clip(
                    id=item["legacy"]["id"],
                    source_url=item["legacy"]["url"],
                    type=item["type"],
                    track_id=PRIMARY_VIDEO_TRACK,
                    start_time=start,
                    duration=item["duration"],
                    trim_start=item["trim_start"],
                    trim_end=item["trim_end"],
                    original_duration=item["original"],
                    speed=item["speed"],
                    volume=item["opts"].get("volume", 1.0),
                    muted=item["opts"].get("muted", False),
                )
            )

        timeline_audio = [
            AudioTrack(
                id=audio["id"],
                url=audio["url"],
                name=audio.get("name", ""),
                type=audio.get("type", "music"),
                volume=audio.get("volume", 1.0),
            )
            for audio in audio_tracks
        ]

        transitions = []
        for idx, legacy_transition in enumerate(clip_transitions):
            after_index = legacy_transition["after_clip_index"]
            if 0 <= after_index < len(ordered_clips):
                transitions.append(
                    Transition(
                        id=f"transition-{idx}",
                        after_clip_id=ordered_clips[after_index]["id"],
                        type=legacy_transition.get("type", "fade"),
                        duration_seconds=legacy_transition["duration_seconds"],
                    )
                )

        return cls(tracks=tracks, audio_tracks=timeline_audio, transitions=transitions)

    def to_legacy(self) -> dict[str, Any]:
        """Flatten ``video-1`` back into the ordered clip format."""
        video_track = self.get_track(PRIMARY_VIDEO_TRACK)
        ordered = sorted(video_track.clips, key=lambda c: c.start_time)

        ordered_clips = [{"id": c.id, "url": c.source_url, "type": c.type} for c in ordered]
        clip_settings = {
            c.id: {
                "muted": c.muted,
                "volume": c.volume,
                "speed": c.speed,
                "trim_start": c.trim_start,
                "trim_end": c.trim_end,
                "original_duration": c.original_duration,
                "display_duration": c.duration if c.type == "image" else None,
            }
            for c in ordered
        }
        index_of = {c.id: i for i, c in enumerate(ordered)}
        clip_transitions = [
            {
                "after_clip_index": index_of[t.after_clip_id],
                "type": t.type,
                "duration_seconds": t.duration_seconds,
            }
            for t in self.transitions
            if t.after_clip_id in index_of
        ]
        audio_tracks = [
            {"id": a.id, "url": a.url, "name": a.name, "type": a.type, "volume": a.volume}
            for a in self.audio_tracks
        ]
        return {
            "ordered_clips": ordered_clips,
            "clip_settings": clip_settings,
            "clip_transitions": clip_transitions,
            "audio_tracks": audio_tracks,
        }
