"""Tests for the editable timeline model.

Features:
- Clip add/move/trim/split/delete with duration invariants
- Undo/redo round trips and history bounds
- Locked tracks, selection, snapping, markers, transitions
- Legacy ordered-clip conversion
"""

import pytest

from reelsmith.exceptions import (
    ClipNotFoundError,
    MarkerNotFoundError,
    TimelineError,
    TrackLockedError,
)
from reelsmith.timeline.duration import effective_duration
from reelsmith.timeline.model import (
    HistoryManager,
    Timeline,
    TimelineSnapshot,
    Track,
    find_nearest_snap_point,
)


@pytest.fixture
def timeline() -> Timeline:
    return Timeline()


def _add(timeline: Timeline, start: float = 0.0, duration: float = 10.0, **kwargs) -> str:
    return timeline.add_clip(
        "video-1",
        source_url="https://example.com/clip.mp4",
        start_time=start,
        original_duration=duration,
        **kwargs,
    )


def _assert_duration_invariant(timeline: Timeline) -> None:
    for track in timeline.tracks:
        for clip in track.clips:
            if clip.type == "video":
                assert clip.duration == pytest.approx(effective_duration(clip))


class TestClipEdits:
    """Tests for clip mutations."""

    def test_add_clip_derives_duration(self, timeline):
        """Duration is (trim_end - trim_start) / speed."""
        clip_id = _add(timeline, trim_start=2.0, trim_end=8.0, speed=2.0)
        assert timeline.get_clip(clip_id).duration == pytest.approx(3.0)

    def test_add_clip_rejects_bad_trim(self, timeline):
        """trim_start must be below trim_end and within the source."""
        with pytest.raises(TimelineError):
            _add(timeline, trim_start=5.0, trim_end=4.0)
        with pytest.raises(TimelineError):
            _add(timeline, duration=5.0, trim_end=6.0)

    def test_add_clip_rejects_out_of_range_speed(self, timeline):
        """Speed is limited to [0.25, 4]."""
        with pytest.raises(TimelineError):
            _add(timeline, speed=5.0)

    def test_image_clip_uses_display_duration(self, timeline):
        """Images play for their display duration."""
        clip_id = _add(timeline, type="image", display_duration=3.0)
        assert timeline.get_clip(clip_id).duration == 3.0

    def test_clips_stay_sorted(self, timeline):
        """Track clips are ordered by start time."""
        later = _add(timeline, start=20.0)
        earlier = _add(timeline, start=0.0)
        ids = [c.id for c in timeline.get_track("video-1").clips]
        assert ids == [earlier, later]

    def test_trim_clamps_and_recomputes(self, timeline):
        """Trim points are clamped to the source with a 0.1s minimum."""
        clip_id = _add(timeline, duration=10.0)
        timeline.trim_clip(clip_id, -3.0, 50.0)
        clip = timeline.get_clip(clip_id)
        assert (clip.trim_start, clip.trim_end) == (0.0, 10.0)

        timeline.trim_clip(clip_id, 9.99, 9.0)
        clip = timeline.get_clip(clip_id)
        assert clip.trim_start == pytest.approx(9.9)
        assert clip.trim_end == pytest.approx(10.0)
        _assert_duration_invariant(timeline)

    def test_set_speed_recomputes_duration(self, timeline):
        """Changing speed re-derives duration."""
        clip_id = _add(timeline, duration=8.0)
        timeline.set_clip_speed(clip_id, 4.0)
        assert timeline.get_clip(clip_id).duration == pytest.approx(2.0)
        with pytest.raises(TimelineError):
            timeline.set_clip_speed(clip_id, 0.1)

    def test_split_inside_clip(self, timeline):
        """Split keeps the first id and maps the split point through speed."""
        clip_id = _add(timeline, start=5.0, duration=20.0, trim_start=2.0, trim_end=18.0, speed=2.0)
        new_id = timeline.split_clip(clip_id, 8.0)

        first = timeline.get_clip(clip_id)
        second = timeline.get_clip(new_id)
        assert new_id.startswith(f"{clip_id}-split-")
        # 3s into the clip at 2x is 6s into the source
        assert first.trim_end == pytest.approx(8.0)
        assert second.trim_start == pytest.approx(8.0)
        assert first.duration == pytest.approx(3.0)
        assert second.start_time == pytest.approx(8.0)
        assert second.duration == pytest.approx(5.0)
        _assert_duration_invariant(timeline)

    def test_split_outside_clip_is_noop(self, timeline):
        """Split points on or beyond the edges change nothing."""
        clip_id = _add(timeline, start=5.0, duration=10.0)
        assert timeline.split_clip(clip_id, 5.0) is None
        assert timeline.split_clip(clip_id, 15.0) is None
        assert len(timeline.get_track("video-1").clips) == 1
        # only the add was recorded
        assert len(timeline.history._undo_stack) == 1

    def test_delete_clip_removes_transitions_and_selection(self, timeline):
        """Deleting a clip also drops transitions anchored to it."""
        first = _add(timeline, start=0.0)
        _add(timeline, start=10.0)
        timeline.add_transition(first, "dissolve", 1.0)
        timeline.select_clip(first)

        timeline.delete_clip(first)

        assert timeline.find_clip(first) is None
        assert timeline.transitions == []
        assert first not in timeline.selection.selected_clip_ids

    def test_get_missing_clip_raises(self, timeline):
        """Unknown clip ids raise ClipNotFoundError."""
        with pytest.raises(ClipNotFoundError):
            timeline.get_clip("nope")

    def test_delete_selected_clips(self, timeline):
        """All selected clips are removed in one edit."""
        a = _add(timeline, start=0.0)
        b = _add(timeline, start=10.0)
        c = _add(timeline, start=20.0)
        timeline.select_clip(a)
        timeline.select_clip(b, add_to_selection=True)

        timeline.delete_selected_clips()

        assert [clip.id for clip in timeline.get_track("video-1").clips] == [c]
        timeline.undo()
        assert len(timeline.get_track("video-1").clips) == 3


class TestLockedTracks:
    """Tests for edits on locked tracks."""

    def test_locked_track_rejects_edits(self, timeline):
        """Add, trim, move, split and speed edits fail on a locked track."""
        clip_id = _add(timeline)
        timeline.toggle_track_lock("video-1")

        with pytest.raises(TrackLockedError):
            _add(timeline, start=20.0)
        with pytest.raises(TrackLockedError):
            timeline.trim_clip(clip_id, 1.0, 5.0)
        with pytest.raises(TrackLockedError):
            timeline.move_clip(clip_id, "video-2", 3.0)
        with pytest.raises(TrackLockedError):
            timeline.split_clip(clip_id, 5.0)
        with pytest.raises(TrackLockedError):
            timeline.set_clip_speed(clip_id, 2.0)

    def test_lock_toggle_is_not_recorded(self, timeline):
        """Lock and visibility toggles are not undoable."""
        timeline.toggle_track_lock("video-1")
        timeline.toggle_track_visibility("video-2")
        assert not timeline.can_undo()


class TestHistory:
    """Tests for undo/redo."""

    def test_undo_redo_round_trip(self, timeline):
        """undo then redo restores the exact post-edit state."""
        clip_id = _add(timeline)
        timeline.trim_clip(clip_id, 1.0, 6.0)
        after_edit = timeline.snapshot()

        assert timeline.undo()
        assert timeline.get_clip(clip_id).trim_end == 10.0
        assert timeline.redo()
        assert timeline.snapshot() == after_edit

    def test_undo_restores_pre_edit_state(self, timeline):
        """Undo returns to the state before the last edit."""
        before = timeline.snapshot()
        _add(timeline)
        timeline.undo()
        assert timeline.snapshot() == before

    def test_new_edit_clears_redo(self, timeline):
        """Any edit after an undo drops the redo branch."""
        _add(timeline)
        timeline.undo()
        assert timeline.can_redo()
        timeline.add_marker(3.0)
        assert not timeline.can_redo()

    def test_undo_on_empty_history(self, timeline):
        """Undo and redo report False when nothing is stacked."""
        assert timeline.undo() is False
        assert timeline.redo() is False

    def test_history_is_bounded(self):
        """Only the newest max_history entries survive."""
        timeline = Timeline(max_history=3)
        for i in range(5):
            timeline.add_marker(float(i))
        undos = 0
        while timeline.undo():
            undos += 1
        assert undos == 3
        assert len(timeline.markers) == 2

    def test_undo_prunes_selection(self, timeline):
        """Selections of clips that disappear on undo are dropped."""
        clip_id = _add(timeline)
        timeline.select_clip(clip_id)
        timeline.undo()
        assert timeline.selection.selected_clip_ids == set()
        assert timeline.selection.last_selected_clip_id is None

    def test_view_state_not_recorded(self, timeline):
        """Zoom, playhead, snapping and selection changes are not history."""
        timeline.set_zoom(2.0)
        timeline.set_current_time(5.0)
        timeline.set_snap_enabled(False)
        timeline.clear_selection()
        assert not timeline.can_undo()

    def test_history_manager_directly(self):
        """record/undo/redo move snapshots between stacks."""
        history = HistoryManager(max_history=2)
        a = TimelineSnapshot(tracks=[], audio_tracks=[], markers=[], transitions=[])
        b = TimelineSnapshot(tracks=[Track(id="t", name="t", type="video")], audio_tracks=[], markers=[], transitions=[])
        history.record(a)
        assert history.undo(b) is a
        assert history.redo(a) is b
        history.clear()
        assert not history.can_undo() and not history.can_redo()


class TestViewState:
    """Tests for zoom, playhead and selection."""

    def test_zoom_is_clamped(self, timeline):
        """Zoom stays within [0.25, 3]."""
        timeline.set_zoom(10)
        assert timeline.zoom == 3.0
        timeline.set_zoom(0.01)
        assert timeline.zoom == 0.25
        assert timeline.pixels_per_second == 25.0

    def test_current_time_clamped_to_duration(self, timeline):
        """The playhead cannot leave [0, duration]."""
        timeline.set_current_time(500.0)
        assert timeline.current_time == timeline.duration == 60.0
        timeline.set_current_time(-1.0)
        assert timeline.current_time == 0.0

    def test_select_toggle(self, timeline):
        """Selecting a selected clip with add_to_selection deselects it."""
        a = _add(timeline, start=0.0)
        b = _add(timeline, start=10.0)
        timeline.select_clip(a)
        timeline.select_clip(b, add_to_selection=True)
        assert {c.id for c in timeline.selected_clips()} == {a, b}
        timeline.select_clip(a, add_to_selection=True)
        assert timeline.selection.selected_clip_ids == {b}

    def test_select_in_range(self, timeline):
        """Range selection picks clips overlapping the window."""
        a = _add(timeline, start=0.0, duration=5.0)
        _add(timeline, start=10.0, duration=5.0)
        timeline.select_clips_in_range(4.0, 9.0)
        assert timeline.selection.selected_clip_ids == {a}
        timeline.select_clips_in_range(0.0, 100.0, track_ids=["video-2"])
        assert timeline.selection.selected_clip_ids == set()


class TestSnapping:
    """Tests for move snapping."""

    def test_move_snaps_to_neighbor_end(self, timeline):
        """A move within the threshold lands on the nearby clip edge."""
        _add(timeline, start=0.0, duration=10.0)
        moving = _add(timeline, start=30.0, duration=5.0)
        timeline.move_clip(moving, "video-1", 10.3)
        assert timeline.get_clip(moving).start_time == 10.0

    def test_snap_disabled(self, timeline):
        """With snapping off the requested time is used."""
        _add(timeline, start=0.0, duration=10.0)
        moving = _add(timeline, start=30.0, duration=5.0)
        timeline.set_snap_enabled(False)
        timeline.move_clip(moving, "video-2", 10.3)
        clip = timeline.get_clip(moving)
        assert clip.start_time == pytest.approx(10.3)
        assert clip.track_id == "video-2"

    def test_move_clamps_to_zero(self, timeline):
        """Negative start times clamp to zero."""
        moving = _add(timeline, start=30.0)
        timeline.set_snap_enabled(False)
        timeline.move_clip(moving, "video-1", -4.0)
        assert timeline.get_clip(moving).start_time == 0.0

    def test_threshold_is_strict(self, timeline):
        """Points exactly at the threshold do not snap."""
        tracks = [Track(id="v", name="v", type="video")]
        assert find_nearest_snap_point(0.5, tracks, current_time=30.0, threshold=0.5) is None
        assert find_nearest_snap_point(0.49, tracks, current_time=30.0, threshold=0.5) == 0.0


class TestMarkersAndTransitions:
    """Tests for markers, transitions and audio tracks."""

    def test_markers_sorted_and_removable(self, timeline):
        """Markers stay ordered by time."""
        late = timeline.add_marker(9.0, "end")
        early = timeline.add_marker(1.0, "start")
        assert [m.id for m in timeline.markers] == [early, late]
        assert timeline.markers[0].color == "#ef4444"
        timeline.remove_marker(early)
        with pytest.raises(MarkerNotFoundError):
            timeline.remove_marker(early)

    def test_add_transition_replaces_existing(self, timeline):
        """One transition per clip boundary."""
        clip_id = _add(timeline)
        timeline.add_transition(clip_id, "fade", 1.0)
        second = timeline.add_transition(clip_id, "wipeLeft", 0.5)
        assert [t.id for t in timeline.transitions] == [second]

        timeline.update_transition(second, duration_seconds=2.0)
        assert timeline.transitions[0].duration_seconds == 2.0
        timeline.remove_transition(second)
        assert timeline.transitions == []

    def test_audio_track_edits_are_recorded(self, timeline):
        """Audio track add/update/remove are undoable."""
        audio_id = timeline.add_audio_track("https://example.com/m.mp3", "Music", volume=0.5)
        timeline.update_audio_track(audio_id, volume=0.2)
        assert timeline.audio_tracks[0].volume == 0.2
        with pytest.raises(TimelineError):
            timeline.update_audio_track(audio_id, color="red")
        timeline.undo()
        assert timeline.audio_tracks[0].volume == 0.5


class TestLegacyConversion:
    """Tests for the ordered clip list format."""

    def test_from_legacy_places_clips_sequentially(self):
        """Transitions pull the following clip earlier."""
        timeline = Timeline.from_legacy(
            ordered_clips=[
                {"id": "a", "url": "https://example.com/a.mp4"},
                {"id": "b", "url": "https://example.com/b.mp4"},
            ],
            clip_settings={
                "a": {"original_duration": 10.0},
                "b": {"original_duration": 8.0, "speed": 2.0},
            },
            clip_transitions=[{"after_clip_index": 0, "type": "fade", "duration_seconds": 1.0}],
            audio_tracks=[{"id": "m", "url": "https://example.com/m.mp3", "name": "Music"}],
        )

        clips = timeline.get_track("video-1").clips
        assert [c.start_time for c in clips] == [0.0, 9.0]
        assert clips[1].duration == pytest.approx(4.0)
        assert timeline.transitions[0].after_clip_id == "a"
        assert timeline.audio_tracks[0].id == "m"

    def test_to_legacy_round_trip(self):
        """to_legacy output feeds back into from_legacy."""
        timeline = Timeline()
        a = _add(timeline, start=0.0, duration=6.0, trim_start=1.0)
        _add(timeline, start=5.0, duration=4.0, volume=0.5)
        timeline.add_transition(a, "dissolve", 0.5)

        legacy = timeline.to_legacy()
        rebuilt = Timeline.from_legacy(**legacy)

        original = timeline.get_track("video-1").clips
        clips = rebuilt.get_track("video-1").clips
        assert [c.id for c in clips] == [c.id for c in original]
        assert clips[0].trim_start == 1.0
        assert clips[1].volume == 0.5
        assert legacy["clip_transitions"] == [
            {"after_clip_index": 0, "type": "dissolve", "duration_seconds": 0.5}
        ]
