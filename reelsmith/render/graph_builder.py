"""
Filter-graph builder for exports.

Maps ordered, probed clips plus enhancement and output settings to a
``FilterGraph``:

1. Per-clip normalize stages (trim, speed, scale+pad, resample)
2. Concat or sequential crossfade join
3. Global fades, watermark and text overlays on the video label
4. Background music / voice mixing on the audio label
5. Explicit ``[outv]`` / ``[outa]`` mappings

When nothing needs re-encoding the builder emits a stream-copy graph with
no filters at all. The builder is pure: it never touches the filesystem or
the encoder.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from reelsmith.config import get_settings
from reelsmith.exceptions import BuildError, ValidationError
from reelsmith.render.filter_graph import FilterGraph, FilterOp, format_number
from reelsmith.schemas.export import (
    ClipSpec,
    Enhancements,
    OutputSettings,
    TextOverlay,
    Watermark,
)
from reelsmith.services.asset_fetcher import is_image_url
from reelsmith.timeline.duration import adjusted_duration, crossfade_offsets

logger = logging.getLogger(__name__)

ASPECT_RATIO_SIZES: dict[str, tuple[int, int]] = {
    "16:9": (1920, 1080),
    "9:16": (1080, 1920),
    "1:1": (1080, 1080),
    "4:3": (1440, 1080),
}

RESOLUTION_SCALES: dict[str, float] = {
    "1080p": 1.0,
    "720p": 0.667,
    "480p": 0.444,
    "4k": 2.0,
}

# Frontend transition names -> ffmpeg xfade transitions
XFADE_TRANSITIONS: dict[str, str] = {
    "fade": "fade",
    "dissolve": "dissolve",
    "wipe": "wipeleft",
    "wipeLeft": "wipeleft",
    "wipeRight": "wiperight",
    "wipeUp": "wipeup",
    "wipeDown": "wipedown",
    "slideLeft": "slideleft",
    "slideRight": "slideright",
    "slideUp": "slideup",
    "slideDown": "slidedown",
    "circleOpen": "circleopen",
    "circleClose": "circleclose",
    "pixelize": "pixelize",
    "radial": "radial",
    "smoothleft": "smoothleft",
    "smoothright": "smoothright",
    "smoothup": "smoothup",
    "smoothdown": "smoothdown",
    "diagtl": "diagtl",
    "diagtr": "diagtr",
    "diagbl": "diagbl",
    "diagbr": "diagbr",
}

WATERMARK_WIDTH_RATIO = {"small": 0.10, "medium": 0.15, "large": 0.25}
WATERMARK_PADDING = 20
TEXT_MARGIN_RATIO = 0.1
MIN_SILENCE_DURATION = 0.1
LOUDNORM = {"I": -16, "TP": -1.5, "LRA": 11}


def map_transition_type(transition_type: str) -> str:
    return XFADE_TRANSITIONS.get(transition_type, "fade")


def atempo_chain(factor: float) -> list[FilterOp]:
    """Tempo stages for an audio speed factor.

    ``atempo`` is only well-defined on [0.5, 2.0], so larger factors are split
    into ``atempo=2.0`` followed by the remainder (3.0 -> 2.0, 1.5) and
    smaller ones into ``atempo=0.5`` stages.
    """
    if factor == 1.0:
        return []
    stages: list[FilterOp] = []
    remaining = factor
    while remaining > 2.0:
        stages.append(FilterOp("atempo", [2.0]))
        remaining /= 2.0
    while remaining < 0.5:
        stages.append(FilterOp("atempo", [0.5]))
        remaining /= 0.5
    stages.append(FilterOp("atempo", [remaining]))
    return stages


def overlay_position(overlay: TextOverlay) -> tuple[str, str]:
    """``overlay`` x/y expressions for a text overlay."""
    margin = format_number(TEXT_MARGIN_RATIO)
    if overlay.position == "top":
        return "(W-w)/2", f"H*{margin}"
    if overlay.position == "center":
        return "(W-w)/2", "(H-h)/2"
    if overlay.position == "bottom":
        return "(W-w)/2", f"H-h-H*{margin}"
    x = format_number(overlay.x_percent / 100)
    y = format_number(overlay.y_percent / 100)
    return f"W*{x}-w/2", f"H*{y}-h/2"


def overlay_window(overlay: TextOverlay, total_duration: float) -> tuple[float, float]:
    """Absolute enable window (seconds of the exported program)."""
    shown = min(overlay.display_seconds, total_duration)
    if overlay.timing == "intro":
        return 0.0, shown
    if overlay.timing == "outro":
        return max(0.0, total_duration - shown), total_duration
    return 0.0, total_duration


def watermark_position(watermark: Watermark) -> tuple[str, str]:
    pad = WATERMARK_PADDING
    return {
        "top-left": (str(pad), str(pad)),
        "top-right": (f"W-w-{pad}", str(pad)),
        "bottom-left": (str(pad), f"H-h-{pad}"),
        "bottom-right": (f"W-w-{pad}", f"H-h-{pad}"),
        "center": ("(W-w)/2", "(H-h)/2"),
    }[watermark.position]


def _even(value: float) -> int:
    return max(2, int(round(value / 2)) * 2)


def target_size(enhancements: Enhancements, output: OutputSettings) -> tuple[int, int]:
    """Output frame size from aspect ratio and resolution settings."""
    settings = get_settings()
    if output.resolution and "x" in output.resolution:
        width, height = (int(v) for v in output.resolution.split("x"))
        return _even(width), _even(height)

    if enhancements.aspect_ratio:
        width, height = ASPECT_RATIO_SIZES[enhancements.aspect_ratio]
    else:
        width, height = settings.render_output_width, settings.render_output_height

    scale = RESOLUTION_SCALES.get(output.resolution or "1080p", 1.0)
    return _even(width * scale), _even(height * scale)


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass
class ResolvedClip:
    """A downloaded, probed clip with its export settings applied."""

    index: int
    local_path: str
    duration: float  # probed (or explicit) source duration in seconds
    explicit_duration: Optional[float] = None  # as given in the job description
    has_audio: bool = True
    is_image: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    trim_start: float = 0.0
    trim_end: Optional[float] = None
    speed: float = 1.0
    volume: float = 1.0
    muted: bool = False
    display_duration: Optional[float] = None
    fade_in: float = 0.0
    fade_out: float = 0.0

    @classmethod
    def from_spec(
        cls,
        spec: ClipSpec,
        index: int,
        local_path: str,
        media_info: dict,
        enhancements: Enhancements,
    ) -> "ResolvedClip":
        """Combine a clip description with its probe result.

        Raises:
            ValidationError: the trim range does not fit the source.
        """
        is_image = spec.type == "image" or (spec.type is None and is_image_url(spec.source_url))
        probed_s = (media_info.get("duration_ms") or 0) / 1000
        speed = spec.speed if spec.speed is not None else enhancements.speed_for(index)
        clip = cls(
            index=index,
            local_path=local_path,
            duration=spec.duration or probed_s,
            explicit_duration=spec.duration,
            has_audio=bool(media_info.get("has_audio")) and not is_image,
            is_image=is_image,
            width=media_info.get("width"),
            height=media_info.get("height"),
            video_codec=media_info.get("video_codec"),
            trim_start=spec.trim_start or 0.0,
            trim_end=spec.trim_end,
            speed=speed,
            volume=spec.volume,
            muted=spec.muted,
            display_duration=spec.display_duration,
            fade_in=spec.fade_in_seconds,
            fade_out=spec.fade_out_seconds,
        )
        if not is_image:
            clip.check_trim_range()
        return clip

    def check_trim_range(self) -> None:
        """Require a non-empty trim range inside the source (trim end is clamped)."""
        if self.duration <= 0:
            raise ValidationError(f"Clip {self.index} has no playable duration")
        if self.trim_start >= self.source_end:
            raise ValidationError(
                f"Clip {self.index}: trimStart {self.trim_start:g}s is past the end of the {self.duration:g}s source"
            )

    @property
    def is_trimmed(self) -> bool:
        if self.is_image:
            return False
        return self.trim_start > 0 or (self.trim_end is not None and self.trim_end < self.duration)

    @property
    def source_end(self) -> float:
        if self.trim_end is None:
            return self.duration
        return min(self.trim_end, self.duration)

    @property
    def adjusted_duration(self) -> float:
        if self.is_image:
            return (
                self.display_duration
                or self.explicit_duration
                or get_settings().image_display_duration_s
            )
        return adjusted_duration(self.trim_start, self.source_end, self.speed)


@dataclass
class ResolvedAssets:
    """Local paths for the non-clip inputs of an export."""

    music_path: Optional[str] = None
    voice_path: Optional[str] = None
    watermark_path: Optional[str] = None
    text_image_paths: list[str] = field(default_factory=list)


# ============================================================================
# Builder
# ============================================================================


class FilterGraphBuilder:
    """Builds export graphs for a fixed sample rate and frame rate."""

    def __init__(self, sample_rate: Optional[int] = None, fps: Optional[int] = None):
        settings = get_settings()
        self.sample_rate = sample_rate or settings.render_audio_sample_rate
        self.fps = fps or settings.render_fps

    # ------------------------------------------------------------------
    # Fast path
    # ------------------------------------------------------------------

    def reencode_reasons(
        self,
        clips: list[ResolvedClip],
        enhancements: Enhancements,
        output: OutputSettings,
    ) -> list[str]:
        """Why the stream-copy path cannot be used (empty if it can)."""
        reasons = []
        if len(clips) < 2:
            reasons.append("single clip")
        if enhancements.crossfade_enabled():
            reasons.append("transitions")
        if enhancements.background_music or enhancements.voice:
            reasons.append("audio mixing")
        if enhancements.text_overlays:
            reasons.append("text overlays")
        if enhancements.watermark:
            reasons.append("watermark")
        if enhancements.fade_in or enhancements.fade_out:
            reasons.append("global fades")
        if enhancements.aspect_ratio or output.resolution:
            reasons.append("resize")
        if any(c.speed != 1.0 for c in clips):
            reasons.append("speed change")
        if any(c.is_image for c in clips):
            reasons.append("still images")
        if any(c.is_trimmed for c in clips):
            reasons.append("trims")
        if any(c.volume != 1.0 or c.muted or c.fade_in or c.fade_out for c in clips):
            reasons.append("per-clip audio/fades")
        signatures = {(c.video_codec, c.width, c.height, c.has_audio) for c in clips}
        if len(signatures) > 1:
            reasons.append("mismatched sources")
        return reasons

    def can_stream_copy(
        self,
        clips: list[ResolvedClip],
        enhancements: Enhancements,
        output: OutputSettings,
    ) -> bool:
        return not self.reencode_reasons(clips, enhancements, output)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def build(
        self,
        clips: list[ResolvedClip],
        enhancements: Enhancements,
        output: OutputSettings,
        assets: Optional[ResolvedAssets] = None,
    ) -> FilterGraph:
        """Build the export graph; raises ``BuildError`` for unsupported input."""
        if not clips:
            raise BuildError("No clips to export")
        assets = assets or ResolvedAssets()

        reasons = self.reencode_reasons(clips, enhancements, output)
        if not reasons:
            graph = FilterGraph(stream_copy=True)
            graph.concat_sources = [c.local_path for c in clips]
            graph.total_duration = sum(c.adjusted_duration for c in clips)
            logger.info(f"[GRAPH] Stream-copy path for {len(clips)} clips")
            return graph

        width, height = target_size(enhancements, output)
        graph = FilterGraph(width=width, height=height)
        logger.info(f"[GRAPH] Filter path ({', '.join(reasons)}) at {width}x{height}")

        for clip in clips:
            self._add_clip_stages(graph, clip)

        video_label, audio_label, total = self._join(graph, clips, enhancements)
        graph.total_duration = total

        video_label = self._add_global_fades(graph, video_label, enhancements, total)
        video_label = self._add_watermark(graph, video_label, enhancements, assets, width)
        video_label = self._add_text_overlays(graph, video_label, enhancements, assets, total)
        audio_label = self._add_audio_mix(graph, audio_label, enhancements, assets, total)

        graph.add("output_video", [video_label], [FilterOp("null")], ["outv"])
        graph.add("output_audio", [audio_label], [FilterOp("anull")], ["outa"])
        graph.video_output = "outv"
        graph.audio_output = "outa"

        logger.info(f"[GRAPH] Built {len(graph.nodes)} nodes, {len(graph.inputs)} inputs, total={total:.3f}s")
        return graph

    # ------------------------------------------------------------------
    # Per-clip stages
    # ------------------------------------------------------------------

    def _resample_ops(self) -> list[FilterOp]:
        return [
            FilterOp("aresample", [self.sample_rate]),
            FilterOp(
                "aformat",
                kwargs={
                    "sample_fmts": "fltp",
                    "sample_rates": self.sample_rate,
                    "channel_layouts": "stereo",
                },
            ),
        ]

    def _silence(self, graph: FilterGraph, label: str, duration: float, kind: str = "silence") -> None:
        graph.add(
            kind,
            [],
            [
                FilterOp(
                    "anullsrc",
                    kwargs={
                        "channel_layout": "stereo",
                        "sample_rate": self.sample_rate,
                        "duration": max(duration, MIN_SILENCE_DURATION),
                    },
                )
            ],
            [label],
        )

    def _add_clip_stages(self, graph: FilterGraph, clip: ResolvedClip) -> None:
        adjusted = clip.adjusted_duration
        options = ["-loop", "1", "-t", format_number(adjusted)] if clip.is_image else []
        idx = graph.add_input(clip.local_path, "clip", options, index=clip.index)

        video_ops: list[FilterOp] = []
        if clip.is_trimmed:
            trim_kwargs = {"start": clip.trim_start}
            if clip.trim_end is not None:
                trim_kwargs["end"] = clip.source_end
            video_ops.append(FilterOp("trim", kwargs=trim_kwargs))
            video_ops.append(FilterOp("setpts", ["PTS-STARTPTS"]))
        if clip.speed != 1.0 and not clip.is_image:
            video_ops.append(FilterOp("setpts", [f"{format_number(1.0 / clip.speed)}*PTS"]))
        video_ops += [
            FilterOp("scale", [graph.width, graph.height], {"force_original_aspect_ratio": "decrease"}),
            FilterOp("pad", [graph.width, graph.height, "(ow-iw)/2", "(oh-ih)/2", "black"]),
            FilterOp("setsar", [1]),
            FilterOp("fps", [self.fps]),
            FilterOp("format", ["yuv420p"]),
        ]
        if clip.fade_in > 0:
            video_ops.append(FilterOp("fade", kwargs={"t": "in", "st": 0, "d": min(clip.fade_in, adjusted / 2)}))
        if clip.fade_out > 0:
            fade_out = min(clip.fade_out, adjusted / 2)
            video_ops.append(
                FilterOp("fade", kwargs={"t": "out", "st": max(0.0, adjusted - fade_out), "d": fade_out})
            )
        graph.add("normalize_video", [f"{idx}:v"], video_ops, [f"v{clip.index}"])

        if not clip.has_audio or clip.muted or clip.is_image:
            # Keep one audio stream per clip so joins pair 1:1
            self._silence(graph, f"a{clip.index}", adjusted)
            return

        audio_ops: list[FilterOp] = []
        if clip.is_trimmed:
            atrim_kwargs = {"start": clip.trim_start}
            if clip.trim_end is not None:
                atrim_kwargs["end"] = clip.source_end
            audio_ops.append(FilterOp("atrim", kwargs=atrim_kwargs))
            audio_ops.append(FilterOp("asetpts", ["PTS-STARTPTS"]))
        audio_ops += atempo_chain(clip.speed)
        if clip.volume != 1.0:
            audio_ops.append(FilterOp("volume", [clip.volume]))
        if clip.fade_in > 0:
            audio_ops.append(FilterOp("afade", kwargs={"t": "in", "st": 0, "d": min(clip.fade_in, adjusted / 2)}))
        if clip.fade_out > 0:
            fade_out = min(clip.fade_out, adjusted / 2)
            audio_ops.append(
                FilterOp("afade", kwargs={"t": "out", "st": max(0.0, adjusted - fade_out), "d": fade_out})
            )
        audio_ops += self._resample_ops()
        graph.add("normalize_audio", [f"{idx}:a"], audio_ops, [f"a{clip.index}"])

    # ------------------------------------------------------------------
    # Join
    # ------------------------------------------------------------------

    def resolve_transitions(
        self,
        clips: list[ResolvedClip],
        enhancements: Enhancements,
    ) -> list[Optional[tuple[str, float]]]:
        """(xfade type, clamped duration) for every clip boundary.

        In ``perClip`` mode boundaries without an entry are hard cuts and
        resolve to ``None``.
        """
        boundaries = len(clips) - 1
        settings = enhancements.transitions
        cuts_by_default = settings.mode == "perClip"
        for entry in settings.per_clip:
            if entry.after_clip_index >= boundaries:
                raise BuildError(
                    f"Unsupported configuration: transition after clip {entry.after_clip_index} "
                    f"but only {boundaries} clip boundaries exist"
                )

        resolved = []
        for i in range(boundaries):
            entry = next((t for t in settings.per_clip if t.after_clip_index == i), None)
            if entry is None and cuts_by_default:
                resolved.append(None)
                continue
            transition_type = entry.type if entry else settings.type
            requested = entry.duration_seconds if entry else settings.duration_seconds
            left = clips[i].adjusted_duration
            right = clips[i + 1].adjusted_duration
            if left < requested and right < requested:
                raise BuildError(
                    f"Unsupported configuration: {requested}s transition after clip {i} "
                    f"is longer than both adjacent clips ({left:.3f}s, {right:.3f}s)"
                )
            resolved.append((map_transition_type(transition_type), min(requested, left, right)))
        return resolved

    def _join(
        self,
        graph: FilterGraph,
        clips: list[ResolvedClip],
        enhancements: Enhancements,
    ) -> tuple[str, str, float]:
        adjusted = [c.adjusted_duration for c in clips]

        if len(clips) == 1:
            graph.add("passthrough_video", ["v0"], [FilterOp("null")], ["vjoined"])
            graph.add("passthrough_audio", ["a0"], [FilterOp("anull")], ["ajoined"])
            return "vjoined", "ajoined", adjusted[0]

        if enhancements.crossfade_enabled():
            transitions = self.resolve_transitions(clips, enhancements)
            offsets = crossfade_offsets(adjusted, [t[1] if t else 0.0 for t in transitions])
            last = len(transitions) - 1
            video_label, audio_label = "v0", "a0"
            for i, (transition, offset) in enumerate(zip(transitions, offsets)):
                if transition is None:
                    graph.add(
                        "cut_video",
                        [video_label, f"v{i + 1}"],
                        [FilterOp("concat", kwargs={"n": 2, "v": 1, "a": 0})],
                        [f"xv{i}"],
                    )
                    graph.add(
                        "cut_audio",
                        [audio_label, f"a{i + 1}"],
                        [FilterOp("concat", kwargs={"n": 2, "v": 0, "a": 1})],
                        [f"xa{i}"],
                    )
                else:
                    xfade_type, duration = transition
                    video_ops = [
                        FilterOp("xfade", kwargs={"transition": xfade_type, "duration": duration, "offset": offset})
                    ]
                    audio_ops = [FilterOp("acrossfade", kwargs={"d": duration, "c1": "tri", "c2": "tri"})]
                    if i < last:
                        # Offsets count every clip in full, so the running join
                        # is extended by the overlap before the next transition
                        video_ops.append(FilterOp("tpad", kwargs={"stop_mode": "clone", "stop_duration": duration}))
                        audio_ops.append(FilterOp("apad", kwargs={"pad_dur": duration}))
                    graph.add("xfade", [video_label, f"v{i + 1}"], video_ops, [f"xv{i}"])
                    graph.add("acrossfade", [audio_label, f"a{i + 1}"], audio_ops, [f"xa{i}"])
                video_label, audio_label = f"xv{i}", f"xa{i}"
            # Only a transition at the last boundary shortens the program
            total = offsets[-1] + adjusted[-1]
            return video_label, audio_label, total

        n = len(clips)
        graph.add(
            "concat_video",
            [f"v{i}" for i in range(n)],
            [FilterOp("concat", kwargs={"n": n, "v": 1, "a": 0})],
            ["vjoined"],
        )
        graph.add(
            "concat_audio",
            [f"a{i}" for i in range(n)],
            [FilterOp("concat", kwargs={"n": n, "v": 0, "a": 1})],
            ["ajoined"],
        )
        return "vjoined", "ajoined", sum(adjusted)

    # ------------------------------------------------------------------
    # Video post-processing
    # ------------------------------------------------------------------

    def _add_global_fades(
        self,
        graph: FilterGraph,
        video_label: str,
        enhancements: Enhancements,
        total: float,
    ) -> str:
        if not (enhancements.fade_in or enhancements.fade_out):
            return video_label
        duration = min(enhancements.fade_duration, total)
        ops = []
        if enhancements.fade_in:
            ops.append(FilterOp("fade", kwargs={"t": "in", "st": 0, "d": duration}))
        if enhancements.fade_out:
            ops.append(FilterOp("fade", kwargs={"t": "out", "st": max(0.0, total - duration), "d": duration}))
        graph.add("global_fade", [video_label], ops, ["vfaded"])
        return "vfaded"

    def _add_watermark(
        self,
        graph: FilterGraph,
        video_label: str,
        enhancements: Enhancements,
        assets: ResolvedAssets,
        width: int,
    ) -> str:
        watermark = enhancements.watermark
        if watermark is None or not assets.watermark_path:
            return video_label
        idx = graph.add_input(assets.watermark_path, "watermark")
        wm_width = _even(width * WATERMARK_WIDTH_RATIO[watermark.size])
        graph.add(
            "watermark_scale",
            [f"{idx}:v"],
            [
                FilterOp("scale", [wm_width, -1]),
                FilterOp("format", ["rgba"]),
                FilterOp("colorchannelmixer", kwargs={"aa": watermark.opacity}),
            ],
            ["wm"],
        )
        x, y = watermark_position(watermark)
        graph.add("watermark", [video_label, "wm"], [FilterOp("overlay", [x, y])], ["vwm"])
        return "vwm"

    def _add_text_overlays(
        self,
        graph: FilterGraph,
        video_label: str,
        enhancements: Enhancements,
        assets: ResolvedAssets,
        total: float,
    ) -> str:
        overlays = enhancements.text_overlays
        if not overlays:
            return video_label
        if len(assets.text_image_paths) < len(overlays):
            raise BuildError(
                f"{len(overlays)} text overlays but only {len(assets.text_image_paths)} rendered images"
            )

        for j, overlay in enumerate(overlays):
            idx = graph.add_input(assets.text_image_paths[j], "text", index=j)
            x, y = overlay_position(overlay)
            start, end = overlay_window(overlay, total)
            enable = f"between(t,{format_number(start)},{format_number(end)})"
            graph.add(
                "text_overlay",
                [video_label, f"{idx}:v"],
                [FilterOp("overlay", kwargs={"x": x, "y": y, "enable": enable})],
                [f"vtext{j}"],
            )
            video_label = f"vtext{j}"
        return video_label

    # ------------------------------------------------------------------
    # Audio mixing
    # ------------------------------------------------------------------

    def _add_audio_mix(
        self,
        graph: FilterGraph,
        audio_label: str,
        enhancements: Enhancements,
        assets: ResolvedAssets,
        total: float,
    ) -> str:
        music = enhancements.background_music if assets.music_path else None
        voice = enhancements.voice if assets.voice_path else None
        if music is None and voice is None:
            return audio_label

        sources = [audio_label]

        if music is not None:
            idx = graph.add_input(assets.music_path, "music")
            ops = [FilterOp("volume", [music.volume])]
            if music.fade_in_seconds > 0:
                ops.append(FilterOp("afade", kwargs={"t": "in", "st": 0, "d": music.fade_in_seconds}))
            if music.fade_out_seconds > 0:
                fade_start = max(0.0, total - music.fade_out_seconds)
                ops.append(FilterOp("afade", kwargs={"t": "out", "st": fade_start, "d": music.fade_out_seconds}))
            ops += self._resample_ops()
            graph.add("music", [f"{idx}:a"], ops, ["music"])
            sources.append("music")

        if voice is not None:
            idx = graph.add_input(assets.voice_path, "voice")
            ops = self._resample_ops() + [FilterOp("volume", [voice.volume])]
            if voice.start_at_seconds > 0:
                delay_ms = int(round(voice.start_at_seconds * 1000))
                ops.append(FilterOp("adelay", [f"{delay_ms}|{delay_ms}"]))
            graph.add("voice", [f"{idx}:a"], ops, ["voice"])
            sources.append("voice")

        mix_duration = "longest" if music is not None and music.extend_past_video else "first"
        graph.add(
            "audio_mix",
            sources,
            [FilterOp("amix", kwargs={"inputs": len(sources), "duration": mix_duration, "normalize": 0})],
            ["amixed"],
        )

        if music is not None and voice is not None:
            graph.add("loudnorm", ["amixed"], [FilterOp("loudnorm", kwargs=dict(LOUDNORM))], ["anorm"])
            return "anorm"
        return "amixed"
