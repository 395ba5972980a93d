"""Export job description and status schemas.

Field names are snake_case in Python; JSON bodies use camelCase
(``sourceUrl``, ``backgroundMusic``). Both spellings are accepted on input.
"""

import re
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from reelsmith.timeline.model import TimelineSnapshot

Quality = Literal["high", "medium", "low"]
AspectRatio = Literal["16:9", "9:16", "1:1", "4:3"]

# quality tier -> (crf, x264 preset)
QUALITY_PRESETS: dict[str, tuple[int, str]] = {
    "high": (18, "slow"),
    "medium": (23, "medium"),
    "low": (28, "fast"),
}

MAX_CLIPS = 20
MAX_TEXT_OVERLAYS = 5

_RESOLUTION_RE = re.compile(r"^(480p|720p|1080p|4k|\d{2,5}x\d{2,5})$")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Clips
# =============================================================================


class ClipSpec(CamelModel):
    """One source clip in export order."""

    source_url: str = Field(..., min_length=1)
    duration: float | None = Field(None, gt=0)  # explicit duration overrides probing
    type: Literal["video", "image"] | None = None  # inferred from URL when omitted
    trim_start: float | None = Field(None, ge=0)
    trim_end: float | None = Field(None, gt=0)
    speed: float | None = Field(None, ge=0.25, le=4.0)
    volume: float = Field(1.0, ge=0.0, le=2.0)
    muted: bool = False
    display_duration: float | None = Field(None, gt=0)
    fade_in_seconds: float = Field(0.0, ge=0.0, le=10.0)
    fade_out_seconds: float = Field(0.0, ge=0.0, le=10.0)

    @model_validator(mode="after")
    def check_trim_range(self) -> "ClipSpec":
        if self.trim_start is not None and self.trim_end is not None:
            if self.trim_start >= self.trim_end:
                raise ValueError("trimStart must be less than trimEnd")
        return self


# =============================================================================
# Enhancements
# =============================================================================


class TransitionSpec(CamelModel):
    after_clip_index: int = Field(..., ge=0)
    type: str = "fade"
    duration_seconds: float = Field(1.0, gt=0, le=3.0)


class TransitionSettings(CamelModel):
    # crossfade: every boundary, perClip: only listed boundaries (others cut)
    mode: Literal["none", "crossfade", "perClip"] = "none"
    type: str = "fade"
    duration_seconds: float = Field(1.0, ge=0.5, le=3.0)
    per_clip: list[TransitionSpec] = Field(default_factory=list)


class BackgroundMusic(CamelModel):
    audio_url: str = Field(..., min_length=1)
    volume: float = Field(0.3, ge=0.0, le=2.0)
    fade_in_seconds: float = Field(0.0, ge=0.0, le=10.0)
    fade_out_seconds: float = Field(0.0, ge=0.0, le=10.0)
    # amix duration=longest instead of first
    extend_past_video: bool = False


class VoiceTrack(CamelModel):
    audio_url: str = Field(..., min_length=1)
    volume: float = Field(1.0, ge=0.0, le=2.0)
    start_at_seconds: float = Field(0.0, ge=0.0)


class TextOverlay(CamelModel):
    text: str = Field(..., min_length=1, max_length=500)
    position: Literal["top", "center", "bottom", "custom"] = "bottom"
    x_percent: float | None = Field(None, ge=0, le=100)
    y_percent: float | None = Field(None, ge=0, le=100)
    timing: Literal["intro", "outro", "all"] = "all"
    display_seconds: float = Field(3.0, gt=0)
    font_size: int = Field(48, ge=8, le=300)
    color_hex: str = "#FFFFFF"

    @field_validator("color_hex")
    @classmethod
    def validate_color_hex(cls, v: str) -> str:
        if re.match(r"^#[0-9A-Fa-f]{6}$", v):
            return v.upper()
        raise ValueError('color_hex must be a HEX color like "#FFFFFF"')

    @model_validator(mode="after")
    def check_custom_position(self) -> "TextOverlay":
        if self.position == "custom" and (self.x_percent is None or self.y_percent is None):
            raise ValueError("custom position requires xPercent and yPercent")
        return self


class ClipSpeed(CamelModel):
    clip_index: int = Field(..., ge=0)
    factor: float = Field(..., ge=0.25, le=4.0)


class SpeedSettings(CamelModel):
    mode: Literal["none", "global", "perClip"] = "none"
    factor: float = Field(1.0, ge=0.25, le=4.0)
    per_clip: list[ClipSpeed] = Field(default_factory=list)


class Watermark(CamelModel):
    image_url: str = Field(..., min_length=1)
    position: Literal["top-left", "top-right", "bottom-left", "bottom-right", "center"] = "bottom-right"
    size: Literal["small", "medium", "large"] = "medium"
    opacity: float = Field(0.8, ge=0.0, le=1.0)


class Enhancements(CamelModel):
    aspect_ratio: AspectRatio | None = None
    fade_in: bool = False
    fade_out: bool = False
    fade_duration: float = Field(1.0, gt=0, le=10.0)
    transitions: TransitionSettings = Field(default_factory=TransitionSettings)
    background_music: BackgroundMusic | None = None
    voice: VoiceTrack | None = None
    text_overlays: list[TextOverlay] = Field(default_factory=list, max_length=MAX_TEXT_OVERLAYS)
    speed: SpeedSettings = Field(default_factory=SpeedSettings)
    watermark: Watermark | None = None

    def speed_for(self, index: int) -> float:
        """Speed factor the enhancement settings assign to clip ``index``."""
        if self.speed.mode == "global":
            return self.speed.factor
        if self.speed.mode == "perClip":
            for entry in self.speed.per_clip:
                if entry.clip_index == index:
                    return entry.factor
        return 1.0

    def crossfade_enabled(self) -> bool:
        if self.transitions.mode == "perClip":
            return bool(self.transitions.per_clip)
        return self.transitions.mode == "crossfade"


# =============================================================================
# Output / request
# =============================================================================


class OutputSettings(CamelModel):
    resolution: str | None = None  # 480p, 720p, 1080p, 4k or WxH
    quality: Quality = "high"
    format: Literal["mp4", "mov"] = "mp4"

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip().lower()
        if not _RESOLUTION_RE.match(v):
            raise ValueError("resolution must be 480p, 720p, 1080p, 4k or WIDTHxHEIGHT")
        return v

    def crf_preset(self) -> tuple[int, str]:
        return QUALITY_PRESETS[self.quality]


class ExportRequest(CamelModel):
    clips: list[ClipSpec] = Field(..., min_length=1, max_length=MAX_CLIPS)
    enhancements: Enhancements = Field(default_factory=Enhancements)
    output: OutputSettings = Field(default_factory=OutputSettings)
    callback_url: str | None = None

    @field_validator("callback_url")
    @classmethod
    def validate_callback_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("callbackUrl must be an http(s) URL")
        return v

    @classmethod
    def from_timeline(
        cls,
        snapshot: "TimelineSnapshot",
        *,
        track_id: str = "video-1",
        output: OutputSettings | None = None,
        callback_url: str | None = None,
    ) -> "ExportRequest":
        """Describe an export of one visible track of a timeline snapshot.

        Timeline transitions become per-boundary crossfades (boundaries
        without one stay hard cuts), the first music
        audio track becomes background music and the first voice track the
        voice-over.
        """
        track = snapshot.get_track(track_id)
        if track is None or not track.visible:
            raise ValueError(f"Track {track_id} is missing or hidden")
        clips = sorted(track.clips, key=lambda c: c.start_time)

        specs = [
            ClipSpec(
                source_url=clip.source_url,
                duration=clip.original_duration,
                type=clip.type,
                trim_start=clip.trim_start if clip.type == "video" else None,
                trim_end=clip.trim_end if clip.type == "video" else None,
                speed=clip.speed if clip.type == "video" else None,
                volume=clip.volume,
                muted=clip.muted,
                display_duration=clip.duration if clip.type == "image" else None,
            )
            for clip in clips
        ]

        index_of = {clip.id: i for i, clip in enumerate(clips)}
        per_clip = [
            TransitionSpec(
                after_clip_index=index_of[t.after_clip_id],
                type=t.type,
                duration_seconds=t.duration_seconds,
            )
            for t in snapshot.transitions
            if t.after_clip_id in index_of and index_of[t.after_clip_id] < len(clips) - 1
        ]
        transitions = TransitionSettings(
            mode="perClip" if per_clip else "none",
            per_clip=per_clip,
        )

        music = next((a for a in snapshot.audio_tracks if a.type == "music"), None)
        voice = next((a for a in snapshot.audio_tracks if a.type == "voice"), None)
        enhancements = Enhancements(
            transitions=transitions,
            background_music=BackgroundMusic(audio_url=music.url, volume=music.volume) if music else None,
            voice=VoiceTrack(
                audio_url=voice.url,
                volume=voice.volume,
                start_at_seconds=voice.start_time,
            )
            if voice
            else None,
        )
        return cls(
            clips=specs,
            enhancements=enhancements,
            output=output or OutputSettings(),
            callback_url=callback_url,
        )


class ExportAccepted(CamelModel):
    job_id: str
    status: str = "processing"


class ExportStatusResponse(CamelModel):
    job_id: str
    status: str
    stage: str
    progress: int
    download_url: str | None = None
    error: str | None = None
    error_type: str | None = None
    created_at: str | None = None
    completed_at: str | None = None
