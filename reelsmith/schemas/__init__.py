from reelsmith.schemas.export import (
    BackgroundMusic,
    ClipSpec,
    Enhancements,
    ExportAccepted,
    ExportRequest,
    ExportStatusResponse,
    OutputSettings,
    TextOverlay,
    TransitionSettings,
    VoiceTrack,
    Watermark,
)

__all__ = [
    "BackgroundMusic",
    "ClipSpec",
    "Enhancements",
    "ExportAccepted",
    "ExportRequest",
    "ExportStatusResponse",
    "OutputSettings",
    "TextOverlay",
    "TransitionSettings",
    "VoiceTrack",
    "Watermark",
]
