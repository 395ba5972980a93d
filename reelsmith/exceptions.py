"""Custom exceptions for the reelsmith export service.

Every pipeline failure maps to one of these classes. The job engine stores
``error_type`` and ``message`` on the failed job so the status endpoint can
expose them verbatim.
"""

from typing import Any


class ReelsmithError(Exception):
    """Base exception for all reelsmith application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"
    error_type: str = "InternalError"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error responses."""
        return {
            "code": self.code,
            "type": self.error_type,
            "message": self.message,
        }


# =============================================================================
# Export Pipeline Errors
# =============================================================================


class ValidationError(ReelsmithError):
    """Malformed job description."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid job description"
    error_type = "ValidationError"


class FetchError(ReelsmithError):
    """Download, redirect or timeout failure for a remote asset."""

    code = "FETCH_FAILED"
    status_code = 502
    message = "Failed to download asset"
    error_type = "FetchError"

    def __init__(
        self,
        message: str | None = None,
        *,
        url: str | None = None,
        index: int | None = None,
        label: str = "clip",
    ):
        self.url = url
        self.index = index
        self.label = label
        if message and index is not None:
            message = f"Failed to download {label} {index}: {message}"
        elif message:
            message = f"Failed to download {label}: {message}"
        super().__init__(message)


class ProbeError(ReelsmithError):
    """Unreadable or corrupt media asset."""

    code = "PROBE_FAILED"
    status_code = 422
    message = "Failed to read media file"
    error_type = "ProbeError"

    def __init__(self, message: str | None = None, *, index: int | None = None):
        self.index = index
        if message and index is not None:
            message = f"Failed to probe clip {index}: {message}"
        super().__init__(message)


class BuildError(ReelsmithError):
    """Unsupported enhancement combination."""

    code = "UNSUPPORTED_CONFIGURATION"
    status_code = 422
    message = "Unsupported configuration"
    error_type = "BuildError"


class EncodeError(ReelsmithError):
    """Encoder exited with a nonzero status."""

    code = "ENCODE_FAILED"
    status_code = 500
    message = "Encoding failed"
    error_type = "EncodeError"

    def __init__(
        self,
        message: str | None = None,
        *,
        exit_code: int | None = None,
        detail: str | None = None,
    ):
        self.exit_code = exit_code
        self.detail = detail
        super().__init__(message or detail)


class EncodeTimeoutError(ReelsmithError):
    """Encoder exceeded the wall-clock limit and was terminated."""

    code = "ENCODE_TIMEOUT"
    status_code = 504
    message = "Encoding timed out"
    error_type = "TimeoutError"

    def __init__(self, timeout_s: float | None = None):
        self.timeout_s = timeout_s
        message = f"Encoding timed out after {timeout_s:g}s" if timeout_s else None
        super().__init__(message)


class UploadError(ReelsmithError):
    """Object storage write failure."""

    code = "UPLOAD_FAILED"
    status_code = 502
    message = "Failed to upload result"
    error_type = "UploadError"


# =============================================================================
# Resource Errors
# =============================================================================


class JobNotFoundError(ReelsmithError):
    """Export job not found."""

    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"
    error_type = "NotFound"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


# =============================================================================
# Timeline Editing Errors
# =============================================================================


class TimelineError(ReelsmithError):
    """Base class for rejected timeline edits."""

    code = "TIMELINE_ERROR"
    status_code = 400
    message = "Timeline edit rejected"
    error_type = "TimelineError"


class ClipNotFoundError(TimelineError):
    """Clip not found."""

    code = "CLIP_NOT_FOUND"
    status_code = 404
    message = "Clip not found"

    def __init__(self, clip_id: str | None = None):
        message = f"Clip not found: {clip_id}" if clip_id else self.message
        super().__init__(message)


class TrackNotFoundError(TimelineError):
    """Track not found."""

    code = "TRACK_NOT_FOUND"
    status_code = 404
    message = "Track not found"

    def __init__(self, track_id: str | None = None):
        message = f"Track not found: {track_id}" if track_id else self.message
        super().__init__(message)


class TrackLockedError(TimelineError):
    """Edit targets a locked track."""

    code = "TRACK_LOCKED"
    status_code = 409
    message = "Track is locked"

    def __init__(self, track_id: str | None = None):
        message = f"Track is locked: {track_id}" if track_id else self.message
        super().__init__(message)


class MarkerNotFoundError(TimelineError):
    """Marker not found."""

    code = "MARKER_NOT_FOUND"
    status_code = 404
    message = "Marker not found"

    def __init__(self, marker_id: str | None = None):
        message = f"Marker not found: {marker_id}" if marker_id else self.message
        super().__init__(message)


class AudioTrackNotFoundError(TimelineError):
    """Audio track not found."""

    code = "AUDIO_TRACK_NOT_FOUND"
    status_code = 404
    message = "Audio track not found"

    def __init__(self, track_id: str | None = None):
        message = f"Audio track not found: {track_id}" if track_id else self.message
        super().__init__(message)
