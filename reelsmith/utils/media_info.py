"""Media file information utilities using FFprobe."""

import json
import logging
import subprocess

from reelsmith.config import get_settings
from reelsmith.exceptions import ProbeError

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_S = 30


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=PROBE_TIMEOUT_S)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise RuntimeError(f"ffprobe could not run: {e}")
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def parse_probe_output(data: dict) -> dict:
    """Flatten ffprobe ``-show_format -show_streams`` JSON."""
    result = {
        "duration_ms": None,
        "width": None,
        "height": None,
        "fps": None,
        "video_codec": None,
        "audio_codec": None,
        "sample_rate": None,
        "channels": None,
        "has_video": False,
        "has_audio": False,
    }

    format_info = data.get("format", {})
    if "duration" in format_info:
        try:
            result["duration_ms"] = int(float(format_info["duration"]) * 1000)
        except ValueError:
            pass

    # First stream of each type wins
    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not result["has_video"]:
            result["has_video"] = True
            result["width"] = stream.get("width")
            result["height"] = stream.get("height")
            result["video_codec"] = stream.get("codec_name")

            r_frame_rate = stream.get("r_frame_rate", "0/1")
            if "/" in r_frame_rate:
                num, den = r_frame_rate.split("/")
                if int(den) > 0:
                    result["fps"] = round(int(num) / int(den), 3)

        elif codec_type == "audio" and not result["has_audio"]:
            result["has_audio"] = True
            result["audio_codec"] = stream.get("codec_name")
            result["sample_rate"] = int(stream.get("sample_rate", 0)) or None
            result["channels"] = stream.get("channels")

    return result


def get_media_info(file_path: str, index: int | None = None, require_video: bool = True) -> dict:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file
        index: Clip index reported in errors
        require_video: Reject files without a video stream

    Returns:
        Dictionary with all media info

    Raises:
        ProbeError: If ffprobe fails or the file has no usable stream
    """
    try:
        data = _run_ffprobe(file_path, "-show_format", "-show_streams")
    except RuntimeError as e:
        logger.error(f"[PROBE] {file_path}: {e}")
        raise ProbeError(str(e), index=index)

    info = parse_probe_output(data)
    if require_video and not info["has_video"]:
        raise ProbeError("no video stream found", index=index)
    if not require_video and not (info["has_video"] or info["has_audio"]):
        raise ProbeError("no media streams found", index=index)

    logger.info(
        f"[PROBE] {file_path}: {info['duration_ms']}ms "
        f"{info['width']}x{info['height']} {info['video_codec']} audio={info['has_audio']}"
    )
    return info
