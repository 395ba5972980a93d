"""
Pytest fixtures for reelsmith tests.

Most tests never run a real encoder: the encoder boundary is mocked or
replaced by a small shell script written to a temp directory. Tests that
render through real ffmpeg are marked with @pytest.mark.requires_ffmpeg and
skipped when ffmpeg or ffprobe is missing from PATH.
Run `pytest -m "not requires_ffmpeg"` to skip them explicitly.
"""

import shutil
import stat
import tempfile
from pathlib import Path

import pytest

from reelsmith.config import Settings, get_settings


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg on PATH (skipped when missing)",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    if _ffmpeg_available():
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="reelsmith_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_output_dir: Path) -> Settings:
    """Settings pointing every writable path into the temp directory."""
    return Settings(
        work_dir=str(temp_output_dir / "jobs"),
        asset_cache_dir=str(temp_output_dir / "cache"),
        local_storage_path=str(temp_output_dir / "storage"),
        use_local_storage=True,
        max_concurrent_jobs=2,
        encode_timeout_s=5,
        callback_secret="",
    )


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_script(temp_output_dir: Path):
    """Write an executable shell script and return its path."""

    def _make(name: str, body: str) -> str:
        path = temp_output_dir / name
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IEXEC)
        return str(path)

    return _make
