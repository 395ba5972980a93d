"""Tests for the export job engine.

Fetching, probing, encoding and publishing are replaced with in-process
fakes so the full stage sequence can be exercised without ffmpeg or network
access.
"""

import asyncio
import os
import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from reelsmith.exceptions import EncodeError, FetchError, ProbeError, UploadError
from reelsmith.render.job_engine import JobEngine
from reelsmith.schemas.export import ExportRequest
from reelsmith.services.job_store import InMemoryJobStore, JobState

PROBE_INFO = {
    "duration_ms": 10000,
    "has_audio": True,
    "width": 1920,
    "height": 1080,
    "video_codec": "h264",
}


class FakeFetcher:
    """Writes a small placeholder file per fetch; fails for chosen URLs."""

    def __init__(self, failing: tuple[str, ...] = ()):
        self.failing = failing
        self.calls = []

    async def fetch(self, url, dest_dir, index=None, label="clip"):
        self.calls.append((label, index, url))
        if url in self.failing:
            raise FetchError("HTTP 404", url=url, index=index, label=label)
        path = Path(dest_dir) / f"{label}_{index}{Path(url).suffix or '.bin'}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"media")
        return path


class FakeRunner:
    """Pretends to encode: reports progress and writes the output file."""

    def __init__(self, delay: float = 0.0, write_output: bool = True, error: Exception | None = None):
        self.delay = delay
        self.write_output = write_output
        self.error = error
        self.calls = []
        self.active = 0
        self.peak = 0
        self.concat_lists = []

    async def run(self, args, duration_s, on_progress=None):
        self.calls.append(args)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if "concat" in args:
                self.concat_lists.append(Path(args[args.index("concat") + 4]).read_text())
            await asyncio.sleep(self.delay)
            if self.error:
                raise self.error
            if on_progress:
                on_progress(50.0)
                on_progress(20.0)
                on_progress(100.0)
            if self.write_output:
                Path(args[-1]).write_bytes(b"encoded")
        finally:
            self.active -= 1


def _request(n_clips: int = 2, **kwargs) -> ExportRequest:
    clips = [{"sourceUrl": f"https://cdn.example.com/clip{i}.mp4"} for i in range(n_clips)]
    return ExportRequest.model_validate({"clips": clips, **kwargs})


def _publisher(url: str = "https://signed.example/out.mp4"):
    publisher = MagicMock()
    publisher.publish = AsyncMock(return_value=url)
    return publisher


def _engine(test_settings, **overrides) -> JobEngine:
    notifier = MagicMock()
    notifier.notify = AsyncMock(return_value=True)
    parts = dict(
        store=InMemoryJobStore(),
        fetcher=FakeFetcher(),
        publisher=_publisher(),
        runner=FakeRunner(),
        prober=lambda path, index: dict(PROBE_INFO),
        settings=test_settings,
        notifier=notifier,
    )
    parts.update(overrides)
    return JobEngine(**parts)


class TestSuccessfulJob:
    """Tests for a job that runs to completion."""

    @pytest.mark.asyncio
    async def test_completes_with_download_url(self, test_settings):
        """A finished job exposes the published URL and cleans up after itself."""
        engine = _engine(test_settings)
        job_id = engine.submit(_request(2, enhancements={"fadeIn": True}))
        status = await engine.wait(job_id)

        assert status.state == JobState.COMPLETED
        assert status.progress == 100
        assert status.download_url == "https://signed.example/out.mp4"
        engine.publisher.publish.assert_awaited_once()
        key = engine.publisher.publish.await_args.args[1]
        assert key == f"exports/{job_id}.mp4"
        assert not (engine.work_dir / job_id).exists()
        assert not (engine.output_dir / f"{job_id}.mp4").exists()

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_ordered(self, test_settings):
        """Listeners see stages in order and progress never decreasing."""
        engine = _engine(test_settings)
        seen = []
        engine.add_listener(lambda status: seen.append((status.state, status.progress)))

        job_id = engine.submit(_request(3, enhancements={"fadeOut": True}))
        await engine.wait(job_id)

        progresses = [p for _, p in seen]
        assert progresses == sorted(progresses)
        assert progresses[-1] == 100
        states = []
        for state, _ in seen:
            if not states or states[-1] != state:
                states.append(state)
        assert states == [
            JobState.DOWNLOADING,
            JobState.PROBING,
            JobState.ENCODING,
            JobState.UPLOADING,
            JobState.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_encode_progress_band(self, test_settings):
        """Encoder percentages land inside the 35-80 band."""
        engine = _engine(test_settings)
        encoding = []
        engine.add_listener(
            lambda status: encoding.append(status.progress) if status.state == JobState.ENCODING else None
        )

        await engine.wait(engine.submit(_request(2, enhancements={"fadeIn": True})))

        assert min(encoding) == 35
        assert max(encoding) == 80
        assert 57 in encoding

    @pytest.mark.asyncio
    async def test_stream_copy_uses_concat_list(self, test_settings):
        """Uniform clips are joined through a concat list without a filter graph."""
        runner = FakeRunner()
        engine = _engine(test_settings, runner=runner)

        status = await engine.wait(engine.submit(_request(2)))

        assert status.state == JobState.COMPLETED
        args = runner.calls[0]
        assert "-filter_complex" not in args
        assert args[args.index("-c") + 1] == "copy"
        assert runner.concat_lists[0].count("file '") == 2

    @pytest.mark.asyncio
    async def test_downloads_in_clip_order(self, test_settings):
        """Clips are fetched in order, then music, voice and watermark."""
        fetcher = FakeFetcher()
        engine = _engine(test_settings, fetcher=fetcher)
        request = _request(
            3,
            enhancements={
                "backgroundMusic": {"audioUrl": "https://cdn.example.com/m.mp3"},
                "voice": {"audioUrl": "https://cdn.example.com/v.mp3"},
                "watermark": {"imageUrl": "https://cdn.example.com/w.png"},
            },
        )

        await engine.wait(engine.submit(request))

        assert [(label, index) for label, index, _ in fetcher.calls] == [
            ("clip", 0),
            ("clip", 1),
            ("clip", 2),
            ("music", None),
            ("voice", None),
            ("watermark", None),
        ]

    @pytest.mark.asyncio
    async def test_watermark_failure_is_not_fatal(self, test_settings):
        """A missing watermark is skipped and the export still completes."""
        fetcher = FakeFetcher(failing=("https://cdn.example.com/w.png",))
        runner = FakeRunner()
        engine = _engine(test_settings, fetcher=fetcher, runner=runner)
        request = _request(2, enhancements={"watermark": {"imageUrl": "https://cdn.example.com/w.png"}})

        status = await engine.wait(engine.submit(request))

        assert status.state == JobState.COMPLETED
        graph_text = runner.calls[0][runner.calls[0].index("-filter_complex") + 1]
        assert "colorchannelmixer" not in graph_text

    @pytest.mark.asyncio
    async def test_text_overlays_rendered(self, test_settings):
        """Each overlay is rendered to an image input of the encoder."""
        renderer = MagicMock()

        def render(overlay, path):
            Path(path).write_bytes(b"png")
            return Path(path)

        renderer.render_overlay.side_effect = render
        runner = FakeRunner()
        engine = _engine(test_settings, runner=runner, text_renderer=renderer)
        request = _request(2, enhancements={"textOverlays": [{"text": "Hi"}, {"text": "Bye", "timing": "outro"}]})

        status = await engine.wait(engine.submit(request))

        assert status.state == JobState.COMPLETED
        assert renderer.render_overlay.call_count == 2
        args = runner.calls[0]
        assert sum(1 for a in args if a.endswith(".png")) == 2

    @pytest.mark.asyncio
    async def test_callback_sent_after_completion(self, test_settings):
        engine = _engine(test_settings)
        request = _request(2, callbackUrl="https://hooks.example/done")

        job_id = engine.submit(request)
        await engine.wait(job_id)

        engine.notifier.notify.assert_awaited_once_with(
            "https://hooks.example/done",
            {"jobId": job_id, "status": "completed", "downloadUrl": "https://signed.example/out.mp4"},
        )


class TestFailedJob:
    """Tests for each failure kind."""

    @pytest.mark.asyncio
    async def test_fetch_failure_names_clip(self, test_settings):
        fetcher = FakeFetcher(failing=("https://cdn.example.com/clip1.mp4",))
        runner = FakeRunner()
        engine = _engine(test_settings, fetcher=fetcher, runner=runner)

        status = await engine.wait(engine.submit(_request(3)))

        assert status.state == JobState.FAILED
        assert status.status == "failed"
        assert status.error_type == "FetchError"
        assert "clip 1" in status.error
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_probe_failure(self, test_settings):
        def prober(path, index):
            if index == 1:
                raise ProbeError("no video stream", index=index)
            return dict(PROBE_INFO)

        engine = _engine(test_settings, prober=prober)
        status = await engine.wait(engine.submit(_request(2)))

        assert status.error_type == "ProbeError"
        assert status.error == "Failed to probe clip 1: no video stream"

    @pytest.mark.asyncio
    async def test_build_failure(self, test_settings):
        """An out-of-range transition index fails the job before encoding."""
        runner = FakeRunner()
        engine = _engine(test_settings, runner=runner)
        request = _request(
            2,
            enhancements={"transitions": {"mode": "crossfade", "perClip": [{"afterClipIndex": 5}]}},
        )

        status = await engine.wait(engine.submit(request))

        assert status.error_type == "BuildError"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_trim_past_source_end_rejected(self, test_settings):
        """A trim range beyond the probed 10s source fails as a validation error."""
        runner = FakeRunner()
        engine = _engine(test_settings, runner=runner)
        request = ExportRequest.model_validate(
            {
                "clips": [
                    {"sourceUrl": "https://cdn.example.com/clip0.mp4"},
                    {"sourceUrl": "https://cdn.example.com/clip1.mp4", "trimStart": 12, "trimEnd": 15},
                ]
            }
        )

        status = await engine.wait(engine.submit(request))

        assert status.error_type == "ValidationError"
        assert "Clip 1" in status.error
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_encode_failure(self, test_settings):
        runner = FakeRunner(error=EncodeError("exit 1", exit_code=1, detail="Invalid data"))
        engine = _engine(test_settings, runner=runner)

        status = await engine.wait(engine.submit(_request(2)))

        assert status.error_type == "EncodeError"
        engine.publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_output_is_encode_error(self, test_settings):
        """A zero exit without an output file still fails."""
        engine = _engine(test_settings, runner=FakeRunner(write_output=False))
        status = await engine.wait(engine.submit(_request(2)))
        assert status.error_type == "EncodeError"

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_output(self, test_settings):
        """Unpublished outputs are left for the retention sweep."""
        publisher = MagicMock()
        publisher.publish = AsyncMock(side_effect=UploadError("bucket unavailable"))
        engine = _engine(test_settings, publisher=publisher)

        job_id = engine.submit(_request(2))
        status = await engine.wait(job_id)

        assert status.error_type == "UploadError"
        assert (engine.output_dir / f"{job_id}.mp4").exists()
        assert not (engine.work_dir / job_id).exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, test_settings):
        def prober(path, index):
            raise RuntimeError("segfault in probe")

        engine = _engine(test_settings, prober=prober)
        status = await engine.wait(engine.submit(_request(1)))

        assert status.error_type == "InternalError"
        assert status.error == "segfault in probe"

    @pytest.mark.asyncio
    async def test_failure_callback_carries_error(self, test_settings):
        fetcher = FakeFetcher(failing=("https://cdn.example.com/clip0.mp4",))
        engine = _engine(test_settings, fetcher=fetcher)

        job_id = engine.submit(_request(1, callbackUrl="https://hooks.example/done"))
        await engine.wait(job_id)

        url, payload = engine.notifier.notify.await_args.args
        assert payload["jobId"] == job_id
        assert payload["status"] == "failed"
        assert "clip 0" in payload["error"]
        assert "downloadUrl" not in payload


class TestConcurrency:
    """Tests for the concurrent job limit."""

    @pytest.mark.asyncio
    async def test_limit_is_respected(self, test_settings):
        """No more than max_concurrent_jobs encodes run at once."""
        runner = FakeRunner(delay=0.1)
        engine = _engine(test_settings, runner=runner)

        job_ids = [engine.submit(_request(2)) for _ in range(5)]
        await asyncio.sleep(0)
        assert engine.active_jobs <= test_settings.max_concurrent_jobs
        assert engine.queued_jobs >= 3

        statuses = [await engine.wait(job_id) for job_id in job_ids]

        assert all(s.state == JobState.COMPLETED for s in statuses)
        assert runner.peak == test_settings.max_concurrent_jobs
        assert engine.active_jobs == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_jobs(self, test_settings):
        engine = _engine(test_settings, runner=FakeRunner(delay=0.05))
        engine.start()
        job_id = engine.submit(_request(2))

        await engine.stop()

        assert engine.get_status(job_id).state == JobState.COMPLETED


class TestRetention:
    """Tests for the output retention sweep."""

    @pytest.mark.asyncio
    async def test_old_outputs_removed(self, test_settings):
        engine = _engine(test_settings)
        engine.output_dir.mkdir(parents=True, exist_ok=True)
        old = engine.output_dir / "old.mp4"
        fresh = engine.output_dir / "fresh.mp4"
        old.write_bytes(b"x")
        fresh.write_bytes(b"x")
        past = time.time() - test_settings.output_retention_s - 60
        os.utime(old, (past, past))

        removed = engine.sweep_expired_outputs()

        assert removed == 1
        assert not old.exists()
        assert fresh.exists()

    @pytest.mark.asyncio
    async def test_expired_cache_files_removed(self, test_settings):
        """The sweep also deletes asset cache entries past their TTL."""
        engine = _engine(test_settings)
        cache_dir = Path(test_settings.asset_cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        old = cache_dir / "0123abcd.mp4"
        fresh = cache_dir / "4567ef01.mp4"
        old.write_bytes(b"x")
        fresh.write_bytes(b"x")
        past = time.time() - test_settings.asset_cache_ttl_s - 60
        os.utime(old, (past, past))

        engine.sweep_expired_outputs()

        assert not old.exists()
        assert fresh.exists()
