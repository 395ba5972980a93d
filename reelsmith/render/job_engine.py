"""
Export job execution engine.

Each submitted job runs as an asyncio task:

1. Wait for a slot (process-wide semaphore)      queued       0%
2. Download clips, music, voice, watermark      downloading  5-25%
3. Probe clips, render text overlays, build     probing      25-35%
4. Run the encoder                              encoding     35-80%
5. Upload and sign the result                   uploading    85%
6. Done                                         completed    100%

Any pipeline error moves the job to ``failed`` with the error's type and
message. The job's scratch directory is always removed; the encoded output
is removed after a successful upload and otherwise left for the retention
sweep.
"""

import asyncio
import inspect
import logging
import shutil
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

from reelsmith.config import Settings, get_settings
from reelsmith.exceptions import EncodeError, FetchError, ReelsmithError
from reelsmith.render.encoder import EncoderRunner
from reelsmith.render.filter_graph import to_ffmpeg_args, write_concat_list
from reelsmith.render.graph_builder import FilterGraphBuilder, ResolvedAssets, ResolvedClip
from reelsmith.render.text_renderer import TextRenderer
from reelsmith.schemas.export import ExportRequest
from reelsmith.services.asset_fetcher import AssetFetcher, purge_cache_dir
from reelsmith.services.job_store import InMemoryJobStore, JobState, JobStatus, JobStore
from reelsmith.services.result_publisher import CallbackNotifier, ResultPublisher
from reelsmith.services.storage_service import get_storage_service
from reelsmith.utils.media_info import get_media_info

logger = logging.getLogger(__name__)

StatusListener = Callable[[JobStatus], Any]

# Progress bands per stage
DOWNLOAD_START, DOWNLOAD_END = 5, 25
PROBE_START, PROBE_END = 25, 35
ENCODE_START, ENCODE_END = 35, 80
UPLOAD_PROGRESS = 85
ENCODE_WEIGHT = 0.45


def encode_progress(pct: float) -> int:
    """Map encoder percent complete into the encoding band."""
    return int(max(ENCODE_START, min(ENCODE_END, ENCODE_START + pct * ENCODE_WEIGHT)))


class JobEngine:
    """Runs export jobs with bounded concurrency and observable progress."""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        fetcher: Optional[AssetFetcher] = None,
        publisher: Optional[ResultPublisher] = None,
        runner: Optional[EncoderRunner] = None,
        prober: Optional[Callable[..., dict]] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[CallbackNotifier] = None,
        text_renderer: Optional[TextRenderer] = None,
        builder: Optional[FilterGraphBuilder] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or InMemoryJobStore(ttl_seconds=self.settings.job_status_ttl_s)
        self.fetcher = fetcher or AssetFetcher(self.settings)
        self.publisher = publisher or ResultPublisher(get_storage_service(), self.settings)
        self.runner = runner or EncoderRunner(
            ffmpeg_path=self.settings.ffmpeg_path,
            timeout_s=self.settings.encode_timeout_s,
            max_output_bytes=self.settings.max_output_buffer_bytes,
        )
        self.prober = prober or get_media_info
        self.notifier = notifier or CallbackNotifier(self.settings)
        self.text_renderer = text_renderer or TextRenderer()
        self.builder = builder or FilterGraphBuilder(
            sample_rate=self.settings.render_audio_sample_rate,
            fps=self.settings.render_fps,
        )

        self.work_dir = Path(self.settings.work_dir)
        self.output_dir = self.work_dir / "outputs"
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._listeners: list[StatusListener] = []
        self._active = 0
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def active_jobs(self) -> int:
        return self._active

    @property
    def queued_jobs(self) -> int:
        return self.store.count_by_state().get(JobState.QUEUED, 0)

    def add_listener(self, listener: StatusListener) -> None:
        """Register a callable (sync or async) receiving every status update."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def get_status(self, job_id: str) -> Optional[JobStatus]:
        return self.store.get(job_id)

    def _emit(self, status: JobStatus) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(status)
            except Exception as e:
                logger.warning(f"[ENGINE] [{status.job_id}] Listener failed: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    def _update(self, job_id: str, **changes) -> JobStatus:
        if "progress" in changes:
            current = self.store.get(job_id)
            # Progress never moves backwards
            if current is not None:
                changes["progress"] = max(current.progress, int(changes["progress"]))
        status = self.store.update(job_id, **changes)
        self._emit(status)
        return status

    def _set_stage(self, job_id: str, state: JobState, progress: int, message: str = "") -> None:
        logger.info(f"[ENGINE] [{job_id}] stage={state.value} ({progress}%)")
        self._update(job_id, state=state, progress=progress, message=message or state.value)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, request: ExportRequest, job_id: Optional[str] = None) -> str:
        """Register a job and start it in the background; returns the job id."""
        job_id = job_id or uuid.uuid4().hex
        self.store.create(job_id)
        task = asyncio.create_task(self.run_job(job_id, request), name=f"export-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))
        logger.info(f"[ENGINE] [{job_id}] Queued ({len(request.clips)} clips)")
        return job_id

    async def wait(self, job_id: str) -> Optional[JobStatus]:
        """Wait for a submitted job's task to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.store.get(job_id)

    async def run_job(self, job_id: str, request: ExportRequest) -> JobStatus:
        """Run one job to a terminal state. Never raises pipeline errors."""
        job_dir = self.work_dir / job_id
        async with self._semaphore:
            self._active += 1
            started = time.monotonic()
            try:
                job_dir.mkdir(parents=True, exist_ok=True)
                await self._execute(job_id, request, job_dir)
            except ReelsmithError as e:
                logger.error(f"[ENGINE] [{job_id}] Failed ({e.error_type}): {e.message}")
                self._update(job_id, state=JobState.FAILED, error=e.message, error_type=e.error_type, message="failed")
            except Exception as e:
                logger.exception(f"[ENGINE] [{job_id}] Unexpected error")
                self._update(job_id, state=JobState.FAILED, error=str(e), error_type="InternalError", message="failed")
            finally:
                self._active -= 1
                shutil.rmtree(job_dir, ignore_errors=True)
                logger.info(f"[ENGINE] [{job_id}] Finished in {time.monotonic() - started:.1f}s")

        status = self.store.get(job_id)
        if request.callback_url and status is not None:
            await self.notifier.notify(request.callback_url, self._callback_payload(status))
        return status

    @staticmethod
    def _callback_payload(status: JobStatus) -> dict:
        payload = {"jobId": status.job_id, "status": status.state.value}
        if status.download_url:
            payload["downloadUrl"] = status.download_url
        if status.error:
            payload["error"] = status.error
        return payload

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(self, job_id: str, request: ExportRequest, job_dir: Path) -> None:
        enhancements = request.enhancements
        fmt = request.output.format

        # 1. Downloads, sequential in clip order
        self._set_stage(job_id, JobState.DOWNLOADING, DOWNLOAD_START)
        downloads = len(request.clips) + sum(
            1 for extra in (enhancements.background_music, enhancements.voice, enhancements.watermark) if extra
        )
        done = 0

        def download_progress() -> int:
            return DOWNLOAD_START + int((DOWNLOAD_END - DOWNLOAD_START) * done / downloads)

        clip_paths = []
        for i, clip in enumerate(request.clips):
            clip_paths.append(await self.fetcher.fetch(clip.source_url, job_dir, index=i, label="clip"))
            done += 1
            self._update(job_id, progress=download_progress(), message=f"Downloaded clip {i + 1}/{len(request.clips)}")

        assets = ResolvedAssets()
        if enhancements.background_music:
            assets.music_path = str(await self.fetcher.fetch(enhancements.background_music.audio_url, job_dir, label="music"))
            done += 1
            self._update(job_id, progress=download_progress())
        if enhancements.voice:
            assets.voice_path = str(await self.fetcher.fetch(enhancements.voice.audio_url, job_dir, label="voice"))
            done += 1
            self._update(job_id, progress=download_progress())
        if enhancements.watermark:
            try:
                assets.watermark_path = str(
                    await self.fetcher.fetch(enhancements.watermark.image_url, job_dir, label="watermark")
                )
            except FetchError as e:
                # The export is still useful without its watermark
                logger.warning(f"[ENGINE] [{job_id}] Watermark skipped: {e.message}")
            done += 1
            self._update(job_id, progress=download_progress())

        # 2. Probe and build
        self._set_stage(job_id, JobState.PROBING, PROBE_START)
        clips = []
        for i, (spec, path) in enumerate(zip(request.clips, clip_paths)):
            info = await asyncio.to_thread(self.prober, str(path), i)
            clips.append(ResolvedClip.from_spec(spec, i, str(path), info, enhancements))
            self._update(job_id, progress=PROBE_START + int((PROBE_END - PROBE_START) * (i + 1) / len(clip_paths)))

        for j, overlay in enumerate(enhancements.text_overlays):
            png = await asyncio.to_thread(self.text_renderer.render_overlay, overlay, job_dir / f"text_{j}.png")
            assets.text_image_paths.append(str(png))

        graph = self.builder.build(clips, enhancements, request.output, assets)

        # 3. Encode
        self._set_stage(job_id, JobState.ENCODING, ENCODE_START)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / f"{job_id}.{fmt}"
        concat_list = None
        if graph.stream_copy:
            concat_list = str(write_concat_list(graph.concat_sources, job_dir / "concat.txt"))

        crf, preset = request.output.crf_preset()
        args = to_ffmpeg_args(
            graph,
            str(output_path),
            crf=crf,
            preset=preset,
            sample_rate=self.builder.sample_rate,
            audio_bitrate=self.settings.render_audio_bitrate,
            concat_list_path=concat_list,
        )

        def on_progress(pct: float) -> None:
            self._update(job_id, progress=encode_progress(pct), message=f"Encoding ({int(pct)}%)")

        await self.runner.run(args, graph.total_duration, on_progress)
        if not output_path.exists() or output_path.stat().st_size == 0:
            raise EncodeError("Encoder finished but produced no output")
        self._update(job_id, progress=ENCODE_END, output_path=str(output_path))

        # 4. Upload
        self._set_stage(job_id, JobState.UPLOADING, UPLOAD_PROGRESS)
        key = f"{self.settings.export_key_prefix}/{job_id}.{fmt}"
        url = await self.publisher.publish(output_path, key)

        self._update(job_id, state=JobState.COMPLETED, progress=100, download_url=url, message="completed")
        output_path.unlink(missing_ok=True)
        logger.info(f"[ENGINE] [{job_id}] Completed: {key}")

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep_expired_outputs(self, now: Optional[float] = None) -> int:
        """Delete unpublished outputs past retention, expired cache files and old statuses."""
        now = time.time() if now is None else now
        removed = 0
        if self.output_dir.exists():
            for path in self.output_dir.iterdir():
                if now - path.stat().st_mtime > self.settings.output_retention_s:
                    path.unlink(missing_ok=True)
                    removed += 1
        if self.settings.asset_cache_enabled:
            purge_cache_dir(self.settings.asset_cache_dir, self.settings.asset_cache_ttl_s, now)
        purged = self.store.purge_expired()
        if removed or purged:
            logger.info(f"[ENGINE] Swept {removed} outputs, purged {purged} job statuses")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.retention_sweep_interval_s)
            try:
                self.sweep_expired_outputs()
            except OSError as e:
                logger.warning(f"[ENGINE] Retention sweep failed: {e}")

    def start(self) -> None:
        """Start the periodic retention sweep."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="retention-sweep")

    async def stop(self) -> None:
        """Stop the sweep and wait for in-flight jobs."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
