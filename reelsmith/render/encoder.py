"""Encoder subprocess runner.

Runs ffmpeg with ``-progress pipe:1`` so stdout carries ``key=value`` progress
lines while stderr carries the log. Both streams are drained concurrently;
stderr is kept in a bounded buffer so a chatty encoder cannot exhaust memory.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from reelsmith.config import get_settings
from reelsmith.exceptions import EncodeError, EncodeTimeoutError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

DIAGNOSTIC_MARKERS = ("Error", "Invalid", "No such", "does not contain")
DIAGNOSTIC_LINES = 5
KILL_GRACE_S = 5.0

_TIME_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


def parse_progress_seconds(line: str) -> Optional[float]:
    """Seconds of output written, from one progress or log line.

    Understands ``out_time_us=``, ``out_time_ms=`` (also microseconds, an
    ffmpeg quirk) and the ``time=HH:MM:SS.xx`` stats format.
    """
    line = line.strip()
    for key in ("out_time_us=", "out_time_ms="):
        if line.startswith(key):
            try:
                return int(line[len(key):]) / 1_000_000
            except ValueError:
                return None
    match = _TIME_RE.search(line)
    if match:
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return None


def filter_diagnostics(log: str, limit: int = DIAGNOSTIC_LINES) -> str:
    """Condense an encoder log to the lines worth showing a user."""
    lines = [line.strip() for line in log.splitlines() if line.strip()]
    flagged = [line for line in lines if any(marker in line for marker in DIAGNOSTIC_MARKERS)]
    return "\n".join((flagged or lines)[-limit:])


class BoundedBuffer:
    """Byte buffer that drops the oldest bytes beyond ``max_bytes``."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self._data = bytearray()
        self.dropped = 0

    def append(self, chunk: bytes) -> None:
        self._data.extend(chunk)
        overflow = len(self._data) - self.max_bytes
        if overflow > 0:
            del self._data[:overflow]
            self.dropped += overflow

    def __len__(self) -> int:
        return len(self._data)

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


@dataclass
class EncodeResult:
    returncode: int
    log: str
    elapsed_s: float


class EncoderRunner:
    """Runs one encoder invocation with a timeout and progress reporting."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        timeout_s: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.timeout_s = timeout_s or settings.encode_timeout_s
        self.max_output_bytes = max_output_bytes or settings.max_output_buffer_bytes

    async def run(
        self,
        args: list[str],
        duration_s: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EncodeResult:
        """Run the encoder, reporting percent complete (0-100) of ``duration_s``.

        Raises:
            EncodeTimeoutError: the wall-clock timeout expired; the process
                has been terminated (then killed) and reaped.
            EncodeError: non-zero exit status.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        cmd = [self.ffmpeg_path, *args]
        logger.info(f"[ENCODE] Starting: {' '.join(cmd[:8])} ... ({len(cmd)} args)")

        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stderr_buffer = BoundedBuffer(self.max_output_bytes)
        last_pct = -1

        def report(seconds: Optional[float]) -> None:
            nonlocal last_pct
            if seconds is None or on_progress is None or duration_s <= 0:
                return
            pct = max(0.0, min(100.0, seconds / duration_s * 100))
            if int(pct) > last_pct:
                last_pct = int(pct)
                on_progress(pct)

        async def read_stdout() -> None:
            async for raw_line in proc.stdout:
                line = raw_line.decode("utf-8", errors="replace")
                report(parse_progress_seconds(line))

        async def read_stderr() -> None:
            while True:
                chunk = await proc.stderr.read(65536)
                if not chunk:
                    break
                stderr_buffer.append(chunk)
                # Without -progress the stats line is the only progress source
                tail = chunk.decode("utf-8", errors="replace").splitlines()
                if tail:
                    report(parse_progress_seconds(tail[-1]))

        try:
            await asyncio.wait_for(
                asyncio.gather(read_stdout(), read_stderr(), proc.wait()),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.error(f"[ENCODE] Timed out after {self.timeout_s}s")
            raise EncodeTimeoutError(self.timeout_s)
        finally:
            # Timeout, cancellation or a failed reader: never leave ffmpeg running
            if proc.returncode is None:
                await self._terminate(proc)

        elapsed = loop.time() - started
        log = stderr_buffer.text()
        if stderr_buffer.dropped:
            logger.debug(f"[ENCODE] Dropped {stderr_buffer.dropped} bytes of encoder output")

        if proc.returncode != 0:
            detail = filter_diagnostics(log)
            logger.error(f"[ENCODE] Failed (rc={proc.returncode}): {detail}")
            raise EncodeError(
                f"Encoding failed with exit code {proc.returncode}: {detail}",
                exit_code=proc.returncode,
                detail=detail,
            )

        logger.info(f"[ENCODE] Finished in {elapsed:.1f}s")
        return EncodeResult(returncode=proc.returncode, log=log, elapsed_s=elapsed)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Terminate, escalate to kill after a grace period, and reap."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_S)
        except asyncio.TimeoutError:
            logger.warning("[ENCODE] Encoder ignored SIGTERM, killing")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
        except ProcessLookupError:
            pass
