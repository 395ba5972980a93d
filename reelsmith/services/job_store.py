"""In-memory export job status store.

Status entries live per process; they are purged a fixed time after the job
reaches a terminal state. The store is injected into the engine so tests and
alternative backends can replace it.
"""

import copy
import threading
import time
from collections import Counter
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Optional, Protocol


class JobState(str, Enum):
    """Export job lifecycle states."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    PROBING = "probing"
    ENCODING = "encoding"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


# Allowed forward transitions; FAILED is reachable from every live state
TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.QUEUED: {JobState.DOWNLOADING, JobState.FAILED},
    JobState.DOWNLOADING: {JobState.PROBING, JobState.FAILED},
    JobState.PROBING: {JobState.ENCODING, JobState.FAILED},
    JobState.ENCODING: {JobState.UPLOADING, JobState.FAILED},
    JobState.UPLOADING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class JobStatus:
    """Observable state of one export job."""

    job_id: str
    state: JobState = JobState.QUEUED
    progress: int = 0
    message: str = ""
    download_url: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    output_path: Optional[str] = None
    created_at: str = field(default_factory=_utcnow)
    updated_at: str = field(default_factory=_utcnow)
    completed_at: Optional[str] = None
    # monotonic timestamp of the terminal transition, used for purging
    finished_monotonic: Optional[float] = None

    @property
    def status(self) -> str:
        """Coarse status exposed to API clients."""
        if self.state.is_terminal:
            return self.state.value
        return "processing"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        data["status"] = self.status
        data.pop("finished_monotonic")
        return data


class InvalidTransitionError(RuntimeError):
    """A status update tried to move a job backwards or out of a terminal state."""


class JobStore(Protocol):
    def create(self, job_id: str) -> JobStatus: ...

    def update(self, job_id: str, **changes) -> JobStatus: ...

    def get(self, job_id: str) -> Optional[JobStatus]: ...

    def list(self) -> list[JobStatus]: ...

    def count_by_state(self) -> dict[JobState, int]: ...

    def purge_expired(self, now: Optional[float] = None) -> int: ...


class InMemoryJobStore:
    """Thread-safe in-memory store with TTL-based expiration of finished jobs."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._jobs: dict[str, JobStatus] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds

    def create(self, job_id: str) -> JobStatus:
        with self._lock:
            if job_id in self._jobs:
                raise KeyError(f"Job already exists: {job_id}")
            status = JobStatus(job_id=job_id)
            self._jobs[job_id] = status
            return copy.copy(status)

    def update(self, job_id: str, **changes) -> JobStatus:
        """Apply ``changes`` atomically and return the new status.

        Entries are replaced, never mutated in place, so readers holding a
        copy from ``get`` never see a half-applied update.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise KeyError(f"Job not found: {job_id}")

            new_state = changes.get("state")
            if new_state is not None and new_state != current.state:
                if new_state not in TRANSITIONS[current.state]:
                    raise InvalidTransitionError(
                        f"Job {job_id}: {current.state.value} -> {JobState(new_state).value} not allowed"
                    )
                if new_state.is_terminal:
                    changes.setdefault("completed_at", _utcnow())
                    changes["finished_monotonic"] = time.monotonic()

            updated = replace(current, updated_at=_utcnow(), **changes)
            self._jobs[job_id] = updated
            return copy.copy(updated)

    def get(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            status = self._jobs.get(job_id)
            return copy.copy(status) if status else None

    def list(self) -> list[JobStatus]:
        with self._lock:
            return [copy.copy(s) for s in self._jobs.values()]

    def count_by_state(self) -> dict[JobState, int]:
        with self._lock:
            return dict(Counter(s.state for s in self._jobs.values()))

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop terminal jobs older than the TTL; returns how many were removed."""
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [
                job_id
                for job_id, status in self._jobs.items()
                if status.finished_monotonic is not None and now - status.finished_monotonic > self._ttl
            ]
            for job_id in expired:
                del self._jobs[job_id]
            return len(expired)
