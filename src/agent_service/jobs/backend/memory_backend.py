"""Process-local job storage used when Redis is unreachable."""

from __future__ import annotations

import logging
import threading
from collections import deque

from agent_service.jobs.lifecycle import record_status
from agent_service.jobs.models import Job, JobStatus

logger = logging.getLogger(__name__)


class MemoryJobBackend:
    """Dict + deque storage guarded by a lock.

    State lives only as long as the process and is not shared between
    processes, so FIFO ordering holds for a single producer process only.
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, Job] = {}
        self._pending: deque[str] = deque()

    def is_live(self) -> bool:
        return True

    def save(self, job: Job) -> None:
        with self._lock:
            self._records[job.job_id] = job.copy()
            self._pending.append(job.job_id)

    def pop(self) -> str | None:
        with self._lock:
            if not self._pending:
                return None
            return self._pending.popleft()

    def load(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._records.get(job_id)
            return job.copy() if job is not None else None

    def update(self, job_id: str, status: JobStatus, logs: list[str]) -> Job | None:
        with self._lock:
            job = self._records.get(job_id)
            if job is None:
                return None
            updated = record_status(job, status, logs)
            self._records[job_id] = updated
            return updated.copy()

    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def records(self) -> list[Job]:
        with self._lock:
            return [job.copy() for job in self._records.values()]

    def close(self) -> None:
        with self._lock:
            dropped = len(self._records)
            self._pending.clear()
            self._records.clear()
        logger.info("In-memory queue cleared (%d job records dropped)", dropped)
