"""Job queue with a Redis backend and automatic fallback to process memory."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import redis

from agent_service.jobs.backend import (
    BackendUnavailableError,
    JobBackend,
    MemoryJobBackend,
    RedisJobBackend,
    create_redis_client,
)
from agent_service.jobs.models import Job, JobStatus, QueueMode

logger = logging.getLogger(__name__)

MAX_CONNECT_ATTEMPTS = 5
BACKOFF_BASE_MS = 50
BACKOFF_CAP_MS = 3_000


class QueueUnavailableError(RuntimeError):
    """The store cannot serve requests right now."""


def backoff_delay_ms(attempt: int) -> int:
    """Delay after the zero-based ``attempt`` failed: 50, 100, 200, ... capped at 3000."""

    return min(BACKOFF_BASE_MS * 2**attempt, BACKOFF_CAP_MS)


class QueueStore:
    """Backend-agnostic job storage and pending FIFO.

    ``mode`` starts as durable. When ``connect()`` exhausts its retries the
    store switches to an in-memory backend for the rest of its lifetime,
    unless ``reconnect()`` is called explicitly.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        client_factory: Callable[[str], redis.Redis] = create_redis_client,
        sleep: Callable[[float], None] = time.sleep,
        max_connect_attempts: int = MAX_CONNECT_ATTEMPTS,
    ) -> None:
        self.redis_url = redis_url
        self.mode = QueueMode.DURABLE
        self._client_factory = client_factory
        self._sleep = sleep
        self._max_connect_attempts = max(1, max_connect_attempts)
        self._backend: JobBackend | None = None
        self._connect_lock = threading.Lock()

    # -- connection management -------------------------------------------------

    def connect(self) -> QueueMode:
        """Connect to Redis with backoff, falling back to memory. Never raises."""

        with self._connect_lock:
            if self._backend is not None:
                return self.mode
            durable = self._connect_durable()
            if durable is None:
                self._switch_to_memory()
            else:
                self._backend = durable
                self.mode = QueueMode.DURABLE
            return self.mode

    def reconnect(self) -> QueueMode:
        """Retry the durable backend; memory-mode state is migrated on success."""

        with self._connect_lock:
            current = self._backend
            if self.mode is QueueMode.DURABLE and current is not None and current.is_live():
                return self.mode
            durable = self._connect_durable()
            if durable is None:
                if current is None or self.mode is QueueMode.DURABLE:
                    if current is not None:
                        current.close()
                    self._switch_to_memory()
                return self.mode

            if isinstance(current, MemoryJobBackend):
                records = current.records()
                pending = current.pending_ids()
                try:
                    durable.import_state(records, pending)
                except BackendUnavailableError:
                    logger.warning("Migration to Redis failed, staying in memory mode")
                    durable.close()
                    return self.mode
                logger.info(
                    "Migrated %d job records and %d pending jobs from memory to Redis",
                    len(records),
                    len(pending),
                )
            if current is not None:
                current.close()
            self._backend = durable
            self.mode = QueueMode.DURABLE
            logger.info("Queue store reconnected in durable mode")
            return self.mode

    def _connect_durable(self) -> RedisJobBackend | None:
        try:
            client = self._client_factory(self.redis_url)
        except ValueError as error:
            logger.error("Invalid Redis URL %r: %s", self.redis_url, error)
            return None

        backend = RedisJobBackend(client)
        for attempt in range(self._max_connect_attempts):
            try:
                backend.ping()
            except BackendUnavailableError:
                if attempt + 1 >= self._max_connect_attempts:
                    break
                delay_ms = backoff_delay_ms(attempt)
                logger.info(
                    "Redis connection attempt %d failed, retrying in %dms",
                    attempt + 1,
                    delay_ms,
                )
                self._sleep(delay_ms / 1000.0)
                continue
            logger.info("Redis client connected and ready")
            return backend

        backend.close()
        logger.warning(
            "Redis connection failed after %d attempts, switching to memory mode",
            self._max_connect_attempts,
        )
        return None

    def _switch_to_memory(self) -> None:
        self._backend = MemoryJobBackend()
        self.mode = QueueMode.MEMORY
        logger.warning("Job storage running in memory mode; jobs are lost on restart")

    # -- state -----------------------------------------------------------------

    def is_healthy(self) -> bool:
        backend = self._backend
        if backend is None:
            return False
        if self.mode is QueueMode.MEMORY:
            return True
        return backend.is_live()

    def get_mode(self) -> QueueMode:
        return self.mode

    # -- job operations --------------------------------------------------------

    def enqueue(self, job_id: str, command: str) -> Job:
        """Create a queued job (overwriting any record with the same id)."""

        job = Job(job_id=job_id, command=command)
        with self._available() as backend:
            backend.save(job)
        logger.info("Job %s enqueued (%s mode)", job_id, self.mode.value)
        return job.copy()

    def dequeue(self) -> Job | None:
        """Pop the oldest pending job; blocks up to 1s in durable mode."""

        with self._available() as backend:
            job_id = backend.pop()
            if job_id is None:
                return None
            job = backend.load(job_id)
        if job is None:
            logger.warning("Job data not found for dequeued jobId: %s", job_id)
            return None
        logger.info("Job %s dequeued for processing (%s mode)", job_id, self.mode.value)
        return job

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        logs: list[str] | None = None,
    ) -> Job | None:
        """Overwrite status and logs; unknown ids are ignored."""

        with self._available() as backend:
            updated = backend.update(job_id, status, list(logs or []))
        if updated is None:
            logger.warning("Status update to %s ignored for unknown job %s", status.value, job_id)
            return None
        logger.info("Job %s status updated to: %s (%s mode)", job_id, status.value, self.mode.value)
        return updated

    def get_status(self, job_id: str) -> Job | None:
        with self._available() as backend:
            return backend.load(job_id)

    def pending_count(self) -> int:
        with self._available() as backend:
            return backend.pending_count()

    def close(self) -> None:
        """Release the backend; in memory mode this discards every job."""

        with self._connect_lock:
            backend = self._backend
            self._backend = None
        if backend is not None:
            backend.close()

    @contextmanager
    def _available(self) -> Iterator[JobBackend]:
        backend = self._backend
        if backend is None or not self.is_healthy():
            raise QueueUnavailableError("Queue not available")
        try:
            yield backend
        except BackendUnavailableError as error:
            raise QueueUnavailableError(str(error)) from error
