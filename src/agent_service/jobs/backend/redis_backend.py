"""Redis-backed durable job storage.

Key layout:

- ``job:<id>:data``   hash with every Job field (logs JSON-encoded)
- ``job:<id>:status`` plain status string for cheap lookups
- ``jobs:queue``      pending FIFO, LPUSH on enqueue and BRPOP on dequeue
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from agent_service.jobs.backend.base import BackendUnavailableError
from agent_service.jobs.lifecycle import record_status
from agent_service.jobs.models import Job, JobStatus

logger = logging.getLogger(__name__)

QUEUE_KEY = "jobs:queue"
DEQUEUE_BLOCK_SECONDS = 1
PROBE_INTERVAL_SECONDS = 1.0


def data_key(job_id: str) -> str:
    return f"job:{job_id}:data"


def status_key(job_id: str) -> str:
    return f"job:{job_id}:status"


def create_redis_client(redis_url: str) -> redis.Redis:
    """Build a client whose socket timeout outlasts the blocking dequeue."""

    return redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=2.0,
        socket_timeout=DEQUEUE_BLOCK_SECONDS + 4.0,
    )


class RedisJobBackend:
    """Durable backend; FIFO pop is safe across any number of producer processes."""

    name = "durable"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client
        self._live = False
        self._last_probe = 0.0

    def ping(self) -> None:
        """Round-trip to the server; marks the backend live on success."""

        with self._guard("ping"):
            self._client.ping()
        self._live = True

    def is_live(self) -> bool:
        if self._live:
            return True
        now = time.monotonic()
        if now - self._last_probe < PROBE_INTERVAL_SECONDS:
            return False
        self._last_probe = now
        try:
            self.ping()
        except BackendUnavailableError:
            return False
        logger.info("Redis connection restored")
        return True

    def save(self, job: Job) -> None:
        with self._guard(f"enqueue {job.job_id}"):
            pipe = self._client.pipeline(transaction=True)
            pipe.delete(data_key(job.job_id))
            pipe.hset(data_key(job.job_id), mapping=job.to_hash())
            pipe.set(status_key(job.job_id), job.status.value)
            pipe.lpush(QUEUE_KEY, job.job_id)
            pipe.execute()

    def pop(self) -> str | None:
        with self._guard("dequeue"):
            result = self._client.brpop([QUEUE_KEY], timeout=DEQUEUE_BLOCK_SECONDS)
        if not result:
            return None
        _, job_id = result
        return job_id

    def load(self, job_id: str) -> Job | None:
        with self._guard(f"read {job_id}"):
            mapping = self._client.hgetall(data_key(job_id))
        if not mapping or "jobId" not in mapping:
            return None
        try:
            return Job.from_hash(mapping)
        except (ValueError, json.JSONDecodeError) as error:
            logger.warning("Job %s has a malformed record in Redis: %s", job_id, error)
            return None

    def update(self, job_id: str, status: JobStatus, logs: list[str]) -> Job | None:
        current = self.load(job_id)
        if current is None:
            return None
        updated = record_status(current, status, logs)
        with self._guard(f"update {job_id}"):
            pipe = self._client.pipeline(transaction=True)
            pipe.set(status_key(job_id), status.value)
            pipe.hset(data_key(job_id), mapping=updated.to_hash())
            pipe.execute()
        return updated

    def pending_ids(self) -> list[str]:
        with self._guard("list pending"):
            newest_first = self._client.lrange(QUEUE_KEY, 0, -1)
        return list(reversed(newest_first))

    def pending_count(self) -> int:
        with self._guard("count pending"):
            return int(self._client.llen(QUEUE_KEY))

    def import_state(self, records: list[Job], pending_ids: list[str]) -> None:
        """Write records and pending ids (oldest first) carried over from memory mode."""

        with self._guard("import"):
            pipe = self._client.pipeline(transaction=True)
            for job in records:
                pipe.delete(data_key(job.job_id))
                pipe.hset(data_key(job.job_id), mapping=job.to_hash())
                pipe.set(status_key(job.job_id), job.status.value)
            for job_id in pending_ids:
                pipe.lpush(QUEUE_KEY, job_id)
            pipe.execute()

    def close(self) -> None:
        self._live = False
        try:
            self._client.close()
        except redis.RedisError as error:
            logger.error("Error closing Redis connection: %s", error)
            return
        logger.info("Redis connection closed")

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (redis.ConnectionError, redis.TimeoutError) as error:
            self._live = False
            self._last_probe = time.monotonic()
            logger.error("Redis %s failed, connection marked down: %s", operation, error)
            raise BackendUnavailableError(f"Redis connection unavailable: {error}") from error
        except redis.RedisError as error:
            logger.error("Redis %s failed: %s", operation, error)
            raise BackendUnavailableError(f"Redis error during {operation}: {error}") from error
