"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import fakeredis
import pytest
import redis

from agent_service.jobs import HubDeliveryResult, JobStatus, QueueStore


class DownRedis:
    """Client stand-in whose server is never reachable."""

    def __init__(self) -> None:
        self.ping_calls = 0

    def ping(self) -> bool:
        self.ping_calls += 1
        raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def close(self) -> None:
        return None


@dataclass
class Notification:
    job_id: str
    status: JobStatus
    logs: list[str]
    completed_at: datetime | None


@dataclass
class RecordingNotifier:
    """Notifier double that records calls instead of posting."""

    delivered: bool = True
    calls: list[Notification] = field(default_factory=list)

    def notify(
        self,
        job_id: str,
        status: JobStatus,
        logs: list[str],
        completed_at: datetime | None = None,
    ) -> HubDeliveryResult:
        self.calls.append(Notification(job_id, status, list(logs), completed_at))
        if self.delivered:
            return HubDeliveryResult(delivered=True, status_code=200)
        return HubDeliveryResult(delivered=False, reason="connection refused (Hub may be down)")

    def close(self) -> None:
        return None

    def __enter__(self) -> RecordingNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def memory_store(sleeps: list[float]) -> QueueStore:
    """Store that failed over to memory mode without real backoff delays."""

    store = QueueStore(
        "redis://localhost:6379",
        client_factory=lambda _url: DownRedis(),
        sleep=sleeps.append,
    )
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def fake_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture()
def durable_store(fake_server: fakeredis.FakeServer, sleeps: list[float]) -> QueueStore:
    """Store connected to an in-process fake Redis server."""

    store = QueueStore(
        "redis://localhost:6379",
        client_factory=lambda _url: fakeredis.FakeRedis(
            server=fake_server,
            decode_responses=True,
        ),
        sleep=sleeps.append,
    )
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def down_client() -> DownRedis:
    return DownRedis()
