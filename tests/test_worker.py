from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

import allure
import pytest

from agent_service.jobs import (
    ExecutionResult,
    JobStatus,
    QueueStore,
    Worker,
    WorkerRunSummary,
)

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Worker"),
]


@dataclass
class ScriptedExecutor:
    """Executor double: ``exit N`` commands succeed only for N == 0."""

    commands: list[str] = field(default_factory=list)
    error: Exception | None = None

    def execute(self, command: str, timeout_seconds: float) -> ExecutionResult:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        code = int(command.removeprefix("exit ").strip() or 0)
        return ExecutionResult(
            success=code == 0,
            logs=[f"[system] Process exited with code: {code}"],
            exit_code=code,
        )


class BlockingExecutor:
    """Executor double that holds the job until released."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, command: str, timeout_seconds: float) -> ExecutionResult:
        self.started.set()
        self.release.wait(timeout=5)
        return ExecutionResult(success=True, logs=["[system] Process exited with code: 0"])


def _worker(store: QueueStore, notifier, executor=None) -> Worker:
    return Worker(
        store=store,
        executor=executor or ScriptedExecutor(),
        notifier=notifier,
        job_timeout_seconds=5,
        poll_interval_seconds=0.01,
        idle_sleep_seconds=0.01,
    )


@pytest.mark.parametrize("store_fixture", ["memory_store", "durable_store"])
def test_run_once_drives_jobs_to_terminal_status(
    store_fixture: str,
    request: pytest.FixtureRequest,
    notifier,
) -> None:
    store: QueueStore = request.getfixturevalue(store_fixture)
    store.enqueue("ok", "exit 0")
    store.enqueue("bad", "exit 1")
    worker = _worker(store, notifier)

    first = worker.run_once()
    second = worker.run_once()

    assert (first.processed, first.succeeded) == (1, 1)
    assert (second.processed, second.failed) == (1, 1)
    ok = store.get_status("ok")
    bad = store.get_status("bad")
    assert ok is not None
    assert bad is not None
    assert ok.status is JobStatus.COMPLETED
    assert ok.logs == ["[system] Process exited with code: 0"]
    assert ok.started_at is not None
    assert ok.completed_at is not None
    assert bad.status is JobStatus.FAILED
    assert bad.logs == ["[system] Process exited with code: 1"]
    assert [(call.job_id, call.status) for call in notifier.calls] == [
        ("ok", JobStatus.COMPLETED),
        ("bad", JobStatus.FAILED),
    ]
    assert notifier.calls[0].completed_at == ok.completed_at


def test_hub_delivery_failure_does_not_change_job_outcome(
    memory_store: QueueStore,
    notifier,
) -> None:
    notifier.delivered = False
    memory_store.enqueue("j1", "exit 0")

    _worker(memory_store, notifier).run_once()

    job = memory_store.get_status("j1")
    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert len(notifier.calls) == 1


def test_unexpected_executor_error_fails_job_and_still_notifies(
    memory_store: QueueStore,
    notifier,
) -> None:
    memory_store.enqueue("j1", "exit 0")
    executor = ScriptedExecutor(error=RuntimeError("fork bomb detected"))

    summary = _worker(memory_store, notifier, executor).run_once()

    assert summary.failed == 1
    job = memory_store.get_status("j1")
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.logs == ["[system] Worker error: fork bomb detected"]
    assert job.completed_at is not None
    assert len(notifier.calls) == 1
    assert notifier.calls[0].status is JobStatus.FAILED
    assert notifier.calls[0].logs == ["[system] Worker error: fork bomb detected"]


def test_run_once_reports_idle_and_unhealthy_polls(memory_store: QueueStore, notifier) -> None:
    idle = _worker(memory_store, notifier).run_once()
    unconnected = _worker(QueueStore("redis://localhost:6379"), notifier).run_once()

    assert idle == WorkerRunSummary(idle_polls=1)
    assert unconnected == WorkerRunSummary(unhealthy_polls=1)
    assert notifier.calls == []


def test_same_id_enqueued_twice_runs_once(memory_store: QueueStore, notifier) -> None:
    executor = ScriptedExecutor()
    memory_store.enqueue("j1", "exit 0")
    memory_store.enqueue("j1", "exit 0")
    worker = _worker(memory_store, notifier, executor)

    summary = worker.run_loop(exit_when_idle=True)

    assert summary.processed == 1
    assert summary.skipped == 1
    assert executor.commands == ["exit 0"]
    assert len(notifier.calls) == 1


def test_run_loop_honours_max_jobs(memory_store: QueueStore, notifier) -> None:
    for index in range(3):
        memory_store.enqueue(f"j{index}", "exit 0")

    summary = _worker(memory_store, notifier).run_loop(max_jobs=2)

    assert summary.processed == 2
    assert memory_store.pending_count() == 1


def test_background_worker_processes_jobs_and_stop_waits_for_current_job(
    memory_store: QueueStore,
    notifier,
) -> None:
    executor = BlockingExecutor()
    worker = _worker(memory_store, notifier, executor)
    worker.start()
    worker.start()
    memory_store.enqueue("j1", "sleep 1")

    assert executor.started.wait(timeout=5)
    assert worker.current_job_id == "j1"
    running = memory_store.get_status("j1")
    assert running is not None
    assert running.status is JobStatus.RUNNING

    stopper = threading.Thread(target=worker.stop)
    stopper.start()
    stopper.join(timeout=0.2)
    assert stopper.is_alive()

    executor.release.set()
    stopper.join(timeout=5)
    assert not stopper.is_alive()
    assert worker.is_running is False
    job = memory_store.get_status("j1")
    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert len(notifier.calls) == 1


def test_stop_without_start_is_a_no_op(memory_store: QueueStore, notifier) -> None:
    worker = _worker(memory_store, notifier)

    worker.stop()
    worker.stop()

    assert worker.is_running is False


def test_stopped_worker_leaves_new_jobs_queued(memory_store: QueueStore, notifier) -> None:
    worker = _worker(memory_store, notifier)
    worker.start()
    worker.stop()

    memory_store.enqueue("late", "exit 0")

    job = memory_store.get_status("late")
    assert job is not None
    assert job.status is JobStatus.QUEUED
    assert notifier.calls == []


class CountingExecutor:
    """Executor double that tracks how many jobs run at the same time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self.release = threading.Event()

    def execute(self, command: str, timeout_seconds: float) -> ExecutionResult:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        self.release.wait(timeout=5)
        with self._lock:
            self.active -= 1
        return ExecutionResult(success=True, logs=["[system] Process exited with code: 0"])


def test_restart_after_timed_out_stop_never_runs_two_jobs_at_once(
    memory_store: QueueStore,
    notifier,
) -> None:
    executor = CountingExecutor()
    for index in range(3):
        memory_store.enqueue(f"j{index}", "exit 0")
    worker = _worker(memory_store, notifier, executor)
    worker.start()
    assert executor.started.wait(timeout=5)

    worker.stop(timeout=0.05)
    assert worker.is_running is True

    starter = threading.Thread(target=worker.start)
    starter.start()
    starter.join(timeout=0.2)
    assert starter.is_alive()

    executor.release.set()
    starter.join(timeout=5)
    assert not starter.is_alive()
    deadline = time.monotonic() + 5
    while memory_store.pending_count() and time.monotonic() < deadline:
        time.sleep(0.01)
    worker.stop()

    assert executor.max_active == 1
    assert sorted(call.job_id for call in notifier.calls) == ["j0", "j1", "j2"]
    for index in range(3):
        job = memory_store.get_status(f"j{index}")
        assert job is not None
        assert job.status is JobStatus.COMPLETED


class _StoreCrash(Exception):
    pass


def test_hub_is_told_failed_even_when_status_updates_raise(
    memory_store: QueueStore,
    notifier,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    memory_store.enqueue("j1", "exit 0")

    def _crash(*_args, **_kwargs):
        raise _StoreCrash("record table corrupted")

    monkeypatch.setattr(memory_store, "update_status", _crash)

    summary = _worker(memory_store, notifier).run_once()

    assert summary.failed == 1
    assert [(call.job_id, call.status) for call in notifier.calls] == [("j1", JobStatus.FAILED)]
    assert notifier.calls[0].logs == ["[system] Worker error: record table corrupted"]
