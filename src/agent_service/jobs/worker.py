"""Queue worker that executes shell-command jobs one at a time."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from agent_service.jobs.executor import SYSTEM_TAG, CommandExecutor
from agent_service.jobs.hub import HubNotifier
from agent_service.jobs.lifecycle import apply_transition
from agent_service.jobs.models import Job, JobStatus
from agent_service.jobs.queue_store import QueueStore

logger = logging.getLogger(__name__)

IDLE_SLEEP_SECONDS = 0.1


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    idle_polls: int = 0
    unhealthy_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.skipped += other.skipped
        self.idle_polls += other.idle_polls
        self.unhealthy_polls += other.unhealthy_polls


class Worker:
    """Pulls jobs from the store, runs them, persists the result and notifies the Hub.

    Exactly one job is processed at a time. Running several jobs in parallel
    means running several workers against the same store.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: QueueStore,
        executor: CommandExecutor,
        notifier: HubNotifier,
        job_timeout_seconds: float = 300.0,
        poll_interval_seconds: float = 1.0,
        idle_sleep_seconds: float = IDLE_SLEEP_SECONDS,
    ) -> None:
        self.store = store
        self.executor = executor
        self.notifier = notifier
        self.job_timeout_seconds = job_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.idle_sleep_seconds = idle_sleep_seconds
        self._stop_event = threading.Event()
        self._thread_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._current_job_id: str | None = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def current_job_id(self) -> str | None:
        return self._current_job_id

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Run the loop on a background thread; no-op if already running.

        A loop that is still finishing its last job after ``stop()`` timed out
        is joined first, so two loops never process jobs at the same time.
        """

        with self._thread_lock:
            previous = self._thread
            if previous is not None and previous.is_alive():
                if not self._stop_event.is_set():
                    logger.info("Worker is already running")
                    return
                if previous is not threading.current_thread():
                    logger.info(
                        "Waiting for previous worker loop to finish job %s",
                        self._current_job_id,
                    )
                    previous.join()
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self.run_loop,
                kwargs={"stop_event": stop_event},
                daemon=True,
                name="agent-worker",
            )
            self._thread.start()
        logger.info("Worker started, polling for jobs...")

    def stop(self, timeout: float | None = None) -> None:
        """Stop picking up jobs and wait for the in-flight job to finish.

        No-op if the worker is not running. The running command is never
        interrupted; with the default ``timeout`` the call returns only after
        its terminal status is persisted and the Hub was notified.
        """

        with self._thread_lock:
            thread = self._thread
            self._stop_event.set()
        if thread is None or not thread.is_alive():
            logger.info("Worker is not running")
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("Worker still finishing job %s", self._current_job_id)
            return
        with self._thread_lock:
            if self._thread is thread:
                self._thread = None
        logger.info("Worker stopped")

    def request_stop(self) -> None:
        self._stop_event.set()

    # -- loop ------------------------------------------------------------------

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        exit_when_idle: bool = False,
        stop_event: threading.Event | None = None,
    ) -> WorkerRunSummary:
        """Poll until stopped.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            exit_when_idle: Return on the first empty poll instead of waiting.
            stop_event: Event ending this loop; defaults to the worker's current one.
        """

        stop_event = stop_event or self._stop_event
        aggregate = WorkerRunSummary()
        while not stop_event.is_set():
            if max_jobs is not None and aggregate.processed >= max_jobs:
                break
            try:
                summary = self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Error in job polling loop")
                stop_event.wait(self.poll_interval_seconds)
                continue

            aggregate.add(summary)
            if summary.unhealthy_polls:
                logger.debug("Queue store not healthy, waiting...")
                stop_event.wait(self.poll_interval_seconds)
            elif summary.idle_polls:
                if exit_when_idle:
                    break
                stop_event.wait(self.idle_sleep_seconds)
        logger.info("Worker loop ended (processed=%d)", aggregate.processed)
        return aggregate

    def run_foreground(
        self,
        *,
        max_jobs: int | None = None,
        exit_when_idle: bool = False,
    ) -> WorkerRunSummary:
        """Run the loop on the calling thread; SIGINT/SIGTERM stop it gracefully."""

        stop_event = threading.Event()
        self._stop_event = stop_event
        with self._signal_handlers():
            return self.run_loop(
                max_jobs=max_jobs,
                exit_when_idle=exit_when_idle,
                stop_event=stop_event,
            )

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if not self.store.is_healthy():
            summary.unhealthy_polls = 1
            return summary

        job = self.store.dequeue()
        if job is None:
            summary.idle_polls = 1
            return summary

        if job.status is not JobStatus.QUEUED:
            # Same id enqueued twice before it ran; the record was already processed.
            logger.warning(
                "Skipping job %s dequeued with status %s",
                job.job_id,
                job.status.value,
            )
            summary.skipped = 1
            return summary

        summary.processed = 1
        if self.process_job(job) is JobStatus.COMPLETED:
            summary.succeeded = 1
        else:
            summary.failed = 1
        return summary

    # -- job processing --------------------------------------------------------

    def process_job(self, job: Job) -> JobStatus:
        """Drive ``job`` to a terminal status; always notifies the Hub once."""

        self._current_job_id = job.job_id
        logger.info("Processing job %s: %s", job.job_id, job.command)
        try:
            try:
                running = apply_transition(job, JobStatus.RUNNING)
                self.store.update_status(job.job_id, JobStatus.RUNNING)

                result = self.executor.execute(job.command, self.job_timeout_seconds)
                terminal = JobStatus.COMPLETED if result.success else JobStatus.FAILED
                finished = apply_transition(running, terminal, result.logs)
                persisted = self.store.update_status(job.job_id, terminal, result.logs)
            except Exception as error:  # noqa: BLE001
                logger.exception("Error processing job %s", job.job_id)
                return self._fail_unexpected(job, error)

            if terminal is JobStatus.COMPLETED:
                logger.info("Job %s completed successfully", job.job_id)
            else:
                logger.info("Job %s failed", job.job_id)
            completed_at = (persisted or finished).completed_at
            self.notifier.notify(job.job_id, terminal, result.logs, completed_at)
            return terminal
        finally:
            self._current_job_id = None

    def _fail_unexpected(self, job: Job, error: Exception) -> JobStatus:
        logs = [f"{SYSTEM_TAG} Worker error: {error}"]
        completed_at: datetime | None = None
        try:
            persisted = self.store.update_status(job.job_id, JobStatus.FAILED, logs)
        except Exception as update_error:  # noqa: BLE001
            logger.error(
                "Failed to update job %s status after error: %s",
                job.job_id,
                update_error,
            )
        else:
            completed_at = persisted.completed_at if persisted is not None else None
        self.notifier.notify(job.job_id, JobStatus.FAILED, logs, completed_at)
        return JobStatus.FAILED

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, finishing current job before exit", name)
            self._stop_event.set()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
