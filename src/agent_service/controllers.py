"""Controllers for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from agent_service.config import Settings
from agent_service.jobs import CommandExecutor, HubNotifier, QueueMode, QueueStore, Worker
from agent_service.jobs.models import Job, to_iso


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for foreground worker execution."""

    redis_url: str | None
    max_jobs: int | None
    exit_when_idle: bool


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for job submission."""

    redis_url: str | None
    job_id: str
    command: str


@dataclass(slots=True)
class StatusCommand:
    """CLI input for job inspection."""

    redis_url: str | None
    job_id: str


@dataclass(slots=True)
class HealthCommand:
    """CLI input for queue health check."""

    redis_url: str | None


@dataclass(slots=True)
class CommandResult:
    """Lines to render in CLI plus an overall success flag."""

    lines: list[str]
    success: bool


class AgentCliController:
    """Coordinates queue, worker and inspection CLI operations."""

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = load_settings(command.redis_url)
        with _store(settings) as store, HubNotifier(settings.hub_url) as notifier:
            worker = Worker(
                store=store,
                executor=CommandExecutor(),
                notifier=notifier,
                job_timeout_seconds=settings.job_timeout_seconds,
                poll_interval_seconds=settings.poll_interval_seconds,
            )
            summary = worker.run_foreground(
                max_jobs=command.max_jobs,
                exit_when_idle=command.exit_when_idle,
            )
            mode = store.get_mode().value

        return [
            f"Worker summary ({mode} mode): "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} skipped={summary.skipped} "
            f"idle_polls={summary.idle_polls} unhealthy_polls={summary.unhealthy_polls}",
        ]

    def enqueue(self, command: EnqueueCommand) -> CommandResult:
        settings = load_settings(command.redis_url)
        with _store(settings) as store:
            if store.get_mode() is QueueMode.MEMORY:
                return _redis_required(settings)
            job = store.enqueue(command.job_id, command.command)
        return CommandResult(
            lines=[f"Job enqueued: job_id={job.job_id} status={job.status.value}"],
            success=True,
        )

    def status(self, command: StatusCommand) -> CommandResult:
        settings = load_settings(command.redis_url)
        with _store(settings) as store:
            if store.get_mode() is QueueMode.MEMORY:
                return _redis_required(settings)
            job = store.get_status(command.job_id)
        if job is None:
            return CommandResult(lines=[f"Job not found: {command.job_id}"], success=False)
        return CommandResult(lines=_render_job(job), success=True)

    def health(self, command: HealthCommand) -> CommandResult:
        settings = load_settings(command.redis_url)
        with _store(settings) as store:
            healthy = store.is_healthy()
            mode = store.get_mode()
            pending = store.pending_count() if healthy else None
        lines = [
            f"Queue mode: {mode.value}",
            f"Healthy: {'yes' if healthy else 'no'}",
            f"Pending jobs: {pending if pending is not None else 'unknown'}",
        ]
        return CommandResult(lines=lines, success=healthy and mode is QueueMode.DURABLE)


def load_settings(redis_url: str | None = None) -> Settings:
    settings = Settings.from_env()
    if redis_url:
        settings = replace(settings, redis_url=redis_url)
    return settings.validate()


@contextmanager
def _store(settings: Settings) -> Iterator[QueueStore]:
    store = QueueStore(settings.redis_url)
    store.connect()
    try:
        yield store
    finally:
        store.close()


def _redis_required(settings: Settings) -> CommandResult:
    return CommandResult(
        lines=[
            f"Redis is unreachable at {settings.redis_url}; "
            "memory mode is process-local, so nothing was read or written.",
        ],
        success=False,
    )


def _render_job(job: Job) -> list[str]:
    lines = [
        f"Job: {job.job_id}",
        f"Status: {job.status.value}",
        f"Command: {job.command}",
        f"Created: {to_iso(job.created_at)}",
        f"Started: {to_iso(job.started_at) or '-'}",
        f"Completed: {to_iso(job.completed_at) or '-'}",
    ]
    if job.logs:
        lines.append("Logs:")
        lines.extend(f"  {line}" for line in job.logs)
    return lines
