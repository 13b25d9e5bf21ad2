"""CLI entrypoint for agent-service."""

import os

import rich_click as click

from agent_service import __version__
from agent_service.controllers import (
    AgentCliController,
    CommandResult,
    EnqueueCommand,
    HealthCommand,
    StatusCommand,
    WorkerCommand,
    load_settings,
)
from agent_service.jobs import QueueUnavailableError
from agent_service.logging_config import setup_logging

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AgentCliController()

_REDIS_URL_OPTION = click.option(
    "--redis-url",
    default=None,
    help="Redis URL. If omitted, REDIS_URL is used.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-service")
@click.option(
    "--log-level",
    default=None,
    help="Logging level. If omitted, LOG_LEVEL is used (default: info).",
)
def agent_service(log_level: str | None) -> None:
    """Shell-command job runner with Hub callbacks."""

    setup_logging(log_level or os.getenv("LOG_LEVEL", "info"))


@agent_service.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind address.")  # noqa: S104
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Listen port. If omitted, PORT is used (default: 4000).",
)
@_REDIS_URL_OPTION
def serve(host: str, port: int | None, redis_url: str | None) -> None:
    """Run the HTTP API together with the background worker."""

    import uvicorn

    from agent_service.api import create_app

    settings = _settings_or_exit(redis_url)
    if port is not None:
        settings.port = port
    click.echo(f"Agent Service listening on {host}:{settings.port}")
    click.echo(f"Redis URL: {settings.redis_url}")
    click.echo(f"Hub URL: {settings.hub_url}")
    uvicorn.run(create_app(settings), host=host, port=settings.port, log_config=None)


@agent_service.command("worker")
@_REDIS_URL_OPTION
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after processing this many jobs.",
)
@click.option(
    "--exit-when-idle",
    is_flag=True,
    default=False,
    help="Exit as soon as the queue is empty.",
)
def worker(redis_url: str | None, max_jobs: int | None, exit_when_idle: bool) -> None:
    """Run the job worker in the foreground (Ctrl+C finishes the current job, then exits)."""

    _settings_or_exit(redis_url)
    _emit_lines(
        CONTROLLER.run_worker(
            WorkerCommand(
                redis_url=redis_url,
                max_jobs=max_jobs,
                exit_when_idle=exit_when_idle,
            ),
        ),
    )


@agent_service.command("enqueue")
@_REDIS_URL_OPTION
@click.argument("job_id")
@click.argument("command")
def enqueue(redis_url: str | None, job_id: str, command: str) -> None:
    """Submit COMMAND as job JOB_ID to the Redis queue."""

    _settings_or_exit(redis_url)
    _emit_result(
        _queue_call(
            CONTROLLER.enqueue,
            EnqueueCommand(redis_url=redis_url, job_id=job_id, command=command),
        ),
        failure_message="Job was not enqueued.",
    )


@agent_service.command("status")
@_REDIS_URL_OPTION
@click.argument("job_id")
def status(redis_url: str | None, job_id: str) -> None:
    """Show status and logs of job JOB_ID."""

    _settings_or_exit(redis_url)
    _emit_result(
        _queue_call(CONTROLLER.status, StatusCommand(redis_url=redis_url, job_id=job_id)),
        failure_message="Job status unavailable.",
    )


@agent_service.command("health")
@_REDIS_URL_OPTION
def health(redis_url: str | None) -> None:
    """Check that the durable queue backend is reachable."""

    _settings_or_exit(redis_url)
    _emit_result(
        _queue_call(CONTROLLER.health, HealthCommand(redis_url=redis_url)),
        failure_message="Queue is not healthy in durable mode.",
    )


def _settings_or_exit(redis_url: str | None):
    try:
        return load_settings(redis_url)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _queue_call(handler, command):
    try:
        return handler(command)
    except QueueUnavailableError as error:
        raise click.ClickException(f"Queue unavailable: {error}") from error


def _emit_result(result: CommandResult, *, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_service()
