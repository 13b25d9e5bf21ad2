"""Storage interface shared by the durable and in-memory job backends."""

from __future__ import annotations

from typing import Protocol

from agent_service.jobs.models import Job, JobStatus


class BackendUnavailableError(RuntimeError):
    """Backend could not serve a request because its connection is down."""


class JobBackend(Protocol):
    """Protocol implemented by job storage backends."""

    name: str

    def is_live(self) -> bool:
        """Whether the backend can currently serve requests."""

    def save(self, job: Job) -> None:
        """Store ``job`` (replacing any record with the same id) and append it to the FIFO."""

    def pop(self) -> str | None:
        """Remove and return the oldest pending job id."""

    def load(self, job_id: str) -> Job | None:
        """Return the stored record or None."""

    def update(self, job_id: str, status: JobStatus, logs: list[str]) -> Job | None:
        """Overwrite status and logs of an existing record; None if unknown."""

    def pending_ids(self) -> list[str]:
        """Pending job ids, oldest first."""

    def pending_count(self) -> int:
        """Number of pending job ids."""

    def close(self) -> None:
        """Release resources held by the backend."""
