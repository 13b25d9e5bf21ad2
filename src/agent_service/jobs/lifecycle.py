"""Valid job status transitions.

A job starts ``queued``, moves to ``running`` when the worker picks it up and
ends in ``completed`` or ``failed``. Terminal states have no outgoing edges;
re-enqueueing the same id creates a fresh record instead of a transition.
"""

from __future__ import annotations

from agent_service.jobs.models import Job, JobStatus, utc_now

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        super().__init__(
            f"Job {job_id}: invalid status transition {current.value} -> {target.value}",
        )
        self.job_id = job_id
        self.current = current
        self.target = target


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _TRANSITIONS[current]


def ensure_transition(job: Job, target: JobStatus) -> None:
    if not can_transition(job.status, target):
        raise InvalidTransitionError(job.job_id, job.status, target)


def record_status(job: Job, status: JobStatus, logs: list[str] | None = None) -> Job:
    """Return a copy of ``job`` with status and logs overwritten.

    Entering ``running`` stamps ``started_at``; entering a terminal state stamps
    ``completed_at``. No transition check is made here, storage backends use
    this to persist whatever the worker decided.
    """

    updated = job.copy()
    updated.status = status
    updated.logs = list(logs) if logs is not None else []
    if status is JobStatus.RUNNING:
        updated.started_at = utc_now()
    elif status.is_terminal:
        updated.completed_at = utc_now()
    return updated


def apply_transition(job: Job, target: JobStatus, logs: list[str] | None = None) -> Job:
    """Validate the move to ``target`` and return the updated copy."""

    ensure_transition(job, target)
    return record_status(job, target, logs)
