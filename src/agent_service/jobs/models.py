"""Domain models for queued shell-command jobs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class QueueMode(str, Enum):
    """Storage mode of a queue store instance."""

    DURABLE = "durable"
    MEMORY = "memory"


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def from_iso(value: str | None) -> datetime | None:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class Job:
    """A unit of work and its persisted record."""

    job_id: str
    command: str
    status: JobStatus = JobStatus.QUEUED
    logs: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def copy(self) -> Job:
        return Job(
            job_id=self.job_id,
            command=self.command,
            status=self.status,
            logs=list(self.logs),
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire representation with camelCase keys and ISO-8601 timestamps."""

        return {
            "jobId": self.job_id,
            "command": self.command,
            "status": self.status.value,
            "logs": list(self.logs),
            "createdAt": to_iso(self.created_at),
            "startedAt": to_iso(self.started_at),
            "completedAt": to_iso(self.completed_at),
        }

    def to_hash(self) -> dict[str, str]:
        """Flat string mapping for a Redis hash; unset timestamps are omitted."""

        mapping = {
            "jobId": self.job_id,
            "command": self.command,
            "status": self.status.value,
            "logs": json.dumps(self.logs),
            "createdAt": to_iso(self.created_at) or "",
        }
        if self.started_at is not None:
            mapping["startedAt"] = to_iso(self.started_at) or ""
        if self.completed_at is not None:
            mapping["completedAt"] = to_iso(self.completed_at) or ""
        return mapping

    @classmethod
    def from_hash(cls, mapping: dict[str, str]) -> Job:
        raw_logs = mapping.get("logs")
        logs = json.loads(raw_logs) if raw_logs else []
        return cls(
            job_id=mapping["jobId"],
            command=mapping.get("command", ""),
            status=JobStatus(mapping.get("status", JobStatus.QUEUED.value)),
            logs=[str(line) for line in logs],
            created_at=from_iso(mapping.get("createdAt")) or utc_now(),
            started_at=from_iso(mapping.get("startedAt")),
            completed_at=from_iso(mapping.get("completedAt")),
        )
