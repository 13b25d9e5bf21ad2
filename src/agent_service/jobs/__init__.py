"""Job queue, lifecycle, execution and Hub reporting."""

from agent_service.jobs.executor import CommandExecutor, ExecutionResult
from agent_service.jobs.hub import HubDeliveryResult, HubNotifier
from agent_service.jobs.lifecycle import InvalidTransitionError
from agent_service.jobs.models import Job, JobStatus, QueueMode
from agent_service.jobs.queue_store import QueueStore, QueueUnavailableError
from agent_service.jobs.worker import Worker, WorkerRunSummary

__all__ = [
    "CommandExecutor",
    "ExecutionResult",
    "HubDeliveryResult",
    "HubNotifier",
    "InvalidTransitionError",
    "Job",
    "JobStatus",
    "QueueMode",
    "QueueStore",
    "QueueUnavailableError",
    "Worker",
    "WorkerRunSummary",
]
