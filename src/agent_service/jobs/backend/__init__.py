"""Job storage backends."""

from agent_service.jobs.backend.base import BackendUnavailableError, JobBackend
from agent_service.jobs.backend.memory_backend import MemoryJobBackend
from agent_service.jobs.backend.redis_backend import RedisJobBackend, create_redis_client

__all__ = [
    "BackendUnavailableError",
    "JobBackend",
    "MemoryJobBackend",
    "RedisJobBackend",
    "create_redis_client",
]
