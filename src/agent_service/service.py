"""Wiring of store, executor, notifier and worker for one service process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agent_service.config import Settings
from agent_service.jobs import (
    CommandExecutor,
    HubNotifier,
    QueueStore,
    QueueUnavailableError,
    Worker,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueHealth:
    """Snapshot used by health reporting."""

    healthy: bool
    mode: str
    pending: int | None


class AgentService:
    """Owns the runtime components and their startup/shutdown ordering."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: QueueStore | None = None,
        executor: CommandExecutor | None = None,
        notifier: HubNotifier | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or QueueStore(settings.redis_url)
        self.notifier = notifier or HubNotifier(settings.hub_url)
        self.worker = Worker(
            store=self.store,
            executor=executor or CommandExecutor(),
            notifier=self.notifier,
            job_timeout_seconds=settings.job_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    def startup(self, *, start_worker: bool = True) -> None:
        mode = self.store.connect()
        logger.info("Queue store ready in %s mode", mode.value)
        if not start_worker:
            return
        if self.store.is_healthy():
            self.worker.start()
        else:
            logger.warning("Background worker not started - queue store unavailable")

    def shutdown(self) -> None:
        """Stop the worker (waiting for its current job) before releasing the store."""

        self.worker.stop()
        self.store.close()
        self.notifier.close()
        logger.info("Agent service shut down")

    def health(self) -> QueueHealth:
        healthy = self.store.is_healthy()
        pending: int | None = None
        if healthy:
            try:
                pending = self.store.pending_count()
            except QueueUnavailableError:
                healthy = False
        return QueueHealth(healthy=healthy, mode=self.store.get_mode().value, pending=pending)
