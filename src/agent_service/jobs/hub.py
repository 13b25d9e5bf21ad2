"""Best-effort job completion callbacks to the Hub."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from agent_service.jobs.models import JobStatus, to_iso, utc_now

logger = logging.getLogger(__name__)

HUB_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class HubDeliveryResult:
    """Outcome of one callback attempt."""

    delivered: bool
    status_code: int = 0
    reason: str | None = None


class HubNotifier:
    """POST terminal job status to the Hub; failures are logged, never raised.

    Delivery is at most once: nothing is queued or retried.
    """

    def __init__(
        self,
        hub_url: str,
        *,
        timeout_seconds: float = HUB_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.hub_url = hub_url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def notify(
        self,
        job_id: str,
        status: JobStatus,
        logs: list[str],
        completed_at: datetime | None = None,
    ) -> HubDeliveryResult:
        payload = {
            "jobId": job_id,
            "status": status.value,
            "logs": list(logs),
            "completedAt": to_iso(completed_at or utc_now()),
        }
        logger.info("Sending Hub update for job %s: %s", job_id, status.value)

        try:
            response = self._client.post(self.hub_url, json=payload)
        except httpx.ConnectError as exc:
            return self._failed(job_id, _connect_failure_reason(exc), exc)
        except httpx.TimeoutException as exc:
            return self._failed(job_id, "request timeout", exc)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._failed(job_id, str(exc) or type(exc).__name__, exc)

        if not response.is_success:
            logger.warning(
                "Hub callback failed for job %s: HTTP %d",
                job_id,
                response.status_code,
            )
            return HubDeliveryResult(
                delivered=False,
                status_code=response.status_code,
                reason=f"HTTP {response.status_code}",
            )

        logger.info("Hub update sent successfully for job %s", job_id)
        return HubDeliveryResult(delivered=True, status_code=response.status_code)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HubNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    @staticmethod
    def _failed(job_id: str, reason: str, exc: Exception) -> HubDeliveryResult:
        logger.warning("Hub callback failed for job %s: %s", job_id, reason)
        logger.debug("Hub callback error detail for job %s: %r", job_id, exc)
        return HubDeliveryResult(delivered=False, reason=reason)


def _connect_failure_reason(exc: httpx.ConnectError) -> str:
    """Tell a refused connection apart from DNS or routing failures."""

    cause: BaseException | None = exc
    seen: set[int] = set()
    while cause is not None and id(cause) not in seen:
        seen.add(id(cause))
        if isinstance(cause, ConnectionRefusedError):
            return "connection refused (Hub may be down)"
        cause = cause.__cause__ or cause.__context__
    return f"connection failed: {exc}"
