"""Runtime configuration for the queue, worker and Hub callback."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

MIN_JOB_TIMEOUT_MS = 1_000
MIN_POLL_INTERVAL_MS = 100


@dataclass(slots=True)
class Settings:
    """Service settings, passed explicitly into the store and worker."""

    port: int = 4000
    redis_url: str = "redis://localhost:6379"
    hub_url: str = "http://localhost:3000/hub/update-status"
    job_timeout_ms: int = 300_000
    poll_interval_ms: int = 1_000
    log_level: str = "info"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            port=_env_int("PORT", 4000),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379").strip(),
            hub_url=os.getenv("HUB_URL", "http://localhost:3000/hub/update-status").strip(),
            job_timeout_ms=_env_int("JOB_TIMEOUT", 300_000),
            poll_interval_ms=_env_int("POLL_INTERVAL", 1_000),
            log_level=os.getenv("LOG_LEVEL", "info").strip() or "info",
        )

    @property
    def job_timeout_seconds(self) -> float:
        return self.job_timeout_ms / 1000.0

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    def validate(self) -> Settings:
        """Raise on missing or invalid values, clamp timing values to their floors."""

        missing = [
            env_name
            for env_name, value in (("REDIS_URL", self.redis_url), ("HUB_URL", self.hub_url))
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")
        if not 1 <= self.port <= 65535:
            raise ValueError("PORT must be a valid number between 1 and 65535.")
        _validate_url("REDIS_URL", self.redis_url, schemes={"redis", "rediss", "unix"})
        _validate_url("HUB_URL", self.hub_url, schemes={"http", "https"})

        if self.job_timeout_ms < MIN_JOB_TIMEOUT_MS:
            logger.warning(
                "JOB_TIMEOUT is very low (%dms), using minimum of %dms",
                self.job_timeout_ms,
                MIN_JOB_TIMEOUT_MS,
            )
            self.job_timeout_ms = MIN_JOB_TIMEOUT_MS
        if self.poll_interval_ms < MIN_POLL_INTERVAL_MS:
            logger.warning(
                "POLL_INTERVAL is very low (%dms), using minimum of %dms",
                self.poll_interval_ms,
                MIN_POLL_INTERVAL_MS,
            )
            self.poll_interval_ms = MIN_POLL_INTERVAL_MS

        logger.info(
            "Configuration validated: port=%d job_timeout=%dms poll_interval=%dms",
            self.port,
            self.job_timeout_ms,
            self.poll_interval_ms,
        )
        return self


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _validate_url(name: str, value: str, *, schemes: set[str]) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in schemes:
        expected = ", ".join(f"{scheme}://" for scheme in sorted(schemes))
        raise ValueError(f"Invalid {name}: {value!r}. Expected one of: {expected}")
    if parsed.scheme != "unix" and not parsed.netloc:
        raise ValueError(f"Invalid {name}: {value!r}. Expected an absolute URL.")
