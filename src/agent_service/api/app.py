"""FastAPI application exposing the job queue.

Endpoints:
    GET  /health           queue health, mode and depth
    GET  /test             liveness check with basic configuration
    POST /run              submit a job
    GET  /status/{job_id}  job status and logs
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from agent_service import __version__
from agent_service.config import Settings
from agent_service.jobs import QueueUnavailableError
from agent_service.jobs.models import to_iso, utc_now
from agent_service.service import AgentService

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    jobId: str = Field(..., min_length=1)  # noqa: N815
    command: str = Field(..., min_length=1)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def create_app(
    settings: Settings | None = None,
    *,
    service: AgentService | None = None,
    start_worker: bool = True,
) -> FastAPI:
    """Build the app; the lifespan connects the store and runs the worker."""

    if service is None:
        service = AgentService(settings or Settings.from_env().validate())

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await run_in_threadpool(service.startup, start_worker=start_worker)
        try:
            yield
        finally:
            await run_in_threadpool(service.shutdown)

    app = FastAPI(title="Agent Service", version=__version__, lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        field_name = "request body"
        for error in exc.errors():
            location = [str(part) for part in error.get("loc", ()) if part != "body"]
            if location:
                field_name = location[-1]
                break
        return _error(400, "Bad Request", f"{field_name} is required and must be a non-empty string")

    @app.exception_handler(QueueUnavailableError)
    async def _queue_unavailable(_: Request, exc: QueueUnavailableError) -> JSONResponse:
        logger.error("Queue unavailable: %s", exc)
        return _error(503, "Service Unavailable", "Job queue is not available")

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, "Internal Server Error", "Unexpected server error")

    @app.get("/health")
    def health() -> dict:
        snapshot = service.health()
        return {
            "status": "ok",
            "timestamp": to_iso(utc_now()),
            "queue": {
                "healthy": snapshot.healthy,
                "mode": snapshot.mode,
                "pending": snapshot.pending,
            },
            "version": __version__,
        }

    @app.get("/test")
    def test_endpoint() -> dict:
        return {
            "message": "Agent Service is running!",
            "timestamp": to_iso(utc_now()),
            "config": {
                "port": service.settings.port,
                "queueMode": service.store.get_mode().value,
                "queueHealthy": service.store.is_healthy(),
            },
        }

    @app.post("/run")
    def run_job(payload: RunRequest) -> dict:
        if not service.store.is_healthy():
            raise QueueUnavailableError("Queue not available")
        job = service.store.enqueue(payload.jobId, payload.command)
        logger.info("Job submitted: %s - %s", job.job_id, job.command)
        return {"jobId": job.job_id, "status": job.status.value}

    @app.get("/status/{job_id}")
    def job_status(job_id: str) -> JSONResponse:
        if not service.store.is_healthy():
            raise QueueUnavailableError("Queue not available")
        job = service.store.get_status(job_id)
        if job is None:
            return _error(404, "Not Found", f"Job with ID '{job_id}' not found")
        body = job.to_dict()
        body.pop("command")
        return JSONResponse(status_code=200, content=body)

    return app
