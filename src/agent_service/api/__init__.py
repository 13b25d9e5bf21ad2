"""HTTP surface for job submission, status and health."""

from agent_service.api.app import create_app

__all__ = ["create_app"]
