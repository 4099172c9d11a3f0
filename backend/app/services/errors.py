"""
Domain errors for the scrape scheduler.

Routers translate these into HTTP responses; services never raise HTTPException.
"""
from __future__ import annotations

from typing import Any


class ScrapeSchedulerError(Exception):
    """Base class for scrape scheduler errors."""


class TransportError(ScrapeSchedulerError):
    """Outbound call to the external actor failed or returned an unusable response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        actor: str | None = None,
        run_id: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.actor = actor
        self.run_id = run_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": str(self),
            "status": self.status_code,
            "body": self.body,
            "actor": self.actor,
            "runId": self.run_id,
        }


class InvalidStateError(ScrapeSchedulerError):
    """Requested transition is not allowed from the job's current status."""


class NotFoundError(ScrapeSchedulerError):
    """Referenced record does not exist."""


class ConfigurationError(ScrapeSchedulerError):
    """Missing or mismatched configuration (shared secret, API token)."""
