"""Error hierarchy shared by the scheduling core and its transports.

Every failure a caller can observe is one of four kinds. Transports map
``http_status`` / ``error_code`` to their own status signalling::

    from push_scheduler.errors import NotFoundError

    raise NotFoundError("Schedule not found", details={"schedule_id": 7})
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SchedulerError(Exception):
    """Base exception for all push-scheduler errors."""

    error_code = "scheduler_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.error_code, "message": self.message}


class AuthError(SchedulerError):
    """Missing, malformed, unverifiable or foreign-audience credential.

    ``reason`` names the sub-case for logging. The public message never
    does, so callers probing credentials learn nothing from it.
    """

    error_code = "unauthorized"
    http_status = 401

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("Unauthorized", details=details)
        self.reason = reason


class ValidationError(SchedulerError):
    """Payload is not a JSON object or the cron pattern does not decode."""

    error_code = "invalid_request"
    http_status = 400


class NotFoundError(SchedulerError):
    """Schedule id is unknown or owned by someone else."""

    error_code = "not_found"
    http_status = 404


class InternalError(SchedulerError):
    """Persistence failure not attributable to the caller."""

    error_code = "internal_error"
    http_status = 500
