"""
Error taxonomy for request handling and scheduled jobs.

Request-scoped failures are raised as EdgeUpError subclasses and rendered by
the handler registered in main.py. Batch jobs catch them per item and keep
going.
"""
from typing import Any, Dict, Optional


class EdgeUpError(Exception):
    """Base error with an HTTP status and a user-facing message."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
    public_message: Optional[str] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.public_message or self.message,
        }


class NotFound(EdgeUpError):
    """Missing event, prediction or profile."""

    status_code = 404
    error_code = "NOT_FOUND"


class ValidationError(EdgeUpError):
    """Missing or malformed request fields."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class QuotaExceeded(EdgeUpError):
    """Daily allowance and rollover are both exhausted."""

    status_code = 429
    error_code = "QUOTA_EXCEEDED"
    public_message = (
        "Daily simulation limit reached. Upgrade your plan for more simulations."
    )


class UpstreamFailure(EdgeUpError):
    """Odds API, LLM or payment provider call failed."""

    status_code = 502
    error_code = "UPSTREAM_FAILURE"
    public_message = "An upstream service is unavailable right now. Please try again."

    def __init__(self, service: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{service}: {message}", details)
        self.service = service


class PersistenceWarning(EdgeUpError):
    """
    A database write failed but the caller still gets a best-effort result.

    Never propagated to the client as an error; it is attached to the result
    as a warning string.
    """

    status_code = 200
    error_code = "PERSISTENCE_WARNING"
