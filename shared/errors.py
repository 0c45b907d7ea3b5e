"""
Shared error handling for the Stats API gate.

Authorization decisions are never raised; they travel as ``Denied`` values.
The exceptions here cover infrastructure failures of the collaborators the
gate depends on, so that a flaky datastore is reported as such instead of
being mistaken for a rejected API key.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class StatsGateException(Exception):
    """Base exception for the Stats API gate."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(StatsGateException):
    """Invalid or unsupported service configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class CollaboratorUnavailableError(StatsGateException):
    """A storage or network collaborator could not answer."""

    status_code = 503

    def __init__(self, collaborator: str, message: str = "Collaborator unavailable",
                 details: Optional[Dict[str, Any]] = None):
        self.collaborator = collaborator
        super().__init__("COLLABORATOR_UNAVAILABLE", f"{collaborator}: {message}", details)


class RateLimitStoreError(CollaboratorUnavailableError):
    """The rate-limit counter store is unreachable."""

    def __init__(self, message: str = "Rate limit store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("rate_limit_store", message, details)
