"""
Error taxonomy for sync runs.

Transport errors carry the HTTP status and body so the orchestrator can
record them in the run log; persistence errors carry the failing key.
"""

from typing import Any, Dict, Optional


class SyncError(Exception):
    """Base class for every failure a sync run can report."""


class ConnectivityError(SyncError):
    """Database or provider API unreachable at run start."""


class TransportError(SyncError):
    """A provider request could not be completed."""


class HttpError(TransportError):
    """
    Non-2xx response or network failure returned by the HTTP client.

    ``status`` is None for network-level failures (timeout, reset).
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        response_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.response_body = response_body
        self.headers = headers or {}

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        body = f" - {self.response_body}" if self.response_body else ""
        return f"HTTP {self.status}: {self.message}{body}"


class RateLimited(HttpError):
    """HTTP 429 from the provider."""

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds requested by the ``Retry-After`` header, if numeric."""
        value = self.headers.get("Retry-After") or self.headers.get("retry-after")
        if value is None:
            return None
        try:
            return max(float(value), 0.0)
        except ValueError:
            return None


class TransientServerError(HttpError):
    """HTTP 5xx, timeout or dropped connection."""


class PermanentRequestError(HttpError):
    """Non-429 4xx or a malformed payload where one was mandatory."""


class RetriesExhausted(TransportError):
    """The retry budget of a request ran out."""

    def __init__(self, message: str, attempts: int, last_error: Exception):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ReportGenerationFailed(SyncError):
    """An asynchronous report task ended in an error state."""


class PersistenceError(SyncError):
    """A batch could not be written; the whole batch was rolled back."""

    def __init__(self, message: str, key: Any = None, result: Any = None):
        super().__init__(message)
        self.key = key
        self.result = result


class LoopGuardTriggered(UserWarning):
    """Pagination cursor failed to advance; treated as end of data."""
