"""Error types raised by the fetch and store boundaries."""

from typing import Any, Optional


class PostPulseError(Exception):
    """Base class for PostPulse errors."""


class UpstreamError(PostPulseError):
    """The search API call failed (network, timeout, auth, rate limit)."""

    kind = "upstream"

    def __init__(self, query: str, message: str, status_code: Optional[int] = None):
        self.query = query
        self.message = message
        self.status_code = status_code
        super().__init__(f"Search for {query!r} failed: {message}")


class StoreError(PostPulseError):
    """A lookup, insert, update or query against the post store failed."""

    kind = "store"

    def __init__(
        self,
        operation: str,
        message: str,
        external_id: Optional[str] = None,
        report: Optional[Any] = None,
    ):
        self.operation = operation
        self.message = message
        self.external_id = external_id
        # Partial ReconcileReport when raised at the end of a reconciliation pass
        self.report = report
        target = f" ({external_id})" if external_id else ""
        super().__init__(f"Store {operation}{target} failed: {message}")
