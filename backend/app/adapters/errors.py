"""Typed errors raised by external collaborators (AI services, store)."""

from __future__ import annotations


class UpstreamServiceError(Exception):
    """Raised when an embedding or language-model request fails.

    Attributes:
        service: Upstream name (e.g. "VOYAGE", "ANTHROPIC").
        reason: Human-readable error description.
    """

    def __init__(self, service: str, reason: str) -> None:
        self.service = service
        self.reason = reason
        super().__init__(f"[{service}] {reason}")


class RateLimitedError(UpstreamServiceError):
    """Rate limiting outlasted the retry bound or the remaining run budget."""

    def __init__(self, service: str, reason: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(service, reason)


class StoreError(Exception):
    """A single store read/write failed; the surrounding unit is skipped."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"store.{operation}: {reason}")


class StoreUnavailableError(StoreError):
    """Store connectivity was lost; aborts the outer batch."""


class SlugConflictError(StoreError):
    """An event insert collided with an existing slug."""
