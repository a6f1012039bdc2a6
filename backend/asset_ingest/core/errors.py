from __future__ import annotations

"""Controlled ingestion errors.

Intent:
- Failures the pipeline can absorb (a single status probe, a retryable
  attempt) are signals for logging and control flow, not reasons to abort.
- Anything that exhausts its retries is surfaced to the caller with its
  kind intact so the CLI/UI can decide what to do with it.
"""

from typing import Optional


class IngestionError(RuntimeError):
    """Base error for the ingestion core."""


class ConfigError(IngestionError):
    """Raised when settings (env or YAML) are invalid."""


class ValidationError(IngestionError):
    """Raised when content fails size/type checks before submission. Never retried."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class TransportError(IngestionError):
    """A failed upload/check attempt, classified at the transport boundary."""

    kind = "retryable"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FatalTransportError(TransportError):
    """Explicit upstream rejection. Aborts remaining retries."""

    kind = "fatal"


class RetryableTransportError(TransportError):
    """Timeouts, 5xx, malformed payloads. Retried up to the attempt limit."""

    kind = "retryable"


class RateLimitExceeded(IngestionError):
    """Non-throttling limiter mode: admission refused, carries the required wait."""

    def __init__(self, key: str, wait_seconds: float) -> None:
        self.key = key
        self.wait_seconds = max(0.0, float(wait_seconds))
        super().__init__(
            f"Rate limit exceeded for '{key}'. Please wait {self.wait_seconds:.1f} seconds."
        )


class SignalUnavailable(IngestionError):
    """One status probe could not be obtained. Absorbed by the resolver."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")
