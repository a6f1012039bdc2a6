"""
Retry Controller.

Wraps single transport attempts with bounded exponential backoff.

Rules:
- Admission from the rate limiter before EVERY attempt. Backoff sleep is added
  on top of admission waiting, it does not replace it.
- Retryable failure: sleep base ** attempt_number seconds (2s, 4s, ...), retry.
- Fatal failure: stop immediately, surface the upstream message verbatim.
- Attempts for one request are strictly sequential.
- Cancellation of the calling task interrupts admission, the in-flight call or
  the backoff sleep alike. Nothing is recorded as a terminal failure then.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from asset_ingest.core.errors import RateLimitExceeded
from asset_ingest.core.models import (
    AttemptOutcome,
    ErrorKind,
    IngestionFailure,
    UploadAttempt,
    utcnow,
)
from asset_ingest.core.rate_limiter import SlidingWindowRateLimiter
from asset_ingest.core.transport import AttemptResult

logger = logging.getLogger("asset_ingest.retry")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0

Operation = Callable[[int], Awaitable[AttemptResult]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    result: Optional[AttemptResult]
    attempts: tuple[UploadAttempt, ...]
    error: Optional[IngestionFailure] = None
    backoff_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None and self.result.success


def _attempt_record(request_id: str, number: int, started_at, result: AttemptResult) -> UploadAttempt:
    if result.success:
        outcome = AttemptOutcome.SUCCESS
    elif result.fatal:
        outcome = AttemptOutcome.FATAL
    else:
        outcome = AttemptOutcome.RETRYABLE
    return UploadAttempt(
        request_id=request_id,
        attempt_number=number,
        started_at=started_at,
        transport_used=result.transport,
        outcome=outcome,
        error_kind=result.error_kind,
        error=result.error,
    )


class RetryController:
    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._limiter = limiter
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def backoff_for(self, attempt_number: int) -> float:
        return self._backoff_base ** attempt_number

    async def run(
        self,
        key: str,
        operation: Operation,
        *,
        request_id: str = "",
        max_attempts: Optional[int] = None,
    ) -> RetryOutcome:
        limit = max_attempts or self._max_attempts
        attempts: list[UploadAttempt] = []
        backoff_total = 0.0
        last: Optional[AttemptResult] = None

        for number in range(1, limit + 1):
            try:
                await self._limiter.admit(key)
            except RateLimitExceeded as e:
                attempts.append(
                    UploadAttempt(
                        request_id=request_id,
                        attempt_number=number,
                        started_at=utcnow(),
                        outcome=AttemptOutcome.RATE_LIMITED,
                        error_kind=ErrorKind.RATE_LIMITED,
                        error=str(e),
                    )
                )
                return RetryOutcome(
                    result=last,
                    attempts=tuple(attempts),
                    error=IngestionFailure(
                        kind=ErrorKind.RATE_LIMITED,
                        message=str(e),
                        retry_after_seconds=e.wait_seconds,
                    ),
                    backoff_seconds=backoff_total,
                )

            started_at = utcnow()
            result = await operation(number)
            attempts.append(_attempt_record(request_id, number, started_at, result))

            if result.success:
                return RetryOutcome(result, tuple(attempts), None, backoff_total)

            last = result
            if result.fatal:
                logger.warning("'%s' attempt %d failed fatally: %s", key, number, result.error)
                return RetryOutcome(
                    result,
                    tuple(attempts),
                    IngestionFailure(kind=ErrorKind.FATAL, message=result.error or "Fatal error"),
                    backoff_total,
                )

            if number < limit:
                delay = self.backoff_for(number)
                logger.info(
                    "'%s' attempt %d/%d failed (%s); retrying in %.1fs",
                    key, number, limit, result.error, delay,
                )
                await self._sleep(delay)
                backoff_total += delay

        message = last.error if last is not None and last.error else "Upload failed"
        return RetryOutcome(
            last,
            tuple(attempts),
            IngestionFailure(
                kind=ErrorKind.EXHAUSTED,
                message=f"{message} (after {limit} attempts)",
            ),
            backoff_total,
        )
