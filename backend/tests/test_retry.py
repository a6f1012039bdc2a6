"""Tests for the retry controller."""
from __future__ import annotations

import pytest

from asset_ingest.core.models import AttemptOutcome, ErrorKind, TransportKind
from asset_ingest.core.rate_limiter import RateLimitPolicy, SlidingWindowRateLimiter
from asset_ingest.core.retry import RetryController
from asset_ingest.core.transport import AttemptResult

from conftest import RecordingSleep


def _scripted(*results: AttemptResult):
    calls: list[int] = []

    async def operation(attempt_number: int) -> AttemptResult:
        calls.append(attempt_number)
        return results[min(len(calls), len(results)) - 1]

    return operation, calls


RETRYABLE = AttemptResult.failed(TransportKind.DIRECT, ErrorKind.RETRYABLE, "Upload failed with status 503", 503)
FATAL = AttemptResult.failed(TransportKind.DIRECT, ErrorKind.FATAL, "File too large. Upstream error: too big", 400)
OK = AttemptResult.ok(TransportKind.DIRECT, asset_id="4242")


@pytest.mark.asyncio
async def test_fatal_error_stops_after_one_attempt(retry: RetryController, fake_sleep: RecordingSleep) -> None:
    operation, calls = _scripted(FATAL)

    outcome = await retry.run("upload", operation, request_id="r1")

    assert calls == [1]
    assert outcome.success is False
    assert outcome.error.kind == ErrorKind.FATAL
    assert outcome.error.message == "File too large. Upstream error: too big"
    assert [a.outcome for a in outcome.attempts] == [AttemptOutcome.FATAL]
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_retryable_errors_exhaust_with_exponential_backoff(
    retry: RetryController, fake_sleep: RecordingSleep
) -> None:
    operation, calls = _scripted(RETRYABLE)

    outcome = await retry.run("upload", operation, request_id="r2")

    assert calls == [1, 2, 3]
    assert fake_sleep.calls == [2.0, 4.0]
    assert outcome.error.kind == ErrorKind.EXHAUSTED
    assert outcome.error.message.endswith("(after 3 attempts)")
    assert [a.attempt_number for a in outcome.attempts] == [1, 2, 3]
    assert all(a.request_id == "r2" for a in outcome.attempts)


@pytest.mark.asyncio
async def test_success_after_retries(retry: RetryController, fake_sleep: RecordingSleep) -> None:
    operation, calls = _scripted(RETRYABLE, RETRYABLE, OK)

    outcome = await retry.run("upload", operation)

    assert outcome.success
    assert outcome.result.asset_id == "4242"
    assert calls == [1, 2, 3]
    assert outcome.backoff_seconds == pytest.approx(6.0)
    assert outcome.attempts[-1].outcome == AttemptOutcome.SUCCESS


@pytest.mark.asyncio
async def test_max_attempts_override(retry: RetryController) -> None:
    operation, calls = _scripted(RETRYABLE)

    outcome = await retry.run("status", operation, max_attempts=2)

    assert calls == [1, 2]
    assert outcome.error.kind == ErrorKind.EXHAUSTED


@pytest.mark.asyncio
async def test_admission_is_required_before_every_attempt(fake_sleep: RecordingSleep) -> None:
    limiter = SlidingWindowRateLimiter(RateLimitPolicy(max_requests=100, window_seconds=60, min_delay_seconds=0))
    retry = RetryController(limiter, max_attempts=3, sleep=fake_sleep)
    operation, _ = _scripted(RETRYABLE)

    await retry.run("upload", operation)

    assert limiter.status("upload").requests_in_window == 3


@pytest.mark.asyncio
async def test_refused_admission_surfaces_rate_limited(fake_sleep: RecordingSleep) -> None:
    limiter = SlidingWindowRateLimiter(
        RateLimitPolicy(max_requests=1, window_seconds=60, min_delay_seconds=0, auto_throttle=False)
    )
    retry = RetryController(limiter, max_attempts=3, sleep=fake_sleep)
    operation, calls = _scripted(RETRYABLE)

    outcome = await retry.run("upload", operation)

    # First attempt admitted, second refused.
    assert calls == [1]
    assert outcome.error.kind == ErrorKind.RATE_LIMITED
    assert outcome.error.retry_after_seconds > 0
    assert outcome.attempts[-1].outcome == AttemptOutcome.RATE_LIMITED


def test_backoff_schedule() -> None:
    retry = RetryController(SlidingWindowRateLimiter(), backoff_base=2.0)
    assert [retry.backoff_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    with pytest.raises(ValueError):
        RetryController(SlidingWindowRateLimiter(), max_attempts=0)
