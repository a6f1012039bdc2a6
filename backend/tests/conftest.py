from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/asset_ingest` is importable as top-level `asset_ingest` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from asset_ingest.core.config import IngestSettings, RateLimitSettings  # noqa: E402
from asset_ingest.core.network_client import NetworkClient  # noqa: E402
from asset_ingest.core.rate_limiter import RateLimitPolicy, SlidingWindowRateLimiter  # noqa: E402
from asset_ingest.core.retry import RetryController  # noqa: E402
from asset_ingest.core.store import InMemoryDocumentStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; records requested delays and returns at once."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture()
def settings() -> IngestSettings:
    # No min delay and a generous window so tests never wait on the clock.
    return IngestSettings(
        rate_limit=RateLimitSettings(max_requests=1000, window_seconds=60, min_delay_seconds=0),
        credential="test-credential",
    )


@pytest.fixture()
def fast_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(RateLimitPolicy(max_requests=1000, window_seconds=60, min_delay_seconds=0))


@pytest.fixture()
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def retry(fast_limiter: SlidingWindowRateLimiter, fake_sleep: RecordingSleep) -> RetryController:
    return RetryController(fast_limiter, max_attempts=3, backoff_base=2.0, sleep=fake_sleep)


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def make_network(settings: IngestSettings) -> Callable[..., NetworkClient]:
    """Build a NetworkClient whose requests are answered by `handler`."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        credential: Optional[str] = "test-credential",
    ) -> NetworkClient:
        return NetworkClient(settings, credential=credential, transport=httpx.MockTransport(handler))

    return _make
