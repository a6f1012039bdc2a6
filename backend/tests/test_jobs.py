"""Tests for the command-line jobs."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from asset_ingest.core.duplicates import DuplicateDetector
from asset_ingest.core.errors import SignalUnavailable
from asset_ingest.core.models import AssetKind, ErrorKind, SignalSource, StatusSignal, TransportKind
from asset_ingest.core.orchestrator import IngestionOrchestrator
from asset_ingest.core.rate_limiter import RateLimitPolicy, SlidingWindowRateLimiter
from asset_ingest.core.retry import RetryController
from asset_ingest.core.status_resolver import StatusResolver
from asset_ingest.core.store import InMemoryDocumentStore
from asset_ingest.core.transport import AttemptResult
from asset_ingest.jobs import run_status_poll, run_submit


class OkTransport:
    kind = TransportKind.DIRECT

    async def upload(self, request, attempt_number):
        return AttemptResult.ok(self.kind, asset_id="77")

    async def check_status(self, asset_id, asset_kind):
        return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, "down")


class DownProbe:
    source = SignalSource.PUBLIC_REACHABILITY

    async def probe(self, asset_id, asset_kind) -> StatusSignal:
        raise SignalUnavailable(self.source.value, "connection refused")


def _fake_orchestrator(*args, **kwargs) -> IngestionOrchestrator:
    limiter = SlidingWindowRateLimiter(RateLimitPolicy(min_delay_seconds=0))
    return IngestionOrchestrator(
        transport=OkTransport(),
        retry=RetryController(limiter),
        detector=DuplicateDetector(InMemoryDocumentStore()),
        resolver=StatusResolver([DownProbe()]),
        store=InMemoryDocumentStore(),
    )


def _events(caplog: pytest.LogCaptureFixture) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == "asset_ingest.jobs"]


def test_run_submit_success(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    monkeypatch.setattr(run_submit.IngestionOrchestrator, "from_settings", _fake_orchestrator)
    f = tmp_path / "clip.mp3"
    f.write_bytes(b"\x01" * 2048)

    with caplog.at_level(logging.INFO, logger="asset_ingest.jobs"):
        code = run_submit.main([str(f), "--kind", "audio", "--group-id", "12"])

    assert code == 0
    event = _events(caplog)[-1]
    assert event["event"] == "ingestion_submit_result"
    assert event["asset_id"] == "77"
    assert event["error"] is None


def test_run_submit_missing_file(tmp_path: Path) -> None:
    assert run_submit.main([str(tmp_path / "missing.mp3"), "--kind", "audio"]) == 2


def test_run_status_poll_unresolvable(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    monkeypatch.setattr(run_status_poll.IngestionOrchestrator, "from_settings", _fake_orchestrator)

    with caplog.at_level(logging.INFO, logger="asset_ingest.jobs"):
        code = run_status_poll.main(["123", "--kind", AssetKind.DECAL.value])

    assert code == 3
    event = _events(caplog)[-1]
    assert event["event"] == "asset_status_unresolvable"
    assert event["reasons"] == ["public_reachability: connection refused"]
