"""
Ingestion Orchestrator.

The single entry point callers use. It enforces the submission workflow:

1. Validation       -> size/type, never retried
2. DuplicateDetector -> may short-circuit with the existing asset
3. RetryController  -> admission + transport attempts with backoff
4. Persistence      -> duplicate record and ingestion history, on success only

NO upload happens unless the request passes validation and dedup.
submit() never raises for ingestion failures; the error kind travels in
IngestionResult.error. Cancellation propagates and persists nothing, so the
same request can be submitted again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from asset_ingest.core.config import IngestSettings
from asset_ingest.core.duplicates import DuplicateDetector
from asset_ingest.core.errors import ValidationError
from asset_ingest.core.models import (
    AssetKind,
    DuplicateCheckResult,
    ErrorKind,
    IngestionFailure,
    IngestionResult,
    OwnerScope,
    UploadRequest,
)
from asset_ingest.core.network_client import NetworkClient
from asset_ingest.core.rate_limiter import SlidingWindowRateLimiter
from asset_ingest.core.retry import RetryController
from asset_ingest.core.signals import (
    AuthenticatedReachabilityProbe,
    CatalogMetadataProbe,
    DetailPageProbe,
    PublicReachabilityProbe,
    ResolverPolicy,
)
from asset_ingest.core.status_resolver import ResolveResult, StatusResolver
from asset_ingest.core.store import INGESTION_HISTORY_KEY, DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from asset_ingest.core.transport import AssetTransport, PrivilegedChannel, build_transport
from asset_ingest.core.validation import ensure_valid

logger = logging.getLogger("asset_ingest.orchestrator")

UPLOAD_KEY = "upload"


class IngestionOrchestrator:
    """
    Orchestration layer for submissions and status queries.

    All collaborators are injected. Use from_settings() to wire the defaults.
    """

    def __init__(
        self,
        *,
        transport: AssetTransport,
        retry: RetryController,
        detector: DuplicateDetector,
        resolver: StatusResolver,
        store: DocumentStore,
        settings: Optional[IngestSettings] = None,
        network: Optional[NetworkClient] = None,
    ) -> None:
        self.transport = transport
        self.retry = retry
        self.detector = detector
        self.resolver = resolver
        self.store = store
        self.settings = settings or IngestSettings()
        self._network = network

    @classmethod
    def from_settings(
        cls,
        settings: IngestSettings,
        *,
        store: Optional[DocumentStore] = None,
        channel: Optional[PrivilegedChannel] = None,
        limiter: Optional[SlidingWindowRateLimiter] = None,
        network: Optional[NetworkClient] = None,
    ) -> "IngestionOrchestrator":
        credential = settings.credential.get_secret_value() if settings.credential else None

        if limiter is None:
            default_policy, overrides = settings.rate_limit_policies()
            limiter = SlidingWindowRateLimiter(default_policy, overrides=overrides)
        if network is None:
            network = NetworkClient(settings, credential=credential)
        if store is None:
            store = SqlDocumentStore.from_url(settings.database_url) if settings.database_url else InMemoryDocumentStore()

        transport = build_transport(network, channel, credential=credential)
        retry = RetryController(
            limiter,
            max_attempts=settings.retry.max_attempts,
            backoff_base=settings.retry.backoff_base_seconds,
        )
        policy = ResolverPolicy.from_settings(settings.resolver)
        probe_attempts = settings.retry.probe_max_attempts
        secondary_timeout = settings.timeouts.secondary_probe_seconds
        resolver = StatusResolver(
            [
                PublicReachabilityProbe(network, retry, max_attempts=probe_attempts),
                AuthenticatedReachabilityProbe(network, retry, max_attempts=probe_attempts),
                CatalogMetadataProbe(transport, retry, policy, max_attempts=probe_attempts),
                DetailPageProbe(network, retry, policy, max_attempts=probe_attempts, timeout=secondary_timeout),
            ],
            policy=policy,
            cache_size=settings.resolver.verdict_cache_size,
        )
        return cls(
            transport=transport,
            retry=retry,
            detector=DuplicateDetector(store),
            resolver=resolver,
            store=store,
            settings=settings,
            network=network,
        )

    async def submit(self, request: UploadRequest, *, skip_duplicate_check: bool = False) -> IngestionResult:
        """Validate, dedup, upload with retries, then record. Returns a terminal result."""
        try:
            report = ensure_valid(request, self.settings.validation)
        except ValidationError as e:
            logger.info("Request %s rejected before upload: %s", request.request_id, e)
            return IngestionResult(
                request_id=request.request_id,
                error=IngestionFailure(kind=ErrorKind.VALIDATION, message=str(e)),
            )
        for warning in report.warnings:
            logger.warning("Request %s: %s", request.request_id, warning)

        if not skip_duplicate_check:
            dup = self.detector.check_request(request)
            if dup.is_duplicate and dup.matched_record is not None:
                logger.info(
                    "Request %s is a duplicate of asset %s; skipping upload",
                    request.request_id, dup.matched_record.asset_id,
                )
                return IngestionResult(
                    request_id=request.request_id,
                    asset_id=dup.matched_record.asset_id,
                    duplicate_of=dup.matched_record,
                )

        async def attempt(number: int):
            return await self.transport.upload(request, number)

        try:
            outcome = await self.retry.run(UPLOAD_KEY, attempt, request_id=request.request_id)
        except asyncio.CancelledError:
            logger.info("Request %s cancelled; nothing recorded, it can be resubmitted", request.request_id)
            raise

        if not outcome.success:
            logger.warning(
                "Request %s failed (%s) after %d attempt(s): %s",
                request.request_id, outcome.error.kind.value, len(outcome.attempts), outcome.error.message,
            )
            return IngestionResult(
                request_id=request.request_id, error=outcome.error, attempts=outcome.attempts
            )

        asset_id = outcome.result.asset_id
        self.detector.record_upload(request, asset_id)
        result = IngestionResult(request_id=request.request_id, asset_id=asset_id, attempts=outcome.attempts)
        self._append_history(request, result)
        logger.info(
            "Request %s uploaded as asset %s (%d attempt(s), %.1fs backoff)",
            request.request_id, asset_id, len(outcome.attempts), outcome.backoff_seconds,
        )
        return result

    def _append_history(self, request: UploadRequest, result: IngestionResult) -> None:
        history = self.store.get(INGESTION_HISTORY_KEY)
        history.append(
            {
                "request_id": result.request_id,
                "asset_id": result.asset_id,
                "asset_kind": request.asset_kind.value,
                "display_name": request.display_name,
                "content_hash": request.content_hash,
                "owner_scope_key": request.owner_scope.normalized_key,
                "attempts": len(result.attempts),
                "completed_at": result.completed_at.isoformat(),
            }
        )
        self.store.put(INGESTION_HISTORY_KEY, history)

    async def resolve_status(self, asset_id: str, asset_kind: AssetKind, *, refresh: bool = False) -> ResolveResult:
        return await self.resolver.resolve(asset_id, asset_kind, refresh=refresh)

    async def poll_status(
        self, asset_id: str, asset_kind: AssetKind, *, interval: float = 30.0, max_polls: int = 10
    ) -> ResolveResult:
        return await self.resolver.poll_until_settled(asset_id, asset_kind, interval=interval, max_polls=max_polls)

    def check_duplicate(
        self, content_hash: str, asset_kind: AssetKind, owner_scope: Optional[OwnerScope] = None
    ) -> DuplicateCheckResult:
        return self.detector.check_duplicate(content_hash, asset_kind, owner_scope)

    def check_duplicate_by_asset_id(
        self, asset_id: str, asset_kind: Optional[AssetKind] = None
    ) -> DuplicateCheckResult:
        return self.detector.check_duplicate_by_asset_id(asset_id, asset_kind)

    async def close(self) -> None:
        if self._network is not None:
            await self._network.close()
