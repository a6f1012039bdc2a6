"""Ingestion core primitives.

- Rate-limited, retried submissions through a privileged or direct transport
- Owner-scoped duplicate detection by content hash
- Multi-signal status resolution (pending / accepted / declined)
"""

from asset_ingest.core.config import IngestSettings, load_settings
from asset_ingest.core.dedup import compute_content_hash
from asset_ingest.core.duplicates import DuplicateDetector
from asset_ingest.core.errors import (
    ConfigError,
    FatalTransportError,
    IngestionError,
    RateLimitExceeded,
    RetryableTransportError,
    SignalUnavailable,
    TransportError,
    ValidationError,
)
from asset_ingest.core.models import (
    AssetKind,
    AssetStatusVerdict,
    DuplicateCheckResult,
    DuplicateRecord,
    ErrorKind,
    IngestionResult,
    OwnerScope,
    Unresolvable,
    UploadRequest,
    VerdictStatus,
)
from asset_ingest.core.network_client import NetworkClient
from asset_ingest.core.orchestrator import IngestionOrchestrator
from asset_ingest.core.rate_limiter import RateLimitPolicy, SlidingWindowRateLimiter
from asset_ingest.core.retry import RetryController
from asset_ingest.core.status_resolver import StatusResolver
from asset_ingest.core.store import InMemoryDocumentStore, SqlDocumentStore
from asset_ingest.core.transport import build_transport

__all__ = [
    "IngestSettings",
    "load_settings",
    "compute_content_hash",
    "DuplicateDetector",
    "ConfigError",
    "FatalTransportError",
    "IngestionError",
    "RateLimitExceeded",
    "RetryableTransportError",
    "SignalUnavailable",
    "TransportError",
    "ValidationError",
    "AssetKind",
    "AssetStatusVerdict",
    "DuplicateCheckResult",
    "DuplicateRecord",
    "ErrorKind",
    "IngestionResult",
    "OwnerScope",
    "Unresolvable",
    "UploadRequest",
    "VerdictStatus",
    "NetworkClient",
    "IngestionOrchestrator",
    "RateLimitPolicy",
    "SlidingWindowRateLimiter",
    "RetryController",
    "StatusResolver",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "build_transport",
]
