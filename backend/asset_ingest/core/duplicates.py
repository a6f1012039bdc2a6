"""
Duplicate Detector.

Prevents resubmitting byte-identical content to the same owner scope while
allowing the same content under a different scope (e.g. a group).

Records live in the persistence collaborator, one list per asset kind.
The detector only reads and appends through the DocumentStore interface.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from asset_ingest.core.models import (
    AssetKind,
    DuplicateCheckResult,
    DuplicateRecord,
    OwnerScope,
    UploadRequest,
)
from asset_ingest.core.store import UPLOADED_AUDIO_KEY, UPLOADED_DECAL_KEY, DocumentStore

logger = logging.getLogger("asset_ingest.dedup")

_LIST_KEYS = {
    AssetKind.AUDIO: UPLOADED_AUDIO_KEY,
    AssetKind.DECAL: UPLOADED_DECAL_KEY,
}

NOT_DUPLICATE = DuplicateCheckResult(is_duplicate=False, reason="none")


def list_key_for(kind: AssetKind) -> str:
    return _LIST_KEYS[AssetKind(kind)]


class DuplicateDetector:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _records(self, kind: AssetKind) -> list[DuplicateRecord]:
        out: list[DuplicateRecord] = []
        for raw in self._store.get(list_key_for(kind)):
            try:
                out.append(DuplicateRecord.model_validate(raw))
            except PydanticValidationError:
                # Foreign or legacy rows are skipped rather than failing the check.
                logger.debug("Skipping malformed duplicate record in %s", list_key_for(kind))
        return out

    def check_duplicate(
        self,
        content_hash: str,
        asset_kind: AssetKind,
        owner_scope: Optional[OwnerScope] = None,
    ) -> DuplicateCheckResult:
        """Match on (content_hash, normalized owner scope)."""
        scope_key = (owner_scope or OwnerScope()).normalized_key
        for record in self._records(asset_kind):
            if record.content_hash == content_hash and record.owner_scope_key == scope_key:
                logger.info(
                    "Duplicate content %s… in scope %s (asset %s)",
                    content_hash[:12], scope_key, record.asset_id,
                )
                return DuplicateCheckResult(
                    is_duplicate=True, reason="content_hash", matched_record=record
                )
        return NOT_DUPLICATE

    def check_duplicate_by_asset_id(
        self, asset_id: str, asset_kind: Optional[AssetKind] = None
    ) -> DuplicateCheckResult:
        """Asset ids are globally unique, so scope is ignored."""
        kinds = [AssetKind(asset_kind)] if asset_kind is not None else list(AssetKind)
        for kind in kinds:
            for record in self._records(kind):
                if record.asset_id == str(asset_id):
                    return DuplicateCheckResult(
                        is_duplicate=True, reason="asset_id", matched_record=record
                    )
        return NOT_DUPLICATE

    def check_request(self, request: UploadRequest) -> DuplicateCheckResult:
        return self.check_duplicate(request.content_hash, request.asset_kind, request.owner_scope)

    def record(self, record: DuplicateRecord) -> None:
        key = list_key_for(record.asset_kind)
        records = self._store.get(key)
        records.append(record.to_document())
        self._store.put(key, records)

    def record_upload(self, request: UploadRequest, asset_id: str, status: str = "pending") -> DuplicateRecord:
        record = DuplicateRecord(
            content_hash=request.content_hash,
            owner_scope_key=request.owner_scope.normalized_key,
            asset_id=str(asset_id),
            asset_kind=request.asset_kind,
            display_name=request.display_name,
            status=status,
        )
        self.record(record)
        return record

    def find_duplicates(self, requests: Iterable[UploadRequest]) -> dict[str, DuplicateCheckResult]:
        """Batch scan; keyed by display name, only duplicates are returned."""
        found: dict[str, DuplicateCheckResult] = {}
        for request in requests:
            result = self.check_request(request)
            if result.is_duplicate:
                found[request.display_name] = result
        return found
