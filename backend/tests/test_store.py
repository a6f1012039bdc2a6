"""Tests for the document stores (SQLite in-memory for the SQL store)."""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from asset_ingest.core.duplicates import DuplicateDetector
from asset_ingest.core.models import AssetKind, OwnerScope, UploadRequest
from asset_ingest.core.store import InMemoryDocumentStore, SqlDocumentStore



def _sqlite_store() -> SqlDocumentStore:
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    return SqlDocumentStore(engine)


def test_sql_store_round_trip() -> None:
    store = _sqlite_store()
    assert store.get("uploaded_audio") == []

    store.put("uploaded_audio", [{"asset_id": "1"}])
    store.put("uploaded_audio", [{"asset_id": "1"}, {"asset_id": "2"}])

    assert store.get("uploaded_audio") == [{"asset_id": "1"}, {"asset_id": "2"}]
    assert store.get("uploaded_decal") == []


def test_detector_works_over_sql_store() -> None:
    detector = DuplicateDetector(_sqlite_store())
    request = UploadRequest.build(b"x", display_name="x.png", asset_kind=AssetKind.DECAL,
                                  owner_scope=OwnerScope(group_id="9"))
    detector.record_upload(request, "42")

    result = detector.check_duplicate(request.content_hash, AssetKind.DECAL, OwnerScope(group_id="9"))
    assert result.is_duplicate
    assert result.matched_record.created_at is not None


def test_memory_store_returns_copies() -> None:
    store = InMemoryDocumentStore()
    store.put("k", [{"a": 1}])

    records = store.get("k")
    records.append({"b": 2})
    records[0]["a"] = 99

    assert store.get("k") == [{"a": 1}]
