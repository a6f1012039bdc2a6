"""Tests for owner-scoped duplicate detection."""
from __future__ import annotations

from asset_ingest.core.dedup import compute_content_hash
from asset_ingest.core.duplicates import DuplicateDetector
from asset_ingest.core.models import AssetKind, OwnerScope, UploadRequest
from asset_ingest.core.store import UPLOADED_AUDIO_KEY, InMemoryDocumentStore


def test_content_hash_is_sha256_hex() -> None:
    assert compute_content_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert compute_content_hash(b"a") != compute_content_hash(b"b")


def test_same_content_same_scope_is_duplicate(store: InMemoryDocumentStore) -> None:
    detector = DuplicateDetector(store)
    request = UploadRequest.build(b"beat", display_name="beat.mp3", asset_kind=AssetKind.AUDIO,
                                  owner_scope=OwnerScope(group_id="A"))
    detector.record_upload(request, "100")

    result = detector.check_duplicate(request.content_hash, AssetKind.AUDIO, OwnerScope(group_id="A"))

    assert result.is_duplicate
    assert result.reason == "content_hash"
    assert result.matched_record.asset_id == "100"


def test_same_content_other_scope_is_not_duplicate(store: InMemoryDocumentStore) -> None:
    detector = DuplicateDetector(store)
    request = UploadRequest.build(b"beat", display_name="beat.mp3", asset_kind=AssetKind.AUDIO,
                                  owner_scope=OwnerScope(group_id="A"))
    detector.record_upload(request, "100")

    assert not detector.check_duplicate(request.content_hash, AssetKind.AUDIO, OwnerScope(group_id="B")).is_duplicate
    assert not detector.check_duplicate(request.content_hash, AssetKind.AUDIO, OwnerScope()).is_duplicate
    # Kinds are kept apart.
    assert not detector.check_duplicate(request.content_hash, AssetKind.DECAL, OwnerScope(group_id="A")).is_duplicate


def test_individual_uploads_share_one_scope(store: InMemoryDocumentStore) -> None:
    detector = DuplicateDetector(store)
    request = UploadRequest.build(b"img", display_name="a.png", asset_kind=AssetKind.DECAL,
                                  owner_scope=OwnerScope(user_id="1"))
    detector.record_upload(request, "7")

    other_user = OwnerScope(user_id="2", group_id="  ")
    assert detector.check_duplicate(request.content_hash, AssetKind.DECAL, other_user).is_duplicate


def test_asset_id_match_ignores_scope_and_kind(store: InMemoryDocumentStore) -> None:
    detector = DuplicateDetector(store)
    request = UploadRequest.build(b"img", display_name="a.png", asset_kind=AssetKind.DECAL,
                                  owner_scope=OwnerScope(group_id="A"))
    detector.record_upload(request, "555")

    result = detector.check_duplicate_by_asset_id("555")
    assert result.is_duplicate and result.reason == "asset_id"
    assert not detector.check_duplicate_by_asset_id("555", AssetKind.AUDIO).is_duplicate
    assert not detector.check_duplicate_by_asset_id("556").is_duplicate


def test_malformed_rows_are_skipped() -> None:
    store = InMemoryDocumentStore({UPLOADED_AUDIO_KEY: [{"garbage": True}]})
    detector = DuplicateDetector(store)

    assert not detector.check_duplicate("abc", AssetKind.AUDIO).is_duplicate


def test_find_duplicates_batch(store: InMemoryDocumentStore) -> None:
    detector = DuplicateDetector(store)
    first = UploadRequest.build(b"one", display_name="one.mp3", asset_kind=AssetKind.AUDIO)
    detector.record_upload(first, "1")

    again = UploadRequest.build(b"one", display_name="one-again.mp3", asset_kind=AssetKind.AUDIO)
    fresh = UploadRequest.build(b"two", display_name="two.mp3", asset_kind=AssetKind.AUDIO)

    found = detector.find_duplicates([again, fresh])

    assert list(found) == ["one-again.mp3"]
    assert found["one-again.mp3"].matched_record.asset_id == "1"
