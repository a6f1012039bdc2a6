"""Tests for pre-submission validation."""
from __future__ import annotations

import pytest

from asset_ingest.core.config import ValidationSettings
from asset_ingest.core.errors import ValidationError
from asset_ingest.core.models import AssetKind, UploadRequest
from asset_ingest.core.network_client import MB
from asset_ingest.core.validation import ensure_valid, validate_upload

LIMITS = ValidationSettings()


def _req(size: int, name: str, kind: AssetKind) -> UploadRequest:
    return UploadRequest.build(b"\x01" * size, display_name=name, asset_kind=kind, file_name=name)


def test_small_audio_is_valid() -> None:
    report = validate_upload(_req(1024, "clip.mp3", AssetKind.AUDIO), LIMITS)
    assert report.valid and not report.warnings


def test_large_audio_warns_then_fails() -> None:
    warn = validate_upload(_req(11 * MB, "clip.mp3", AssetKind.AUDIO), LIMITS)
    assert warn.valid
    assert "recommended 10MB" in warn.warnings[0]

    fail = validate_upload(_req(51 * MB, "clip.mp3", AssetKind.AUDIO), LIMITS)
    assert not fail.valid
    assert "exceeds 50MB limit" in fail.errors[0]


def test_unknown_audio_type_only_warns() -> None:
    report = validate_upload(_req(10, "clip.xyz", AssetKind.AUDIO), LIMITS)
    assert report.valid
    assert report.warnings


def test_decal_type_is_strict() -> None:
    report = validate_upload(_req(10, "logo.tiff", AssetKind.DECAL), LIMITS)
    assert not report.valid
    assert report.errors == ["Invalid file type. Supported: PNG, JPG, JPEG, GIF, BMP"]

    assert validate_upload(_req(10, "logo.JPG", AssetKind.DECAL), LIMITS).valid


def test_empty_content_is_invalid() -> None:
    report = validate_upload(_req(0, "logo.png", AssetKind.DECAL), LIMITS)
    assert not report.valid
    assert "File is empty" in report.errors


def test_ensure_valid_raises_with_all_errors() -> None:
    with pytest.raises(ValidationError) as exc_info:
        ensure_valid(_req(0, "logo.tiff", AssetKind.DECAL), LIMITS)

    assert len(exc_info.value.errors) == 2
