"""Pre-submission checks (size and type).

Failures here are never retried and never reach the network.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from pathlib import PurePath

from asset_ingest.core.config import KindLimits, ValidationSettings
from asset_ingest.core.errors import ValidationError
from asset_ingest.core.models import AssetKind, UploadRequest
from asset_ingest.core.network_client import MB


@dataclass(frozen=True, slots=True)
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _type_ok(file_name: str, limits: KindLimits) -> bool:
    content_type = mimetypes.guess_type(file_name)[0]
    if content_type and content_type in limits.content_types:
        return True
    suffix = PurePath(file_name).suffix.lower()
    return bool(suffix) and suffix in [e.lower() for e in limits.extensions]


def _type_label(limits: KindLimits) -> str:
    return ", ".join(e.lstrip(".").upper() for e in limits.extensions)


def validate_upload(request: UploadRequest, settings: ValidationSettings) -> ValidationReport:
    limits = settings.audio if request.asset_kind == AssetKind.AUDIO else settings.decal
    errors: list[str] = []
    warnings: list[str] = []

    size = request.size_bytes
    size_mb = size / MB
    if size == 0:
        errors.append("File is empty")
    elif size > limits.max_bytes:
        errors.append(f"File size ({size_mb:.2f} MB) exceeds {limits.max_bytes / MB:.0f}MB limit")
    elif limits.warn_bytes is not None and size > limits.warn_bytes:
        warnings.append(
            f"File size ({size_mb:.2f} MB) exceeds recommended {limits.warn_bytes / MB:.0f}MB. "
            "Upload may fail if your account doesn't have access to larger file sizes."
        )

    if not request.display_name.strip():
        errors.append("Display name is required")

    file_name = request.file_name or request.display_name
    if limits.extensions and not _type_ok(file_name, limits):
        if limits.strict_type:
            errors.append(f"Invalid file type. Supported: {_type_label(limits)}")
        else:
            warnings.append(f"File type may not be supported. Recommended: {_type_label(limits)}")

    return ValidationReport(valid=not errors, errors=errors, warnings=warnings)


def ensure_valid(request: UploadRequest, settings: ValidationSettings) -> ValidationReport:
    """Like validate_upload, but raises ValidationError when the request is rejected."""
    report = validate_upload(request, settings)
    if not report.valid:
        raise ValidationError(report.errors)
    return report
