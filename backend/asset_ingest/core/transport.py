"""
Transport Layer.

Performs exactly one upload or status check. Two implementations of one
contract, chosen once at construction:

- PrivilegedTransport: host-provided channel that bypasses origin restrictions.
- DirectTransport: plain network call through NetworkClient.

FallbackTransport composes them: a privileged call that errors, or fails
with anything but a fatal classification, is repeated over the direct path.

Transports never raise for upstream failures. They return an AttemptResult
whose error_kind tells the Retry Controller whether to try again.
Persistence is not done here.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

import httpx

from asset_ingest.core.config import TimeoutSettings
from asset_ingest.core.errors import FatalTransportError, RetryableTransportError, TransportError
from asset_ingest.core.models import AssetKind, ErrorKind, OwnerScope, TransportKind, UploadRequest
from asset_ingest.core.network_client import MB, NetworkClient, upload_timeout

logger = logging.getLogger("asset_ingest.transport")

# Upstream validation codes that will never succeed on retry.
FATAL_UPSTREAM_CODES: dict[int, str] = {
    4: "File too large",
    5: "Audio duration too long",
    8: "File type not supported",
    9: "File is corrupted",
    15: "Content was rejected by moderation",
}

FATAL_HTTP_STATUSES: dict[int, str] = {
    401: "Credential rejected",
    413: "File too large",
    415: "File type not supported",
}

# Substrings a privileged channel uses when it reports the same rejections as text.
FATAL_MESSAGE_MARKERS = (
    "file too large",
    "exceeds",
    "duration too long",
    "file type not supported",
    "unsupported",
    "corrupted",
    "rejected by moderation",
)

_NUMERIC_ID = re.compile(r"^(\d+)$")
_LOCATION_ID = re.compile(r"(\d+)")


@dataclass(frozen=True, slots=True)
class AttemptResult:
    success: bool
    transport: TransportKind
    asset_id: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    payload: Any = None

    @property
    def fatal(self) -> bool:
        return self.error_kind == ErrorKind.FATAL

    @classmethod
    def ok(cls, transport: TransportKind, *, asset_id: Optional[str] = None,
           payload: Any = None, status_code: Optional[int] = None) -> "AttemptResult":
        return cls(True, transport, asset_id=asset_id, payload=payload, status_code=status_code)

    @classmethod
    def failed(cls, transport: TransportKind, kind: ErrorKind, error: str,
               status_code: Optional[int] = None) -> "AttemptResult":
        return cls(False, transport, error_kind=kind, error=error, status_code=status_code)


class AssetTransport(Protocol):
    kind: TransportKind

    async def upload(self, request: UploadRequest, attempt_number: int) -> AttemptResult:
        ...

    async def check_status(self, asset_id: str, asset_kind: AssetKind) -> AttemptResult:
        ...


class PrivilegedChannel(Protocol):
    """Host-provided channel (e.g. a desktop shell). Returns plain dicts."""

    async def upload_asset(
        self, content: bytes, name: str, asset_kind: str,
        credential: Optional[str], owner_scope: OwnerScope,
    ) -> dict[str, Any]:
        ...

    async def check_asset_status(
        self, asset_id: str, asset_kind: str, credential: Optional[str]
    ) -> dict[str, Any]:
        ...


def classify_error_message(message: str) -> ErrorKind:
    text = (message or "").lower()
    if any(marker in text for marker in FATAL_MESSAGE_MARKERS):
        return ErrorKind.FATAL
    return ErrorKind.RETRYABLE


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def extract_asset_id(response: httpx.Response) -> Optional[str]:
    """Upload endpoints answer with plain text ids, JSON, or a Location header."""
    text = (response.text or "").strip()
    match = _NUMERIC_ID.match(text)
    if match:
        return match.group(1)

    data = _json_or_none(response)
    if isinstance(data, dict):
        for field in ("Id", "assetId", "id"):
            value = data.get(field)
            if value not in (None, "", 0):
                return str(value)

    location = response.headers.get("location")
    if location:
        match = _LOCATION_ID.search(location)
        if match:
            return match.group(1)
    return None


def classify_upload_response(response: httpx.Response, transport: TransportKind) -> AttemptResult:
    status = response.status_code

    if 200 <= status < 300:
        asset_id = extract_asset_id(response)
        if asset_id:
            return AttemptResult.ok(transport, asset_id=asset_id, status_code=status)
        return AttemptResult.failed(
            transport, ErrorKind.RETRYABLE,
            "Upload succeeded but no asset ID was returned", status,
        )

    if status in FATAL_HTTP_STATUSES:
        return AttemptResult.failed(transport, ErrorKind.FATAL, FATAL_HTTP_STATUSES[status], status)

    if status == 400:
        data = _json_or_none(response)
        errors = data.get("errors") if isinstance(data, dict) else None
        first = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else {}
        code = first.get("code")
        message = first.get("message") or "Unknown error"
        if isinstance(code, int) and code in FATAL_UPSTREAM_CODES:
            return AttemptResult.failed(
                transport, ErrorKind.FATAL, f"{FATAL_UPSTREAM_CODES[code]}. Upstream error: {message}", status
            )
        detail = f"Error code {code}: {message}" if code is not None else message
        return AttemptResult.failed(transport, ErrorKind.RETRYABLE, detail, status)

    return AttemptResult.failed(
        transport, ErrorKind.RETRYABLE, f"Upload failed with status {status}", status
    )


def _strip_extension(name: str) -> str:
    return re.sub(r"\.[^/.]+$", "", name) or name


class DirectTransport:
    kind = TransportKind.DIRECT

    def __init__(self, network: NetworkClient) -> None:
        self._network = network

    async def _send(self, method: str, url: str, *, label: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._network.request(method, url, authenticated=True, **kwargs)
        except httpx.TimeoutException as e:
            raise RetryableTransportError(f"{label} timed out") from e
        except httpx.RequestError as e:
            raise RetryableTransportError(f"Connection error ({type(e).__name__})") from e

    def _failed(self, error: TransportError) -> AttemptResult:
        return AttemptResult.failed(self.kind, ErrorKind(error.kind), str(error), error.status_code)

    def _upload_target(self, request: UploadRequest) -> tuple[str, dict[str, str]]:
        endpoints = self._network.settings.endpoints
        scope = request.owner_scope
        owner: dict[str, str] = {}
        if scope.is_group:
            owner["groupId"] = scope.group_id.strip()
        elif scope.user_id:
            owner["userId"] = scope.user_id.strip()

        if request.asset_kind == AssetKind.AUDIO:
            url = endpoints.audio_upload_url
            if owner:
                url += ("&" if "?" in url else "?") + urlencode(owner)
            return url, {}
        return endpoints.decal_upload_url, owner

    async def upload(self, request: UploadRequest, attempt_number: int) -> AttemptResult:
        csrf_token = await self._network.fetch_csrf_token()
        headers = {"X-CSRF-TOKEN": csrf_token} if csrf_token else {}

        url, extra_fields = self._upload_target(request)
        file_name = request.file_name or request.display_name
        content_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        data = {"name": _strip_extension(request.display_name), **extra_fields}
        timeout = self._network.upload_timeout(request.size_bytes)

        logger.info(
            "Direct upload attempt %d: %s (%.2f MB, timeout %.0fs)",
            attempt_number, request.asset_kind.value, request.size_bytes / MB, timeout,
        )
        try:
            response = await self._send(
                "POST", url,
                label="Upload",
                headers=headers,
                timeout=timeout,
                data=data,
                files={"file": (file_name, request.content, content_type)},
            )
        except TransportError as e:
            return self._failed(e)

        return classify_upload_response(response, self.kind)

    async def check_status(self, asset_id: str, asset_kind: AssetKind) -> AttemptResult:
        """Catalog details lookup. payload is the item dict, or None when not listed."""
        endpoints = self._network.settings.endpoints
        if not str(asset_id).isdigit():
            return AttemptResult.failed(self.kind, ErrorKind.FATAL, f"Invalid asset id: {asset_id!r}")

        item_id = int(asset_id)
        try:
            response = await self._send(
                "POST", endpoints.catalog_details_url,
                label="Catalog lookup",
                json={"items": [{"itemType": "Asset", "id": item_id}]},
                timeout=self._network.settings.timeouts.secondary_probe_seconds,
            )
            status = response.status_code
            if status >= 500 or status == 429:
                raise RetryableTransportError(f"Catalog returned {status}", status_code=status)
            if status != 200:
                raise FatalTransportError(f"Catalog returned {status}", status_code=status)
            data = _json_or_none(response)
            if not isinstance(data, dict):
                raise RetryableTransportError("Malformed catalog payload", status_code=status)
        except TransportError as e:
            return self._failed(e)

        items = data.get("data") or []
        item = items[0] if isinstance(items, list) and items and isinstance(items[0], dict) else None
        return AttemptResult.ok(self.kind, asset_id=str(asset_id), payload=item, status_code=status)


class PrivilegedTransport:
    """
    Args:
        channel: host-provided bridge.
        credential: passed through to the channel, never logged.
        timeouts: bounds every channel call. Uploads scale with payload size
            up to the ceiling; status checks use the secondary probe timeout.
    """

    kind = TransportKind.PRIVILEGED

    def __init__(
        self,
        channel: PrivilegedChannel,
        credential: Optional[str] = None,
        *,
        timeouts: Optional[TimeoutSettings] = None,
    ) -> None:
        self._channel = channel
        self._credential = credential
        self._timeouts = timeouts or TimeoutSettings()

    async def upload(self, request: UploadRequest, attempt_number: int) -> AttemptResult:
        timeout = upload_timeout(self._timeouts, request.size_bytes)
        try:
            result = await asyncio.wait_for(
                self._channel.upload_asset(
                    request.content,
                    request.file_name or request.display_name,
                    request.asset_kind.value,
                    self._credential,
                    request.owner_scope,
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Privileged upload channel timed out after %.1fs", timeout)
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, f"Privileged upload timed out after {timeout:.1f}s")
        except Exception as e:  # noqa: BLE001
            # The host channel is foreign code; any failure means "use the direct path".
            logger.warning("Privileged upload channel error (%s)", type(e).__name__)
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, f"Privileged channel error: {e}")

        if not isinstance(result, dict):
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, "Malformed privileged channel result")

        asset_id = result.get("assetId") or result.get("asset_id")
        if result.get("success") and asset_id:
            return AttemptResult.ok(self.kind, asset_id=str(asset_id))
        if result.get("success"):
            return AttemptResult.failed(
                self.kind, ErrorKind.RETRYABLE, "Upload succeeded but no asset ID was returned"
            )
        error = str(result.get("error") or "Upload failed")
        return AttemptResult.failed(self.kind, classify_error_message(error), error)

    async def check_status(self, asset_id: str, asset_kind: AssetKind) -> AttemptResult:
        timeout = self._timeouts.secondary_probe_seconds
        try:
            result = await asyncio.wait_for(
                self._channel.check_asset_status(str(asset_id), AssetKind(asset_kind).value, self._credential),
                timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Privileged status channel timed out after %.1fs", timeout)
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, f"Privileged status check timed out after {timeout:.1f}s")
        except Exception as e:  # noqa: BLE001
            logger.warning("Privileged status channel error (%s)", type(e).__name__)
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, f"Privileged channel error: {e}")

        if not isinstance(result, dict):
            return AttemptResult.failed(self.kind, ErrorKind.RETRYABLE, "Malformed privileged channel result")
        if result.get("success"):
            data = result.get("data")
            return AttemptResult.ok(
                self.kind, asset_id=str(asset_id), payload=data if isinstance(data, dict) else None
            )
        return AttemptResult.failed(
            self.kind, ErrorKind.RETRYABLE, str(result.get("error") or "Status check failed")
        )


class FallbackTransport:
    """Privileged first; direct when the privileged call errors or fails non-fatally."""

    def __init__(self, primary: AssetTransport, fallback: AssetTransport) -> None:
        self._primary = primary
        self._fallback = fallback
        self.kind = primary.kind

    async def upload(self, request: UploadRequest, attempt_number: int) -> AttemptResult:
        result = await self._primary.upload(request, attempt_number)
        if result.success or result.fatal:
            return result
        logger.info("Privileged upload failed (%s); falling back to direct call.", result.error)
        return await self._fallback.upload(request, attempt_number)

    async def check_status(self, asset_id: str, asset_kind: AssetKind) -> AttemptResult:
        result = await self._primary.check_status(asset_id, asset_kind)
        if result.success or result.fatal:
            return result
        return await self._fallback.check_status(asset_id, asset_kind)


def build_transport(
    network: NetworkClient,
    channel: Optional[PrivilegedChannel] = None,
    *,
    credential: Optional[str] = None,
) -> AssetTransport:
    """Pick the transport capability once. No per-call existence checks."""
    direct = DirectTransport(network)
    if channel is None:
        return direct
    privileged = PrivilegedTransport(channel, credential, timeouts=network.settings.timeouts)
    return FallbackTransport(privileged, direct)
