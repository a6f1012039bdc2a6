"""
Status signal probes.

Each probe asks one external source one question about an asset and turns
the answer into a StatusSignal. Probes do not decide the verdict; the
StatusResolver fuses them by precedence.

Every probe call is rate-limited (key "status") and retried through the
Retry Controller. When a source cannot be reached the probe raises
SignalUnavailable, which the resolver absorbs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

import httpx
from bs4 import BeautifulSoup

from asset_ingest.core.config import (
    DEFAULT_NEGATIVE_PHRASES,
    DEFAULT_POSITIVE_PHRASES,
    ResolverSettings,
)
from asset_ingest.core.errors import SignalUnavailable
from asset_ingest.core.models import (
    AssetKind,
    ErrorKind,
    SignalReading,
    SignalSource,
    StatusSignal,
    TransportKind,
    utcnow,
)
from asset_ingest.core.network_client import NetworkClient
from asset_ingest.core.retry import RetryController
from asset_ingest.core.transport import AssetTransport, AttemptResult

logger = logging.getLogger("asset_ingest.signals")

STATUS_KEY = "status"


@dataclass(frozen=True)
class ResolverPolicy:
    """Tunable thresholds for the fusion heuristics."""
    young_asset_threshold: timedelta = timedelta(minutes=5)
    # Owner can see it, public can't, and it is older than this: read as declined.
    owner_only_decline_after: Optional[timedelta] = timedelta(hours=24)
    positive_phrases: tuple[str, ...] = field(default=tuple(DEFAULT_POSITIVE_PHRASES))
    negative_phrases: tuple[str, ...] = field(default=tuple(DEFAULT_NEGATIVE_PHRASES))

    @classmethod
    def from_settings(cls, settings: ResolverSettings) -> "ResolverPolicy":
        return cls(
            young_asset_threshold=settings.young_asset_threshold,
            owner_only_decline_after=settings.owner_only_decline_after,
            positive_phrases=tuple(settings.positive_phrases),
            negative_phrases=tuple(settings.negative_phrases),
        )


class SignalProbe(Protocol):
    source: SignalSource

    async def probe(self, asset_id: str, asset_kind: AssetKind) -> StatusSignal:
        ...


def _phrase_pattern(phrases: tuple[str, ...]) -> Optional[re.Pattern[str]]:
    cleaned = [p.strip() for p in phrases if p and p.strip()]
    if not cleaned:
        return None
    alternatives = "|".join(re.escape(p) for p in cleaned)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _HttpProbe:
    """GET through the rate limiter and retry controller; 5xx/429/timeouts are retried."""

    source: SignalSource

    def __init__(
        self,
        network: NetworkClient,
        retry: RetryController,
        *,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._network = network
        self._retry = retry
        self._max_attempts = max_attempts
        self._timeout = timeout

    async def _get(self, url: str, *, authenticated: bool) -> httpx.Response:
        async def attempt(_: int) -> AttemptResult:
            try:
                response = await self._network.request(
                    "GET", url, authenticated=authenticated, timeout=self._timeout
                )
            except httpx.TimeoutException:
                return AttemptResult.failed(TransportKind.DIRECT, ErrorKind.RETRYABLE, "timed out")
            except httpx.RequestError as e:
                return AttemptResult.failed(
                    TransportKind.DIRECT, ErrorKind.RETRYABLE, f"connection error ({type(e).__name__})"
                )
            if response.status_code >= 500 or response.status_code == 429:
                return AttemptResult.failed(
                    TransportKind.DIRECT, ErrorKind.RETRYABLE,
                    f"HTTP {response.status_code}", response.status_code,
                )
            return AttemptResult.ok(TransportKind.DIRECT, payload=response, status_code=response.status_code)

        outcome = await self._retry.run(STATUS_KEY, attempt, max_attempts=self._max_attempts)
        if not outcome.success:
            logger.debug("%s probe gave up after %d attempt(s)", self.source.value, len(outcome.attempts))
            raise SignalUnavailable(self.source.value, outcome.error.message if outcome.error else "unreachable")
        return outcome.result.payload

    def _delivery_url(self, asset_id: str) -> str:
        return self._network.settings.endpoints.asset_delivery_url.format(asset_id=asset_id)


class PublicReachabilityProbe(_HttpProbe):
    """Delivery check with NO credential. The ground truth when it answers."""

    source = SignalSource.PUBLIC_REACHABILITY

    async def probe(self, asset_id: str, asset_kind: AssetKind) -> StatusSignal:
        response = await self._get(self._delivery_url(asset_id), authenticated=False)
        status = response.status_code
        if status == 200:
            reading, confidence = SignalReading.ACCEPTED, 0.95
        elif status == 404:
            reading, confidence = SignalReading.DECLINED, 0.85
        elif status == 403:
            reading, confidence = SignalReading.GATED, 0.6
        else:
            reading, confidence = SignalReading.INCONCLUSIVE, 0.2
        return StatusSignal(
            source=self.source, raw_indicator=f"HTTP {status}", confidence=confidence, reading=reading
        )


class AuthenticatedReachabilityProbe(_HttpProbe):
    """Same delivery check with the submitter's credential.

    Only tells us whether the owner can see the asset. Never evidence of approval.
    """

    source = SignalSource.AUTHENTICATED_REACHABILITY

    async def probe(self, asset_id: str, asset_kind: AssetKind) -> StatusSignal:
        if not self._network.has_credential:
            raise SignalUnavailable(self.source.value, "no credential configured")
        response = await self._get(self._delivery_url(asset_id), authenticated=True)
        status = response.status_code
        if status == 200:
            reading, confidence = SignalReading.OWNER_VISIBLE, 0.6
        elif status == 404:
            reading, confidence = SignalReading.DECLINED, 0.7
        else:
            reading, confidence = SignalReading.INCONCLUSIVE, 0.2
        return StatusSignal(
            source=self.source, raw_indicator=f"HTTP {status}", confidence=confidence, reading=reading
        )


_EXPLICIT_STATUS = {
    "approved": SignalReading.ACCEPTED,
    "accepted": SignalReading.ACCEPTED,
    "rejected": SignalReading.DECLINED,
    "declined": SignalReading.DECLINED,
    "moderated": SignalReading.DECLINED,
    "pending": SignalReading.PENDING,
    "unprocessed": SignalReading.PENDING,
    "reviewing": SignalReading.PENDING,
}


class CatalogMetadataProbe:
    """Catalog lookup through the transport (privileged channel first).

    Supplies the display name, creation time and restriction flags. An explicit
    moderation field is taken at face value; otherwise only young assets are
    read (as pending), everything else is corroboration.
    """

    source = SignalSource.CATALOG_METADATA

    def __init__(
        self,
        transport: AssetTransport,
        retry: RetryController,
        policy: ResolverPolicy,
        *,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._transport = transport
        self._retry = retry
        self._policy = policy
        self._max_attempts = max_attempts
        self._clock = clock

    async def probe(self, asset_id: str, asset_kind: AssetKind) -> StatusSignal:
        async def attempt(_: int) -> AttemptResult:
            return await self._transport.check_status(asset_id, asset_kind)

        outcome = await self._retry.run(STATUS_KEY, attempt, max_attempts=self._max_attempts)
        if not outcome.success:
            raise SignalUnavailable(self.source.value, outcome.error.message if outcome.error else "unreachable")

        item = outcome.result.payload
        if not item:
            return StatusSignal(source=self.source, raw_indicator="not listed", confidence=0.1)

        name = item.get("name") or None
        created_at = parse_timestamp(item.get("created") or item.get("createdAt"))
        restricted = bool(item.get("isRestricted") or item.get("isLimited") or item.get("isLimitedUnique"))

        explicit = item.get("assetStatus") or item.get("status") or item.get("moderationStatus")
        reading = _EXPLICIT_STATUS.get(str(explicit).strip().lower()) if explicit else None
        if reading is not None:
            return StatusSignal(
                source=self.source, raw_indicator=f"status={explicit}", confidence=0.7,
                reading=reading, name=name, created_at=created_at, restricted=restricted,
            )

        if created_at is not None and self._clock() - created_at < self._policy.young_asset_threshold:
            return StatusSignal(
                source=self.source, raw_indicator="recently created", confidence=0.4,
                reading=SignalReading.PENDING, name=name, created_at=created_at, restricted=restricted,
            )

        for_sale = item.get("isForSale") is True or item.get("priceStatus") == "OnSale"
        return StatusSignal(
            source=self.source,
            raw_indicator=f"listed restricted={restricted} for_sale={for_sale}",
            confidence=0.3,
            name=name,
            created_at=created_at,
            restricted=restricted,
        )


class DetailPageProbe(_HttpProbe):
    """Last resort: scrape the public detail page for moderation wording."""

    source = SignalSource.DETAIL_PAGE

    def __init__(self, network: NetworkClient, retry: RetryController, policy: ResolverPolicy, **kwargs: Any) -> None:
        super().__init__(network, retry, **kwargs)
        self._negative = _phrase_pattern(policy.negative_phrases)
        self._positive = _phrase_pattern(policy.positive_phrases)

    async def probe(self, asset_id: str, asset_kind: AssetKind) -> StatusSignal:
        url = self._network.settings.endpoints.detail_page_url.format(asset_id=asset_id)
        response = await self._get(url, authenticated=True)

        if response.status_code == 404:
            return StatusSignal(
                source=self.source, raw_indicator="HTTP 404", confidence=0.6, reading=SignalReading.DECLINED
            )
        if response.status_code != 200:
            return StatusSignal(source=self.source, raw_indicator=f"HTTP {response.status_code}", confidence=0.1)

        soup = BeautifulSoup(response.text or "", "html.parser")
        heading = soup.find("h1") or soup.find("title")
        name = heading.get_text(strip=True) if heading else None
        text = soup.get_text(" ", strip=True)

        # Negative wording is checked first; review pages often mention both.
        match = self._negative.search(text) if self._negative else None
        if match:
            return StatusSignal(
                source=self.source, raw_indicator=f"phrase '{match.group(0).lower()}'",
                confidence=0.5, reading=SignalReading.DECLINED, name=name or None,
            )
        match = self._positive.search(text) if self._positive else None
        if match:
            return StatusSignal(
                source=self.source, raw_indicator=f"phrase '{match.group(0).lower()}'",
                confidence=0.4, reading=SignalReading.PENDING, name=name or None,
            )
        return StatusSignal(source=self.source, raw_indicator="no phrase match", confidence=0.1, name=name or None)
