"""
Status Resolver.

Determines whether a submitted asset is pending, accepted or declined by
fusing independent, unreliable signals in a fixed precedence order.

Precedence:
1. Public reachability. 200 means accepted and 404 means declined, final.
2. Authenticated reachability, consulted only when the public answer is
   "forbidden". Owner-only visibility is never evidence of acceptance.
3. The remaining probes (catalog metadata, then the detail page), in the order
   they were given. The first conclusive reading wins.

When every probe is unavailable the resolver returns Unresolvable instead of
guessing. Settled verdicts are cached until the caller asks for a refresh;
the cache is bounded and evicts the least recently used verdict.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, Union

from asset_ingest.core.errors import SignalUnavailable
from asset_ingest.core.models import (
    AssetKind,
    AssetStatusVerdict,
    SignalReading,
    SignalSource,
    StatusSignal,
    Unresolvable,
    VerdictStatus,
    utcnow,
)
from asset_ingest.core.signals import ResolverPolicy, SignalProbe

logger = logging.getLogger("asset_ingest.status")

ResolveResult = Union[AssetStatusVerdict, Unresolvable]

_READING_TO_STATUS = {
    SignalReading.ACCEPTED: VerdictStatus.ACCEPTED,
    SignalReading.DECLINED: VerdictStatus.DECLINED,
    SignalReading.PENDING: VerdictStatus.PENDING,
}


class StatusResolver:
    """
    Args:
        probes: signal probes in precedence order. The first one is the
            primary (public reachability). A probe whose source is
            AUTHENTICATED_REACHABILITY only runs when the primary is gated;
            all others are secondary and run concurrently.
        policy: young-asset and owner-only thresholds.
        clock: returns the current UTC time.
        cache_size: settled verdicts kept, least recently used evicted first.
    """

    def __init__(
        self,
        probes: Sequence[SignalProbe],
        *,
        policy: Optional[ResolverPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cache_size: int = 1024,
    ) -> None:
        if not probes:
            raise ValueError("StatusResolver needs at least one probe")
        if cache_size <= 0:
            raise ValueError("cache_size must be > 0")
        self._primary = probes[0]
        self._authenticated = next(
            (p for p in probes[1:] if p.source == SignalSource.AUTHENTICATED_REACHABILITY), None
        )
        self._secondary = [
            p for p in probes[1:] if p.source != SignalSource.AUTHENTICATED_REACHABILITY
        ]
        self._policy = policy or ResolverPolicy()
        self._clock = clock
        self._sleep = sleep
        self._cache_size = cache_size
        self._settled: OrderedDict[tuple[str, str], AssetStatusVerdict] = OrderedDict()

    def cached(self, asset_id: str, asset_kind: AssetKind) -> Optional[AssetStatusVerdict]:
        return self._settled.get((AssetKind(asset_kind).value, str(asset_id)))

    async def resolve(self, asset_id: str, asset_kind: AssetKind, *, refresh: bool = False) -> ResolveResult:
        asset_id = str(asset_id)
        asset_kind = AssetKind(asset_kind)
        key = (asset_kind.value, asset_id)
        if not refresh and key in self._settled:
            self._settled.move_to_end(key)
            return self._settled[key]

        reasons: list[str] = []
        primary = await self._collect(self._primary, asset_id, asset_kind, reasons)

        if primary is not None and primary.conclusive:
            # Public ground truth. No other source is consulted.
            result = self._verdict(asset_id, asset_kind, primary, [primary])
        elif primary is not None and primary.reading == SignalReading.GATED:
            result = await self._resolve_gated(asset_id, asset_kind, primary, reasons)
        else:
            result = await self._resolve_unreachable(asset_id, asset_kind, primary, reasons)

        if isinstance(result, AssetStatusVerdict):
            if result.settled:
                self._remember(key, result)
            logger.info(
                "Asset %s (%s) resolved %s by %s",
                asset_id, asset_kind.value, result.status.value,
                result.decided_by.value if result.decided_by else "default",
            )
        else:
            logger.warning("Asset %s (%s) unresolvable: %s", asset_id, asset_kind.value, "; ".join(result.reasons))
        return result

    def _remember(self, key: tuple[str, str], verdict: AssetStatusVerdict) -> None:
        self._settled[key] = verdict
        self._settled.move_to_end(key)
        while len(self._settled) > self._cache_size:
            self._settled.popitem(last=False)

    async def _resolve_gated(
        self, asset_id: str, asset_kind: AssetKind, primary: StatusSignal, reasons: list[str]
    ) -> ResolveResult:
        auth = None
        if self._authenticated is not None:
            auth = await self._collect(self._authenticated, asset_id, asset_kind, reasons)

        if auth is not None and auth.reading == SignalReading.DECLINED:
            return self._verdict(asset_id, asset_kind, auth, [primary, auth])

        if auth is None or auth.reading != SignalReading.OWNER_VISIBLE:
            # Exists but is forbidden publicly: lean pending.
            return self._pending(asset_id, asset_kind, [primary] + ([auth] if auth else []), primary.source)

        signals = [primary, auth]
        secondary = await self._gather_secondary(asset_id, asset_kind, reasons)
        signals.extend(s for s in secondary if s is not None)

        for signal in secondary:
            if signal is None or not signal.conclusive:
                continue
            if signal.reading == SignalReading.DECLINED:
                return self._verdict(asset_id, asset_kind, signal, signals)
            # Owner-only reachability can never be read as accepted.
            return self._pending(asset_id, asset_kind, signals, signal.source)

        created_at = next((s.created_at for s in signals if s.created_at is not None), None)
        limit = self._policy.owner_only_decline_after
        if limit is not None and created_at is not None and self._clock() - created_at > limit:
            logger.info("Asset %s visible only to its owner after %s; reading as declined", asset_id, limit)
            return AssetStatusVerdict(
                asset_id=asset_id,
                asset_kind=asset_kind,
                status=VerdictStatus.DECLINED,
                name=self._name(asset_id, signals),
                resolved_at=self._clock(),
                decided_by=auth.source,
                conclusive=True,
            )
        return self._pending(asset_id, asset_kind, signals, auth.source)

    async def _resolve_unreachable(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        primary: Optional[StatusSignal],
        reasons: list[str],
    ) -> ResolveResult:
        secondary = await self._gather_secondary(asset_id, asset_kind, reasons)
        signals = ([primary] if primary else []) + [s for s in secondary if s is not None]

        if not signals:
            return Unresolvable(
                asset_id=asset_id, asset_kind=asset_kind, reasons=tuple(reasons), resolved_at=self._clock()
            )

        for signal in secondary:
            if signal is not None and signal.conclusive:
                return self._verdict(asset_id, asset_kind, signal, signals)
        return self._pending(asset_id, asset_kind, signals, None)

    async def _collect(
        self, probe: SignalProbe, asset_id: str, asset_kind: AssetKind, reasons: list[str]
    ) -> Optional[StatusSignal]:
        try:
            return await probe.probe(asset_id, asset_kind)
        except SignalUnavailable as e:
            logger.info("Signal %s unavailable for asset %s: %s", e.source, asset_id, e.reason)
            reasons.append(str(e))
            return None

    async def _gather_secondary(
        self, asset_id: str, asset_kind: AssetKind, reasons: list[str]
    ) -> list[Optional[StatusSignal]]:
        # Run concurrently; interpret in precedence order.
        results = await asyncio.gather(
            *(self._collect(p, asset_id, asset_kind, reasons) for p in self._secondary)
        )
        return list(results)

    def _name(self, asset_id: str, signals: Sequence[StatusSignal]) -> str:
        for signal in signals:
            if signal.name:
                return signal.name
        return f"Asset {asset_id}"

    def _verdict(
        self, asset_id: str, asset_kind: AssetKind, decider: StatusSignal, signals: Sequence[StatusSignal]
    ) -> AssetStatusVerdict:
        return AssetStatusVerdict(
            asset_id=asset_id,
            asset_kind=asset_kind,
            status=_READING_TO_STATUS[decider.reading],
            name=self._name(asset_id, signals),
            resolved_at=self._clock(),
            decided_by=decider.source,
            conclusive=True,
        )

    def _pending(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        signals: Sequence[StatusSignal],
        decided_by: Optional[SignalSource],
    ) -> AssetStatusVerdict:
        return AssetStatusVerdict(
            asset_id=asset_id,
            asset_kind=asset_kind,
            status=VerdictStatus.PENDING,
            name=self._name(asset_id, signals),
            resolved_at=self._clock(),
            decided_by=decided_by,
            conclusive=False,
        )

    async def poll_until_settled(
        self,
        asset_id: str,
        asset_kind: AssetKind,
        *,
        interval: float = 30.0,
        max_polls: int = 10,
    ) -> ResolveResult:
        """Re-resolve until accepted/declined or max_polls is reached. Returns the last result."""
        if max_polls <= 0:
            raise ValueError("max_polls must be > 0")
        result: ResolveResult = await self.resolve(asset_id, asset_kind, refresh=True)
        for _ in range(max_polls - 1):
            if isinstance(result, AssetStatusVerdict) and result.settled:
                break
            await self._sleep(interval)
            result = await self.resolve(asset_id, asset_kind, refresh=True)
        return result
