from __future__ import annotations

"""Resolve (or poll) the moderation status of one asset.

Run:
  python -m asset_ingest.jobs.run_status_poll 123456 --kind decal
  python -m asset_ingest.jobs.run_status_poll 123456 --kind audio --poll 10 --interval 30

Exit code 0 when a verdict was produced (pending included), 3 when the asset
is unresolvable because no source could be reached, 2 on bad config.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from asset_ingest.core.config import load_settings  # noqa: E402
from asset_ingest.core.errors import ConfigError  # noqa: E402
from asset_ingest.core.models import AssetKind, AssetStatusVerdict  # noqa: E402
from asset_ingest.core.orchestrator import IngestionOrchestrator  # noqa: E402


logger = logging.getLogger("asset_ingest.jobs")
logger.setLevel(logging.INFO)

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    logger.info(json.dumps(event, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve asset moderation status")
    parser.add_argument("asset_id")
    parser.add_argument("--kind", choices=[k.value for k in AssetKind], required=True)
    parser.add_argument("--poll", type=int, default=0, help="Poll up to N times until settled (default: resolve once)")
    parser.add_argument("--interval", type=float, default=30.0, help="Seconds between polls (default: 30)")
    parser.add_argument("--config", type=Path, default=None)
    return parser


async def _resolve(orchestrator: IngestionOrchestrator, asset_id: str, kind: AssetKind, polls: int, interval: float) -> int:
    try:
        if polls > 0:
            result = await orchestrator.poll_status(asset_id, kind, interval=interval, max_polls=polls)
        else:
            result = await orchestrator.resolve_status(asset_id, kind)
    finally:
        await orchestrator.close()

    if isinstance(result, AssetStatusVerdict):
        _log(
            {
                "event": "asset_status_verdict",
                "asset_id": result.asset_id,
                "asset_kind": result.asset_kind.value,
                "status": result.status.value,
                "name": result.name,
                "decided_by": result.decided_by.value if result.decided_by else None,
                "conclusive": result.conclusive,
                "resolved_at": result.resolved_at.isoformat(),
            }
        )
        return 0

    _log(
        {
            "event": "asset_status_unresolvable",
            "asset_id": result.asset_id,
            "asset_kind": result.asset_kind.value,
            "reasons": list(result.reasons),
        }
    )
    return 3


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        _log({"event": "status_config_error", "error": str(e)})
        return 2

    orchestrator = IngestionOrchestrator.from_settings(settings)
    return asyncio.run(_resolve(orchestrator, args.asset_id, AssetKind(args.kind), args.poll, args.interval))


if __name__ == "__main__":
    raise SystemExit(main())
