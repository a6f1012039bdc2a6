from __future__ import annotations

"""Submit one file for ingestion and print the result.

STRICT:
- Never logs the credential or raw content; content is referred to by hash.
- Exit code 0 on success or duplicate, 1 on an ingestion failure, 2 on bad input/config.

Run:
  python -m asset_ingest.jobs.run_submit path/to/clip.mp3 --kind audio --name "My clip"
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Ensure `backend/` is on sys.path so `import asset_ingest...` works when run as a script.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from asset_ingest.core.config import load_settings  # noqa: E402
from asset_ingest.core.errors import ConfigError  # noqa: E402
from asset_ingest.core.models import AssetKind, OwnerScope, UploadRequest  # noqa: E402
from asset_ingest.core.orchestrator import IngestionOrchestrator  # noqa: E402


logger = logging.getLogger("asset_ingest.jobs")
logger.setLevel(logging.INFO)

if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    # Structured logs only; never log raw content.
    logger.info(json.dumps(event, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Submit an asset for ingestion")
    parser.add_argument("file", type=Path, help="File to upload")
    parser.add_argument("--kind", choices=[k.value for k in AssetKind], required=True)
    parser.add_argument("--name", help="Display name (default: file name)")
    parser.add_argument("--description", default=None)
    parser.add_argument("--group-id", default=None, help="Upload on behalf of a group")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--config", type=Path, default=None, help="Settings YAML (default: bundled ingest.yaml)")
    parser.add_argument("--skip-duplicate-check", action="store_true")
    return parser


async def _submit(orchestrator: IngestionOrchestrator, request: UploadRequest, skip_dup: bool) -> int:
    try:
        result = await orchestrator.submit(request, skip_duplicate_check=skip_dup)
    finally:
        await orchestrator.close()

    _log(
        {
            "event": "ingestion_submit_result",
            "request_id": result.request_id,
            "content_hash": request.content_hash,
            "asset_kind": request.asset_kind.value,
            "asset_id": result.asset_id,
            "duplicate": result.duplicate_of is not None,
            "attempts": len(result.attempts),
            "error_kind": result.error.kind.value if result.error else None,
            "error": result.error.message if result.error else None,
            "retry_after_seconds": result.error.retry_after_seconds if result.error else None,
        }
    )
    return 0 if result.succeeded else 1


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        _log({"event": "ingestion_config_error", "error": str(e)})
        return 2

    try:
        content = args.file.read_bytes()
    except OSError as e:
        _log({"event": "ingestion_input_error", "file": str(args.file), "error": type(e).__name__})
        return 2

    request = UploadRequest.build(
        content,
        display_name=args.name or args.file.name,
        asset_kind=AssetKind(args.kind),
        owner_scope=OwnerScope(user_id=args.user_id, group_id=args.group_id),
        file_name=args.file.name,
        description=args.description,
    )
    orchestrator = IngestionOrchestrator.from_settings(settings)
    return asyncio.run(_submit(orchestrator, request, args.skip_duplicate_check))


if __name__ == "__main__":
    raise SystemExit(main())
