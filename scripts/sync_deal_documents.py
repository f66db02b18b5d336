#!/usr/bin/env python3
"""Run one deal document sync from the command line.

Usage:
    uv run python scripts/sync_deal_documents.py --deal-id 1234
    uv run python scripts/sync_deal_documents.py --deal-id 1234 --json

Fetches the deal and its files from Pipedrive, mirrors them into the shared
drive and updates the deal_files ledger. Reads configuration from the
environment or the .env file.

Exit codes: 0 on success (warnings included), 1 when the sync aborts.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

from src.dealdocs.api.middleware.logging import configure_structlog  # noqa: E402
from src.dealdocs.config import get_settings  # noqa: E402
from src.dealdocs.core.database import close_db  # noqa: E402
from src.dealdocs.documents.errors import DocumentSyncError  # noqa: E402
from src.dealdocs.documents.service import build_document_service  # noqa: E402

logger = structlog.get_logger(__name__)


async def main_async(args: argparse.Namespace) -> int:
    settings = get_settings()
    service = build_document_service(settings)
    try:
        result = await service.sync_deal(args.deal_id)
    except DocumentSyncError as exc:
        logger.error("sync_cli.failed", deal_id=args.deal_id, code=exc.code, error=exc.message)
        print(f"Sync failed [{exc.code}]: {exc.message}")
        return 1
    finally:
        await service.aclose()
        await close_db()

    if args.json:
        print(result.model_dump_json(indent=2))
        return 0

    print(f"\nDeal {args.deal_id}: {result.imported} imported, {result.skipped} skipped")
    for report in result.files:
        print(f"  {report.source_file_id:>10s}  {report.outcome.value:<10s}  {report.file_name or ''}")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync a Pipedrive deal's files into Google Drive")
    parser.add_argument("--deal-id", required=True, help="Pipedrive deal id")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    args = parser.parse_args()

    configure_structlog()
    sys.exit(asyncio.run(main_async(args)))


if __name__ == "__main__":
    main()
