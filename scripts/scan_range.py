"""Scan a bounded ledger version range for launchpad transactions.

Fills a known gap (e.g. an outage window) without moving the live cursor.
Idempotent: transactions already indexed are skipped by the trade-hash check.

Usage:
    python scripts/scan_range.py START END
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger  # noqa: E402

from config.settings import settings  # noqa: E402
from src.db.database import async_session_factory, engine  # noqa: E402
from src.indexer.service import IndexerService  # noqa: E402
from src.utils.logger import setup_logger  # noqa: E402


async def main() -> None:
    parser = argparse.ArgumentParser(description="Scan a ledger version range")
    parser.add_argument("start", type=int, help="First version (inclusive)")
    parser.add_argument("end", type=int, help="Last version (exclusive)")
    args = parser.parse_args()
    if args.end <= args.start:
        parser.error("END must be greater than START")

    setup_logger(process="scan_range", log_dir=settings.log_dir, level=settings.log_level)
    service = IndexerService.from_settings(settings, async_session_factory)
    try:
        found = await service.scan_range(args.start, args.end)
        logger.info(f"Found {found} program transactions; {service.metrics.format_summary()}")
    finally:
        await service.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
