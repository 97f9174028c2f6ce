"""Jump the indexer to the chain head, skipping history.

Prints the ledger and database state and the version a fresh start would
use. With ``--run-seconds`` it also runs a time-boxed batch from that
version, which is how a stale deployment is moved to the head.

Usage:
    python scripts/reset_cursor.py [--margin 50] [--run-seconds 60]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from loguru import logger  # noqa: E402

from config.settings import settings  # noqa: E402
from src.db.database import async_session_factory, engine  # noqa: E402
from src.indexer import persistence  # noqa: E402
from src.indexer.cursor import from_chain_head  # noqa: E402
from src.indexer.registry import IndexerRegistry  # noqa: E402
from src.indexer.service import IndexerService  # noqa: E402
from src.utils.logger import setup_logger  # noqa: E402


async def main() -> None:
    parser = argparse.ArgumentParser(description="Reset the indexer cursor to the chain head")
    parser.add_argument("--margin", type=int, default=50, help="Versions to keep behind head")
    parser.add_argument(
        "--run-seconds", type=int, default=0, help="Run a batch from the new cursor for N seconds"
    )
    args = parser.parse_args()

    setup_logger(process="reset_cursor", log_dir=settings.log_dir, level=settings.log_level)
    registry = IndexerRegistry(
        lambda: IndexerService.from_settings(settings, async_session_factory)
    )
    service = registry.get_or_create()

    try:
        info = await service.client.get_ledger_info()
        logger.info(f"Ledger version {info.ledger_version:,} on chain {info.chain_id}")

        async with async_session_factory() as session:
            total = await persistence.count_trades(session)
            last = await persistence.get_latest_trade(session)
        logger.info(f"Trades indexed: {total}")
        if last is not None:
            logger.info(f"Last trade {last.transaction_hash[:12]}... at {last.created_at}")

        start = await from_chain_head(service.client, safety_margin=args.margin)
        if start is None:
            logger.error("Ledger head unavailable, nothing reset")
            sys.exit(1)
        logger.warning(f"All versions before {start:,} will be skipped")

        if args.run_seconds:
            await registry.start(from_version=start, max_duration_ms=args.run_seconds * 1000)
            logger.info(f"Cursor now at {service.cursor.version}")
        else:
            logger.info(f"Start the indexer with from_version={start} to apply")
    finally:
        await registry.close()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
