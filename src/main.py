"""Entry point for the launchpad indexer."""

import asyncio
import signal

from loguru import logger

from config.settings import settings
from src.db.database import async_session_factory, engine
from src.db.redis import IndexerLease, close_redis, get_redis
from src.indexer.registry import IndexerRegistry
from src.indexer.service import IndexerService
from src.utils.logger import setup_logger


async def main() -> None:
    setup_logger(log_dir=settings.log_dir, json_logs=settings.json_logs, level=settings.log_level)
    logger.info("Starting launchpad indexer...")

    lease = None
    if settings.indexer_lease_enabled:
        lease = IndexerLease(await get_redis(), ttl_sec=settings.indexer_lease_ttl_sec)

    # Refuses to build on missing program address / node URL.
    registry = IndexerRegistry(
        lambda: IndexerService.from_settings(settings, async_session_factory, lease=lease)
    )
    service = registry.get_or_create()

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_event_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    if settings.indexer_max_duration_ms:
        run_task = asyncio.create_task(
            registry.start(max_duration_ms=settings.indexer_max_duration_ms)
        )
    else:
        await registry.start()
        run_task = asyncio.create_task(service.wait_stopped())

    # Wait for either the run to finish or shutdown signal
    shutdown_task = asyncio.create_task(shutdown_event.wait())
    await asyncio.wait([run_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

    # Cooperative stop: the in-flight cycle commits before we exit
    await registry.stop()
    await run_task
    shutdown_task.cancel()
    try:
        await shutdown_task
    except asyncio.CancelledError:
        pass

    logger.info(f"Final stats: {service.metrics.format_summary()}")
    await registry.close()
    await close_redis()
    await engine.dispose()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
