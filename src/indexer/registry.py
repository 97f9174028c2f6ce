"""Owned handle to the process's single indexer instance.

Created once at the composition root and passed to whatever drives the
indexer (signal handlers, schedulers, operator scripts).
"""

from collections.abc import Callable

from loguru import logger

from src.indexer.service import IndexerService, IndexerStatus

ServiceFactory = Callable[[], IndexerService]


class IndexerRegistry:
    def __init__(self, factory: ServiceFactory) -> None:
        self._factory = factory
        self._service: IndexerService | None = None

    @property
    def service(self) -> IndexerService | None:
        return self._service

    @property
    def is_running(self) -> bool:
        return self._service is not None and self._service.is_running

    def get_or_create(self) -> IndexerService:
        """Build the service on first use; configuration errors surface here."""
        if self._service is None:
            self._service = self._factory()
        return self._service

    async def start(
        self, from_version: int | None = None, max_duration_ms: int | None = None
    ) -> IndexerService:
        """Start the indexer unless it is already active; returns the handle either way."""
        if self.is_running:
            logger.info("[REGISTRY] Indexer already running")
            return self._service  # type: ignore[return-value]
        service = self.get_or_create()
        await service.start(from_version=from_version, max_duration_ms=max_duration_ms)
        return service

    async def stop(self) -> None:
        if self._service is not None:
            await self._service.stop()

    async def status(self) -> IndexerStatus | None:
        if self._service is None:
            return None
        return await self._service.status()

    async def close(self) -> None:
        if self._service is not None:
            await self._service.close()
            self._service = None
