"""Single-instance handle around the indexer service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.indexer.registry import IndexerRegistry


def _service(running: bool = False) -> MagicMock:
    service = MagicMock()
    service.is_running = running

    async def _start(**_kwargs):
        service.is_running = True

    async def _stop():
        service.is_running = False

    service.start = AsyncMock(side_effect=_start)
    service.stop = AsyncMock(side_effect=_stop)
    service.close = AsyncMock(side_effect=_stop)
    service.status = AsyncMock(return_value="status")
    return service


def test_service_built_lazily_once():
    factory = MagicMock(return_value=_service())
    registry = IndexerRegistry(factory)
    assert registry.service is None
    assert registry.get_or_create() is registry.get_or_create()
    factory.assert_called_once()


def test_factory_errors_surface():
    registry = IndexerRegistry(MagicMock(side_effect=ValueError("no program")))
    with pytest.raises(ValueError):
        registry.get_or_create()
    assert registry.service is None


@pytest.mark.asyncio
async def test_second_start_is_noop():
    service = _service()
    registry = IndexerRegistry(lambda: service)

    first = await registry.start(from_version=5)
    second = await registry.start(from_version=9)

    assert first is second is service
    service.start.assert_awaited_once_with(from_version=5, max_duration_ms=None)
    assert registry.is_running


@pytest.mark.asyncio
async def test_status_and_stop():
    service = _service()
    registry = IndexerRegistry(lambda: service)
    assert await registry.status() is None
    await registry.stop()

    await registry.start()
    assert await registry.status() == "status"
    await registry.stop()
    assert not registry.is_running


@pytest.mark.asyncio
async def test_close_drops_instance():
    services = [_service(), _service()]
    registry = IndexerRegistry(MagicMock(side_effect=services))
    await registry.start()
    await registry.close()

    assert registry.service is None
    services[0].close.assert_awaited_once()
    assert registry.get_or_create() is services[1]
