"""Shared test fixtures."""

import os
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from src.models.base import Base
from src.parsers.aptos.models import AptosTransaction

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

PROGRAM = "0xb0b"
BASE_TIMESTAMP_US = 1_760_000_000_000_000


@pytest_asyncio.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh schema per test.

    In-memory SQLite needs StaticPool so every session sees the same
    database; server databases use NullPool to avoid loop mismatch.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for persistence-level tests. Functions only flush(); rollback cleans up."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def program() -> str:
    return PROGRAM


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    def _make(struct: str, data: dict[str, Any], *, module: str = "bonding_curve_pool",
              address: str = PROGRAM) -> dict[str, Any]:
        return {"type": f"{address}::{module}::{struct}", "data": data, "sequence_number": "0"}

    return _make


@pytest.fixture
def make_tx() -> Callable[..., AptosTransaction]:
    """Build a committed user transaction as the fullnode would return it."""

    def _make(
        version: int,
        *,
        tx_hash: str | None = None,
        sender: str = "0xuser",
        function: str | None = None,
        arguments: list[Any] | None = None,
        events: list[dict[str, Any]] | None = None,
        success: bool = True,
    ) -> AptosTransaction:
        raw: dict[str, Any] = {
            "version": str(version),
            "hash": tx_hash or f"0xhash{version}",
            "type": "user_transaction",
            "sender": sender,
            "timestamp": str(BASE_TIMESTAMP_US + version * 1_000_000),
            "success": success,
            "events": events or [],
        }
        if function is not None:
            raw["payload"] = {
                "type": "entry_function_payload",
                "function": function,
                "type_arguments": [],
                "arguments": arguments or [],
            }
        return AptosTransaction.model_validate(raw)

    return _make
