"""Ledger cursor and its start-version strategies.

Precedence, first hit wins:
  1. explicit version: operator override / scheduled re-run
  2. recent trade: resume right after the newest trade of the last hour
  3. chain head: head minus a small safety margin

Tier 3 skips history older than the margin on a cold start; versions before
the returned start are never backfilled.
"""

from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.indexer import persistence
from src.parsers.aptos.client import AptosClient
from src.parsers.aptos.exceptions import AptosError


class Cursor:
    """Last fully examined ledger version. Never moves backwards on its own."""

    def __init__(self, version: int | None = None) -> None:
        self._version = version

    @property
    def version(self) -> int | None:
        return self._version

    @property
    def resolved(self) -> bool:
        return self._version is not None

    @property
    def next_version(self) -> int:
        if self._version is None:
            raise RuntimeError("cursor is not initialized")
        return self._version + 1

    def advance(self, version: int) -> None:
        if self._version is not None and version < self._version:
            logger.debug(f"[CURSOR] Ignoring rewind {self._version} -> {version}")
            return
        self._version = version

    def reset(self, version: int) -> None:
        """Operator rewind/jump; the only way to move the cursor backwards."""
        logger.info(f"[CURSOR] Reset {self._version} -> {version}")
        self._version = version


def from_explicit_version(version: int | None) -> int | None:
    if version is None:
        return None
    if version < 0:
        raise ValueError(f"start version must be >= 0, got {version}")
    logger.info(f"[CURSOR] Starting from specified version {version}")
    return version


async def from_recent_trade(
    session_factory: async_sessionmaker[AsyncSession],
    client: AptosClient,
    *,
    window_sec: int,
    now: datetime | None = None,
) -> int | None:
    """Version of the newest trade inside the window, or None.

    Trades store chain time, so the window is measured against the ledger
    clock rather than indexing time.
    """
    now = now or datetime.now(UTC).replace(tzinfo=None)
    async with session_factory() as session:
        trade = await persistence.latest_trade_since(session, now - timedelta(seconds=window_sec))
    if trade is None:
        return None

    try:
        tx = await client.get_transaction_by_hash(trade.transaction_hash)
    except AptosError as e:
        logger.warning(f"[CURSOR] Could not resolve recent trade {trade.transaction_hash[:12]}: {e}")
        return None
    if tx is None:
        logger.warning(f"[CURSOR] Recent trade {trade.transaction_hash[:12]} unknown to node")
        return None

    logger.info(f"[CURSOR] Continuing from recent trade at version {tx.version}")
    return tx.version


async def from_chain_head(client: AptosClient, *, safety_margin: int) -> int | None:
    try:
        head = await client.get_head_version()
    except AptosError as e:
        logger.warning(f"[CURSOR] Could not fetch ledger head: {e}")
        return None

    start = max(0, head - safety_margin)
    logger.info(
        f"[CURSOR] Jumping to head {head}, starting at {start} "
        f"(versions before {start} are not scanned)"
    )
    return start


async def resolve_start_version(
    *,
    explicit: int | None,
    session_factory: async_sessionmaker[AsyncSession],
    client: AptosClient,
    resume_window_sec: int,
    head_safety_margin: int,
) -> int | None:
    """Run the strategies in precedence order; None when all of them fail."""
    version = from_explicit_version(explicit)
    if version is not None:
        return version

    version = await from_recent_trade(session_factory, client, window_sec=resume_window_sec)
    if version is not None:
        return version

    return await from_chain_head(client, safety_margin=head_safety_margin)
