"""Persistence layer: Asset/PoolStats/Trade reads and writes.

All functions take the caller's session and only ``flush()``; the
dispatcher owns the transaction boundary (one commit per ledger transaction).
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import case, func, null, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.asset import Asset, PoolStats
from src.models.trade import Trade


def _sanitize(val: str | None, max_length: int | None = None) -> str | None:
    """Strip null bytes PostgreSQL rejects and clamp to the column width."""
    if val is None:
        return None
    val = val.replace("\x00", "").strip()
    if max_length is not None:
        val = val[:max_length]
    return val or None


def _column_length(column) -> int | None:
    return getattr(column.type, "length", None)


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


@dataclass(frozen=True)
class PoolUpdate:
    """Outcome of one reserve increment."""

    fa_address: str
    apt_reserves: Decimal
    total_volume: Decimal
    trade_count: int
    is_graduated: bool
    just_graduated: bool


async def get_asset(session: AsyncSession, address: str) -> Asset | None:
    return await session.get(Asset, address)


async def get_pool_stats(session: AsyncSession, fa_address: str) -> PoolStats | None:
    result = await session.execute(
        select(PoolStats).where(PoolStats.fa_address == fa_address)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_asset_with_pool(
    session: AsyncSession,
    *,
    address: str,
    name: str,
    symbol: str,
    creator: str,
    decimals: int,
    max_supply: int | None,
    icon_uri: str | None,
    project_uri: str | None,
    mint_fee_per_unit: int,
    created_at: datetime,
) -> Asset:
    """Insert an Asset and its zeroed PoolStats in the caller's transaction."""
    asset = Asset(
        address=address,
        name=_sanitize(name, _column_length(Asset.__table__.c.name)) or "",
        symbol=_sanitize(symbol, _column_length(Asset.__table__.c.symbol)) or "",
        creator=creator,
        decimals=decimals,
        max_supply=Decimal(max_supply) if max_supply is not None else None,
        icon_uri=_sanitize(icon_uri, _column_length(Asset.__table__.c.icon_uri)),
        project_uri=_sanitize(project_uri, _column_length(Asset.__table__.c.project_uri)),
        mint_fee_per_unit=Decimal(mint_fee_per_unit),
        created_at=created_at,
    )
    session.add(asset)
    # Parent row must exist before the FK'd pool row on strict backends.
    await session.flush()
    session.add(
        PoolStats(
            fa_address=address,
            apt_reserves=Decimal(0),
            total_volume=Decimal(0),
            trade_count=0,
            is_graduated=False,
        )
    )
    await session.flush()
    return asset


async def trade_exists(session: AsyncSession, transaction_hash: str) -> bool:
    result = await session.execute(
        select(Trade.id).where(Trade.transaction_hash == transaction_hash).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def insert_trade(
    session: AsyncSession,
    *,
    transaction_hash: str,
    fa_address: str,
    user_address: str,
    apt_amount: Decimal,
    token_amount: Decimal,
    price_per_token: Decimal,
    created_at: datetime,
) -> Trade:
    trade = Trade(
        transaction_hash=transaction_hash,
        fa_address=fa_address,
        user_address=user_address,
        apt_amount=apt_amount,
        token_amount=token_amount,
        price_per_token=price_per_token,
        created_at=created_at,
    )
    session.add(trade)
    await session.flush()
    return trade


async def increment_pool_stats(
    session: AsyncSession,
    fa_address: str,
    apt_delta: Decimal,
    *,
    graduation_threshold: Decimal,
) -> PoolUpdate | None:
    """Apply a purchase to the pool as one SQL UPDATE.

    Reserves, volume, trade count and the graduation flag are computed by the
    database from the current row, never from values held in memory. The row
    is locked first so the previous flag is known and the graduation
    notification fires only on the crossing update.

    Returns None when the asset has no pool row.
    """
    locked = await session.execute(
        select(PoolStats.is_graduated)
        .where(PoolStats.fa_address == fa_address)
        .with_for_update()
    )
    was_graduated = locked.scalar_one_or_none()
    if was_graduated is None:
        return None

    new_reserves = PoolStats.apt_reserves + apt_delta
    crosses = new_reserves >= graduation_threshold
    stmt = (
        update(PoolStats)
        .where(PoolStats.fa_address == fa_address)
        .values(
            apt_reserves=new_reserves,
            total_volume=PoolStats.total_volume + apt_delta,
            trade_count=PoolStats.trade_count + 1,
            is_graduated=or_(PoolStats.is_graduated, crosses),
            graduated_at=func.coalesce(
                PoolStats.graduated_at, case((crosses, func.now()), else_=null())
            ),
            updated_at=func.now(),
        )
        .returning(
            PoolStats.apt_reserves,
            PoolStats.total_volume,
            PoolStats.trade_count,
            PoolStats.is_graduated,
        )
        .execution_options(synchronize_session=False)
    )
    row = (await session.execute(stmt)).one()
    is_graduated = bool(row.is_graduated)
    return PoolUpdate(
        fa_address=fa_address,
        apt_reserves=Decimal(row.apt_reserves),
        total_volume=Decimal(row.total_volume),
        trade_count=row.trade_count,
        is_graduated=is_graduated,
        just_graduated=is_graduated and not was_graduated,
    )


async def latest_trade_since(session: AsyncSession, since: datetime) -> Trade | None:
    result = await session.execute(
        select(Trade)
        .where(Trade.created_at >= since)
        .order_by(Trade.created_at.desc(), Trade.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def count_trades_since(session: AsyncSession, since: datetime) -> int:
    result = await session.execute(
        select(func.count(Trade.id)).where(Trade.created_at >= since)
    )
    return result.scalar_one()


async def count_recent_trades(session: AsyncSession, *, seconds: int = 60) -> int:
    return await count_trades_since(session, _utcnow() - timedelta(seconds=seconds))


async def count_trades(session: AsyncSession) -> int:
    result = await session.execute(select(func.count(Trade.id)))
    return result.scalar_one()


async def get_latest_trade(session: AsyncSession) -> Trade | None:
    result = await session.execute(
        select(Trade).order_by(Trade.created_at.desc(), Trade.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()
