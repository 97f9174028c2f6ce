from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base

# Longest URI the fungible asset framework accepts on chain.
URI_MAX_LENGTH = 512


class Asset(Base):
    """Fungible asset launched through the token factory. Immutable once created."""

    __tablename__ = "assets"

    address: Mapped[str] = mapped_column(String(80), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    symbol: Mapped[str] = mapped_column(String(50))
    creator: Mapped[str] = mapped_column(String(80))
    decimals: Mapped[int] = mapped_column(Integer, default=8)
    max_supply: Mapped[Decimal | None] = mapped_column(Numeric)  # u128, None = unlimited
    icon_uri: Mapped[str | None] = mapped_column(String(URI_MAX_LENGTH))
    project_uri: Mapped[str | None] = mapped_column(String(URI_MAX_LENGTH))
    mint_fee_per_unit: Mapped[Decimal] = mapped_column(Numeric, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime)  # chain time
    indexed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (Index("idx_assets_creator", "creator"),)


class PoolStats(Base):
    """Bonding-curve aggregates, one row per asset.

    Only ever changed through SQL-side increments; ``is_graduated`` is one-way.
    """

    __tablename__ = "pool_stats"

    fa_address: Mapped[str] = mapped_column(
        ForeignKey("assets.address", ondelete="CASCADE"), primary_key=True
    )
    apt_reserves: Mapped[Decimal] = mapped_column(Numeric, default=0)  # octas
    total_volume: Mapped[Decimal] = mapped_column(Numeric, default=0)  # octas
    trade_count: Mapped[int] = mapped_column(Integer, default=0)
    is_graduated: Mapped[bool] = mapped_column(Boolean, default=False)
    graduated_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (Index("idx_pool_stats_graduated", "is_graduated"),)
