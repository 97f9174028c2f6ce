from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base


class Trade(Base):
    """Value-moving interaction recorded from a ledger transaction.

    Append-only. Sells carry negative apt/token amounts.
    """

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_hash: Mapped[str] = mapped_column(String(80), unique=True)
    fa_address: Mapped[str] = mapped_column(String(80))
    user_address: Mapped[str] = mapped_column(String(80))
    apt_amount: Mapped[Decimal] = mapped_column(Numeric)  # octas, signed
    token_amount: Mapped[Decimal] = mapped_column(Numeric)  # smallest unit, signed
    price_per_token: Mapped[Decimal] = mapped_column(Numeric, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime)  # chain time
    indexed_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        Index("idx_trades_fa_time", "fa_address", "created_at"),
        Index("idx_trades_time", "created_at"),
    )
