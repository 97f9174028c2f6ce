"""Event handlers: turn decoded launchpad events into persisted records.

Every handler that writes a Trade checks the transaction hash first and
skips all effects on a hit, so redelivered transactions never double-count.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.indexer import persistence
from src.indexer.events import AssetCreated, Burned, EventDecodeError, Minted, Purchased, Sold
from src.parsers.aptos.models import AptosTransaction

GraduationCallback = Callable[[str, Decimal], Awaitable[None]]

BPS_DENOMINATOR = 10_000


def price_per_token(apt_amount: int | Decimal, token_amount: int | Decimal) -> Decimal:
    """APT per smallest token unit; zero tokens yields zero, not an error."""
    tokens = Decimal(token_amount)
    if tokens == 0:
        return Decimal(0)
    return Decimal(apt_amount) / tokens


@dataclass(frozen=True)
class LegacyPurchase:
    """Purchase reconstructed from a ``bonding_curve_pool::buy_tokens`` call."""

    fa_address: str
    buyer: str
    apt_amount: int
    tokens_out: int


def parse_legacy_purchase(tx: AptosTransaction) -> LegacyPurchase:
    """Read ``buy_tokens(fa_obj_addr, apt_amount)`` arguments.

    The token amount is taken from the first generic Transfer/Deposit event
    carrying a positive ``amount``; the call itself does not report it.
    """
    args = tx.payload.arguments if tx.payload else []
    if len(args) < 2:
        raise EventDecodeError(f"buy_tokens call has {len(args)} argument(s), expected 2")

    fa_address = args[0]
    if isinstance(fa_address, dict):
        fa_address = fa_address.get("inner")
    if not isinstance(fa_address, str) or not fa_address:
        raise EventDecodeError(f"buy_tokens fa_obj_addr is not an address: {args[0]!r}")
    try:
        apt_amount = int(args[1])
    except (TypeError, ValueError) as e:
        raise EventDecodeError(f"buy_tokens amount is not an integer: {args[1]!r}") from e

    return LegacyPurchase(
        fa_address=fa_address,
        buyer=tx.sender,
        apt_amount=apt_amount,
        tokens_out=_received_token_amount(tx),
    )


def _received_token_amount(tx: AptosTransaction) -> int:
    for ev in tx.events:
        if "Transfer" not in ev.type and "Deposit" not in ev.type:
            continue
        amount: Any = ev.data.get("amount") if isinstance(ev.data, dict) else None
        try:
            value = int(amount)
        except (TypeError, ValueError):
            continue
        if value > 0:
            return value
    return 0


@dataclass
class HandlerContext:
    """Settings and subscribers shared by all handlers."""

    graduation_threshold: Decimal
    legacy_fee_bps: int = 100
    graduation_subscribers: list[GraduationCallback] = field(default_factory=list)

    def subscribe_graduation(self, callback: GraduationCallback) -> None:
        self.graduation_subscribers.append(callback)


class EventHandlers:
    def __init__(self, ctx: HandlerContext) -> None:
        self._ctx = ctx
        self._pending_graduations: list[tuple[str, Decimal]] = []

    async def on_asset_created(
        self, session: AsyncSession, tx: AptosTransaction, ev: AssetCreated
    ) -> bool:
        if await persistence.get_asset(session, ev.fa_obj) is not None:
            logger.debug(f"[HANDLER] Asset {ev.symbol} already indexed at {ev.fa_obj}")
            return False

        await persistence.create_asset_with_pool(
            session,
            address=ev.fa_obj,
            name=ev.name,
            symbol=ev.symbol,
            creator=ev.creator_addr,
            decimals=ev.decimals,
            max_supply=ev.max_supply,
            icon_uri=ev.icon_uri,
            project_uri=ev.project_uri,
            mint_fee_per_unit=ev.mint_fee_per_smallest_unit_of_fa,
            created_at=tx.committed_at,
        )
        logger.info(
            f"[HANDLER] New asset {ev.name} ({ev.symbol}) at {ev.fa_obj} "
            f"by {ev.creator_addr}, max supply {ev.max_supply or 'unlimited'}"
        )
        return True

    async def on_minted(self, session: AsyncSession, tx: AptosTransaction, ev: Minted) -> bool:
        if await self._already_recorded(session, tx):
            return False
        await self._record_trade(
            session,
            tx,
            fa_address=ev.fa_obj,
            user_address=ev.recipient_addr,
            apt_amount=Decimal(ev.total_mint_fee),
            token_amount=Decimal(ev.amount),
            price=price_per_token(ev.total_mint_fee, ev.amount),
        )
        logger.info(f"[HANDLER] Mint {ev.amount} of {ev.fa_obj} to {ev.recipient_addr}")
        return True

    async def on_burned(self, session: AsyncSession, tx: AptosTransaction, ev: Burned) -> bool:
        if await self._already_recorded(session, tx):
            return False
        await self._record_trade(
            session,
            tx,
            fa_address=ev.fa_obj,
            user_address=ev.burner_addr,
            apt_amount=Decimal(0),
            token_amount=Decimal(ev.amount),
            price=Decimal(0),
        )
        logger.info(f"[HANDLER] Burn {ev.amount} of {ev.fa_obj} by {ev.burner_addr}")
        return True

    async def on_purchased(
        self, session: AsyncSession, tx: AptosTransaction, ev: Purchased
    ) -> bool:
        if await self._already_recorded(session, tx):
            return False
        await self._record_trade(
            session,
            tx,
            fa_address=ev.fa_object,
            user_address=ev.buyer,
            apt_amount=Decimal(ev.apt_in),
            token_amount=Decimal(ev.tokens_out),
            price=price_per_token(ev.apt_in, ev.tokens_out),
        )
        await self._apply_to_pool(session, ev.fa_object, Decimal(ev.apt_in))
        logger.info(
            f"[HANDLER] Buy {ev.tokens_out} of {ev.fa_object} for {ev.apt_in} octas ({ev.buyer})"
        )
        return True

    async def on_sold(self, session: AsyncSession, tx: AptosTransaction, ev: Sold) -> bool:
        if await self._already_recorded(session, tx):
            return False
        # Reserves are left alone: the curve's own bookkeeping shows up in
        # later purchase deltas.
        await self._record_trade(
            session,
            tx,
            fa_address=ev.fa_object,
            user_address=ev.seller,
            apt_amount=-Decimal(ev.apt_out),
            token_amount=-Decimal(ev.tokens_in),
            price=price_per_token(ev.apt_out, ev.tokens_in),
        )
        logger.info(
            f"[HANDLER] Sell {ev.tokens_in} of {ev.fa_object} for {ev.apt_out} octas ({ev.seller})"
        )
        return True

    async def on_legacy_purchase(
        self, session: AsyncSession, tx: AptosTransaction, purchase: LegacyPurchase
    ) -> bool:
        if await self._already_recorded(session, tx):
            return False
        fee = purchase.apt_amount * self._ctx.legacy_fee_bps // BPS_DENOMINATOR
        apt_for_curve = purchase.apt_amount - fee

        await self._record_trade(
            session,
            tx,
            fa_address=purchase.fa_address,
            user_address=purchase.buyer,
            apt_amount=Decimal(purchase.apt_amount),
            token_amount=Decimal(purchase.tokens_out),
            price=price_per_token(purchase.apt_amount, purchase.tokens_out),
        )
        await self._apply_to_pool(session, purchase.fa_address, Decimal(apt_for_curve))
        logger.info(
            f"[HANDLER] Legacy buy {purchase.tokens_out} of {purchase.fa_address} "
            f"for {purchase.apt_amount} octas (fee {fee}) ({purchase.buyer})"
        )
        return True

    async def _already_recorded(self, session: AsyncSession, tx: AptosTransaction) -> bool:
        if await persistence.trade_exists(session, tx.hash):
            logger.debug(f"[HANDLER] Trade for {tx.hash[:12]} already recorded, skipping")
            return True
        return False

    async def _record_trade(
        self,
        session: AsyncSession,
        tx: AptosTransaction,
        *,
        fa_address: str,
        user_address: str,
        apt_amount: Decimal,
        token_amount: Decimal,
        price: Decimal,
    ) -> None:
        await persistence.insert_trade(
            session,
            transaction_hash=tx.hash,
            fa_address=fa_address,
            user_address=user_address,
            apt_amount=apt_amount,
            token_amount=token_amount,
            price_per_token=price,
            created_at=tx.committed_at,
        )

    async def _apply_to_pool(self, session: AsyncSession, fa_address: str, apt_delta: Decimal) -> None:
        result = await persistence.increment_pool_stats(
            session,
            fa_address,
            apt_delta,
            graduation_threshold=self._ctx.graduation_threshold,
        )
        if result is None:
            logger.warning(f"[HANDLER] Pool stats not found for {fa_address}")
            return
        if result.just_graduated:
            self._pending_graduations.append((fa_address, result.apt_reserves))

    def discard_notifications(self) -> None:
        """Drop graduations queued by a transaction that was rolled back."""
        self._pending_graduations.clear()

    async def flush_notifications(self) -> int:
        """Announce graduations once the owning transaction has committed."""
        pending, self._pending_graduations = self._pending_graduations, []
        for fa_address, reserves in pending:
            logger.info(f"[GRADUATED] Pool {fa_address} graduated with {reserves} octas in reserves")
            for callback in self._ctx.graduation_subscribers:
                try:
                    await callback(fa_address, reserves)
                except Exception as e:
                    logger.error(f"[GRADUATED] Subscriber failed for {fa_address}: {e}")
        return len(pending)
