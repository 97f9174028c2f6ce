"""End-to-end event application: one ledger transaction in, database state out."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from src.indexer import persistence
from src.indexer.classifier import TransactionClassifier
from src.indexer.dispatcher import EventDispatcher
from src.indexer.handlers import EventHandlers, HandlerContext
from src.indexer.metrics import IndexerMetrics
from src.models.trade import Trade

PROGRAM = "0xb0b"
FA = "0xaaa"
THRESHOLD = Decimal(2_000_000)


def _created(make_event, fa: str = FA) -> dict:
    return make_event(
        "CreateFAEvent",
        {
            "creator_addr": "0xc0ffee",
            "fa_obj": {"inner": fa},
            "max_supply": {"vec": ["100000000000000000"]},
            "name": "Foo",
            "symbol": "FOO",
            "decimals": 8,
            "icon_uri": "",
            "project_uri": "",
            "mint_fee_per_smallest_unit_of_fa": "0",
        },
        module="token_factory",
    )


def _bought(make_event, apt_in: int, tokens_out: int, fa: str = FA) -> dict:
    return make_event(
        "TokenPurchaseEvent",
        {"buyer": "0xbuyer", "fa_object": fa, "apt_in": str(apt_in), "tokens_out": str(tokens_out)},
    )


def _sold(make_event, tokens_in: int, apt_out: int, fa: str = FA) -> dict:
    return make_event(
        "TokenSaleEvent",
        {"seller": "0xseller", "fa_object": fa, "tokens_in": str(tokens_in), "apt_out": str(apt_out)},
    )


@pytest.fixture
def ctx():
    return HandlerContext(graduation_threshold=THRESHOLD, legacy_fee_bps=100)


@pytest.fixture
def metrics():
    return IndexerMetrics()


@pytest.fixture
def dispatcher(session_factory, ctx, metrics):
    return EventDispatcher(
        TransactionClassifier(PROGRAM), EventHandlers(ctx), session_factory, metrics=metrics
    )


async def _pool(session_factory):
    async with session_factory() as session:
        return await persistence.get_pool_stats(session, FA)


async def _trades(session_factory) -> list[Trade]:
    async with session_factory() as session:
        result = await session.execute(select(Trade).order_by(Trade.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_asset_created_makes_empty_pool(dispatcher, session_factory, make_tx, make_event):
    result = await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    assert result.applied == 1

    async with session_factory() as session:
        asset = await persistence.get_asset(session, FA)
    assert asset is not None
    assert asset.symbol == "FOO"
    assert asset.max_supply == Decimal("100000000000000000")

    pool = await _pool(session_factory)
    assert pool.apt_reserves == 0
    assert pool.trade_count == 0
    assert pool.is_graduated is False


@pytest.mark.asyncio
async def test_duplicate_creation_keeps_first(dispatcher, session_factory, make_tx, make_event):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    again = await dispatcher.dispatch(make_tx(11, events=[_created(make_event)]))
    assert again.applied == 0
    assert again.skipped == 1


@pytest.mark.asyncio
async def test_purchase_records_trade_and_moves_pool(
    dispatcher, session_factory, make_tx, make_event
):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 1_000_000, 500_000_000)]))

    (trade,) = await _trades(session_factory)
    assert trade.transaction_hash == "0xhash11"
    assert trade.user_address == "0xbuyer"
    assert trade.apt_amount == Decimal(1_000_000)
    assert trade.token_amount == Decimal(500_000_000)
    assert trade.price_per_token == Decimal("0.002")

    pool = await _pool(session_factory)
    assert pool.apt_reserves == Decimal(1_000_000)
    assert pool.total_volume == Decimal(1_000_000)
    assert pool.trade_count == 1


@pytest.mark.asyncio
async def test_replayed_transaction_is_noop(dispatcher, session_factory, make_tx, make_event):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    tx = make_tx(11, events=[_bought(make_event, 1_000_000, 500_000_000)])
    await dispatcher.dispatch(tx)
    replay = await dispatcher.dispatch(tx)

    assert replay.applied == 0
    assert len(await _trades(session_factory)) == 1
    pool = await _pool(session_factory)
    assert pool.apt_reserves == Decimal(1_000_000)
    assert pool.trade_count == 1


@pytest.mark.asyncio
async def test_sale_records_negative_amounts_and_keeps_reserves(
    dispatcher, session_factory, make_tx, make_event
):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 1_000_000, 500_000_000)]))
    await dispatcher.dispatch(make_tx(12, events=[_sold(make_event, 200_000_000, 400_000)]))

    sale = (await _trades(session_factory))[-1]
    assert sale.apt_amount == Decimal(-400_000)
    assert sale.token_amount == Decimal(-200_000_000)
    assert sale.price_per_token == Decimal("0.002")

    pool = await _pool(session_factory)
    assert pool.apt_reserves == Decimal(1_000_000)
    assert pool.trade_count == 1


@pytest.mark.asyncio
async def test_graduation_fires_once(dispatcher, session_factory, ctx, metrics, make_tx, make_event):
    notified = AsyncMock()
    ctx.subscribe_graduation(notified)

    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 1_500_000, 1_000)]))
    assert notified.await_count == 0
    await dispatcher.dispatch(make_tx(12, events=[_bought(make_event, 600_000, 1_000)]))
    await dispatcher.dispatch(make_tx(13, events=[_bought(make_event, 100_000, 1_000)]))
    await dispatcher.dispatch(make_tx(14, events=[_sold(make_event, 1_000, 100_000)]))

    notified.assert_awaited_once_with(FA, Decimal(2_100_000))
    pool = await _pool(session_factory)
    assert pool.is_graduated is True
    assert pool.graduated_at is not None
    assert pool.apt_reserves == Decimal(2_200_000)
    assert metrics.snapshot().graduations == 1


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_dispatch(
    dispatcher, session_factory, ctx, make_tx, make_event
):
    ctx.subscribe_graduation(AsyncMock(side_effect=RuntimeError("webhook down")))
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    result = await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 3_000_000, 1)]))
    assert result.applied == 1
    assert (await _pool(session_factory)).is_graduated is True


@pytest.mark.asyncio
async def test_zero_token_purchase_has_zero_price(
    dispatcher, session_factory, make_tx, make_event
):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 5_000, 0)]))
    (trade,) = await _trades(session_factory)
    assert trade.price_per_token == 0


@pytest.mark.asyncio
async def test_creation_applied_before_purchase_in_same_tx(
    dispatcher, session_factory, make_tx, make_event
):
    # Purchase listed first; the pool must still exist when it is applied.
    tx = make_tx(10, events=[_bought(make_event, 1_000_000, 500_000_000), _created(make_event)])
    result = await dispatcher.dispatch(tx)
    assert result.applied == 2
    pool = await _pool(session_factory)
    assert pool.apt_reserves == Decimal(1_000_000)


@pytest.mark.asyncio
async def test_purchase_without_pool_still_records_trade(
    dispatcher, session_factory, make_tx, make_event
):
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 1_000_000, 500_000_000)]))
    assert len(await _trades(session_factory)) == 1
    assert await _pool(session_factory) is None


@pytest.mark.asyncio
async def test_mint_and_purchase_in_one_tx_record_single_trade(
    dispatcher, session_factory, make_tx, make_event
):
    minted = make_event(
        "MintFAEvent",
        {"fa_obj": FA, "amount": "42", "recipient_addr": "0xbuyer", "total_mint_fee": "0"},
        module="token_factory",
    )
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    result = await dispatcher.dispatch(
        make_tx(11, events=[minted, _bought(make_event, 1_000_000, 500_000_000)])
    )
    assert result.applied == 1
    assert result.skipped == 1
    (trade,) = await _trades(session_factory)
    assert trade.apt_amount == Decimal(1_000_000)


@pytest.mark.asyncio
async def test_mint_and_burn_records(dispatcher, session_factory, make_tx, make_event):
    minted = make_event(
        "MintFAEvent",
        {"fa_obj": FA, "amount": "1000", "recipient_addr": "0xr", "total_mint_fee": "50"},
        module="token_factory",
    )
    burned = make_event(
        "BurnFAEvent", {"fa_obj": FA, "amount": "10", "burner_addr": "0xb"}, module="token_factory"
    )
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    await dispatcher.dispatch(make_tx(11, events=[minted]))
    await dispatcher.dispatch(make_tx(12, events=[burned]))

    mint, burn = await _trades(session_factory)
    assert mint.user_address == "0xr"
    assert mint.apt_amount == Decimal(50)
    assert mint.price_per_token == Decimal("0.05")
    assert burn.user_address == "0xb"
    assert burn.apt_amount == 0
    assert burn.token_amount == Decimal(10)
    assert (await _pool(session_factory)).trade_count == 0


@pytest.mark.asyncio
async def test_malformed_event_skipped_siblings_applied(
    dispatcher, session_factory, metrics, make_tx, make_event
):
    broken = make_event("TokenSaleEvent", {"seller": "0xs", "fa_object": FA})
    tx = make_tx(10, events=[_created(make_event), broken])
    result = await dispatcher.dispatch(tx)

    assert result.malformed == 1
    assert result.applied == 1
    async with session_factory() as session:
        assert await persistence.get_asset(session, FA) is not None
    assert metrics.snapshot().events_malformed == 1


@pytest.mark.asyncio
async def test_failed_transaction_ignored(dispatcher, session_factory, make_tx, make_event):
    result = await dispatcher.dispatch(make_tx(10, events=[_created(make_event)], success=False))
    assert result.applied == 0
    async with session_factory() as session:
        assert await persistence.get_asset(session, FA) is None


@pytest.mark.asyncio
async def test_foreign_program_events_ignored(dispatcher, session_factory, make_tx, make_event):
    foreign = make_event(
        "TokenPurchaseEvent",
        {"buyer": "0xb", "fa_object": FA, "apt_in": "1", "tokens_out": "1"},
        address="0xdead",
    )
    result = await dispatcher.dispatch(make_tx(10, events=[foreign]))
    assert result.applied == 0
    assert await _trades(session_factory) == []


@pytest.mark.asyncio
async def test_legacy_buy_applies_net_of_fee(dispatcher, session_factory, make_tx, make_event):
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))
    tx = make_tx(
        11,
        function=f"{PROGRAM}::bonding_curve_pool::buy_tokens",
        arguments=[FA, "1000000"],
        events=[
            {"type": "0x1::fungible_asset::Withdraw", "data": {"store": "0x1", "amount": "0"}},
            {"type": "0x1::fungible_asset::Deposit", "data": {"store": "0x2", "amount": "500000000"}},
        ],
    )
    assert dispatcher.is_legacy_purchase(tx)
    result = await dispatcher.dispatch(tx)
    assert result.applied == 1

    (trade,) = await _trades(session_factory)
    assert trade.user_address == "0xuser"
    assert trade.apt_amount == Decimal(1_000_000)
    assert trade.token_amount == Decimal(500_000_000)

    pool = await _pool(session_factory)
    assert pool.apt_reserves == Decimal(990_000)
    assert pool.trade_count == 1


@pytest.mark.asyncio
async def test_legacy_buy_with_missing_arguments_is_malformed(
    dispatcher, session_factory, make_tx
):
    tx = make_tx(11, function=f"{PROGRAM}::bonding_curve_pool::buy_tokens", arguments=[FA])
    result = await dispatcher.dispatch(tx)
    assert result.malformed == 1
    assert await _trades(session_factory) == []


@pytest.mark.asyncio
async def test_persistence_failure_rolls_back_whole_transaction(
    dispatcher, session_factory, ctx, make_tx, make_event
):
    notified = AsyncMock()
    ctx.subscribe_graduation(notified)
    await dispatcher.dispatch(make_tx(10, events=[_created(make_event)]))

    with patch.object(
        persistence, "increment_pool_stats", AsyncMock(side_effect=RuntimeError("db down"))
    ):
        with pytest.raises(RuntimeError):
            await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 3_000_000, 1)]))

    assert await _trades(session_factory) == []
    notified.assert_not_awaited()

    # Retried after recovery it applies exactly once.
    await dispatcher.dispatch(make_tx(11, events=[_bought(make_event, 3_000_000, 1)]))
    assert len(await _trades(session_factory)) == 1
    notified.assert_awaited_once()
