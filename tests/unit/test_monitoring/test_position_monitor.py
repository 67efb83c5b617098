import asyncio

import pytest
from unittest.mock import AsyncMock

from whale_grid.core.core_constants import CloseReason, PositionStatus
from whale_grid.core.core_exceptions import ConfigurationError, PriceFeedError
from whale_grid.core.core_models import Position, TokenKey, TokenPrice
from whale_grid.monitoring.position_monitor import ClosePolicy, PositionMonitor, evaluate_positions_tick

TOKEN = "TokenMint1111111111111111111111111111111111"
OTHER = "OtherMint1111111111111111111111111111111111"


def make_position(position_id="pos_1", token=TOKEN, entry=1.0, tp=30.0, sl=-15.0, **kwargs):
    return Position(
        position_id=position_id, user_id=1, chain="solana", token=token,
        amount=100.0, entry_price=entry, current_price=entry,
        take_profit_percent=tp, stop_loss_percent=sl, **kwargs
    )


def test_take_profit_sells_half():
    signals = evaluate_positions_tick([make_position()], {TokenKey("solana", TOKEN): 1.35})

    assert len(signals) == 1
    assert signals[0].reason == CloseReason.TAKE_PROFIT
    assert signals[0].sell_percent == 50.0
    assert signals[0].pnl_percent == pytest.approx(35.0)
    assert signals[0].current_price == 1.35


def test_stop_loss_sells_everything():
    signals = evaluate_positions_tick([make_position()], {TokenKey("solana", TOKEN): 0.8})

    assert signals[0].reason == CloseReason.STOP_LOSS
    assert signals[0].sell_percent == 100.0
    assert signals[0].pnl_percent == pytest.approx(-20.0)


def test_thresholds_are_inclusive():
    key = TokenKey("solana", TOKEN)
    assert evaluate_positions_tick([make_position(entry=2.0)], {key: 2.6})[0].reason == CloseReason.TAKE_PROFIT
    assert evaluate_positions_tick([make_position(entry=2.0)], {key: 1.7})[0].reason == CloseReason.STOP_LOSS


def test_take_profit_fires_once_per_position():
    key = TokenKey("solana", TOKEN)
    position = make_position(take_profit_taken=True)

    assert evaluate_positions_tick([position], {key: 1.5}) == []
    assert evaluate_positions_tick([position], {key: 0.8})[0].reason == CloseReason.STOP_LOSS


def test_inside_band_emits_nothing():
    assert evaluate_positions_tick([make_position()], {TokenKey("solana", TOKEN): 1.1}) == []


def test_unusable_inputs_are_skipped():
    positions = [
        make_position("missing_price", token=OTHER),
        make_position("zero_price"),
        make_position("bad_entry", entry=0.0),
        make_position("closed", status=PositionStatus.CLOSED),
    ]
    prices = {TokenKey("solana", TOKEN): 0.0}

    assert evaluate_positions_tick(positions, prices) == []


def test_custom_close_policy():
    policy = ClosePolicy(take_profit_sell_percent=25.0, stop_loss_sell_percent=60.0)
    key = TokenKey("solana", TOKEN)

    assert evaluate_positions_tick([make_position()], {key: 2.0}, policy)[0].sell_percent == 25.0
    assert evaluate_positions_tick([make_position()], {key: 0.5}, policy)[0].sell_percent == 60.0


@pytest.mark.parametrize("tp,sl", [(0.0, 100.0), (50.0, 101.0), (-5.0, 50.0)])
def test_close_policy_validation(tp, sl):
    with pytest.raises(ConfigurationError):
        ClosePolicy(take_profit_sell_percent=tp, stop_loss_sell_percent=sl)


@pytest.mark.asyncio
async def test_run_tick_prices_each_token_once_and_hands_off():
    positions = [make_position("a"), make_position("b"), make_position("c", token=OTHER)]
    position_source = AsyncMock()
    position_source.list_open_positions.return_value = positions

    async def get_price(chain, token):
        if token == OTHER:
            raise PriceFeedError("no pairs")
        return TokenPrice(chain=chain, token=token, price_usd=1.5)

    price_source = AsyncMock()
    price_source.get_price.side_effect = get_price
    handler = AsyncMock()

    monitor = PositionMonitor(position_source, price_source, handler, interval=1)
    signals = await monitor.run_tick()

    assert [s.position_id for s in signals] == ["a", "b"]
    assert price_source.get_price.await_count == 2
    handler.assert_awaited_once_with(signals)
    assert monitor.signals_emitted == 2
    assert monitor.ticks_completed == 1


@pytest.mark.asyncio
async def test_run_tick_without_positions_skips_pricing():
    position_source = AsyncMock()
    position_source.list_open_positions.return_value = []
    price_source = AsyncMock()
    handler = AsyncMock()

    monitor = PositionMonitor(position_source, price_source, handler, interval=1)

    assert await monitor.run_tick() == []
    price_source.get_price.assert_not_awaited()
    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_and_stop():
    position_source = AsyncMock()
    position_source.list_open_positions.return_value = []

    monitor = PositionMonitor(position_source, AsyncMock(), AsyncMock(), interval=0.01)
    await monitor.start()
    assert monitor.running
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert not monitor.running
    assert monitor.ticks_completed >= 1


@pytest.mark.asyncio
async def test_loop_survives_failing_tick():
    position_source = AsyncMock()
    position_source.list_open_positions.side_effect = [RuntimeError("boom"), [], [], [], [], [], [], []]

    monitor = PositionMonitor(position_source, AsyncMock(), AsyncMock(), interval=0.01)
    await monitor.start()
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert monitor.ticks_completed >= 1


def test_interval_must_be_positive():
    with pytest.raises(ConfigurationError):
        PositionMonitor(AsyncMock(), AsyncMock(), AsyncMock(), interval=0)
