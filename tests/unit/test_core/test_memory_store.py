import pytest

from whale_grid.core.core_constants import GridStatus, PositionType, TradeType
from whale_grid.core.core_models import WhaleAlert, to_document

NOW = 1_700_000_000


@pytest.mark.asyncio
async def test_grid_strategy_survives_storage(memory_db, grid_engine, grid_request):
    strategy = grid_engine.create_grid(grid_request)
    grid_engine.apply_price_tick(strategy, 1.0)
    await memory_db.store_grid_strategy(strategy)

    loaded = (await memory_db.load_grid_strategies())[0]

    assert loaded == strategy
    assert loaded is not strategy


@pytest.mark.asyncio
async def test_finished_grids_only_on_request(memory_db, grid_engine, grid_request):
    strategy = grid_engine.create_grid(grid_request)
    grid_engine.stop(strategy)
    await memory_db.store_grid_strategy(strategy)

    assert await memory_db.load_grid_strategies() == []
    loaded = await memory_db.load_grid_strategies(include_finished=True)
    assert loaded[0].status == GridStatus.STOPPED


def test_documents_hold_plain_values():
    alert = WhaleAlert(
        alert_id="alert_1", user_id=1, min_size_usd=10.0,
        position_types=[PositionType.LONG, PositionType.SPOT], created_at=NOW,
    )

    doc = to_document(alert)

    assert doc["position_types"] == ["long", "spot"]
    assert WhaleAlert.from_document(doc) == alert


@pytest.mark.asyncio
async def test_recent_whale_trades_window(memory_db, make_trade):
    await memory_db.store_whale_trade(make_trade(timestamp=NOW - 100_000))
    await memory_db.store_whale_trade(make_trade(timestamp=NOW - 10, trade_type=TradeType.SELL))
    await memory_db.store_whale_trade(make_trade(timestamp=NOW - 20))

    trades = await memory_db.load_recent_whale_trades(since=NOW - 86_400)

    assert [t.timestamp for t in trades] == [NOW - 20, NOW - 10]
    assert trades[1].trade_type == TradeType.SELL
    assert len(await memory_db.load_recent_whale_trades(since=0, limit=1)) == 1
