import pytest
from unittest.mock import AsyncMock

from whale_grid.core.core_constants import CloseReason, PositionStatus
from whale_grid.core.core_exceptions import DatabaseError, PositionError, PositionPersistenceError, ValidationError
from whale_grid.trading.position_manager import PositionManager

TOKEN = "TokenMint1111111111111111111111111111111111"


@pytest.fixture
def position_manager(memory_db):
    return PositionManager(memory_db, clock=lambda: 1_700_000_000)


async def _open(manager, amount=100.0, entry=2.0, sl=15.0):
    return await manager.open_position(1, "solana", TOKEN, amount, entry, 30.0, sl)


@pytest.mark.asyncio
async def test_open_position_stores_signed_stop_loss(position_manager, memory_db):
    position = await _open(position_manager, sl=15.0)

    assert position.stop_loss_percent == -15.0
    assert position.take_profit_percent == 30.0
    assert position.position_id.startswith("pos_1_")
    assert position.opened_at == 1_700_000_000

    stored = await memory_db.get_position(position.position_id)
    assert stored.stop_loss_percent == -15.0
    assert await position_manager.count_open_positions(1) == 1


@pytest.mark.asyncio
async def test_already_negative_stop_loss_unchanged(position_manager):
    position = await _open(position_manager, sl=-20.0)
    assert position.stop_loss_percent == -20.0


@pytest.mark.asyncio
@pytest.mark.parametrize("amount,entry", [(0.0, 1.0), (-1.0, 1.0), (1.0, 0.0)])
async def test_open_position_validation(position_manager, amount, entry):
    with pytest.raises(ValidationError):
        await position_manager.open_position(1, "solana", TOKEN, amount, entry, 30.0, 15.0)


@pytest.mark.asyncio
async def test_partial_close_keeps_position_open(position_manager, memory_db):
    position = await _open(position_manager)

    sold, realized = await position_manager.apply_close(position.position_id, 50.0, 3.0)

    assert sold == pytest.approx(50.0)
    assert realized == pytest.approx(50.0)
    remaining = position_manager.get_position(position.position_id)
    assert remaining.amount == pytest.approx(50.0)
    assert remaining.status == PositionStatus.OPEN
    assert remaining.realized_pnl_usd == pytest.approx(50.0)
    assert (await memory_db.get_position(position.position_id)).amount == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_full_close_removes_position(position_manager, memory_db):
    position = await _open(position_manager)

    sold, realized = await position_manager.apply_close(position.position_id, 100.0, 1.5)

    assert sold == pytest.approx(100.0)
    assert realized == pytest.approx(-50.0)
    with pytest.raises(PositionError):
        position_manager.get_position(position.position_id)

    stored = await memory_db.get_position(position.position_id)
    assert stored.status == PositionStatus.CLOSED
    assert stored.amount == 0.0
    assert stored.closed_at == 1_700_000_000
    assert await memory_db.count_open_positions(1) == 0

    summary = position_manager.get_portfolio_summary()
    assert summary["open_positions"] == 0
    assert summary["realized_pnl_usd"] == pytest.approx(-50.0)
    assert summary["win_rate"] == 0.0


@pytest.mark.asyncio
@pytest.mark.parametrize("percent", [0.0, -10.0, 150.0])
async def test_apply_close_rejects_bad_percent(position_manager, percent):
    position = await _open(position_manager)
    with pytest.raises(ValidationError):
        await position_manager.apply_close(position.position_id, percent, 2.0)


@pytest.mark.asyncio
async def test_update_price_ignores_non_positive(position_manager):
    position = await _open(position_manager)

    await position_manager.update_price(position.position_id, 2.5)
    await position_manager.update_price(position.position_id, 0.0)

    assert position_manager.get_position(position.position_id).current_price == 2.5
    summary = position_manager.get_portfolio_summary(1)
    assert summary["unrealized_pnl_usd"] == pytest.approx(50.0)
    assert summary["total_open_value_usd"] == pytest.approx(250.0)


@pytest.mark.asyncio
async def test_initialize_loads_open_positions(memory_db):
    first = PositionManager(memory_db)
    position = await first.open_position(2, "solana", TOKEN, 10.0, 1.0, 30.0, 15.0)

    restarted = PositionManager(memory_db)
    await restarted.initialize()

    assert [p.position_id for p in await restarted.list_open_positions(2)] == [position.position_id]
    assert await restarted.list_open_positions(3) == []


@pytest.mark.asyncio
async def test_initialize_wraps_store_errors():
    db = AsyncMock()
    db.list_open_positions.side_effect = ConnectionError("offline")

    with pytest.raises(PositionError):
        await PositionManager(db).initialize()


@pytest.mark.asyncio
async def test_partial_take_profit_marks_position(position_manager, memory_db):
    position = await _open(position_manager)

    await position_manager.apply_close(position.position_id, 50.0, 3.0, reason=CloseReason.TAKE_PROFIT)

    assert position_manager.get_position(position.position_id).take_profit_taken is True
    assert (await memory_db.get_position(position.position_id)).take_profit_taken is True


@pytest.mark.asyncio
async def test_manual_partial_close_leaves_take_profit_armed(position_manager):
    position = await _open(position_manager)

    await position_manager.apply_close(position.position_id, 50.0, 3.0)

    assert position_manager.get_position(position.position_id).take_profit_taken is False


@pytest.mark.asyncio
async def test_close_store_failure_keeps_book_and_queues_write(position_manager, memory_db):
    position = await _open(position_manager)
    store = memory_db.store_position
    memory_db.store_position = AsyncMock(side_effect=DatabaseError("connection lost"))

    with pytest.raises(PositionPersistenceError) as exc_info:
        await position_manager.apply_close(position.position_id, 100.0, 1.5)

    assert exc_info.value.sold == pytest.approx(100.0)
    assert exc_info.value.realized == pytest.approx(-50.0)
    assert position_manager.get_portfolio_summary()["open_positions"] == 0
    assert position.position_id in position_manager.pending_writes
    assert (await memory_db.get_position(position.position_id)).status == PositionStatus.OPEN

    assert await position_manager.sync_pending() == 0

    memory_db.store_position = store
    assert await position_manager.sync_pending() == 1
    assert position_manager.pending_writes == {}
    assert (await memory_db.get_position(position.position_id)).status == PositionStatus.CLOSED


@pytest.mark.asyncio
async def test_open_store_failure_keeps_position_in_book(position_manager, memory_db):
    store = memory_db.store_position
    memory_db.store_position = AsyncMock(side_effect=DatabaseError("connection lost"))

    with pytest.raises(PositionPersistenceError) as exc_info:
        await _open(position_manager)

    position_id = exc_info.value.position_id
    assert position_manager.get_position(position_id).amount == pytest.approx(100.0)

    memory_db.store_position = store
    await position_manager.sync_pending()
    assert (await memory_db.get_position(position_id)).amount == pytest.approx(100.0)
