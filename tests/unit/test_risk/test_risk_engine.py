import asyncio

import pytest
from unittest.mock import AsyncMock

from whale_grid.core.core_exceptions import (
    KillSwitchActiveError, TokenBlacklistedError, DevBlacklistedError, MaxTradeSizeExceededError,
    MaxDailyLossExceededError, MaxOpenPositionsExceededError, RiskDataError, ValidationError
)
from whale_grid.core.core_models import DailyStats, Position, RiskProfile
from whale_grid.risk.risk_engine import RiskEngine

TOKEN = "TokenMint1111111111111111111111111111111111"


async def _open_positions(db, user_id, count):
    for i in range(count):
        await db.store_position(Position(
            position_id=f"pos_{user_id}_{i}", user_id=user_id, chain="solana", token=TOKEN,
            amount=1.0, entry_price=1.0, current_price=1.0,
            take_profit_percent=30.0, stop_loss_percent=-15.0,
        ))


@pytest.mark.asyncio
async def test_default_profile_created_lazily(risk_engine, memory_db):
    await risk_engine.check_trade_risk(1, TOKEN, 50.0)

    profile = await memory_db.load_risk_profile(1)
    assert profile is not None
    assert profile.max_trade_size_usd == 100.0
    assert profile.max_daily_loss_usd == 50.0
    assert profile.max_open_positions == 5
    assert profile.kill_switch_enabled is False
    assert profile.blacklist_enabled is True


@pytest.mark.asyncio
async def test_trade_size_limit(risk_engine):
    with pytest.raises(MaxTradeSizeExceededError) as exc:
        await risk_engine.check_trade_risk(1, TOKEN, 150.0)

    assert exc.value.attempted == 150.0
    assert exc.value.maximum == 100.0
    assert "150.00" in exc.value.message


@pytest.mark.asyncio
async def test_three_losses_block_fourth_buy(risk_engine):
    for _ in range(3):
        await risk_engine.check_trade_risk(1, TOKEN, 20.0)
        await risk_engine.record_trade_result(1, -20.0)

    with pytest.raises(MaxDailyLossExceededError) as exc:
        await risk_engine.check_trade_risk(1, TOKEN, 20.0)

    assert exc.value.current_loss == pytest.approx(60.0)
    assert exc.value.maximum == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_kill_switch_preempts_every_other_failure(risk_engine, memory_db):
    await risk_engine.add_to_blacklist(TOKEN)
    await risk_engine.record_trade_result(1, -500.0)
    await _open_positions(memory_db, 1, 10)
    await risk_engine.set_kill_switch(1, True)

    with pytest.raises(KillSwitchActiveError):
        await risk_engine.check_trade_risk(1, TOKEN, 10_000.0)

    await risk_engine.set_kill_switch(1, False)
    with pytest.raises(TokenBlacklistedError):
        await risk_engine.check_trade_risk(1, TOKEN, 10_000.0)

    await risk_engine.remove_from_blacklist(TOKEN)
    with pytest.raises(MaxTradeSizeExceededError):
        await risk_engine.check_trade_risk(1, TOKEN, 10_000.0)

    with pytest.raises(MaxDailyLossExceededError):
        await risk_engine.check_trade_risk(1, TOKEN, 10.0)


@pytest.mark.asyncio
async def test_blacklist_disabled_skips_token_check(risk_engine):
    await risk_engine.add_to_blacklist(TOKEN)
    await risk_engine.update_risk_profile(1, blacklist_enabled=False)

    await risk_engine.check_trade_risk(1, TOKEN, 10.0)


@pytest.mark.asyncio
async def test_dev_blacklist(risk_engine):
    await risk_engine.add_dev_to_blacklist("DevWallet")

    await risk_engine.check_trade_risk(1, TOKEN, 10.0)
    with pytest.raises(DevBlacklistedError) as exc:
        await risk_engine.check_trade_risk(1, TOKEN, 10.0, dev_wallet="DevWallet")
    assert exc.value.dev_wallet == "DevWallet"

    assert await risk_engine.remove_dev_from_blacklist("DevWallet") is True
    assert await risk_engine.is_dev_blacklisted("DevWallet") is False


@pytest.mark.asyncio
async def test_open_position_limit(risk_engine, memory_db):
    await _open_positions(memory_db, 1, 5)

    with pytest.raises(MaxOpenPositionsExceededError) as exc:
        await risk_engine.check_trade_risk(1, TOKEN, 10.0)

    assert (exc.value.current, exc.value.maximum) == (5, 5)
    # other users are unaffected
    await risk_engine.check_trade_risk(2, TOKEN, 10.0)


@pytest.mark.asyncio
async def test_passing_check_has_no_side_effects(risk_engine):
    await risk_engine.check_trade_risk(1, TOKEN, 10.0)
    await risk_engine.check_trade_risk(1, TOKEN, 10.0)

    stats = await risk_engine.get_daily_stats(1)
    assert stats.total_loss_usd == 0.0
    assert stats.trade_count == 0


@pytest.mark.asyncio
async def test_daily_loss_only_grows_within_a_day(risk_engine):
    seen = []
    for pnl in (-5.0, 12.0, -3.5, 0.0, -1.0, 40.0):
        stats = await risk_engine.record_trade_result(1, pnl)
        seen.append(stats.total_loss_usd)

    assert seen == sorted(seen)
    assert seen[-1] == pytest.approx(9.5)
    assert (await risk_engine.get_daily_stats(1)).trade_count == 6


@pytest.mark.asyncio
async def test_daily_stats_roll_over_on_new_date(memory_db):
    day = {"value": "2024-01-01"}
    engine = RiskEngine(memory_db, today=lambda: day["value"])

    await engine.record_trade_result(1, -60.0)
    with pytest.raises(MaxDailyLossExceededError):
        await engine.check_trade_risk(1, TOKEN, 10.0)

    day["value"] = "2024-01-02"
    await engine.check_trade_risk(1, TOKEN, 10.0)
    stats = await engine.get_daily_stats(1)
    assert stats.date == "2024-01-02"
    assert stats.total_loss_usd == 0.0


@pytest.mark.asyncio
async def test_daily_stats_persisted_and_reloaded(memory_db):
    engine = RiskEngine(memory_db, today=lambda: "2024-01-01")
    await engine.record_trade_result(7, -30.0)

    restarted = RiskEngine(memory_db, today=lambda: "2024-01-01")
    stats = await restarted.get_daily_stats(7)
    assert stats.total_loss_usd == pytest.approx(30.0)
    assert stats.trade_count == 1


@pytest.mark.asyncio
async def test_store_failure_surfaces_as_risk_data_error():
    store = AsyncMock()
    store.load_risk_profile.side_effect = ConnectionError("db down")

    engine = RiskEngine(store, today=lambda: "2024-01-01")
    with pytest.raises(RiskDataError) as exc:
        await engine.check_trade_risk(1, TOKEN, 10.0)
    assert "db down" in exc.value.message


@pytest.mark.asyncio
async def test_store_without_daily_stats_support():
    class MinimalStore:
        def __init__(self):
            self.profiles = {}

        async def load_risk_profile(self, user_id):
            return self.profiles.get(user_id)

        async def save_risk_profile(self, profile):
            self.profiles[profile.user_id] = profile

        async def count_open_positions(self, user_id):
            return 0

    engine = RiskEngine(MinimalStore(), today=lambda: "2024-01-01")
    await engine.record_trade_result(1, -10.0)
    await engine.check_trade_risk(1, TOKEN, 10.0)
    assert (await engine.get_daily_stats(1)).total_loss_usd == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_update_risk_profile_validation(risk_engine):
    with pytest.raises(ValidationError):
        await risk_engine.update_risk_profile(1, unknown_field=3)
    with pytest.raises(ValidationError):
        await risk_engine.update_risk_profile(1, max_trade_size_usd=-1.0)
    with pytest.raises(ValidationError):
        await risk_engine.update_risk_profile(1, kill_switch_enabled="yes")

    profile = await risk_engine.update_risk_profile(1, max_trade_size_usd=500.0, max_open_positions=2)
    assert isinstance(profile, RiskProfile)
    assert profile.max_trade_size_usd == 500.0
    await risk_engine.check_trade_risk(1, TOKEN, 400.0)


@pytest.mark.asyncio
async def test_trade_guard_serializes_same_user(risk_engine):
    order = []

    async def worker(name):
        async with risk_engine.trade_guard(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert risk_engine.guarded_users == 0


@pytest.mark.asyncio
async def test_trade_guard_drops_idle_locks(risk_engine):
    async def hold(user_id):
        async with risk_engine.trade_guard(user_id):
            await asyncio.sleep(0)
            assert risk_engine.guarded_users >= 1

    await asyncio.gather(*(hold(user_id) for user_id in range(50)))
    assert risk_engine.guarded_users == 0

    with pytest.raises(RuntimeError):
        async with risk_engine.trade_guard(7):
            raise RuntimeError("boom")
    assert risk_engine.guarded_users == 0


@pytest.mark.asyncio
async def test_blacklist_membership(risk_engine):
    assert await risk_engine.is_blacklisted(TOKEN) is False
    await risk_engine.add_to_blacklist(TOKEN)
    assert await risk_engine.is_blacklisted(TOKEN) is True
    assert await risk_engine.remove_from_blacklist(TOKEN) is True
    assert await risk_engine.remove_from_blacklist(TOKEN) is False


@pytest.mark.asyncio
async def test_initial_blacklists_from_constructor(memory_db):
    engine = RiskEngine(memory_db, global_blacklist=[TOKEN], dev_blacklist=["Dev"])
    with pytest.raises(TokenBlacklistedError):
        await engine.check_trade_risk(1, TOKEN, 1.0)
    with pytest.raises(DevBlacklistedError):
        await engine.check_trade_risk(1, "OtherToken", 1.0, dev_wallet="Dev")


@pytest.mark.asyncio
async def test_persisted_stats_from_previous_day_are_reset(memory_db):
    await memory_db.save_daily_stats(3, DailyStats(date="2023-12-31", total_loss_usd=99.0, trade_count=4))
    engine = RiskEngine(memory_db, today=lambda: "2024-01-01")

    await engine.check_trade_risk(3, TOKEN, 10.0)
