import pytest

from whale_grid.core.core_exceptions import SwapExecutionError
from whale_grid.trading.swap_simulator import SimulatedTrader


@pytest.mark.asyncio
async def test_signatures_are_deterministic_and_unique():
    first = SimulatedTrader()
    second = SimulatedTrader()

    sig_a = await first.execute_swap("W", "USDC", "TOKEN", 1_000_000, 300)
    sig_b = await first.execute_swap("W", "USDC", "TOKEN", 1_000_000, 300)
    sig_c = await second.execute_swap("W", "USDC", "TOKEN", 1_000_000, 300)

    assert sig_a != sig_b
    assert sig_a == sig_c
    assert len(first.swaps) == 2
    assert first.swaps[0].amount == 1_000_000


@pytest.mark.asyncio
async def test_rejects_empty_swap():
    with pytest.raises(SwapExecutionError):
        await SimulatedTrader().execute_swap("W", "USDC", "TOKEN", 0, 300)
