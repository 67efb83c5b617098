import pytest
from unittest.mock import AsyncMock, MagicMock

import base58
from solders.keypair import Keypair

from whale_grid.core.core_exceptions import ConfigurationError, SwapExecutionError
from whale_grid.trading.solana_trader import SolanaTrader
from whale_grid.utils.utils_retry import RetryPolicy

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
TOKEN = "TokenMint1111111111111111111111111111111111"


@pytest.fixture
def trader():
    key = base58.b58encode(bytes(Keypair())).decode()
    trader = SolanaTrader(
        key, rpc_urls=["https://primary", "https://backup"],
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=False, attempt_timeout=1.0),
    )
    trader._get_jupiter_quote = AsyncMock(return_value={"outAmount": "1000", "priceImpactPct": "0.1"})
    trader._get_jupiter_swap_transaction = AsyncMock(return_value="dHg=")
    trader._sign_transaction = MagicMock(return_value="signed_tx")
    trader._send_transaction = AsyncMock(return_value="5igSig")
    trader._wait_for_confirmation = AsyncMock(return_value=True)
    return trader


def test_invalid_private_key():
    with pytest.raises(ConfigurationError):
        SolanaTrader("not-a-key")


@pytest.mark.asyncio
async def test_swap_happy_path(trader):
    signature = await trader.execute_swap(trader.wallet_address, USDC, TOKEN, 1_000_000, 300)

    assert signature == "5igSig"
    trader._get_jupiter_quote.assert_awaited_once_with(USDC, TOKEN, 1_000_000, 300)
    trader._send_transaction.assert_awaited_once_with("https://primary", "signed_tx")
    assert trader.get_trading_stats()["successful_swaps"] == 1


@pytest.mark.asyncio
async def test_send_falls_back_to_next_rpc(trader):
    trader._send_transaction.side_effect = [ConnectionError("down"), ConnectionError("down"), "5igSig"]

    assert await trader.execute_swap(trader.wallet_address, USDC, TOKEN, 1_000_000, 300) == "5igSig"
    assert trader._send_transaction.await_args_list[-1].args[0] == "https://backup"


@pytest.mark.asyncio
async def test_quote_failure_becomes_swap_error(trader):
    trader._get_jupiter_quote.side_effect = ConnectionError("timeout")

    with pytest.raises(SwapExecutionError):
        await trader.execute_swap(trader.wallet_address, USDC, TOKEN, 1_000_000, 300)

    trader._send_transaction.assert_not_awaited()
    assert trader.failed_swaps == 1


@pytest.mark.asyncio
async def test_unconfirmed_transaction_fails(trader):
    trader._wait_for_confirmation.return_value = False

    with pytest.raises(SwapExecutionError):
        await trader.execute_swap(trader.wallet_address, USDC, TOKEN, 1_000_000, 300)


@pytest.mark.asyncio
@pytest.mark.parametrize("wallet,amount", [("SomeoneElse", 1_000), (None, 0)])
async def test_rejects_foreign_wallet_and_empty_amount(trader, wallet, amount):
    with pytest.raises(SwapExecutionError):
        await trader.execute_swap(wallet or trader.wallet_address, USDC, TOKEN, amount, 300)
    trader._get_jupiter_quote.assert_not_awaited()
