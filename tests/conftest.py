import pytest
from unittest.mock import AsyncMock

from whale_grid.core.core_config import BotConfig
from whale_grid.core.core_constants import TradeType, PositionType
from whale_grid.core.core_models import CreateGridRequest, WhaleTrade, TokenPrice
from whale_grid.database.memory_store import InMemoryDatabase
from whale_grid.grid.grid_engine import GridEngine
from whale_grid.monitoring.whale_monitor import WhaleMonitor
from whale_grid.risk.risk_engine import RiskEngine

NOW = 1_700_000_000
TODAY = "2023-11-14"
TOKEN = "TokenMint1111111111111111111111111111111111"


@pytest.fixture
def bot_config():
    return BotConfig(use_memory_db=True, simulate_swaps=True, known_whales={})


@pytest.fixture
def memory_db():
    return InMemoryDatabase()


@pytest.fixture
def mock_db():
    return AsyncMock()


@pytest.fixture
def mock_trader():
    trader = AsyncMock()
    trader.wallet_address = "TestWallet"
    trader.execute_swap.return_value = "sig_test"
    return trader


@pytest.fixture
def mock_price_feed():
    feed = AsyncMock()
    feed.get_price.return_value = TokenPrice(chain="solana", token=TOKEN, price_usd=2.0, volume_24h=1_000_000.0)
    return feed


@pytest.fixture
def grid_engine():
    return GridEngine(clock=lambda: NOW)


@pytest.fixture
def grid_request():
    return CreateGridRequest(
        user_id=1, chain="solana", token=TOKEN,
        lower_price=1.0, upper_price=2.0, grid_count=3, investment_amount=300.0
    )


@pytest.fixture
def risk_engine(memory_db):
    return RiskEngine(memory_db, today=lambda: TODAY)


@pytest.fixture
def whale_monitor():
    return WhaleMonitor(known_whales={"KnownWallet": "Tagged Fund"}, clock=lambda: NOW)


@pytest.fixture
def make_trade():
    counter = {"n": 0}

    def _make(size_usd=150_000.0, chain="solana", token=TOKEN, wallet="Wallet1",
              timestamp=NOW, price=1.5, trade_type=TradeType.BUY,
              position_type=PositionType.SPOT):
        counter["n"] += 1
        return WhaleTrade(
            trade_id=f"trade_{counter['n']}",
            chain=chain,
            token=token,
            trade_type=trade_type,
            size_usd=size_usd,
            price=price,
            timestamp=timestamp,
            wallet_address=wallet,
            position_type=position_type,
        )

    return _make
