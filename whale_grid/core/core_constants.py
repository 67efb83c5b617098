"""
Application Constants
====================
Global constants and enumerations used throughout the trading core
"""

from enum import Enum


# Solana Network Constants
class SolanaNetworks:
    MAINNET = "https://api.mainnet-beta.solana.com"

    FALLBACKS = [
        "https://api.mainnet-beta.solana.com",
        "https://solana-api.projectserum.com",
        "https://rpc.ankr.com/solana",
    ]


# Token Addresses
class TokenAddresses:
    USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


# API Endpoints
class APIEndpoints:
    JUPITER_V6 = "https://quote-api.jup.ag/v6"
    DEXSCREENER = "https://api.dexscreener.com/latest/dex"

    # Jupiter endpoints
    JUPITER_QUOTE = "/quote"
    JUPITER_SWAP = "/swap"

    # DexScreener endpoints
    DEXSCREENER_TOKENS = "/tokens/{token}"


# Grid lifecycle
class GridStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


class OrderType(Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    FILLED = "filled"
    CANCELLED = "cancelled"


# Whale trade classification
class TradeType(Enum):
    BUY = "buy"
    SELL = "sell"
    LONG = "long"
    SHORT = "short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"


class PositionType(Enum):
    LONG = "long"
    SHORT = "short"
    SPOT = "spot"


class MarketImpact(Enum):
    LOW = "low"            # < 1% price impact
    MEDIUM = "medium"      # 1-5% price impact
    HIGH = "high"          # 5-10% price impact
    CRITICAL = "critical"  # > 10% or rapid consecutive trades


class GridAction(Enum):
    PAUSE_GRID = "PAUSE_GRID"
    REDUCE_GRID_SPACING = "REDUCE_GRID_SPACING"
    WIDEN_GRID_RANGE = "WIDEN_GRID_RANGE"
    MONITOR = "MONITOR"
    CONTINUE = "CONTINUE"


# Position Status
class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


class CloseReason(Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"


# Grid engine tuning
class GridDefaults:
    LEVEL_PRICE_TOLERANCE = 1e-4
    BOUND_EPSILON = 1e-9
    MAX_WHALE_WIDENING = 0.5
    MEDIUM_IMPACT_WIDENING = 1.1
    RANGE_SHIFT_TRIGGER = 0.05
    RANGE_EXPANSION = 0.2
    PAUSE_VELOCITY = 0.7
    PAUSE_PRICE_IMPACT = 8.0
    EXTREME_VOLATILITY = 0.10
    EXTREME_WHALE_ACTIVITY = 0.7
    EXPOSURE_CUT_FRACTION = 0.25


# Risk defaults for lazily created profiles
class RiskDefaults:
    MAX_TRADE_SIZE_USD = 100.0
    MAX_DAILY_LOSS_USD = 50.0
    MAX_OPEN_POSITIONS = 5
    STOP_LOSS_PCT = 15.0
    TAKE_PROFIT_PCT = 30.0
    KILL_SWITCH_ENABLED = False
    BLACKLIST_ENABLED = True


# Whale scoring
class WhaleDefaults:
    LIQUIDITY_CONSTANTS = {
        "solana": 100_000.0,
        "eth": 500_000.0,
        "ethereum": 500_000.0,
        "bsc": 250_000.0,
        "binance": 250_000.0,
    }
    DEFAULT_LIQUIDITY = 100_000.0
    NONLINEAR_SCALE = 1_000_000.0
    NONLINEAR_EXPONENT = 1.5

    VELOCITY_WINDOW_SECONDS = 300
    VELOCITY_SATURATION_TRADES = 3.0

    CRITICAL_IMPACT = 10.0
    CRITICAL_VELOCITY = 0.8
    HIGH_IMPACT = 5.0
    HIGH_VELOCITY = 0.6
    MEDIUM_IMPACT = 1.0
    MEDIUM_VOLUME_ANOMALY = 3.0

    BASE_CONFIDENCE = 70.0
    KNOWN_WALLET_BONUS = 20.0
    FIRST_ENTRY_BONUS = 5.0
    LARGE_TRADE_BONUS = 5.0
    LARGE_TRADE_USD = 500_000.0
    MAX_CONFIDENCE = 100.0

    IMPACT_EMA_DECAY = 0.7
    DEFAULT_SECONDS_SINCE_LAST = 3600
    PRICE_DEVIATION = 0.05
    ALL_LONG_RATIO = 999.0
    TOP_WHALES = 10
    HISTORY_SIZE = 10_000


# Curated known-wallet labels, overridable through configuration
KNOWN_WHALES = {
    "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1": "Alameda (Tagged)",
    "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM": "Binance Hot Wallet",
}


# Trading Constants
class TradingDefaults:
    TAKE_PROFIT_SELL_PCT = 50.0
    STOP_LOSS_SELL_PCT = 100.0
    SLIPPAGE_BPS = 300
    PRIORITY_FEE = 0.001
    TOKEN_DECIMALS = 6
    USDC_DECIMALS = 6


# Time Constants (in seconds)
class TimeConstants:
    HOUR = 3600
    DAY = 86400

    # Loop intervals
    POSITION_CHECK_INTERVAL = 5
    GRID_REFRESH_INTERVAL = 15

    # Timeouts
    API_TIMEOUT = 8
    TRANSACTION_TIMEOUT = 60
    CONFIRMATION_POLL = 2


# Retry policy defaults for collaborator calls
class RetryDefaults:
    MAX_ATTEMPTS = 3
    BASE_DELAY = 0.1
    MAX_DELAY = 2.0
    ATTEMPT_TIMEOUT = 8.0


# Approximate native coin prices used for price_native
NATIVE_PRICE_ESTIMATES = {
    "solana": 100.0,
    "eth": 2000.0,
    "ethereum": 2000.0,
    "bsc": 300.0,
    "binance": 300.0,
}


# Database Collections
class Collections:
    RISK_PROFILES = "risk_profiles"
    DAILY_STATS = "daily_stats"
    POSITIONS = "positions"
    GRID_STRATEGIES = "grid_strategies"
    WHALE_TRADES = "whale_trades"
    WHALE_ALERTS = "whale_alerts"


# Logging
class LogFormat:
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
    MAX_BYTES = 10 * 1024 * 1024
    BACKUP_COUNT = 5


# Environment Variables
class EnvVars:
    # Wallet
    SOLANA_PRIVATE_KEY = "SOLANA_PRIVATE_KEY"

    # Network
    SOLANA_RPC_URL = "SOLANA_RPC_URL"
    SOLANA_FALLBACK_RPC_URLS = "SOLANA_FALLBACK_RPC_URLS"

    # Database
    MONGODB_URI = "MONGODB_URI"
    MONGODB_DATABASE = "MONGODB_DATABASE"
    USE_MEMORY_DB = "USE_MEMORY_DB"

    # Loops
    POSITION_CHECK_INTERVAL = "POSITION_CHECK_INTERVAL"
    GRID_REFRESH_INTERVAL = "GRID_REFRESH_INTERVAL"

    # Trading
    TAKE_PROFIT_SELL_PERCENT = "TAKE_PROFIT_SELL_PERCENT"
    STOP_LOSS_SELL_PERCENT = "STOP_LOSS_SELL_PERCENT"
    SLIPPAGE_BPS = "SLIPPAGE_BPS"
    SIMULATE_SWAPS = "SIMULATE_SWAPS"

    # Retry
    RETRY_MAX_ATTEMPTS = "RETRY_MAX_ATTEMPTS"
    RETRY_BASE_DELAY = "RETRY_BASE_DELAY"
    RETRY_ATTEMPT_TIMEOUT = "RETRY_ATTEMPT_TIMEOUT"

    # Whale monitor
    KNOWN_WHALES_FILE = "KNOWN_WHALES_FILE"

    # Logging
    LOG_LEVEL = "LOG_LEVEL"
    LOG_FILE = "LOG_FILE"


# Default Configuration Values
DEFAULT_CONFIG = {
    "trading": {
        "take_profit_sell_percent": TradingDefaults.TAKE_PROFIT_SELL_PCT,
        "stop_loss_sell_percent": TradingDefaults.STOP_LOSS_SELL_PCT,
        "slippage_bps": TradingDefaults.SLIPPAGE_BPS,
        "simulate_swaps": True,
    },
    "database": {
        "uri": "mongodb://localhost:27017/",
        "database": "whale_grid",
        "use_memory": False,
    },
    "solana": {
        "rpc_url": SolanaNetworks.MAINNET,
        "fallback_rpc_urls": SolanaNetworks.FALLBACKS,
    },
    "loops": {
        "position_check_interval": TimeConstants.POSITION_CHECK_INTERVAL,
        "grid_refresh_interval": TimeConstants.GRID_REFRESH_INTERVAL,
    },
    "retry": {
        "max_attempts": RetryDefaults.MAX_ATTEMPTS,
        "base_delay": RetryDefaults.BASE_DELAY,
        "attempt_timeout": RetryDefaults.ATTEMPT_TIMEOUT,
    },
    "logging": {
        "level": "INFO",
        "file": "logs/whale_grid.log",
    },
}


# Error Codes
class ErrorCodes:
    # Validation errors (1000-1099)
    VALIDATION_FAILED = "VAL_1000"
    CONFIG_INVALID = "VAL_1001"

    # Risk errors (2000-2099)
    KILL_SWITCH_ACTIVE = "RISK_2000"
    TOKEN_BLACKLISTED = "RISK_2001"
    DEV_BLACKLISTED = "RISK_2002"
    MAX_TRADE_SIZE = "RISK_2003"
    MAX_DAILY_LOSS = "RISK_2004"
    MAX_OPEN_POSITIONS = "RISK_2005"
    RISK_DATA = "RISK_2006"

    # Collaborator errors (3000-3099)
    PRICE_FEED_FAILED = "EXT_3000"
    SWAP_FAILED = "EXT_3001"
    SECURITY_CHECK_FAILED = "EXT_3002"
    DB_OPERATION_FAILED = "EXT_3003"
    RETRIES_EXHAUSTED = "EXT_3004"

    # Data errors (4000-4099)
    GRID_DATA_INVALID = "DATA_4000"
    STRATEGY_NOT_FOUND = "DATA_4001"
    POSITION_NOT_FOUND = "DATA_4002"
    POSITION_NOT_PERSISTED = "DATA_4003"
