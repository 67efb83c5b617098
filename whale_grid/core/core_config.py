"""
Configuration
============
Builds the bot configuration from DEFAULT_CONFIG overridden by environment variables
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .core_constants import DEFAULT_CONFIG, EnvVars, KNOWN_WHALES
from .core_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class BotConfig:
    """Runtime configuration for the trading core"""
    mongodb_uri: str = DEFAULT_CONFIG["database"]["uri"]
    mongodb_database: str = DEFAULT_CONFIG["database"]["database"]
    use_memory_db: bool = DEFAULT_CONFIG["database"]["use_memory"]
    solana_rpc_url: str = DEFAULT_CONFIG["solana"]["rpc_url"]
    fallback_rpc_urls: List[str] = field(
        default_factory=lambda: list(DEFAULT_CONFIG["solana"]["fallback_rpc_urls"])
    )
    private_key: str = ""
    position_check_interval: float = DEFAULT_CONFIG["loops"]["position_check_interval"]
    grid_refresh_interval: float = DEFAULT_CONFIG["loops"]["grid_refresh_interval"]
    take_profit_sell_percent: float = DEFAULT_CONFIG["trading"]["take_profit_sell_percent"]
    stop_loss_sell_percent: float = DEFAULT_CONFIG["trading"]["stop_loss_sell_percent"]
    slippage_bps: int = DEFAULT_CONFIG["trading"]["slippage_bps"]
    simulate_swaps: bool = DEFAULT_CONFIG["trading"]["simulate_swaps"]
    retry_max_attempts: int = DEFAULT_CONFIG["retry"]["max_attempts"]
    retry_base_delay: float = DEFAULT_CONFIG["retry"]["base_delay"]
    retry_attempt_timeout: float = DEFAULT_CONFIG["retry"]["attempt_timeout"]
    known_whales: Dict[str, str] = field(default_factory=lambda: dict(KNOWN_WHALES))
    log_level: str = DEFAULT_CONFIG["logging"]["level"]
    log_file: str = DEFAULT_CONFIG["logging"]["file"]


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_known_whales(path: str) -> Dict[str, str]:
    """Load an address -> label table from a JSON object file"""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read known whales file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Known whales file {path} must contain a JSON object")

    return {str(address): str(label) for address, label in data.items()}


def load_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Create BotConfig from environment variables on top of the defaults"""
    env = os.environ if env is None else env
    config = BotConfig()

    config.mongodb_uri = env.get(EnvVars.MONGODB_URI, config.mongodb_uri)
    config.mongodb_database = env.get(EnvVars.MONGODB_DATABASE, config.mongodb_database)
    config.use_memory_db = _get_bool(env, EnvVars.USE_MEMORY_DB, config.use_memory_db)

    config.solana_rpc_url = env.get(EnvVars.SOLANA_RPC_URL, config.solana_rpc_url)
    fallbacks = env.get(EnvVars.SOLANA_FALLBACK_RPC_URLS)
    if fallbacks:
        config.fallback_rpc_urls = [url.strip() for url in fallbacks.split(",") if url.strip()]
    config.private_key = env.get(EnvVars.SOLANA_PRIVATE_KEY, "")

    config.position_check_interval = _get_float(
        env, EnvVars.POSITION_CHECK_INTERVAL, config.position_check_interval
    )
    config.grid_refresh_interval = _get_float(
        env, EnvVars.GRID_REFRESH_INTERVAL, config.grid_refresh_interval
    )
    config.take_profit_sell_percent = _get_float(
        env, EnvVars.TAKE_PROFIT_SELL_PERCENT, config.take_profit_sell_percent
    )
    config.stop_loss_sell_percent = _get_float(
        env, EnvVars.STOP_LOSS_SELL_PERCENT, config.stop_loss_sell_percent
    )
    config.slippage_bps = _get_int(env, EnvVars.SLIPPAGE_BPS, config.slippage_bps)
    config.simulate_swaps = _get_bool(env, EnvVars.SIMULATE_SWAPS, config.simulate_swaps)

    config.retry_max_attempts = _get_int(env, EnvVars.RETRY_MAX_ATTEMPTS, config.retry_max_attempts)
    config.retry_base_delay = _get_float(env, EnvVars.RETRY_BASE_DELAY, config.retry_base_delay)
    config.retry_attempt_timeout = _get_float(
        env, EnvVars.RETRY_ATTEMPT_TIMEOUT, config.retry_attempt_timeout
    )

    whales_file = env.get(EnvVars.KNOWN_WHALES_FILE)
    if whales_file:
        config.known_whales = load_known_whales(whales_file)
        logger.info(f"🐋 Loaded {len(config.known_whales)} known whale labels from {whales_file}")

    config.log_level = env.get(EnvVars.LOG_LEVEL, config.log_level).upper()
    config.log_file = env.get(EnvVars.LOG_FILE, config.log_file)

    for name in ("take_profit_sell_percent", "stop_loss_sell_percent"):
        value = getattr(config, name)
        if not 0 < value <= 100:
            raise ConfigurationError(f"{name} must be within (0, 100], got {value}")

    if config.position_check_interval <= 0 or config.grid_refresh_interval <= 0:
        raise ConfigurationError("Loop intervals must be positive")

    if not config.simulate_swaps and not config.private_key:
        raise ConfigurationError(f"{EnvVars.SOLANA_PRIVATE_KEY} is required when SIMULATE_SWAPS is off")

    return config
