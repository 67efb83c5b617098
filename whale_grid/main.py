"""
Grid Trading Bot
===============
Wires the grid, risk, whale and position components to their collaborators and
runs the periodic loops
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from .core.core_config import BotConfig
from .core.core_constants import (
    CloseReason, GridStatus, MarketImpact, TokenAddresses, TradingDefaults, TimeConstants
)
from .core.core_exceptions import (
    CollaboratorError, GridDataError, PositionError, PositionPersistenceError, PriceFeedError, RiskError,
    ValidationError
)
from .core.core_models import (
    CloseSignal, CreateGridRequest, GridOrder, GridStrategy, TokenKey, TradeResult,
    WhaleAlert, WhaleEventResult, WhaleTrade
)
from .database.database_manager import DatabaseManager
from .database.memory_store import InMemoryDatabase
from .grid.grid_engine import GridEngine
from .monitoring.position_monitor import ClosePolicy, PositionMonitor
from .monitoring.whale_monitor import WhaleMonitor
from .risk.risk_engine import RiskEngine
from .services.price_feed import DexScreenerPriceFeed
from .trading.position_manager import PositionManager
from .trading.solana_trader import SolanaTrader
from .trading.swap_simulator import SimulatedTrader
from .utils.utils_retry import RetryPolicy

logger = logging.getLogger(__name__)

LIVE_STATUSES = (GridStatus.ACTIVE, GridStatus.PAUSED)


class GridTradingBot:
    """
    Orchestrator for the whale-aware grid trading core.

    Collaborators (db, trader, price_feed, security_checker) may be injected;
    otherwise they are built from the config.
    """

    def __init__(self, config: BotConfig, db=None, trader=None, price_feed=None,
                 security_checker=None, clock: Optional[Callable[[], int]] = None):
        self.config = config
        self._clock = clock or (lambda: int(time.time()))

        self.retry_policy = RetryPolicy(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
            attempt_timeout=config.retry_attempt_timeout,
        )

        if db is None:
            db = InMemoryDatabase() if config.use_memory_db else DatabaseManager(
                config.mongodb_uri, config.mongodb_database
            )
        self.db = db

        if trader is None:
            if config.simulate_swaps:
                trader = SimulatedTrader()
            else:
                trader = SolanaTrader(
                    config.private_key,
                    rpc_urls=[config.solana_rpc_url] + [
                        url for url in config.fallback_rpc_urls if url != config.solana_rpc_url
                    ],
                    retry_policy=self.retry_policy,
                )
        self.trader = trader

        self.price_feed = price_feed or DexScreenerPriceFeed(retry_policy=self.retry_policy)
        self.security_checker = security_checker

        # Core components
        self.grid_engine = GridEngine(clock=self._clock)
        self.risk_engine = RiskEngine(self.db)
        self.whale_monitor = WhaleMonitor(known_whales=config.known_whales, clock=self._clock)
        self.position_manager = PositionManager(self.db, clock=self._clock)
        self.position_monitor = PositionMonitor(
            position_source=self.position_manager,
            price_source=self.price_feed,
            signal_handler=self.handle_close_signals,
            policy=ClosePolicy(
                take_profit_sell_percent=config.take_profit_sell_percent,
                stop_loss_sell_percent=config.stop_loss_sell_percent,
            ),
            interval=config.position_check_interval,
        )

        self._stopping = asyncio.Event()
        self._grid_task: Optional[asyncio.Task] = None
        self.running = False

        logger.info("✅ Grid Trading Bot created")

    # ==================== LIFECYCLE ====================

    async def initialize(self):
        """Connect storage and reload persisted state"""
        logger.info("🚀 Initializing Grid Trading Bot...")

        await self.db.connect()
        await self.position_manager.initialize()

        for strategy in await self.db.load_grid_strategies():
            try:
                self.grid_engine.register(strategy)
            except GridDataError as e:
                logger.error(f"❌ Skipping persisted grid {strategy.strategy_id}: {e.message}")

        for alert in await self.db.load_whale_alerts():
            await self.whale_monitor.register_alert(alert)

        since = self._clock() - TimeConstants.DAY
        for trade in await self.db.load_recent_whale_trades(since):
            impact = self.whale_monitor.calculate_price_impact(trade.size_usd, trade.chain)
            await self.whale_monitor.track_whale_trade(trade, impact)

        logger.info(
            f"✅ Bot initialized: {len(self.grid_engine.strategies)} grids, "
            f"{len(self.position_manager.open_positions)} open positions"
        )

    async def run(self):
        """Run the position monitor and grid refresh loops until stop() is called"""
        self._stopping.clear()
        self.running = True

        await self.position_monitor.start()
        self._grid_task = asyncio.create_task(self._grid_refresh_loop())

        logger.info("🎯 Grid Trading Bot running")
        await self._stopping.wait()

    async def stop(self):
        """Stop both loops, letting in-flight ticks finish"""
        self._stopping.set()
        await self.position_monitor.stop()
        if self._grid_task is not None:
            await self._grid_task
            self._grid_task = None
        self.running = False
        logger.info("🛑 Grid Trading Bot stopped")

    async def cleanup(self):
        if self.running:
            await self.stop()
        await self.trader.close()
        await self.price_feed.close()
        await self.db.close()
        logger.info("✅ Cleanup complete")

    async def _grid_refresh_loop(self):
        while not self._stopping.is_set():
            try:
                await self.position_manager.sync_pending()
                await self.refresh_grids()
            except Exception as e:
                logger.error(f"❌ Grid refresh failed: {e}")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.config.grid_refresh_interval)
            except asyncio.TimeoutError:
                pass

    # ==================== GRIDS ====================

    async def create_grid(self, request: CreateGridRequest) -> GridStrategy:
        strategy = self.grid_engine.create_grid(request)
        await self.db.store_grid_strategy(strategy)
        return strategy

    async def on_price_tick(self, strategy_id: str, price: float) -> List[GridOrder]:
        strategy = self.grid_engine.get_strategy(strategy_id)
        new_orders = self.grid_engine.apply_price_tick(strategy, price)
        await self.db.store_grid_strategy(strategy)
        return new_orders

    async def stop_grid(self, strategy_id: str) -> GridStrategy:
        strategy = self.grid_engine.get_strategy(strategy_id)
        self.grid_engine.stop(strategy)
        await self.db.store_grid_strategy(strategy)
        return strategy

    async def restart_grid(self, strategy_id: str) -> int:
        """Re-seed a completed grid; returns the number of orders placed"""
        strategy = self.grid_engine.get_strategy(strategy_id)
        placed = self.grid_engine.restart(strategy)
        if placed:
            await self.db.store_grid_strategy(strategy)
        return placed

    async def refresh_grids(self) -> Dict[str, int]:
        """Feed the current market price to every live grid; returns new orders per grid"""
        live = [s for s in self.grid_engine.list_strategies() if s.status in LIVE_STATUSES]
        if not live:
            return {}

        prices: Dict[TokenKey, float] = {}
        for key in {s.token_key for s in live}:
            try:
                prices[key] = (await self.price_feed.get_price(key.chain, key.token)).price_usd
            except CollaboratorError as e:
                logger.warning(f"⚠️  Price unavailable for {key.chain}/{key.token}: {e.message}")

        results = {}
        for strategy in live:
            price = prices.get(strategy.token_key)
            if price is None or price <= 0:
                continue
            try:
                results[strategy.strategy_id] = len(self.grid_engine.apply_price_tick(strategy, price))
            except GridDataError as e:
                logger.error(f"❌ Grid {strategy.strategy_id} skipped: {e.message}")
                continue
            await self.db.store_grid_strategy(strategy)

        return results

    # ==================== WHALES ====================

    async def on_whale_trade(self, trade: WhaleTrade,
                             avg_volume_24h: Optional[float] = None) -> WhaleEventResult:
        """Score a whale trade and adapt every live grid on the same token"""
        if avg_volume_24h is None:
            try:
                avg_volume_24h = (await self.price_feed.get_price(trade.chain, trade.token)).volume_24h
            except PriceFeedError as e:
                logger.warning(f"⚠️  No volume data for whale trade {trade.trade_id}: {e.message}")
                avg_volume_24h = 0.0

        activity, alerts = await self.whale_monitor.process_trade(trade, avg_volume_24h)
        await self.db.store_whale_trade(trade)

        grid_actions: Dict[str, List[str]] = {}
        token_key = TokenKey(trade.chain, trade.token)
        for strategy in self.grid_engine.list_strategies(token_key=token_key):
            if strategy.status not in LIVE_STATUSES:
                continue

            actions = self.grid_engine.adjust_grid_for_whale(
                strategy, activity.market_impact, activity.price_impact, trade.price
            )
            if (activity.market_impact != MarketImpact.CRITICAL
                    and self.grid_engine.should_pause_for_whale(
                        activity.market_impact, activity.price_impact, activity.velocity_score)
                    and self.grid_engine.pause(strategy)):
                actions.append("Grid paused due to rapid whale activity")

            if actions:
                grid_actions[strategy.strategy_id] = actions
                await self.db.store_grid_strategy(strategy)

        return WhaleEventResult(activity=activity, alerts=alerts, grid_actions=grid_actions)

    async def create_whale_alert(self, user_id: int, min_size_usd: float,
                                 chains: Optional[List[str]] = None,
                                 tokens: Optional[List[str]] = None,
                                 position_types: Optional[List[str]] = None) -> WhaleAlert:
        alert = await self.whale_monitor.create_alert(user_id, min_size_usd, chains, tokens, position_types)
        await self.db.store_whale_alert(alert)
        return alert

    async def remove_whale_alert(self, alert_id: str) -> bool:
        removed = await self.whale_monitor.remove_alert(alert_id)
        if removed:
            await self.db.delete_whale_alert(alert_id)
        return removed

    # ==================== TRADING ====================

    async def buy(self, user_id: int, chain: str, token: str, amount_usd: float,
                  dev_wallet: Optional[str] = None) -> TradeResult:
        """
        Security check, then risk check and position commit under the user's trade guard

        Returns:
            TradeResult; rejected or failed buys carry the reason in error_message
        """
        logger.info(f"🛒 Buy request: user {user_id}, ${amount_usd:.2f} of {chain}/{token}")

        try:
            if self.security_checker is not None:
                report = await self.security_checker.security_check(chain, token)
                if not report.is_safe:
                    reason = "; ".join(report.warnings) or f"rug score {report.rug_score}"
                    logger.warning(f"🛑 Buy blocked, token failed security check: {reason}")
                    return TradeResult(
                        success=False, position_id="",
                        error_message=f"Token failed security check: {reason}"
                    )

            async with self.risk_engine.trade_guard(user_id):
                await self.risk_engine.check_trade_risk(user_id, token, amount_usd, dev_wallet)

                token_price = await self.price_feed.get_price(chain, token)
                if token_price.price_usd <= 0:
                    raise PriceFeedError(f"No usable price for {token}")

                signature = await self.trader.execute_swap(
                    self.trader.wallet_address,
                    TokenAddresses.USDC,
                    token,
                    int(amount_usd * 10 ** TradingDefaults.USDC_DECIMALS),
                    self.config.slippage_bps,
                )

                profile = await self.risk_engine.get_risk_profile(user_id)
                amount = amount_usd / token_price.price_usd
                warning = ""
                try:
                    position = await self.position_manager.open_position(
                        user_id=user_id,
                        chain=chain,
                        token=token,
                        amount=amount,
                        entry_price=token_price.price_usd,
                        take_profit_percent=profile.default_take_profit_percent,
                        stop_loss_percent=profile.default_stop_loss_percent,
                    )
                except PositionPersistenceError as e:
                    # swap already executed; the book holds the position
                    position = self.position_manager.get_position(e.position_id)
                    warning = e.message

        except (RiskError, CollaboratorError, ValidationError) as e:
            logger.error(f"❌ Buy failed for user {user_id}: {e.message}")
            return TradeResult(success=False, position_id="", error_message=e.message)

        logger.info(f"✅ Buy complete: {position.position_id} ({signature})")
        return TradeResult(
            success=True,
            position_id=position.position_id,
            tx_signature=signature,
            amount=amount,
            price=token_price.price_usd,
            error_message=warning,
        )

    async def sell(self, position_id: str, sell_percent: float = 100.0,
                   reason: CloseReason = CloseReason.MANUAL,
                   price: Optional[float] = None) -> TradeResult:
        """Sell part or all of a position and record the realized result"""
        try:
            if not 0 < sell_percent <= 100:
                raise ValidationError(f"Sell percent must be within (0, 100], got {sell_percent}")

            user_id = self.position_manager.get_position(position_id).user_id

            async with self.risk_engine.trade_guard(user_id):
                # re-read: a concurrent close may have finished while we waited
                position = self.position_manager.get_position(position_id)

                if price is None:
                    price = (await self.price_feed.get_price(position.chain, position.token)).price_usd
                if price <= 0:
                    raise PriceFeedError(f"No usable price for {position.token}")

                amount = position.amount if sell_percent >= 100 else position.amount * sell_percent / 100.0
                signature = await self.trader.execute_swap(
                    self.trader.wallet_address,
                    position.token,
                    TokenAddresses.USDC,
                    int(amount * 10 ** TradingDefaults.TOKEN_DECIMALS),
                    self.config.slippage_bps,
                )

                warning = ""
                try:
                    sold, realized = await self.position_manager.apply_close(
                        position_id, sell_percent, price, reason=reason
                    )
                except PositionPersistenceError as e:
                    # swap already executed; the realized result still counts
                    sold, realized, warning = e.sold, e.realized, e.message
                await self.risk_engine.record_trade_result(user_id, realized)

        except (PositionError, RiskError, CollaboratorError, ValidationError) as e:
            logger.error(f"❌ Sell failed for {position_id}: {e.message}")
            return TradeResult(success=False, position_id=position_id, error_message=e.message)

        logger.info(f"✅ Sell complete ({reason.value}): {position_id} P&L ${realized:.2f}")
        return TradeResult(
            success=True,
            position_id=position_id,
            tx_signature=signature,
            amount=sold,
            price=price,
            realized_pnl_usd=realized,
            error_message=warning,
        )

    async def handle_close_signals(self, signals: List[CloseSignal]) -> List[TradeResult]:
        """Execute position monitor signals as sells"""
        results = []
        for signal in signals:
            result = await self.sell(
                signal.position_id,
                sell_percent=signal.sell_percent,
                reason=signal.reason,
                price=signal.current_price,
            )
            results.append(result)
        return results

    # ==================== STATUS ====================

    async def get_status(self) -> Dict:
        whale_stats = await self.whale_monitor.calculate_whale_stats()
        return {
            "running": self.running,
            "grids": self.grid_engine.get_engine_stats(),
            "portfolio": self.position_manager.get_portfolio_summary(),
            "position_monitor": {
                "running": self.position_monitor.running,
                "ticks": self.position_monitor.ticks_completed,
                "signals": self.position_monitor.signals_emitted,
            },
            "whales": {
                "tracked": whale_stats.total_whales_tracked,
                "volume_24h": whale_stats.total_volume_24h,
                "long_short_ratio": whale_stats.long_short_ratio,
                "trades_processed": self.whale_monitor.trades_processed,
            },
        }
