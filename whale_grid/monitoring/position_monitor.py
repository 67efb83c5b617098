"""
Position Monitor
===============
Periodic take-profit / stop-loss evaluation over open positions. Emits close
signals; execution is delegated to the signal handler.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ..core.core_models import Position, CloseSignal, TokenKey
from ..core.core_constants import CloseReason, PositionStatus, TradingDefaults, TimeConstants
from ..core.core_exceptions import CollaboratorError, ConfigurationError

logger = logging.getLogger(__name__)

SignalHandler = Callable[[List[CloseSignal]], Awaitable[None]]


@dataclass
class ClosePolicy:
    """How much of a position to sell on each trigger"""
    take_profit_sell_percent: float = TradingDefaults.TAKE_PROFIT_SELL_PCT
    stop_loss_sell_percent: float = TradingDefaults.STOP_LOSS_SELL_PCT

    def __post_init__(self):
        for name in ("take_profit_sell_percent", "stop_loss_sell_percent"):
            value = getattr(self, name)
            if not 0 < value <= 100:
                raise ConfigurationError(f"{name} must be within (0, 100], got {value}")


def evaluate_positions_tick(positions: Sequence[Position], prices: Mapping[TokenKey, float],
                            policy: Optional[ClosePolicy] = None) -> List[CloseSignal]:
    """
    Evaluate take-profit and stop-loss for each open position

    Args:
        positions: Positions to evaluate; closed ones are ignored
        prices: Current USD price per token
        policy: Sell percentages per trigger

    Returns:
        One CloseSignal per triggered position
    """
    policy = policy or ClosePolicy()
    signals = []

    for position in positions:
        if position.status != PositionStatus.OPEN:
            continue

        if position.entry_price <= 0:
            logger.warning(f"⚠️  Position {position.position_id} has invalid entry price {position.entry_price}, skipped")
            continue

        current_price = prices.get(position.token_key)
        if current_price is None or current_price <= 0:
            logger.warning(f"⚠️  No usable price for {position.token}, position {position.position_id} skipped")
            continue

        pnl_percent = (current_price - position.entry_price) / position.entry_price * 100

        # take-profit fires once per position; the remainder rides until stop-loss
        if pnl_percent >= position.take_profit_percent and not position.take_profit_taken:
            reason, sell_percent = CloseReason.TAKE_PROFIT, policy.take_profit_sell_percent
        elif pnl_percent <= position.stop_loss_percent:
            reason, sell_percent = CloseReason.STOP_LOSS, policy.stop_loss_sell_percent
        else:
            continue

        logger.info(
            f"🎯 {reason.value.upper()} triggered for {position.position_id}: "
            f"{pnl_percent:+.2f}% -> sell {sell_percent:.0f}%"
        )
        signals.append(CloseSignal(
            position_id=position.position_id,
            user_id=position.user_id,
            chain=position.chain,
            token=position.token,
            reason=reason,
            pnl_percent=pnl_percent,
            sell_percent=sell_percent,
            current_price=current_price,
        ))

    return signals


class PositionMonitor:
    """Long-lived task running evaluate_positions_tick on a fixed interval"""

    def __init__(self, position_source, price_source, signal_handler: SignalHandler,
                 policy: Optional[ClosePolicy] = None,
                 interval: float = TimeConstants.POSITION_CHECK_INTERVAL):
        if interval <= 0:
            raise ConfigurationError("Position check interval must be positive")

        self.position_source = position_source
        self.price_source = price_source
        self.signal_handler = signal_handler
        self.policy = policy or ClosePolicy()
        self.interval = interval

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

        # Statistics
        self.ticks_completed = 0
        self.signals_emitted = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_tick(self) -> List[CloseSignal]:
        """One monitoring pass: list, price, evaluate, hand off"""
        positions = await self.position_source.list_open_positions()
        if not positions:
            self.ticks_completed += 1
            return []

        logger.debug(f"📊 Monitoring {len(positions)} open positions...")

        prices: Dict[TokenKey, float] = {}
        for key in {p.token_key for p in positions}:
            try:
                token_price = await self.price_source.get_price(key.chain, key.token)
            except CollaboratorError as e:
                logger.warning(f"⚠️  Price unavailable for {key.chain}/{key.token}: {e.message}")
                continue
            prices[key] = token_price.price_usd

        signals = evaluate_positions_tick(positions, prices, self.policy)
        if signals:
            self.signals_emitted += len(signals)
            await self.signal_handler(signals)

        self.ticks_completed += 1
        return signals

    async def start(self):
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"✅ Position monitor started (every {self.interval}s)")

    async def stop(self):
        """Stop scheduling ticks and wait for an in-flight tick to finish"""
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("🛑 Position monitor stopped")

    async def _run_loop(self):
        while not self._stopping.is_set():
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"❌ Position monitor tick failed: {e}")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
