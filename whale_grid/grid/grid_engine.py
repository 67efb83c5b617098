"""
Grid Engine
==========
Ladder-order state machine: buys dips and sells rallies inside a bounded price range,
and adapts its parameters to whale activity
"""

import logging
import math
import time
import uuid
from typing import Callable, Dict, List, Optional, Union

from ..core.core_models import (
    CreateGridRequest, GridStrategy, GridOrder, GridLevel, GridStats, TokenKey
)
from ..core.core_exceptions import ValidationError, GridDataError, StrategyNotFoundError
from ..core.core_constants import GridStatus, OrderType, OrderStatus, MarketImpact, GridDefaults

logger = logging.getLogger(__name__)

StrategyRef = Union[str, GridStrategy]


class GridEngine:
    """Owns grid strategies and applies price ticks and whale signals to them"""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self.strategies: Dict[str, GridStrategy] = {}
        self._clock = clock or (lambda: int(time.time()))

        # Statistics
        self.total_ticks = 0
        self.total_fills = 0
        self.whale_adjustments = 0

        logger.info("✅ Grid Engine initialized")

    # ==================== REGISTRY ====================

    def register(self, strategy: GridStrategy) -> GridStrategy:
        """Add an existing (e.g. persisted) strategy to the registry"""
        self._check_invariants(strategy)
        self.strategies[strategy.strategy_id] = strategy
        return strategy

    def get_strategy(self, strategy_id: str) -> GridStrategy:
        strategy = self.strategies.get(strategy_id)
        if strategy is None:
            raise StrategyNotFoundError(strategy_id)
        return strategy

    def list_strategies(self, user_id: Optional[int] = None,
                        token_key: Optional[TokenKey] = None) -> List[GridStrategy]:
        strategies = list(self.strategies.values())
        if user_id is not None:
            strategies = [s for s in strategies if s.user_id == user_id]
        if token_key is not None:
            strategies = [s for s in strategies if s.token_key == token_key]
        return strategies

    def remove(self, strategy_id: str) -> GridStrategy:
        strategy = self.get_strategy(strategy_id)
        del self.strategies[strategy_id]
        return strategy

    def _resolve(self, ref: StrategyRef) -> GridStrategy:
        if isinstance(ref, GridStrategy):
            return ref
        return self.get_strategy(ref)

    # ==================== CREATION ====================

    def create_grid(self, request: CreateGridRequest) -> GridStrategy:
        """
        Validate parameters and seed a pending buy order at every grid level

        Raises:
            ValidationError: on invalid bounds, grid count or investment
        """
        self._validate_request(request)

        grid_spacing = (request.upper_price - request.lower_price) / (request.grid_count - 1)
        amount_per_level = request.investment_amount / request.grid_count

        strategy = GridStrategy(
            strategy_id=f"grid_{request.user_id}_{uuid.uuid4().hex}",
            user_id=request.user_id,
            chain=request.chain,
            token=request.token,
            token_symbol=request.token_symbol,
            lower_price=request.lower_price,
            upper_price=request.upper_price,
            grid_count=request.grid_count,
            grid_spacing=grid_spacing,
            investment_amount=request.investment_amount,
            status=GridStatus.ACTIVE,
            created_at=self._clock(),
            last_price=(request.lower_price + request.upper_price) / 2.0,
        )

        self._seed_levels(strategy, amount_per_level)
        self.strategies[strategy.strategy_id] = strategy

        logger.info(f"✅ Grid created: {strategy.strategy_id}")
        logger.info(f"   Range: {strategy.lower_price:.6f} - {strategy.upper_price:.6f}")
        logger.info(f"   Levels: {strategy.grid_count} @ spacing {grid_spacing:.6f}")
        logger.info(f"   Investment: ${strategy.investment_amount:,.2f}")

        return strategy

    def _seed_levels(self, strategy: GridStrategy, amount_per_level: float):
        for i in range(strategy.grid_count):
            price = strategy.lower_price + strategy.grid_spacing * i
            if i == strategy.grid_count - 1:
                price = strategy.upper_price
            self._new_order(strategy, OrderType.BUY, price, amount_per_level)

    def _validate_request(self, request: CreateGridRequest):
        for name in ("lower_price", "upper_price", "investment_amount"):
            value = getattr(request, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                raise ValidationError(f"{name} must be a finite number")

        if request.lower_price < 0:
            raise ValidationError("Lower price must not be negative")

        if request.lower_price >= request.upper_price:
            raise ValidationError("Lower price must be less than upper price")

        if not isinstance(request.grid_count, int) or isinstance(request.grid_count, bool) \
                or request.grid_count < 2:
            raise ValidationError("Grid count must be at least 2")

        if request.investment_amount <= 0:
            raise ValidationError("Investment amount must be positive")

    def _new_order(self, strategy: GridStrategy, order_type: OrderType,
                   price: float, amount: float) -> GridOrder:
        strategy.order_seq += 1
        order = GridOrder(
            order_id=f"grid_{order_type.value}_{uuid.uuid4().hex[:16]}",
            order_type=order_type,
            price=price,
            amount=amount,
            status=OrderStatus.PENDING,
            created_seq=strategy.order_seq,
        )
        strategy.active_orders.append(order)
        return order

    # ==================== EXECUTION ====================

    def apply_price_tick(self, ref: StrategyRef, price: float) -> List[GridOrder]:
        """
        Apply a market price to a strategy

        Buy orders priced at or above the tick fill first, then sell orders priced
        at or below it, each group in array order. Every fill spawns the opposite
        order one grid level away when that level is inside the range. A grid left
        with no open orders becomes COMPLETED and ignores ticks until restart().

        Returns:
            Orders newly placed by this tick
        """
        strategy = self._resolve(ref)

        if not isinstance(price, (int, float)) or not math.isfinite(price) or price <= 0:
            raise ValidationError(f"Invalid price tick: {price}")

        self._check_invariants(strategy)
        self.total_ticks += 1
        strategy.last_price = price

        if strategy.status in (GridStatus.STOPPED, GridStatus.COMPLETED):
            logger.debug(f"Tick ignored for {strategy.status.value} grid {strategy.strategy_id}")
            return []

        if price < strategy.lower_price or price > strategy.upper_price:
            if strategy.status == GridStatus.ACTIVE:
                strategy.status = GridStatus.PAUSED
                logger.info(
                    f"⏸️  Grid {strategy.strategy_id} paused: price {price:.6f} outside "
                    f"[{strategy.lower_price:.6f}, {strategy.upper_price:.6f}]"
                )
            return []

        if strategy.status == GridStatus.PAUSED:
            strategy.status = GridStatus.ACTIVE
            logger.info(f"▶️  Grid {strategy.strategy_id} resumed: price {price:.6f} back in range")
        elif strategy.status != GridStatus.ACTIVE:
            raise GridDataError(f"Unhandled grid status {strategy.status} for {strategy.strategy_id}")

        new_orders: List[GridOrder] = []
        now = self._clock()

        buys = [
            o for o in strategy.active_orders
            if o.order_type == OrderType.BUY and o.is_open and price <= o.price
        ]
        for order in buys:
            self._remove_active(strategy, order)
            spawned = self._fill_buy(strategy, order, price, now)
            if spawned:
                new_orders.append(spawned)

        sells = [
            o for o in strategy.active_orders
            if o.order_type == OrderType.SELL and o.is_open and price >= o.price
        ]
        for order in sells:
            self._remove_active(strategy, order)
            spawned = self._fill_sell(strategy, order, price, now)
            if spawned:
                new_orders.append(spawned)

        self.total_fills += len(buys) + len(sells)

        if not any(o.is_open for o in strategy.active_orders):
            strategy.status = GridStatus.COMPLETED
            logger.info(f"🏁 Grid {strategy.strategy_id} completed: no open orders left")

        if buys or sells:
            logger.info(
                f"📊 Grid {strategy.strategy_id} @ {price:.6f}: "
                f"{len(buys)} buy / {len(sells)} sell fills, {len(new_orders)} new orders"
            )

        return new_orders

    def _remove_active(self, strategy: GridStrategy, order: GridOrder):
        strategy.active_orders = [o for o in strategy.active_orders if o is not order]

    def _fill_buy(self, strategy: GridStrategy, order: GridOrder,
                  price: float, now: int) -> Optional[GridOrder]:
        order.status = OrderStatus.FILLED
        order.filled_at = now
        order.filled_price = price
        strategy.completed_orders.append(order)
        strategy.total_trades += 1

        sell_price = self._snap_to_bounds(strategy, order.price + strategy.grid_spacing)
        if sell_price <= strategy.upper_price:
            return self._new_order(strategy, OrderType.SELL, sell_price, order.amount)
        return None

    def _fill_sell(self, strategy: GridStrategy, order: GridOrder,
                   price: float, now: int) -> Optional[GridOrder]:
        order.status = OrderStatus.FILLED
        order.filled_at = now
        order.filled_price = price

        paired_buy = next(
            (o for o in reversed(strategy.completed_orders)
             if o.order_type == OrderType.BUY and o.price < order.price),
            None
        )
        if paired_buy is not None:
            profit_usd = order.amount * (order.price - paired_buy.price)
            order.profit_usd = profit_usd
            if paired_buy.price > 0:
                order.profit = (order.price - paired_buy.price) / paired_buy.price * 100.0
            strategy.total_profit += profit_usd

        strategy.completed_orders.append(order)
        strategy.total_trades += 1

        buy_price = self._snap_to_bounds(strategy, order.price - strategy.grid_spacing)
        if buy_price >= strategy.lower_price:
            return self._new_order(strategy, OrderType.BUY, buy_price, order.amount)
        return None

    def _snap_to_bounds(self, strategy: GridStrategy, price: float) -> float:
        if abs(price - strategy.upper_price) <= GridDefaults.BOUND_EPSILON:
            return strategy.upper_price
        if abs(price - strategy.lower_price) <= GridDefaults.BOUND_EPSILON:
            return strategy.lower_price
        return price

    def _check_invariants(self, strategy: GridStrategy):
        problem = None
        if not strategy.grid_spacing > 0:
            problem = f"non-positive grid spacing {strategy.grid_spacing}"
        elif strategy.lower_price >= strategy.upper_price:
            problem = f"inverted range [{strategy.lower_price}, {strategy.upper_price}]"
        else:
            for order in strategy.active_orders:
                if order.is_open and not strategy.lower_price <= order.price <= strategy.upper_price:
                    problem = f"order {order.order_id} priced {order.price} outside range"
                    break

        if problem:
            logger.error(f"❌ Grid {strategy.strategy_id} is inconsistent: {problem}")
            raise GridDataError(f"Grid {strategy.strategy_id} is inconsistent: {problem}")

    # ==================== CONTROLS ====================

    def pause(self, ref: StrategyRef) -> bool:
        strategy = self._resolve(ref)
        if strategy.status != GridStatus.ACTIVE:
            return False
        strategy.status = GridStatus.PAUSED
        logger.info(f"⏸️  Grid {strategy.strategy_id} paused")
        return True

    def resume(self, ref: StrategyRef) -> bool:
        strategy = self._resolve(ref)
        if strategy.status != GridStatus.PAUSED:
            return False
        strategy.status = GridStatus.ACTIVE
        logger.info(f"▶️  Grid {strategy.strategy_id} resumed")
        return True

    def stop(self, ref: StrategyRef) -> int:
        """Stop a grid for good; returns the number of cancelled orders"""
        strategy = self._resolve(ref)
        if strategy.status == GridStatus.STOPPED:
            return 0

        cancelled = [o for o in strategy.active_orders if o.is_open]
        for order in cancelled:
            order.status = OrderStatus.CANCELLED
        strategy.cancelled_orders.extend(cancelled)
        strategy.active_orders = [o for o in strategy.active_orders if o.status != OrderStatus.CANCELLED]
        strategy.status = GridStatus.STOPPED

        logger.info(f"🛑 Grid {strategy.strategy_id} stopped, {len(cancelled)} orders cancelled")
        return len(cancelled)

    def restart(self, ref: StrategyRef) -> int:
        """
        Re-seed a COMPLETED grid over its current bounds

        Spacing is recomputed from the bounds, undoing any whale widening.
        Returns the number of buy orders placed; 0 for any other status.
        """
        strategy = self._resolve(ref)
        if strategy.status != GridStatus.COMPLETED:
            return 0

        stale = [o for o in strategy.active_orders if o.status == OrderStatus.CANCELLED]
        strategy.cancelled_orders.extend(stale)
        strategy.active_orders = [o for o in strategy.active_orders if o.status != OrderStatus.CANCELLED]

        strategy.grid_spacing = (strategy.upper_price - strategy.lower_price) / (strategy.grid_count - 1)
        self._seed_levels(strategy, strategy.investment_amount / strategy.grid_count)
        strategy.status = GridStatus.ACTIVE

        logger.info(
            f"🔄 Grid {strategy.strategy_id} restarted: {strategy.grid_count} levels "
            f"@ spacing {strategy.grid_spacing:.6f}"
        )
        return strategy.grid_count

    # ==================== WHALE INTEGRATION ====================

    @staticmethod
    def parse_impact(impact: Union[str, MarketImpact]) -> MarketImpact:
        if isinstance(impact, MarketImpact):
            return impact
        try:
            return MarketImpact(str(impact).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown whale impact label: {impact!r}")

    def adjust_grid_for_whale(self, ref: StrategyRef, impact: Union[str, MarketImpact],
                              price_impact: float, current_price: float) -> List[str]:
        """
        Adapt a grid to whale activity

        Returns:
            Human-readable descriptions of the changes made
        """
        strategy = self._resolve(ref)
        level = self.parse_impact(impact)
        actions: List[str] = []

        if level == MarketImpact.CRITICAL:
            if strategy.status == GridStatus.ACTIVE:
                strategy.status = GridStatus.PAUSED
                actions.append("Grid paused due to critical whale activity")

        elif level == MarketImpact.HIGH:
            multiplier = 1.0 + min(price_impact / 100.0, GridDefaults.MAX_WHALE_WIDENING)
            strategy.grid_spacing *= multiplier

            if strategy.last_price > 0:
                price_change_pct = abs((current_price - strategy.last_price) / strategy.last_price)
                if price_change_pct > GridDefaults.RANGE_SHIFT_TRIGGER:
                    expansion = (strategy.upper_price - strategy.lower_price) * GridDefaults.RANGE_EXPANSION
                    strategy.lower_price = max(strategy.lower_price - expansion / 2.0, 0.0)
                    strategy.upper_price += expansion / 2.0
                    actions.append(
                        f"Grid range expanded by {price_change_pct * 100:.2f}% due to whale activity"
                    )

            actions.append("Grid spacing widened for high volatility")

        elif level == MarketImpact.MEDIUM:
            strategy.grid_spacing *= GridDefaults.MEDIUM_IMPACT_WIDENING
            actions.append("Grid spacing slightly widened")

        elif level == MarketImpact.LOW:
            pass

        else:
            raise GridDataError(f"Unhandled market impact {level}")

        if actions:
            self.whale_adjustments += 1
            logger.info(f"🐋 Grid {strategy.strategy_id} whale adjustment ({level.value}): {'; '.join(actions)}")

        return actions

    @staticmethod
    def should_pause_for_whale(impact: Union[str, MarketImpact], price_impact: float,
                               velocity_score: float) -> bool:
        level = GridEngine.parse_impact(impact)
        if level == MarketImpact.CRITICAL:
            return True
        if level == MarketImpact.HIGH:
            return (velocity_score > GridDefaults.PAUSE_VELOCITY
                    or price_impact > GridDefaults.PAUSE_PRICE_IMPACT)
        return False

    def optimize_for_volatility(self, ref: StrategyRef, avg_volatility: float,
                                whale_activity_level: float) -> int:
        """
        Scale spacing with volatility and cut exposure in extreme conditions

        Returns:
            Number of pending orders cancelled
        """
        strategy = self._resolve(ref)

        if avg_volatility < 0:
            raise ValidationError("Average volatility must not be negative")
        if not 0.0 <= whale_activity_level <= 1.0:
            raise ValidationError("Whale activity level must be within [0, 1]")

        strategy.grid_spacing *= 1.0 + (avg_volatility * whale_activity_level * 0.5)

        cancelled = 0
        if (avg_volatility > GridDefaults.EXTREME_VOLATILITY
                and whale_activity_level > GridDefaults.EXTREME_WHALE_ACTIVITY):
            pending = sorted(
                (o for o in strategy.active_orders if o.status == OrderStatus.PENDING),
                key=lambda o: o.created_seq
            )
            to_cancel = pending[:int(len(pending) * GridDefaults.EXPOSURE_CUT_FRACTION)]
            for order in to_cancel:
                order.status = OrderStatus.CANCELLED
            strategy.cancelled_orders.extend(to_cancel)
            strategy.active_orders = [o for o in strategy.active_orders if o.status != OrderStatus.CANCELLED]
            cancelled = len(to_cancel)

            logger.warning(
                f"⚠️  Grid {strategy.strategy_id}: extreme volatility, cancelled {cancelled} pending orders"
            )

        return cancelled

    # ==================== STATS ====================

    def get_grid_stats(self, ref: StrategyRef, current_price: Optional[float] = None) -> GridStats:
        strategy = self._resolve(ref)
        if current_price is None:
            current_price = strategy.last_price

        levels = []
        for i in range(strategy.grid_count):
            price = strategy.lower_price + strategy.grid_spacing * i

            buy_order = next(
                (o for o in strategy.active_orders
                 if o.order_type == OrderType.BUY
                 and abs(o.price - price) < GridDefaults.LEVEL_PRICE_TOLERANCE),
                None
            )
            sell_order = next(
                (o for o in strategy.active_orders
                 if o.order_type == OrderType.SELL
                 and abs(o.price - price) < GridDefaults.LEVEL_PRICE_TOLERANCE),
                None
            )

            profit = 0.0
            if buy_order and sell_order and buy_order.price > 0:
                profit = (sell_order.price - buy_order.price) / buy_order.price * 100.0

            levels.append(GridLevel(
                level=i + 1,
                price=price,
                buy_order=buy_order,
                sell_order=sell_order,
                profit=profit,
            ))

        total_profit_percent = 0.0
        if strategy.investment_amount > 0:
            total_profit_percent = strategy.total_profit / strategy.investment_amount * 100.0

        return GridStats(
            strategy_id=strategy.strategy_id,
            status=strategy.status,
            total_profit=strategy.total_profit,
            total_profit_percent=total_profit_percent,
            total_trades=strategy.total_trades,
            active_orders=len(strategy.active_orders),
            completed_orders=len(strategy.completed_orders),
            current_price=current_price,
            price_range=strategy.price_range,
            grid_levels=levels,
        )

    def get_engine_stats(self) -> Dict:
        by_status: Dict[str, int] = {}
        for strategy in self.strategies.values():
            by_status[strategy.status.value] = by_status.get(strategy.status.value, 0) + 1

        return {
            "strategies": len(self.strategies),
            "by_status": by_status,
            "total_ticks": self.total_ticks,
            "total_fills": self.total_fills,
            "whale_adjustments": self.whale_adjustments,
            "total_profit": sum(s.total_profit for s in self.strategies.values()),
        }
