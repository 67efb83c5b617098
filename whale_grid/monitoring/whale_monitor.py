"""
Whale Monitor
============
Scores large trades for market impact, keeps per-wallet rollups and matches
user alert subscriptions
"""

import logging
import math
import time
import uuid
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..core.core_models import (
    WhaleTrade, WhaleInfo, WhaleActivity, WhaleImpactAnalysis, WhaleTrackerStats, WhaleAlert
)
from ..core.core_constants import (
    TradeType, PositionType, MarketImpact, GridAction, WhaleDefaults, KNOWN_WHALES, TimeConstants
)
from ..core.core_exceptions import ValidationError
from ..utils.utils_locks import AsyncRWLock

logger = logging.getLogger(__name__)


class WhaleMonitor:
    """Whale trade scoring and tracking"""

    def __init__(self, known_whales: Optional[Dict[str, str]] = None,
                 liquidity_constants: Optional[Dict[str, float]] = None,
                 history_size: int = WhaleDefaults.HISTORY_SIZE,
                 clock: Optional[Callable[[], int]] = None):
        self.known_whales: Dict[str, str] = dict(KNOWN_WHALES if known_whales is None else known_whales)
        self.liquidity_constants = dict(liquidity_constants or WhaleDefaults.LIQUIDITY_CONSTANTS)
        self._clock = clock or (lambda: int(time.time()))

        self._whales: Dict[str, WhaleInfo] = {}
        self._history: Deque[WhaleTrade] = deque(maxlen=history_size)
        self._alerts: Dict[str, WhaleAlert] = {}

        self._registry_lock = AsyncRWLock()
        self._alerts_lock = AsyncRWLock()

        # Statistics
        self.trades_processed = 0
        self.alerts_triggered = 0

        logger.info(f"✅ Whale Monitor initialized ({len(self.known_whales)} known wallets)")

    def set_known_whales(self, known_whales: Dict[str, str]):
        self.known_whales = dict(known_whales)
        logger.info(f"🐋 Known whale table replaced ({len(self.known_whales)} wallets)")

    # ==================== SCORING ====================

    def calculate_price_impact(self, size_usd: float, chain: str) -> float:
        """Estimated percent price move; grows super-linearly with size"""
        if not math.isfinite(size_usd) or size_usd < 0:
            raise ValidationError(f"Invalid trade size: {size_usd}")

        liquidity = self.liquidity_constants.get(chain.lower(), WhaleDefaults.DEFAULT_LIQUIDITY)
        base_impact = size_usd / liquidity
        return base_impact * (
            1.0 + (size_usd / WhaleDefaults.NONLINEAR_SCALE) ** WhaleDefaults.NONLINEAR_EXPONENT
        )

    @staticmethod
    def calculate_velocity(trade: WhaleTrade, recent_trades: Iterable[WhaleTrade]) -> float:
        """Share of 3 rapid trades by the same wallet in the same token over the last 5 minutes"""
        cutoff = trade.timestamp - WhaleDefaults.VELOCITY_WINDOW_SECONDS
        rapid_trades = sum(
            1 for t in recent_trades
            if t.trade_id != trade.trade_id
            and t.wallet_address == trade.wallet_address
            and t.token == trade.token
            and cutoff <= t.timestamp <= trade.timestamp
        )
        return min(rapid_trades / WhaleDefaults.VELOCITY_SATURATION_TRADES, 1.0)

    @staticmethod
    def classify_market_impact(price_impact: float, velocity_score: float,
                               volume_anomaly: float) -> MarketImpact:
        if price_impact > WhaleDefaults.CRITICAL_IMPACT or velocity_score > WhaleDefaults.CRITICAL_VELOCITY:
            return MarketImpact.CRITICAL
        if price_impact > WhaleDefaults.HIGH_IMPACT or velocity_score > WhaleDefaults.HIGH_VELOCITY:
            return MarketImpact.HIGH
        if price_impact > WhaleDefaults.MEDIUM_IMPACT or volume_anomaly > WhaleDefaults.MEDIUM_VOLUME_ANOMALY:
            return MarketImpact.MEDIUM
        return MarketImpact.LOW

    def detect_whale_activity(self, trade: WhaleTrade, recent_trades: Sequence[WhaleTrade],
                              avg_volume_24h: float) -> WhaleActivity:
        """
        Score a whale trade against recent history

        Args:
            trade: Observed trade
            recent_trades: History to measure velocity and first entry against
            avg_volume_24h: Average 24h volume of the token; 0 means unknown

        Returns:
            WhaleActivity with impact, anomaly, velocity, classification and confidence
        """
        price_impact = self.calculate_price_impact(trade.size_usd, trade.chain)

        volume_anomaly = trade.size_usd / avg_volume_24h if avg_volume_24h > 0 else 1.0
        velocity_score = self.calculate_velocity(trade, recent_trades)
        market_impact = self.classify_market_impact(price_impact, velocity_score, volume_anomaly)

        known_label = self.known_whales.get(trade.wallet_address)

        is_first_entry = not any(
            t.wallet_address == trade.wallet_address
            and t.token == trade.token
            and t.timestamp < trade.timestamp
            for t in recent_trades
        )

        confidence = WhaleDefaults.BASE_CONFIDENCE
        if known_label is not None:
            confidence += WhaleDefaults.KNOWN_WALLET_BONUS
        if is_first_entry:
            confidence += WhaleDefaults.FIRST_ENTRY_BONUS
        if trade.size_usd > WhaleDefaults.LARGE_TRADE_USD:
            confidence += WhaleDefaults.LARGE_TRADE_BONUS
        confidence = min(confidence, WhaleDefaults.MAX_CONFIDENCE)

        return WhaleActivity(
            trade=trade,
            price_impact=price_impact,
            volume_anomaly=volume_anomaly,
            velocity_score=velocity_score,
            market_impact=market_impact,
            known_label=known_label,
            is_first_entry=is_first_entry,
            confidence_score=confidence,
        )

    @staticmethod
    def classify_trade_type(is_perpetual: bool, is_buy: bool,
                            is_opening: bool = True) -> Tuple[TradeType, PositionType]:
        if is_perpetual:
            if is_opening:
                return (TradeType.LONG, PositionType.LONG) if is_buy else (TradeType.SHORT, PositionType.SHORT)
            return (TradeType.CLOSE_SHORT, PositionType.SHORT) if is_buy else (TradeType.CLOSE_LONG, PositionType.LONG)
        return (TradeType.BUY, PositionType.SPOT) if is_buy else (TradeType.SELL, PositionType.SPOT)

    def analyze_whale_impact_for_grid(self, activity: WhaleActivity, current_price: float,
                                      grid_range: Tuple[float, float]) -> WhaleImpactAnalysis:
        """Map a scored whale trade onto one grid recommendation"""
        trade = activity.trade
        impact = activity.market_impact

        if impact == MarketImpact.CRITICAL:
            deviation = WhaleDefaults.PRICE_DEVIATION
            if trade.price > current_price * (1 + deviation) or trade.price < current_price * (1 - deviation):
                action, reason = GridAction.PAUSE_GRID, "Whale activity causing significant price movement"
            else:
                action, reason = GridAction.REDUCE_GRID_SPACING, "High volatility expected"
        elif impact == MarketImpact.HIGH:
            if activity.velocity_score > WhaleDefaults.HIGH_VELOCITY:
                action, reason = GridAction.PAUSE_GRID, "Rapid whale trades detected"
            else:
                action, reason = GridAction.WIDEN_GRID_RANGE, "Adjust for increased volatility"
        elif impact == MarketImpact.MEDIUM:
            action, reason = GridAction.MONITOR, "Continue with caution"
        elif impact == MarketImpact.LOW:
            action, reason = GridAction.CONTINUE, "Normal market conditions"
        else:
            raise ValidationError(f"Unhandled market impact {impact}")

        lower, upper = grid_range
        return WhaleImpactAnalysis(
            trade=trade,
            price_impact=activity.price_impact,
            volume_anomaly=activity.volume_anomaly,
            velocity_score=activity.velocity_score,
            market_impact=impact,
            recommended_action=action,
            reason=reason,
            price_in_grid_range=lower <= trade.price <= upper,
        )

    # ==================== TRACKING ====================

    async def track_whale_trade(self, trade: WhaleTrade, price_impact: float) -> WhaleInfo:
        """Fold a trade into its wallet rollup and the bounded history"""
        async with self._registry_lock.write():
            info = self._whales.get(trade.wallet_address)
            if info is None:
                info = WhaleInfo(wallet_address=trade.wallet_address)
                self._whales[trade.wallet_address] = info

            if info.last_trade is not None:
                seconds_since_last = trade.timestamp - info.last_trade.timestamp
            else:
                seconds_since_last = WhaleDefaults.DEFAULT_SECONDS_SINCE_LAST

            info.total_volume_24h += trade.size_usd
            info.trade_count += 1
            info.avg_trade_size = info.total_volume_24h / info.trade_count

            if seconds_since_last > 0:
                info.trade_velocity = TimeConstants.HOUR / seconds_since_last

            decay = WhaleDefaults.IMPACT_EMA_DECAY
            info.price_impact_avg = info.price_impact_avg * decay + price_impact * (1 - decay)

            if trade.position_type == PositionType.LONG:
                info.net_position += trade.size_usd
            elif trade.position_type == PositionType.SHORT:
                info.net_position -= trade.size_usd
            elif trade.position_type == PositionType.SPOT:
                if trade.trade_type == TradeType.BUY:
                    info.net_position += trade.size_usd
                elif trade.trade_type == TradeType.SELL:
                    info.net_position -= trade.size_usd
            else:
                raise ValidationError(f"Unhandled position type {trade.position_type}")

            info.last_trade = trade
            self._history.append(trade)
            return replace(info)

    async def process_trade(self, trade: WhaleTrade,
                            avg_volume_24h: float = 0.0) -> Tuple[WhaleActivity, List[WhaleAlert]]:
        """Score a trade against the stored history, track it and match alerts"""
        async with self._registry_lock.read():
            history = list(self._history)

        activity = self.detect_whale_activity(trade, history, avg_volume_24h)
        await self.track_whale_trade(trade, activity.price_impact)
        alerts = await self.matching_alerts(trade)

        self.trades_processed += 1
        self.alerts_triggered += len(alerts)

        label = f" [{activity.known_label}]" if activity.known_label else ""
        logger.info(
            f"🐋 Whale {trade.trade_type.value} ${trade.size_usd:,.0f} on {trade.chain}/"
            f"{trade.token_symbol or trade.token[:8]}{label}: impact {activity.price_impact:.2f}% "
            f"({activity.market_impact.value}), confidence {activity.confidence_score:.0f}"
        )
        if alerts:
            logger.info(f"🔔 {len(alerts)} whale alerts matched trade {trade.trade_id}")

        return activity, alerts

    async def get_whale_info(self, wallet_address: str) -> Optional[WhaleInfo]:
        async with self._registry_lock.read():
            info = self._whales.get(wallet_address)
            return replace(info) if info else None

    async def get_recent_trades(self, token: Optional[str] = None,
                                limit: Optional[int] = None) -> List[WhaleTrade]:
        async with self._registry_lock.read():
            trades = [t for t in self._history if token is None or t.token == token]
        if limit is not None:
            trades = trades[-limit:]
        return trades

    async def calculate_whale_stats(self, trades: Optional[Sequence[WhaleTrade]] = None) -> WhaleTrackerStats:
        """Aggregate the last 24h of trades (the stored history by default)"""
        day_ago = self._clock() - TimeConstants.DAY

        async with self._registry_lock.read():
            if trades is None:
                trades = list(self._history)
            whales = {address: replace(info) for address, info in self._whales.items()}

        recent = [t for t in trades if t.timestamp >= day_ago]

        total_volume = sum(t.size_usd for t in recent)
        largest_trade = max(recent, key=lambda t: t.size_usd, default=None)

        long_volume = sum(t.size_usd for t in recent if t.position_type == PositionType.LONG)
        short_volume = sum(t.size_usd for t in recent if t.position_type == PositionType.SHORT)
        if short_volume > 0:
            long_short_ratio = long_volume / short_volume
        elif long_volume > 0:
            long_short_ratio = WhaleDefaults.ALL_LONG_RATIO
        else:
            long_short_ratio = 1.0

        windowed: Dict[str, float] = {}
        for t in recent:
            windowed[t.wallet_address] = windowed.get(t.wallet_address, 0.0) + t.size_usd

        top_whales = []
        for address, volume in windowed.items():
            if volume <= 0:
                continue
            info = whales.get(address) or WhaleInfo(wallet_address=address)
            top_whales.append(replace(info, total_volume_24h=volume))
        top_whales.sort(key=lambda w: w.total_volume_24h, reverse=True)

        return WhaleTrackerStats(
            total_whales_tracked=len(whales),
            total_volume_24h=total_volume,
            largest_trade_24h=largest_trade,
            top_whales=top_whales[:WhaleDefaults.TOP_WHALES],
            long_short_ratio=long_short_ratio,
        )

    # ==================== ALERTS ====================

    @staticmethod
    def _parse_position_type(value: Union[str, PositionType]) -> PositionType:
        if isinstance(value, PositionType):
            return value
        try:
            return PositionType(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown position type: {value!r}")

    async def create_alert(self, user_id: int, min_size_usd: float,
                           chains: Optional[List[str]] = None,
                           tokens: Optional[List[str]] = None,
                           position_types: Optional[List[Union[str, PositionType]]] = None) -> WhaleAlert:
        if min_size_usd < 0:
            raise ValidationError("Alert minimum size must not be negative")

        parsed = [self._parse_position_type(p) for p in (position_types or [])]
        if not parsed:
            parsed = [PositionType.LONG, PositionType.SHORT, PositionType.SPOT]

        alert = WhaleAlert(
            alert_id=f"alert_{user_id}_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            min_size_usd=min_size_usd,
            chains=list(chains or []),
            tokens=list(tokens or []),
            position_types=parsed,
            active=True,
            created_at=self._clock(),
        )

        async with self._alerts_lock.write():
            self._alerts[alert.alert_id] = alert

        logger.info(f"🔔 Whale alert {alert.alert_id} created for user {user_id} (>= ${min_size_usd:,.0f})")
        return alert

    async def register_alert(self, alert: WhaleAlert):
        """Add a persisted alert"""
        async with self._alerts_lock.write():
            self._alerts[alert.alert_id] = alert

    async def set_alert_active(self, alert_id: str, active: bool) -> bool:
        async with self._alerts_lock.write():
            alert = self._alerts.get(alert_id)
            if alert is None:
                return False
            alert.active = active
        return True

    async def remove_alert(self, alert_id: str) -> bool:
        async with self._alerts_lock.write():
            return self._alerts.pop(alert_id, None) is not None

    async def list_alerts(self, user_id: Optional[int] = None) -> List[WhaleAlert]:
        async with self._alerts_lock.read():
            return [
                replace(a) for a in self._alerts.values()
                if user_id is None or a.user_id == user_id
            ]

    @staticmethod
    def check_whale_alert(trade: WhaleTrade, alert: WhaleAlert) -> bool:
        if not alert.active:
            return False
        if trade.size_usd < alert.min_size_usd:
            return False
        if alert.chains and trade.chain not in alert.chains:
            return False
        if alert.tokens and trade.token not in alert.tokens:
            return False
        if alert.position_types and trade.position_type not in alert.position_types:
            return False
        return True

    async def matching_alerts(self, trade: WhaleTrade) -> List[WhaleAlert]:
        async with self._alerts_lock.read():
            return [replace(a) for a in self._alerts.values() if self.check_whale_alert(trade, a)]
