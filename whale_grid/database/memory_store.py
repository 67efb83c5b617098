"""
In-Memory Database
=================
Same interface as DatabaseManager, kept in process memory. Used in demo mode and tests.
"""

import logging
from typing import Dict, List, Optional

from ..core.core_models import (
    RiskProfile, DailyStats, Position, GridStrategy, WhaleTrade, WhaleAlert,
    UserKey, to_document
)
from ..core.core_constants import PositionStatus, GridStatus

logger = logging.getLogger(__name__)


class InMemoryDatabase:
    """Dict-backed store; records are copied in and out like documents"""

    def __init__(self):
        self.risk_profiles: Dict[UserKey, Dict] = {}
        self.daily_stats: Dict[UserKey, Dict] = {}
        self.positions: Dict[str, Dict] = {}
        self.grid_strategies: Dict[str, Dict] = {}
        self.whale_trades: Dict[str, Dict] = {}
        self.whale_alerts: Dict[str, Dict] = {}

    async def connect(self):
        logger.info("✅ In-memory database ready")

    async def close(self):
        pass

    # Risk

    async def load_risk_profile(self, user_id: int) -> Optional[RiskProfile]:
        doc = self.risk_profiles.get(UserKey(user_id))
        return RiskProfile.from_document(doc) if doc else None

    async def save_risk_profile(self, profile: RiskProfile) -> bool:
        self.risk_profiles[UserKey(profile.user_id)] = to_document(profile)
        return True

    async def load_daily_stats(self, user_id: int) -> Optional[DailyStats]:
        doc = self.daily_stats.get(UserKey(user_id))
        return DailyStats(**doc) if doc else None

    async def save_daily_stats(self, user_id: int, stats: DailyStats) -> bool:
        self.daily_stats[UserKey(user_id)] = to_document(stats)
        return True

    # Positions

    async def store_position(self, position: Position) -> bool:
        self.positions[position.position_id] = to_document(position)
        return True

    async def get_position(self, position_id: str) -> Optional[Position]:
        doc = self.positions.get(position_id)
        return Position.from_document(doc) if doc else None

    async def list_open_positions(self, user_id: Optional[int] = None) -> List[Position]:
        positions = [
            Position.from_document(doc) for doc in self.positions.values()
            if doc["status"] == PositionStatus.OPEN.value
            and (user_id is None or doc["user_id"] == user_id)
        ]
        return sorted(positions, key=lambda p: p.opened_at)

    async def count_open_positions(self, user_id: int) -> int:
        return sum(
            1 for doc in self.positions.values()
            if doc["status"] == PositionStatus.OPEN.value and doc["user_id"] == user_id
        )

    # Grids

    async def store_grid_strategy(self, strategy: GridStrategy) -> bool:
        self.grid_strategies[strategy.strategy_id] = to_document(strategy)
        return True

    async def load_grid_strategies(self, include_finished: bool = False) -> List[GridStrategy]:
        live = (GridStatus.ACTIVE.value, GridStatus.PAUSED.value)
        return [
            GridStrategy.from_document(doc) for doc in self.grid_strategies.values()
            if include_finished or doc["status"] in live
        ]

    # Whales

    async def store_whale_trade(self, trade: WhaleTrade) -> bool:
        self.whale_trades[trade.trade_id] = to_document(trade)
        return True

    async def load_recent_whale_trades(self, since: int, limit: int = 1000) -> List[WhaleTrade]:
        trades = sorted(
            (WhaleTrade.from_document(doc) for doc in self.whale_trades.values()
             if doc["timestamp"] >= since),
            key=lambda t: t.timestamp
        )
        return trades[-limit:] if limit else trades

    async def store_whale_alert(self, alert: WhaleAlert) -> bool:
        self.whale_alerts[alert.alert_id] = to_document(alert)
        return True

    async def load_whale_alerts(self) -> List[WhaleAlert]:
        return [WhaleAlert.from_document(doc) for doc in self.whale_alerts.values()]

    async def delete_whale_alert(self, alert_id: str) -> bool:
        return self.whale_alerts.pop(alert_id, None) is not None
