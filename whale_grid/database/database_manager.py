"""
Database Manager
===============
MongoDB persistence for risk profiles, daily stats, positions, grids and whale data
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
import pymongo

from ..core.core_models import (
    RiskProfile, DailyStats, Position, GridStrategy, WhaleTrade, WhaleAlert, to_document
)
from ..core.core_exceptions import DatabaseError
from ..core.core_constants import Collections, PositionStatus, GridStatus

logger = logging.getLogger(__name__)


def _strip(doc: Dict) -> Dict:
    doc.pop('_id', None)
    doc.pop('updated_at', None)
    return doc


class DatabaseManager:
    """Handles all MongoDB operations"""

    def __init__(self, mongo_uri: str, db_name: str):
        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.client = None
        self.db = None

        # Collections
        self.risk_profiles = None
        self.daily_stats = None
        self.positions = None
        self.grid_strategies = None
        self.whale_trades = None
        self.whale_alerts = None

    async def connect(self):
        """Connect to MongoDB"""
        try:
            self.client = AsyncIOMotorClient(self.mongo_uri)
            self.db = self.client[self.db_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info(f"✅ MongoDB connected: {self.db_name}")

            self.risk_profiles = self.db[Collections.RISK_PROFILES]
            self.daily_stats = self.db[Collections.DAILY_STATS]
            self.positions = self.db[Collections.POSITIONS]
            self.grid_strategies = self.db[Collections.GRID_STRATEGIES]
            self.whale_trades = self.db[Collections.WHALE_TRADES]
            self.whale_alerts = self.db[Collections.WHALE_ALERTS]

            await self._create_indexes()

        except Exception as e:
            logger.error(f"❌ MongoDB connection failed: {e}")
            raise DatabaseError(f"Failed to connect to database: {e}")

    async def _create_indexes(self):
        """Create database indexes for performance"""
        try:
            await self.risk_profiles.create_index("user_id", unique=True)
            await self.daily_stats.create_index("user_id", unique=True)

            await self.positions.create_index("position_id", unique=True)
            await self.positions.create_index([("user_id", pymongo.ASCENDING), ("status", pymongo.ASCENDING)])
            await self.positions.create_index("token")

            await self.grid_strategies.create_index("strategy_id", unique=True)
            await self.grid_strategies.create_index("status")

            await self.whale_trades.create_index("trade_id", unique=True)
            await self.whale_trades.create_index("timestamp")
            await self.whale_trades.create_index("wallet_address")

            await self.whale_alerts.create_index("alert_id", unique=True)
            await self.whale_alerts.create_index("user_id")

            logger.info("✅ Database indexes created")

        except Exception as e:
            logger.error(f"Failed to create indexes: {e}")
            raise DatabaseError(f"Failed to create database indexes: {e}")

    async def _upsert(self, collection, key: str, doc: Dict) -> bool:
        doc['updated_at'] = datetime.now()
        result = await collection.replace_one({key: doc[key]}, doc, upsert=True)
        return result.upserted_id is not None or result.modified_count > 0

    # ==================== RISK ====================

    async def load_risk_profile(self, user_id: int) -> Optional[RiskProfile]:
        try:
            doc = await self.risk_profiles.find_one({"user_id": user_id})
            return RiskProfile.from_document(_strip(doc)) if doc else None
        except Exception as e:
            logger.error(f"Failed to load risk profile: {e}")
            raise DatabaseError(f"Failed to load risk profile: {e}")

    async def save_risk_profile(self, profile: RiskProfile) -> bool:
        try:
            return await self._upsert(self.risk_profiles, "user_id", to_document(profile))
        except Exception as e:
            logger.error(f"Failed to save risk profile: {e}")
            raise DatabaseError(f"Failed to save risk profile: {e}")

    async def load_daily_stats(self, user_id: int) -> Optional[DailyStats]:
        try:
            doc = await self.daily_stats.find_one({"user_id": user_id})
            if not doc:
                return None
            return DailyStats(
                date=doc["date"],
                total_loss_usd=float(doc.get("total_loss_usd", 0.0)),
                trade_count=int(doc.get("trade_count", 0)),
            )
        except Exception as e:
            logger.error(f"Failed to load daily stats: {e}")
            raise DatabaseError(f"Failed to load daily stats: {e}")

    async def save_daily_stats(self, user_id: int, stats: DailyStats) -> bool:
        try:
            doc = to_document(stats)
            doc["user_id"] = user_id
            return await self._upsert(self.daily_stats, "user_id", doc)
        except Exception as e:
            logger.error(f"Failed to update daily stats: {e}")
            raise DatabaseError(f"Failed to update daily stats: {e}")

    # ==================== POSITIONS ====================

    async def store_position(self, position: Position) -> bool:
        try:
            return await self._upsert(self.positions, "position_id", to_document(position))
        except Exception as e:
            logger.error(f"Failed to store position: {e}")
            raise DatabaseError(f"Failed to store position: {e}")

    async def get_position(self, position_id: str) -> Optional[Position]:
        try:
            doc = await self.positions.find_one({"position_id": position_id})
            return Position.from_document(_strip(doc)) if doc else None
        except Exception as e:
            logger.error(f"Failed to get position: {e}")
            raise DatabaseError(f"Failed to get position: {e}")

    async def list_open_positions(self, user_id: Optional[int] = None) -> List[Position]:
        try:
            query = {"status": PositionStatus.OPEN.value}
            if user_id is not None:
                query["user_id"] = user_id

            positions = []
            async for doc in self.positions.find(query).sort("opened_at", pymongo.ASCENDING):
                positions.append(Position.from_document(_strip(doc)))
            return positions

        except Exception as e:
            logger.error(f"Failed to get open positions: {e}")
            raise DatabaseError(f"Failed to get open positions: {e}")

    async def count_open_positions(self, user_id: int) -> int:
        try:
            return await self.positions.count_documents(
                {"user_id": user_id, "status": PositionStatus.OPEN.value}
            )
        except Exception as e:
            logger.error(f"Failed to count open positions: {e}")
            raise DatabaseError(f"Failed to count open positions: {e}")

    # ==================== GRIDS ====================

    async def store_grid_strategy(self, strategy: GridStrategy) -> bool:
        try:
            return await self._upsert(self.grid_strategies, "strategy_id", to_document(strategy))
        except Exception as e:
            logger.error(f"Failed to store grid strategy: {e}")
            raise DatabaseError(f"Failed to store grid strategy: {e}")

    async def load_grid_strategies(self, include_finished: bool = False) -> List[GridStrategy]:
        try:
            query = {}
            if not include_finished:
                query["status"] = {"$in": [GridStatus.ACTIVE.value, GridStatus.PAUSED.value]}

            strategies = []
            async for doc in self.grid_strategies.find(query):
                strategies.append(GridStrategy.from_document(_strip(doc)))
            return strategies

        except Exception as e:
            logger.error(f"Failed to load grid strategies: {e}")
            raise DatabaseError(f"Failed to load grid strategies: {e}")

    # ==================== WHALES ====================

    async def store_whale_trade(self, trade: WhaleTrade) -> bool:
        try:
            return await self._upsert(self.whale_trades, "trade_id", to_document(trade))
        except Exception as e:
            logger.error(f"Failed to store whale trade: {e}")
            raise DatabaseError(f"Failed to store whale trade: {e}")

    async def load_recent_whale_trades(self, since: int, limit: int = 1000) -> List[WhaleTrade]:
        """Trades at or after since, oldest first"""
        try:
            cursor = self.whale_trades.find({"timestamp": {"$gte": since}}) \
                .sort("timestamp", pymongo.DESCENDING).limit(limit)
            trades = []
            async for doc in cursor:
                trades.append(WhaleTrade.from_document(_strip(doc)))
            trades.reverse()
            return trades

        except Exception as e:
            logger.error(f"Failed to load whale trades: {e}")
            raise DatabaseError(f"Failed to load whale trades: {e}")

    async def store_whale_alert(self, alert: WhaleAlert) -> bool:
        try:
            return await self._upsert(self.whale_alerts, "alert_id", to_document(alert))
        except Exception as e:
            logger.error(f"Failed to store whale alert: {e}")
            raise DatabaseError(f"Failed to store whale alert: {e}")

    async def load_whale_alerts(self) -> List[WhaleAlert]:
        try:
            alerts = []
            async for doc in self.whale_alerts.find({}):
                alerts.append(WhaleAlert.from_document(_strip(doc)))
            return alerts
        except Exception as e:
            logger.error(f"Failed to load whale alerts: {e}")
            raise DatabaseError(f"Failed to load whale alerts: {e}")

    async def delete_whale_alert(self, alert_id: str) -> bool:
        try:
            result = await self.whale_alerts.delete_one({"alert_id": alert_id})
            return result.deleted_count > 0
        except Exception as e:
            logger.error(f"Failed to delete whale alert: {e}")
            raise DatabaseError(f"Failed to delete whale alert: {e}")

    async def close(self):
        """Close database connection"""
        if self.client:
            self.client.close()
            logger.info("✅ Database connection closed")
