"""
Core Data Models
===============
All dataclasses and data structures used throughout the trading core
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Any, Dict, Tuple

from .core_constants import (
    GridStatus, OrderType, OrderStatus, TradeType, PositionType, MarketImpact,
    GridAction, PositionStatus, CloseReason, RiskDefaults
)


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _document_factory(items: List[Tuple[str, Any]]) -> Dict[str, Any]:
    return {key: _plain(value) for key, value in items}


def to_document(obj) -> Dict[str, Any]:
    """Convert a dataclass (nested ones included) into a plain dict with enum values"""
    return asdict(obj, dict_factory=_document_factory)


# Typed keys for in-memory stores

@dataclass(frozen=True)
class UserKey:
    user_id: int


@dataclass(frozen=True)
class TokenKey:
    chain: str
    token: str


# Grid trading

@dataclass
class GridOrder:
    """Single ladder order owned by a grid strategy"""
    order_id: str
    order_type: OrderType
    price: float
    amount: float
    status: OrderStatus = OrderStatus.PENDING
    created_seq: int = 0
    filled_at: Optional[int] = None
    filled_price: Optional[float] = None
    profit: Optional[float] = None
    profit_usd: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.ACTIVE)

    @classmethod
    def from_document(cls, doc: Dict) -> "GridOrder":
        return cls(
            order_id=doc["order_id"],
            order_type=OrderType(doc["order_type"]),
            price=float(doc["price"]),
            amount=float(doc["amount"]),
            status=OrderStatus(doc.get("status", OrderStatus.PENDING.value)),
            created_seq=int(doc.get("created_seq", 0)),
            filled_at=doc.get("filled_at"),
            filled_price=doc.get("filled_price"),
            profit=doc.get("profit"),
            profit_usd=doc.get("profit_usd"),
        )


@dataclass
class CreateGridRequest:
    user_id: int
    chain: str
    token: str
    lower_price: float
    upper_price: float
    grid_count: int
    investment_amount: float
    token_symbol: str = ""


@dataclass
class GridStrategy:
    """Grid strategy state: bounds, ladder orders and running results"""
    strategy_id: str
    user_id: int
    chain: str
    token: str
    token_symbol: str
    lower_price: float
    upper_price: float
    grid_count: int
    grid_spacing: float
    investment_amount: float
    status: GridStatus = GridStatus.ACTIVE
    created_at: int = 0
    last_price: float = 0.0
    total_profit: float = 0.0
    total_trades: int = 0
    order_seq: int = 0
    active_orders: List[GridOrder] = field(default_factory=list)
    completed_orders: List[GridOrder] = field(default_factory=list)
    cancelled_orders: List[GridOrder] = field(default_factory=list)

    @property
    def token_key(self) -> TokenKey:
        return TokenKey(self.chain, self.token)

    @property
    def price_range(self) -> Tuple[float, float]:
        return (self.lower_price, self.upper_price)

    @classmethod
    def from_document(cls, doc: Dict) -> "GridStrategy":
        return cls(
            strategy_id=doc["strategy_id"],
            user_id=doc["user_id"],
            chain=doc["chain"],
            token=doc["token"],
            token_symbol=doc.get("token_symbol", ""),
            lower_price=float(doc["lower_price"]),
            upper_price=float(doc["upper_price"]),
            grid_count=int(doc["grid_count"]),
            grid_spacing=float(doc["grid_spacing"]),
            investment_amount=float(doc["investment_amount"]),
            status=GridStatus(doc.get("status", GridStatus.ACTIVE.value)),
            created_at=int(doc.get("created_at", 0)),
            last_price=float(doc.get("last_price", 0.0)),
            total_profit=float(doc.get("total_profit", 0.0)),
            total_trades=int(doc.get("total_trades", 0)),
            order_seq=int(doc.get("order_seq", 0)),
            active_orders=[GridOrder.from_document(o) for o in doc.get("active_orders", [])],
            completed_orders=[GridOrder.from_document(o) for o in doc.get("completed_orders", [])],
            cancelled_orders=[GridOrder.from_document(o) for o in doc.get("cancelled_orders", [])],
        )


@dataclass
class GridLevel:
    level: int
    price: float
    buy_order: Optional[GridOrder] = None
    sell_order: Optional[GridOrder] = None
    profit: float = 0.0


@dataclass
class GridStats:
    strategy_id: str
    status: GridStatus
    total_profit: float
    total_profit_percent: float
    total_trades: int
    active_orders: int
    completed_orders: int
    current_price: float
    price_range: Tuple[float, float]
    grid_levels: List[GridLevel] = field(default_factory=list)


# Risk management

@dataclass
class RiskProfile:
    """Per-user trading limits"""
    user_id: int
    max_trade_size_usd: float = RiskDefaults.MAX_TRADE_SIZE_USD
    max_daily_loss_usd: float = RiskDefaults.MAX_DAILY_LOSS_USD
    max_open_positions: int = RiskDefaults.MAX_OPEN_POSITIONS
    default_stop_loss_percent: float = RiskDefaults.STOP_LOSS_PCT
    default_take_profit_percent: float = RiskDefaults.TAKE_PROFIT_PCT
    kill_switch_enabled: bool = RiskDefaults.KILL_SWITCH_ENABLED
    blacklist_enabled: bool = RiskDefaults.BLACKLIST_ENABLED
    last_updated: int = 0

    @classmethod
    def from_document(cls, doc: Dict) -> "RiskProfile":
        known = {k: v for k, v in doc.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class DailyStats:
    date: str
    total_loss_usd: float = 0.0
    trade_count: int = 0


# Whale tracking

@dataclass(frozen=True)
class WhaleTrade:
    """Observed large trade; immutable once recorded"""
    trade_id: str
    chain: str
    token: str
    trade_type: TradeType
    size_usd: float
    price: float
    timestamp: int
    wallet_address: str
    position_type: PositionType = PositionType.SPOT
    size_native: float = 0.0
    token_symbol: str = ""
    leverage: Optional[float] = None

    @classmethod
    def from_document(cls, doc: Dict) -> "WhaleTrade":
        return cls(
            trade_id=doc["trade_id"],
            chain=doc["chain"],
            token=doc["token"],
            trade_type=TradeType(doc["trade_type"]),
            size_usd=float(doc["size_usd"]),
            price=float(doc["price"]),
            timestamp=int(doc["timestamp"]),
            wallet_address=doc["wallet_address"],
            position_type=PositionType(doc.get("position_type", PositionType.SPOT.value)),
            size_native=float(doc.get("size_native", 0.0)),
            token_symbol=doc.get("token_symbol", ""),
            leverage=doc.get("leverage"),
        )


@dataclass
class WhaleInfo:
    wallet_address: str
    total_volume_24h: float = 0.0
    trade_count: int = 0
    avg_trade_size: float = 0.0
    net_position: float = 0.0  # positive = net long
    last_trade: Optional[WhaleTrade] = None
    trade_velocity: float = 0.0  # trades per hour
    price_impact_avg: float = 0.0


@dataclass
class WhaleActivity:
    trade: WhaleTrade
    price_impact: float
    volume_anomaly: float
    velocity_score: float
    market_impact: MarketImpact
    known_label: Optional[str] = None
    is_first_entry: bool = False
    confidence_score: float = 0.0


@dataclass
class WhaleImpactAnalysis:
    trade: WhaleTrade
    price_impact: float
    volume_anomaly: float
    velocity_score: float
    market_impact: MarketImpact
    recommended_action: GridAction
    reason: str
    price_in_grid_range: bool = True


@dataclass
class WhaleTrackerStats:
    total_whales_tracked: int
    total_volume_24h: float
    largest_trade_24h: Optional[WhaleTrade]
    top_whales: List[WhaleInfo]
    long_short_ratio: float


@dataclass
class WhaleAlert:
    alert_id: str
    user_id: int
    min_size_usd: float
    chains: List[str] = field(default_factory=list)  # empty = all chains
    tokens: List[str] = field(default_factory=list)  # empty = all tokens
    position_types: List[PositionType] = field(default_factory=list)
    active: bool = True
    created_at: int = 0

    @classmethod
    def from_document(cls, doc: Dict) -> "WhaleAlert":
        return cls(
            alert_id=doc["alert_id"],
            user_id=doc["user_id"],
            min_size_usd=float(doc["min_size_usd"]),
            chains=list(doc.get("chains", [])),
            tokens=list(doc.get("tokens", [])),
            position_types=[PositionType(p) for p in doc.get("position_types", [])],
            active=bool(doc.get("active", True)),
            created_at=int(doc.get("created_at", 0)),
        )


# Positions and market data

@dataclass
class Position:
    """Open or closed holding"""
    position_id: str
    user_id: int
    chain: str
    token: str
    amount: float
    entry_price: float
    current_price: float
    take_profit_percent: float
    stop_loss_percent: float  # signed, e.g. -15.0
    status: PositionStatus = PositionStatus.OPEN
    opened_at: int = 0
    closed_at: Optional[int] = None
    realized_pnl_usd: float = 0.0
    take_profit_taken: bool = False

    @property
    def token_key(self) -> TokenKey:
        return TokenKey(self.chain, self.token)

    @property
    def pnl_percent(self) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (self.current_price - self.entry_price) / self.entry_price * 100

    @property
    def unrealized_pnl_usd(self) -> float:
        return self.amount * (self.current_price - self.entry_price)

    @classmethod
    def from_document(cls, doc: Dict) -> "Position":
        return cls(
            position_id=doc["position_id"],
            user_id=doc["user_id"],
            chain=doc["chain"],
            token=doc["token"],
            amount=float(doc["amount"]),
            entry_price=float(doc["entry_price"]),
            current_price=float(doc.get("current_price", doc["entry_price"])),
            take_profit_percent=float(doc["take_profit_percent"]),
            stop_loss_percent=float(doc["stop_loss_percent"]),
            status=PositionStatus(doc.get("status", PositionStatus.OPEN.value)),
            opened_at=int(doc.get("opened_at", 0)),
            closed_at=doc.get("closed_at"),
            realized_pnl_usd=float(doc.get("realized_pnl_usd", 0.0)),
            take_profit_taken=bool(doc.get("take_profit_taken", False)),
        )


@dataclass
class TokenPrice:
    chain: str
    token: str
    price_usd: float
    token_symbol: Optional[str] = None
    price_native: float = 0.0
    volume_24h: float = 0.0
    liquidity: float = 0.0
    price_change_24h: float = 0.0
    timestamp: int = 0


@dataclass
class SecurityReport:
    is_safe: bool
    rug_score: float = 0.0
    warnings: List[str] = field(default_factory=list)


@dataclass
class CloseSignal:
    """Request to (partially) close a position; executed elsewhere"""
    position_id: str
    user_id: int
    chain: str
    token: str
    reason: CloseReason
    pnl_percent: float
    sell_percent: float
    current_price: float


@dataclass
class TradeResult:
    """Outcome of a buy or sell routed through the orchestrator"""
    success: bool
    position_id: str
    tx_signature: str = ""
    amount: float = 0.0
    price: float = 0.0
    realized_pnl_usd: float = 0.0
    error_message: str = ""


@dataclass
class WhaleEventResult:
    """What a whale trade caused: its score, matched alerts and grid changes"""
    activity: WhaleActivity
    alerts: List[WhaleAlert] = field(default_factory=list)
    grid_actions: Dict[str, List[str]] = field(default_factory=dict)
