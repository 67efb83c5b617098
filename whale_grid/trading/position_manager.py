"""
Position Manager
===============
Open positions book: opening, price marks and partial/full closes with realized P&L
"""

import logging
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from ..core.core_models import Position
from ..core.core_exceptions import PositionError, PositionPersistenceError, ValidationError
from ..core.core_constants import CloseReason, PositionStatus

logger = logging.getLogger(__name__)

DUST_AMOUNT = 1e-12


class PositionManager:
    """Manages trading positions and P&L calculations"""

    def __init__(self, db, clock: Optional[Callable[[], int]] = None):
        self.db = db
        self._clock = clock or (lambda: int(time.time()))
        self.open_positions: Dict[str, Position] = {}
        # Positions whose latest state failed to reach the store
        self.pending_writes: Dict[str, Position] = {}

        # Statistics tracking
        self.total_positions_opened = 0
        self.total_realized_pnl = 0.0
        self.winning_closes = 0
        self.losing_closes = 0

        logger.info("✅ Position Manager initialized")

    async def initialize(self):
        """Load existing open positions from database"""
        try:
            positions = await self.db.list_open_positions()
        except Exception as e:
            logger.error(f"Failed to initialize position manager: {e}")
            raise PositionError(f"Failed to initialize: {e}")

        for position in positions:
            self.open_positions[position.position_id] = position
        logger.info(f"✅ Loaded {len(self.open_positions)} open positions")

    async def open_position(self, user_id: int, chain: str, token: str, amount: float,
                            entry_price: float, take_profit_percent: float,
                            stop_loss_percent: float) -> Position:
        """
        Record a new position after a successful buy

        Args:
            stop_loss_percent: Loss threshold; stored signed (15 and -15 both become -15)
        """
        if amount <= 0:
            raise ValidationError("Position amount must be positive")
        if entry_price <= 0:
            raise ValidationError("Entry price must be positive")

        position = Position(
            position_id=f"pos_{user_id}_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            chain=chain,
            token=token,
            amount=amount,
            entry_price=entry_price,
            current_price=entry_price,
            take_profit_percent=abs(take_profit_percent),
            stop_loss_percent=-abs(stop_loss_percent),
            status=PositionStatus.OPEN,
            opened_at=self._clock(),
        )

        self.open_positions[position.position_id] = position
        self.total_positions_opened += 1

        logger.info(f"✅ Position created: {position.position_id}")
        logger.info(f"   Token: {chain}/{token}")
        logger.info(f"   Amount: {amount:.6f} tokens @ ${entry_price:.8f}")
        logger.info(f"   TP/SL: +{position.take_profit_percent:.1f}% / {position.stop_loss_percent:.1f}%")

        await self._persist(position)
        return position

    def get_position(self, position_id: str) -> Position:
        position = self.open_positions.get(position_id)
        if position is None:
            raise PositionError(f"Open position not found: {position_id}")
        return position

    async def update_price(self, position_id: str, price: float) -> Position:
        position = self.get_position(position_id)
        if price > 0:
            position.current_price = price
            await self.db.store_position(position)
        return position

    async def _persist(self, position: Position, sold: float = 0.0, realized: float = 0.0):
        """
        Write a position after the book already reflects an executed swap.

        The book is never rolled back: on failure the position is queued in
        pending_writes and PositionPersistenceError carries what was sold.
        """
        try:
            await self.db.store_position(position)
        except Exception as e:
            self.pending_writes[position.position_id] = position
            logger.error(f"❌ Failed to persist position {position.position_id}, queued for retry: {e}")
            raise PositionPersistenceError(position.position_id, str(e), sold, realized)
        self.pending_writes.pop(position.position_id, None)

    async def sync_pending(self) -> int:
        """Retry queued position writes; returns how many reached the store"""
        written = 0
        for position_id, position in list(self.pending_writes.items()):
            try:
                await self.db.store_position(position)
            except Exception as e:
                logger.warning(f"⚠️ Position {position_id} still not persisted: {e}")
                continue
            del self.pending_writes[position_id]
            written += 1
        if written:
            logger.info(f"💾 Persisted {written} queued position writes")
        return written

    async def apply_close(self, position_id: str, sell_percent: float,
                          exit_price: float, reason: Optional[CloseReason] = None) -> Tuple[float, float]:
        """
        Sell part or all of a position

        A partial take-profit marks the position so take-profit does not fire
        again for the remainder; stop-loss still applies.

        Returns:
            (amount sold, realized P&L in USD for that amount)

        Raises:
            PositionPersistenceError: book updated but the store write failed
        """
        if not 0 < sell_percent <= 100:
            raise ValidationError(f"Sell percent must be within (0, 100], got {sell_percent}")

        position = self.get_position(position_id)

        if sell_percent >= 100:
            sold = position.amount
        else:
            sold = position.amount * sell_percent / 100.0

        realized = sold * (exit_price - position.entry_price)

        position.amount -= sold
        position.current_price = exit_price
        position.realized_pnl_usd += realized

        if sell_percent >= 100 or position.amount <= DUST_AMOUNT:
            position.amount = 0.0
            position.status = PositionStatus.CLOSED
            position.closed_at = self._clock()
            del self.open_positions[position_id]
        elif reason == CloseReason.TAKE_PROFIT:
            position.take_profit_taken = True

        self.total_realized_pnl += realized
        if realized > 0:
            self.winning_closes += 1
        elif realized < 0:
            self.losing_closes += 1

        state = "closed" if position.status == PositionStatus.CLOSED else f"{position.amount:.6f} left"
        logger.info(
            f"💰 Position {position_id}: sold {sold:.6f} @ ${exit_price:.8f}, "
            f"P&L ${realized:.2f} ({state})"
        )

        await self._persist(position, sold, realized)
        return sold, realized

    async def list_open_positions(self, user_id: Optional[int] = None) -> List[Position]:
        return [
            p for p in self.open_positions.values()
            if user_id is None or p.user_id == user_id
        ]

    async def count_open_positions(self, user_id: int) -> int:
        return sum(1 for p in self.open_positions.values() if p.user_id == user_id)

    def get_portfolio_summary(self, user_id: Optional[int] = None) -> Dict:
        positions = [p for p in self.open_positions.values() if user_id is None or p.user_id == user_id]
        closes = self.winning_closes + self.losing_closes
        return {
            "open_positions": len(positions),
            "total_open_value_usd": sum(p.amount * p.current_price for p in positions),
            "unrealized_pnl_usd": sum(p.unrealized_pnl_usd for p in positions),
            "realized_pnl_usd": self.total_realized_pnl,
            "positions_opened": self.total_positions_opened,
            "win_rate": (self.winning_closes / closes * 100) if closes else 0.0,
        }
