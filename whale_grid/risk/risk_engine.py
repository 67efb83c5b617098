"""
Risk Engine
==========
Gates every trade against per-user limits and tracks realized daily losses
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional, Set

from ..core.core_models import RiskProfile, DailyStats, UserKey
from ..core.core_exceptions import (
    RiskError, RiskDataError, ValidationError, KillSwitchActiveError, TokenBlacklistedError,
    DevBlacklistedError, MaxTradeSizeExceededError, MaxDailyLossExceededError,
    MaxOpenPositionsExceededError
)
from ..utils.utils_locks import AsyncRWLock

logger = logging.getLogger(__name__)


def utc_today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class RiskEngine:
    """
    Per-user trade gate.

    The store must provide async load_risk_profile(user_id), save_risk_profile(profile)
    and count_open_positions(user_id); load_daily_stats(user_id) and
    save_daily_stats(user_id, stats) are used when present.
    """

    PROFILE_FIELDS = (
        "max_trade_size_usd", "max_daily_loss_usd", "max_open_positions",
        "default_stop_loss_percent", "default_take_profit_percent",
        "kill_switch_enabled", "blacklist_enabled",
    )

    def __init__(self, store, global_blacklist: Optional[Iterable[str]] = None,
                 dev_blacklist: Optional[Iterable[str]] = None,
                 today: Optional[Callable[[], str]] = None):
        self.store = store
        self._today = today or utc_today

        self._blacklist: Set[str] = set(global_blacklist or [])
        self._dev_blacklist: Set[str] = set(dev_blacklist or [])
        self._blacklist_lock = AsyncRWLock()

        self._daily_stats: Dict[UserKey, DailyStats] = {}
        self._stats_lock = AsyncRWLock()

        self._user_locks: Dict[UserKey, asyncio.Lock] = {}
        self._guard_waiters: Dict[UserKey, int] = {}

        logger.info(
            f"✅ Risk Engine initialized ({len(self._blacklist)} blacklisted tokens, "
            f"{len(self._dev_blacklist)} blacklisted devs)"
        )

    # ==================== TRADE GATE ====================

    async def check_trade_risk(self, user_id: int, token: str, amount_usd: float,
                               dev_wallet: Optional[str] = None) -> None:
        """
        Run the ordered risk checks for a prospective trade

        Raises:
            RiskError: the first failed check (kill switch pre-empts all others)
        """
        try:
            profile = await self.get_risk_profile(user_id)

            if profile.kill_switch_enabled:
                raise KillSwitchActiveError()

            if profile.blacklist_enabled:
                async with self._blacklist_lock.read():
                    token_listed = token in self._blacklist
                    dev_listed = dev_wallet is not None and dev_wallet in self._dev_blacklist
                if token_listed:
                    raise TokenBlacklistedError(token)
                if dev_listed:
                    raise DevBlacklistedError(dev_wallet)

            if amount_usd > profile.max_trade_size_usd:
                raise MaxTradeSizeExceededError(amount_usd, profile.max_trade_size_usd)

            stats = await self._rollover_daily_stats(user_id)
            if stats.total_loss_usd >= profile.max_daily_loss_usd:
                raise MaxDailyLossExceededError(stats.total_loss_usd, profile.max_daily_loss_usd)

            open_positions = await self._count_open_positions(user_id)
            if open_positions >= profile.max_open_positions:
                raise MaxOpenPositionsExceededError(open_positions, profile.max_open_positions)

        except RiskError as e:
            logger.warning(f"🛑 Trade rejected for user {user_id} ({token[:8]}...): {e.message}")
            raise

        logger.debug(f"Risk check passed for user {user_id}: ${amount_usd:.2f} of {token}")

    async def record_trade_result(self, user_id: int, pnl_usd: float) -> DailyStats:
        """
        Record one realized close; losses accumulate into today's total

        Call exactly once per realized close.
        """
        await self._ensure_daily_stats_loaded(user_id)
        key = UserKey(user_id)
        today = self._today()

        async with self._stats_lock.write():
            stats = self._daily_stats[key]
            if stats.date != today:
                stats = DailyStats(date=today)
                self._daily_stats[key] = stats
            if pnl_usd < 0:
                stats.total_loss_usd += abs(pnl_usd)
            stats.trade_count += 1
            snapshot = replace(stats)

        if pnl_usd < 0:
            logger.info(
                f"📉 User {user_id} realized loss ${abs(pnl_usd):.2f} "
                f"(today ${snapshot.total_loss_usd:.2f})"
            )
        else:
            logger.info(f"📈 User {user_id} realized P&L ${pnl_usd:.2f}")

        save = getattr(self.store, "save_daily_stats", None)
        if save is not None:
            try:
                await save(user_id, snapshot)
            except Exception as e:
                logger.error(f"❌ Failed to persist daily stats for user {user_id}: {e}")
                raise RiskDataError(str(e)) from e

        return snapshot

    @asynccontextmanager
    async def trade_guard(self, user_id: int):
        """Serialize risk-check-and-commit for one user; the lock is dropped once no one holds or awaits it"""
        key = UserKey(user_id)
        lock = self._user_locks.setdefault(key, asyncio.Lock())
        self._guard_waiters[key] = self._guard_waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._guard_waiters[key] -= 1
            if self._guard_waiters[key] == 0:
                del self._guard_waiters[key]
                del self._user_locks[key]

    @property
    def guarded_users(self) -> int:
        return len(self._user_locks)

    # ==================== DAILY STATS ====================

    async def get_daily_stats(self, user_id: int) -> DailyStats:
        """Snapshot of today's stats; does not mutate the cache"""
        await self._ensure_daily_stats_loaded(user_id)
        today = self._today()
        async with self._stats_lock.read():
            stats = self._daily_stats[UserKey(user_id)]
            if stats.date != today:
                return DailyStats(date=today)
            return replace(stats)

    async def _rollover_daily_stats(self, user_id: int) -> DailyStats:
        await self._ensure_daily_stats_loaded(user_id)
        key = UserKey(user_id)
        today = self._today()

        async with self._stats_lock.write():
            stats = self._daily_stats[key]
            if stats.date != today:
                logger.info(f"📅 Daily stats reset for user {user_id} ({stats.date} -> {today})")
                stats = DailyStats(date=today)
                self._daily_stats[key] = stats
            return replace(stats)

    async def _ensure_daily_stats_loaded(self, user_id: int):
        key = UserKey(user_id)
        async with self._stats_lock.read():
            if key in self._daily_stats:
                return

        persisted = None
        load = getattr(self.store, "load_daily_stats", None)
        if load is not None:
            try:
                persisted = await load(user_id)
            except Exception as e:
                logger.error(f"❌ Failed to load daily stats for user {user_id}: {e}")
                raise RiskDataError(str(e)) from e

        async with self._stats_lock.write():
            if key not in self._daily_stats:
                self._daily_stats[key] = persisted or DailyStats(date=self._today())

    # ==================== PROFILES ====================

    async def get_risk_profile(self, user_id: int) -> RiskProfile:
        """Load the user's profile, creating and saving the default one on first use"""
        try:
            profile = await self.store.load_risk_profile(user_id)
        except Exception as e:
            logger.error(f"❌ Failed to load risk profile for user {user_id}: {e}")
            raise RiskDataError(str(e)) from e

        if profile is None:
            profile = RiskProfile(user_id=user_id, last_updated=int(time.time()))
            await self._save_profile(profile)
            logger.info(f"✅ Default risk profile created for user {user_id}")

        return profile

    async def update_risk_profile(self, user_id: int, **fields) -> RiskProfile:
        unknown = set(fields) - set(self.PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown risk profile fields: {', '.join(sorted(unknown))}")

        for name, value in fields.items():
            if isinstance(value, bool) != name.endswith("_enabled"):
                raise ValidationError(f"Invalid value for {name}: {value!r}")
            if not isinstance(value, bool) and value < 0:
                raise ValidationError(f"{name} must not be negative")

        profile = await self.get_risk_profile(user_id)
        for name, value in fields.items():
            setattr(profile, name, value)
        profile.last_updated = int(time.time())
        await self._save_profile(profile)

        logger.info(f"✅ Risk profile updated for user {user_id}: {fields}")
        return profile

    async def set_kill_switch(self, user_id: int, enabled: bool) -> RiskProfile:
        profile = await self.update_risk_profile(user_id, kill_switch_enabled=enabled)
        if enabled:
            logger.warning(f"🛑 Kill switch ENABLED for user {user_id}")
        else:
            logger.info(f"✅ Kill switch disabled for user {user_id}")
        return profile

    async def _save_profile(self, profile: RiskProfile):
        try:
            await self.store.save_risk_profile(profile)
        except Exception as e:
            logger.error(f"❌ Failed to save risk profile for user {profile.user_id}: {e}")
            raise RiskDataError(str(e)) from e

    async def _count_open_positions(self, user_id: int) -> int:
        try:
            return await self.store.count_open_positions(user_id)
        except Exception as e:
            logger.error(f"❌ Failed to count open positions for user {user_id}: {e}")
            raise RiskDataError(str(e)) from e

    # ==================== BLACKLISTS ====================

    async def add_to_blacklist(self, token: str):
        async with self._blacklist_lock.write():
            self._blacklist.add(token)
        logger.info(f"🚫 Token blacklisted: {token}")

    async def remove_from_blacklist(self, token: str) -> bool:
        async with self._blacklist_lock.write():
            if token not in self._blacklist:
                return False
            self._blacklist.discard(token)
        logger.info(f"✅ Token removed from blacklist: {token}")
        return True

    async def is_blacklisted(self, token: str) -> bool:
        async with self._blacklist_lock.read():
            return token in self._blacklist

    async def add_dev_to_blacklist(self, dev_wallet: str):
        async with self._blacklist_lock.write():
            self._dev_blacklist.add(dev_wallet)
        logger.info(f"🚫 Developer wallet blacklisted: {dev_wallet}")

    async def remove_dev_from_blacklist(self, dev_wallet: str) -> bool:
        async with self._blacklist_lock.write():
            if dev_wallet not in self._dev_blacklist:
                return False
            self._dev_blacklist.discard(dev_wallet)
        logger.info(f"✅ Developer wallet removed from blacklist: {dev_wallet}")
        return True

    async def is_dev_blacklisted(self, dev_wallet: str) -> bool:
        async with self._blacklist_lock.read():
            return dev_wallet in self._dev_blacklist
