"""Per-user daily request quota.

Counts uncached gateway requests per user per UTC calendar day. Cache hits
never reach the tracker, so they never consume quota.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Tuple

from silkspark.ai.constants import DEFAULT_ANON_DAILY_LIMIT, DEFAULT_DAILY_LIMIT
from silkspark.ai.errors import RateLimitExceeded
from silkspark.draw import ANONYMOUS_ID

logger = logging.getLogger(__name__)


def _utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()


def seconds_until_next_day(ts: float) -> int:
    now = datetime.fromtimestamp(ts, tz=timezone.utc)
    tomorrow = datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)
    return max(1, int((tomorrow - now).total_seconds()))


class QuotaTracker:
    """
    In-memory daily counter keyed by (user, UTC day).

    Callers without a user id all share the anonymous counter, which has its
    own, smaller allowance.

    Usage:
        quota = QuotaTracker(daily_limit=50, anon_daily_limit=5)
        await quota.check_and_record("u1")   # raises RateLimitExceeded when spent
    """

    def __init__(
        self,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        anon_daily_limit: int = DEFAULT_ANON_DAILY_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.daily_limit = daily_limit
        self.anon_daily_limit = anon_daily_limit
        self._clock = clock
        self._counts: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    def limit_for(self, user_id: str) -> int:
        return self.anon_daily_limit if user_id == ANONYMOUS_ID else self.daily_limit

    def _prune(self, today: str) -> None:
        # Counters from earlier days can never apply again.
        for key in [k for k in self._counts if k[1] != today]:
            del self._counts[key]

    async def check_and_record(self, user_id: str) -> int:
        """Consume one unit for today; returns the remaining allowance."""
        async with self._lock:
            now = self._clock()
            today = _utc_day(now)
            self._prune(today)
            limit = self.limit_for(user_id)
            used = self._counts.get((user_id, today), 0)
            if used >= limit:
                retry_after = seconds_until_next_day(now)
                logger.warning("daily quota exhausted for user=%s (limit=%d)", user_id, limit)
                raise RateLimitExceeded(retry_after=retry_after, user_id=user_id)
            self._counts[(user_id, today)] = used + 1
            return limit - used - 1

    def used(self, user_id: str) -> int:
        return self._counts.get((user_id, _utc_day(self._clock())), 0)

    def remaining(self, user_id: str) -> int:
        return max(0, self.limit_for(user_id) - self.used(user_id))

    def reset(self, user_id: str = None) -> None:
        if user_id is None:
            self._counts.clear()
            return
        for key in [k for k in self._counts if k[0] == user_id]:
            del self._counts[key]
