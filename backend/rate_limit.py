# backend/rate_limit.py
"""Per-user daily request quota for the tutor endpoint.

Counts live in process memory keyed by (user, UTC day), so they reset when the
day changes and are lost on restart. A request is only counted after the AI
call succeeds.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import config

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitExceeded(Exception):
    def __init__(self, limit: int):
        super().__init__(f"Daily limit of {limit} requests reached. Try again tomorrow (UTC).")
        self.limit = limit


@dataclass
class Usage:
    remaining: int
    limit: int
    used: int
    day: str


class DailyRateLimiter:
    def __init__(self, limit: int, clock: Callable[[], datetime] = _utcnow):
        self.limit = limit
        self._clock = clock
        self._counts: Dict[Tuple[str, str], int] = {}

    def day_key(self, now: Optional[datetime] = None) -> str:
        now = now or self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.strftime("%Y-%m-%d")

    def _prune(self, user_key: str, day: str) -> None:
        for key in [k for k in self._counts if k[0] == user_key and k[1] != day]:
            del self._counts[key]

    def _used(self, user_key: str) -> Tuple[str, int]:
        day = self.day_key()
        self._prune(user_key, day)
        return day, self._counts.get((user_key, day), 0)

    def check(self, user_key: str) -> int:
        """Return the remaining quota, or raise RateLimitExceeded."""
        _, used = self._used(user_key)
        if used >= self.limit:
            logger.info("Daily limit reached for user %s", user_key)
            raise RateLimitExceeded(self.limit)
        return self.limit - used

    def record(self, user_key: str) -> int:
        day, used = self._used(user_key)
        self._counts[(user_key, day)] = used + 1
        return max(0, self.limit - used - 1)

    def usage(self, user_key: str) -> Usage:
        day, used = self._used(user_key)
        return Usage(remaining=max(0, self.limit - used), limit=self.limit, used=used, day=day)

    def reset(self) -> None:
        self._counts.clear()


limiter = DailyRateLimiter(config.MAX_DAILY_REQUESTS)
