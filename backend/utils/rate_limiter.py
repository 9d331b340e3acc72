"""Outbound rate limiting for GHL API calls - sliding window per category."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# requests allowed per window (seconds), by GHL API category
RATE_LIMITS: Dict[str, Dict[str, float]] = {
    "contacts": {"requests": 100, "window": 60.0},
    "opportunities": {"requests": 100, "window": 60.0},
    "conversations": {"requests": 60, "window": 60.0},
    "users": {"requests": 100, "window": 60.0},
    "media": {"requests": 30, "window": 60.0},  # file uploads
    "default": {"requests": 100, "window": 60.0},
}


class RateLimiter:
    def __init__(
        self,
        limits: Optional[Dict[str, Dict[str, float]]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        # In-memory buckets (single process)
        self.limits = limits or RATE_LIMITS
        self.buckets: Dict[str, List[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._clock = clock
        self._sleep = sleep

    def _limit_for(self, category: str) -> Dict[str, float]:
        return self.limits.get(category) or self.limits["default"]

    def _prune(self, category: str) -> List[float]:
        window = self._limit_for(category)["window"]
        now = self._clock()
        bucket = [ts for ts in self.buckets.get(category, []) if now - ts < window]
        self.buckets[category] = bucket
        return bucket

    def _lock_for(self, category: str) -> asyncio.Lock:
        lock = self._locks.get(category)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[category] = lock
        return lock

    async def acquire(self, category: str = "default") -> bool:
        """
        Wait until a request in this category may proceed, then record it.

        The check and the append happen under the category lock; the wait happens
        outside it, after which the bucket is re-checked because other callers may
        have taken the freed slot.
        """
        limit = self._limit_for(category)
        while True:
            async with self._lock_for(category):
                bucket = self._prune(category)
                if len(bucket) < limit["requests"]:
                    bucket.append(self._clock())
                    return True
                wait = limit["window"] - (self._clock() - bucket[0])

            if wait > 0:
                logger.warning(f"Rate limit for {category}: waiting {wait:.2f}s")
                await self._sleep(wait)
            else:
                # Oldest entry expires on this tick; yield and re-check
                await self._sleep(0)

    def can_proceed(self, category: str = "default") -> bool:
        """True if a request could be made now without waiting. Records nothing."""
        bucket = self._prune(category)
        return len(bucket) < self._limit_for(category)["requests"]

    def get_stats(self, category: str = "default") -> Dict[str, float]:
        limit = self._limit_for(category)
        bucket = self._prune(category)
        return {
            "category": category,
            "current": len(bucket),
            "limit": limit["requests"],
            "window": limit["window"],
            "remaining": limit["requests"] - len(bucket),
            "reset_in": limit["window"] - (self._clock() - bucket[0]) if bucket else 0,
        }

    def reset(self) -> None:
        self.buckets.clear()

    def reset_category(self, category: str) -> None:
        self.buckets.pop(category, None)


rate_limiter = RateLimiter()
