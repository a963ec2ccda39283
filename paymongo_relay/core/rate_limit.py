"""
Sliding-window rate limiting.

Two interchangeable stores:
- InMemorySlidingWindowStore keeps at most ``max_keys`` identifiers and evicts
  the least recently seen one, so memory stays bounded under many distinct
  clients.
- RedisSlidingWindowStore keeps one sorted set per identifier, shared across
  workers; on Redis errors it fails open.
"""
import math
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Deque, Optional, Protocol

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate limit check."""

    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class RateLimitExceeded(Exception):
    """Raised when an identifier has used up its window."""

    def __init__(self, identifier: str, retry_after_seconds: int):
        super().__init__(f"Rate limit exceeded for {identifier}")
        self.identifier = identifier
        self.retry_after_seconds = retry_after_seconds


class SlidingWindowStore(Protocol):
    """Storage backend for sliding-window counters."""

    async def hit(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> RateLimitDecision:
        ...


class InMemorySlidingWindowStore:
    """Process-local store with a fixed cap on tracked identifiers."""

    def __init__(self, max_keys: int = 10000):
        if max_keys <= 0:
            raise ValueError("max_keys must be positive")
        self.max_keys = max_keys
        self._windows: "OrderedDict[str, Deque[float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._windows)

    async def hit(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> RateLimitDecision:
        timestamps = self._windows.get(key)
        if timestamps is None:
            timestamps = deque()
            self._windows[key] = timestamps
            while len(self._windows) > self.max_keys:
                evicted, _ = self._windows.popitem(last=False)
                logger.debug("rate_limit_key_evicted", key=evicted)
        else:
            self._windows.move_to_end(key)

        window_start = now - window_seconds
        while timestamps and timestamps[0] <= window_start:
            timestamps.popleft()

        if len(timestamps) >= limit:
            retry_after = math.ceil(timestamps[0] + window_seconds - now)
            return RateLimitDecision(False, 0, max(retry_after, 1))

        timestamps.append(now)
        return RateLimitDecision(True, limit - len(timestamps))


class RedisSlidingWindowStore:
    """Redis sorted-set store, one key per identifier."""

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "rate_limit:"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    async def hit(
        self, key: str, limit: int, window_seconds: int, now: float
    ) -> RateLimitDecision:
        redis_key = f"{self.key_prefix}{key}"
        member = f"{now}:{uuid.uuid4().hex}"

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {member: now})
            pipe.expire(redis_key, window_seconds + 10)
            results = await pipe.execute()
            current_count = int(results[1])

            if current_count >= limit:
                await self.redis.zrem(redis_key, member)
                oldest = await self.redis.zrange(redis_key, 0, 0, withscores=True)
                if oldest:
                    retry_after = math.ceil(float(oldest[0][1]) + window_seconds - now)
                else:
                    retry_after = window_seconds
                return RateLimitDecision(False, 0, max(retry_after, 1))

            return RateLimitDecision(True, limit - current_count - 1)

        except Exception as e:
            logger.warning("rate_limit_redis_error", error=str(e), key=key)
            return RateLimitDecision(True, limit - 1)


class SlidingWindowRateLimiter:
    """Applies a request limit per identifier over a sliding time window."""

    def __init__(
        self,
        store: SlidingWindowStore,
        limit: int,
        window_seconds: int,
        name: str = "default",
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name

    async def check(self, identifier: str, now: Optional[float] = None) -> RateLimitDecision:
        """Record a request for ``identifier`` and report whether it is allowed."""
        decision = await self.store.hit(
            f"{self.name}:{identifier}",
            self.limit,
            self.window_seconds,
            time.time() if now is None else now,
        )
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                limiter=self.name,
                retry_after_seconds=decision.retry_after_seconds,
            )
        return decision

    async def enforce(self, identifier: str, now: Optional[float] = None) -> RateLimitDecision:
        """Like :meth:`check` but raises :class:`RateLimitExceeded` when blocked."""
        decision = await self.check(identifier, now)
        if not decision.allowed:
            raise RateLimitExceeded(identifier, decision.retry_after_seconds)
        return decision
