"""
Token-bucket rate limiting for provider API calls
"""

import logging
import math
import time
from typing import Callable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class TokenBucket:
    """In-process token bucket refilled lazily on each check

    Capacity is the requests-per-minute allowance. A check never blocks:
    it either consumes a token or reports that none is available.
    """

    def __init__(self, capacity: int, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.tokens = capacity
        self._clock = clock
        self.last_refill = clock()

    def _refill(self):
        now = self._clock()
        elapsed_ms = (now - self.last_refill) * 1000
        tokens_to_add = math.floor(elapsed_ms / (WINDOW_SECONDS * 1000) * self.capacity)
        # Refill mark only advances when whole tokens were earned
        if tokens_to_add > 0:
            self.tokens = min(self.capacity, self.tokens + tokens_to_add)
            self.last_refill = now

    def try_acquire(self) -> bool:
        """Consume one token if available"""
        self._refill()
        if self.tokens > 0:
            self.tokens -= 1
            return True
        return False

    async def acquire(self) -> bool:
        return self.try_acquire()


class SharedTokenBucket:
    """Redis-backed bucket shared across service instances

    Uses a fixed one-minute window counted with INCR + EXPIRE. When Redis
    is unreachable the local bucket decides instead.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        name: str,
        capacity: int,
        fallback: Optional[TokenBucket] = None,
        clock: Callable[[], float] = time.time
    ):
        self.redis = redis_client
        self.name = name
        self.capacity = capacity
        self.fallback = fallback or TokenBucket(capacity)
        self._clock = clock

    def _window_key(self) -> str:
        window = int(self._clock() // WINDOW_SECONDS)
        return f"rate_limit:{self.name}:{window}"

    async def acquire(self) -> bool:
        key = self._window_key()

        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, WINDOW_SECONDS + 1)

        try:
            results = await pipe.execute()
            current_count = results[0]
            return current_count <= self.capacity
        except Exception as e:
            logger.error(f"Shared rate limiter error for {self.name}: {str(e)}")
            return self.fallback.try_acquire()


def create_rate_limiter(
    name: str,
    requests_per_minute: int,
    backend: str = "local",
    redis_client: Optional[redis.Redis] = None
):
    """Build the bucket an adapter should own for the configured backend"""
    local = TokenBucket(requests_per_minute)
    if backend == "redis":
        if redis_client is None:
            logger.warning(f"Redis rate limiting requested for {name} but no Redis client; using local bucket")
            return local
        return SharedTokenBucket(redis_client, name, requests_per_minute, fallback=local)
    return local
