"""Rate limiting as an injectable capability.

Services call `check_and_increment(key, window_seconds, limit)` and get
back whether the call is allowed plus a retry-after hint. Counting is a
fixed window per key; the increment and the check are a single atomic
step in both backends, so concurrent requests from one actor cannot
overshoot the limit.

Backends:
  - RedisRateLimiter     shared across processes (production)
  - InMemoryRateLimiter  single process (development, tests)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fastapi import Request

from edugate.config import settings
from edugate.middleware.exceptions import RateLimitExceededError
from edugate.utils.redis import get_redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int  # seconds until the current window resets


class RateLimiter(Protocol):
    async def check_and_increment(
        self, key: str, window_seconds: int, limit: int
    ) -> RateLimitResult:
        ...


def _window(now: float, window_seconds: int) -> tuple[int, int]:
    """Return (window index, seconds until it ends)."""
    index = int(now // window_seconds)
    reset_in = int((index + 1) * window_seconds - now) or 1
    return index, reset_in


class RedisRateLimiter:
    """Fixed-window counter on `ratelimit:<key>:<window index>`.

    INCR and EXPIRE run in one MULTI pipeline. If Redis is unreachable the
    request is allowed (fail open) and the error is logged.
    """

    def __init__(self, redis_factory: Callable = get_redis, clock: Callable[[], float] = time.time):
        self._redis_factory = redis_factory
        self._clock = clock

    async def check_and_increment(
        self, key: str, window_seconds: int, limit: int
    ) -> RateLimitResult:
        index, reset_in = _window(self._clock(), window_seconds)
        redis_key = f"ratelimit:{key}:{index}"

        try:
            redis_client = await self._redis_factory()
            async with redis_client.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, window_seconds)
                count, _ = await pipe.execute()
        except Exception as e:
            logger.error(f"Rate limit check failed for {key}: {e}")
            return RateLimitResult(allowed=True, remaining=limit, retry_after=0)

        count = int(count)
        if count > limit:
            return RateLimitResult(allowed=False, remaining=0, retry_after=reset_in)
        return RateLimitResult(allowed=True, remaining=limit - count, retry_after=0)


class InMemoryRateLimiter:
    """Fixed-window counter in a dict, serialised by an asyncio.Lock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._counts: dict[tuple[str, int], int] = {}
        self._lock = asyncio.Lock()

    async def check_and_increment(
        self, key: str, window_seconds: int, limit: int
    ) -> RateLimitResult:
        index, reset_in = _window(self._clock(), window_seconds)
        async with self._lock:
            # Drop counters from finished windows of this key
            for stale in [k for k in self._counts if k[0] == key and k[1] != index]:
                del self._counts[stale]

            count = self._counts.get((key, index), 0) + 1
            self._counts[(key, index)] = count

        if count > limit:
            return RateLimitResult(allowed=False, remaining=0, retry_after=reset_in)
        return RateLimitResult(allowed=True, remaining=limit - count, retry_after=0)


async def enforce(
    limiter: RateLimiter, key: str, window_seconds: int, limit: int
) -> RateLimitResult:
    """Count one call against `key`; raise RateLimitExceededError when over."""
    result = await limiter.check_and_increment(key, window_seconds, limit)
    if not result.allowed:
        logger.warning(
            f"Rate limit exceeded for {key}",
            extra={"rate_limit_key": key, "retry_after": result.retry_after},
        )
        raise RateLimitExceededError(retry_after=result.retry_after)
    return result


_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency returning the process-wide limiter."""
    global _limiter
    if _limiter is None:
        if settings.rate_limit_backend == "memory":
            _limiter = InMemoryRateLimiter()
        else:
            _limiter = RedisRateLimiter()
    return _limiter


def client_ip(request: Request) -> str:
    """Caller IP, honouring X-Forwarded-For from the load balancer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
