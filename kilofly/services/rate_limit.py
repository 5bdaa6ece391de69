from __future__ import annotations
import logging
import time
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import HTTPException

from kilofly.core.config import settings

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_seconds: int


class TokenRateLimiter:
    """Fixed-window counter per (key, window) in Redis."""

    def __init__(self, redis_url: str, *, prefix: str = "kf:rl"):
        self.r = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = int(time.time())
        window = now // window_seconds
        rkey = f"{self.prefix}:{key}:{window}"

        async with self.r.pipeline(transaction=True) as pipe:
            pipe.incr(rkey)
            pipe.expire(rkey, window_seconds)
            count, _ = await pipe.execute()

        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_seconds=window_seconds - (now % window_seconds),
        )


async def enforce_rate_limit(limiter: TokenRateLimiter, *, key: str, limit: int, window_seconds: int) -> None:
    rl = await limiter.allow(key=key, limit=limit, window_seconds=window_seconds)
    if not rl.allowed:
        log.warning("rate limit hit: %s", key)
        raise HTTPException(
            status_code=429,
            detail="Too many requests, try again later",
            headers={"Retry-After": str(rl.reset_seconds)},
        )


_limiter: TokenRateLimiter | None = None


def get_rate_limiter() -> TokenRateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = TokenRateLimiter(settings.redis_url)
    return _limiter
