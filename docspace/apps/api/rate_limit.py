from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import time
from typing import Callable, Protocol

from fastapi import HTTPException, Request, Response, status
from redis.asyncio import Redis

from docspace.core.config import get_settings


logger = logging.getLogger(__name__)

_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()

# INCR the window counter and start its expiry on the first hit; returns count and ms left.
_FIXED_WINDOW_LUA = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
return {count, ttl}
"""


@dataclass(frozen=True)
class RateLimitDecision:
    # Outcome plus the hints surfaced in X-RateLimit-* headers.
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_s: int


class WindowStore(Protocol):
    async def hit(self, key: str, *, window_s: int, now: float) -> tuple[int, float]:
        ...


class MemoryWindowStore:
    """Per-process counters; each instance limits independently."""

    def __init__(self) -> None:
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, *, window_s: int, now: float) -> tuple[int, float]:
        async with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            # Expired windows reset lazily on the next request.
            if now >= reset_at:
                count, reset_at = 0, now + window_s
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at

    def clear(self) -> None:
        self._windows.clear()


async def _get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


class RedisWindowStore:
    """Shared fixed window for multi-instance deployments."""

    def __init__(self, prefix: str = "docspace:rl") -> None:
        self._prefix = prefix

    async def hit(self, key: str, *, window_s: int, now: float) -> tuple[int, float]:
        redis = await _get_redis()
        count, ttl_ms = await redis.eval(_FIXED_WINDOW_LUA, 1, f"{self._prefix}:{key}", window_s * 1000)
        ttl_ms = int(ttl_ms) if int(ttl_ms) > 0 else window_s * 1000
        return int(count), now + ttl_ms / 1000.0


class RateLimiter:
    def __init__(
        self,
        store: WindowStore,
        *,
        max_requests: int,
        window_s: int,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self.max_requests = max_requests
        self.window_s = window_s
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time

    async def check(self, identifier: str) -> RateLimitDecision:
        now = self._time_provider()
        count, reset_at = await self._store.hit(identifier, window_s=self.window_s, now=now)
        allowed = count <= self.max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
            retry_after_s=0 if allowed else max(1, int(math.ceil(reset_at - now))),
        )


_rate_limiter: RateLimiter | None = None


def _get_rate_limiter() -> RateLimiter:
    # Cache the limiter so every request shares one window store.
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        store: WindowStore
        if settings.rate_limit_backend.lower() == "redis":
            store = RedisWindowStore()
        else:
            store = MemoryWindowStore()
        _rate_limiter = RateLimiter(
            store,
            max_requests=settings.rate_limit_max_requests,
            window_s=settings.rate_limit_window_s,
        )
    return _rate_limiter


def reset_rate_limiter_state() -> None:
    # Drop cached limiter and Redis connections for deterministic test setup.
    global _rate_limiter, _redis_pool, _redis_loop
    _rate_limiter = None
    _redis_pool = None
    _redis_loop = None


def _headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }


def _throttle_exception(decision: RateLimitDecision) -> HTTPException:
    # Stable 429 with retry hints.
    headers = {"Retry-After": str(decision.retry_after_s), **_headers(decision)}
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Too many requests. Please try again later.",
            "retry_after": decision.retry_after_s,
        },
        headers=headers,
    )


async def enforce_rate_limit(*, request: Request, response: Response, user_id: str) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    limiter = _get_rate_limiter()
    try:
        decision = await limiter.check(f"user:{user_id}")
    except Exception as exc:  # noqa: BLE001 - guard against Redis connectivity failures
        if settings.rl_fail_mode.lower() == "closed":
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
            ) from exc
        logger.warning("rate_limit_degraded path=%s", request.url.path)
        response.headers["X-RateLimit-Status"] = "degraded"
        return
    if not decision.allowed:
        logger.info("rate_limited user_id=%s path=%s", user_id, request.url.path)
        raise _throttle_exception(decision)
    response.headers.update(_headers(decision))
