"""
Redis-backed sliding window rate limiter.

Counts API requests per client IP over `rate_limit_window_seconds`
(15 minutes by default). Fails open when Redis is unreachable.
"""

import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from assessment_platform.config import settings

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/api/health", "/metrics"})


class SlidingWindow:
    """Request timestamps per key in a sorted set; entries older than the window are trimmed."""

    def __init__(self, redis: aioredis.Redis, window: int, prefix: str = "ratelimit"):
        self.redis = redis
        self.window = window
        self.prefix = prefix

    async def hit(self, key: str) -> int:
        """Record one request and return how many fall inside the window."""
        now = time.time()
        name = f"{self.prefix}:{key}"
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(name, 0, now - self.window)
            pipe.zadd(name, {str(now): now})
            pipe.zcard(name)
            pipe.expire(name, self.window)
            _, _, count, _ = await pipe.execute()
        return count


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int | None = None, window: int | None = None,
                 redis_url: str | None = None):
        super().__init__(app)
        self.limit = limit or settings.rate_limit_requests
        self.window = window or settings.rate_limit_window_seconds
        self._redis_url = redis_url or settings.redis_url
        self._counter: SlidingWindow | None = None

    async def _get_counter(self) -> SlidingWindow | None:
        if self._counter is None:
            try:
                redis = aioredis.from_url(self._redis_url, decode_responses=True)
                await redis.ping()
            except (RedisError, OSError) as exc:
                logger.warning("Rate limiter: Redis unavailable (%s), passing through", exc)
                return None
            self._counter = SlidingWindow(redis, self.window)
        return self._counter

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS or not path.startswith("/api/"):
            return await call_next(request)

        counter = await self._get_counter()
        if counter is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            count = await counter.hit(client_ip)
        except (RedisError, OSError) as exc:
            logger.warning("Rate limiter Redis error: %s", exc)
            return await call_next(request)

        if count > self.limit:
            return JSONResponse(
                status_code=429,
                content={"success": False,
                         "message": "Too many requests from this IP, please try again later."},
                headers={"Retry-After": str(self.window)},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - count))
        return response
