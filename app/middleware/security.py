import asyncio
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.asyncio import RedisError
from starlette.middleware.base import BaseHTTPMiddleware

from app.cache.layer import CacheLayer
from app.core.config import Settings, get_settings
from app.core.errors import RateLimited

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
    "X-XSS-Protection": "1; mode=block",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Frame-Options": "SAMEORIGIN",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response


class RateLimiter:
    """
    Fixed-window request counter in Redis.

    INCR and TTL go out in one pipeline. A counter found without an expiry
    gets one, so a lost EXPIRE cannot leave a key that never resets.
    """

    def __init__(self, cache: CacheLayer, settings: Settings | None = None):
        self.cache = cache
        self.settings = settings or get_settings()

    async def hit(self, identifier: str) -> tuple[bool, dict]:
        limit = self.settings.rate_limit_requests
        window = self.settings.rate_limit_window_seconds

        await self.cache.init_cache()
        redis = self.cache.redis
        if redis is None:
            return True, {}

        key = f"{self.settings.cache_namespace}ratelimit:{identifier}"
        timeout = self.settings.cache_timeout_seconds
        try:
            async with redis.pipeline(transaction=True) as pipe:
                requests, ttl = await asyncio.wait_for(
                    pipe.incr(key).ttl(key).execute(), timeout
                )
            if ttl < 0:
                await asyncio.wait_for(redis.expire(key, window), timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            # Fail open: a cache outage must not take the API down
            logger.error(f"Rate limiter unavailable: {e}")
            return True, {}

        headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(max(0, limit - requests)),
        }
        return requests <= limit, headers


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimiter, exempt_paths: tuple[str, ...] = ("/health",)):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = exempt_paths

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        identifier = request.client.host if request.client else "unknown"
        allowed, headers = await self.limiter.hit(identifier)
        if not allowed:
            error = RateLimited("Too many requests")
            return JSONResponse(
                status_code=error.status_code,
                content={"status": "error", "message": error.message},
                headers=headers,
            )

        response = await call_next(request)
        for header, value in headers.items():
            response.headers[header] = value
        return response
