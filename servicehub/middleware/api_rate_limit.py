"""Global API rate limiting middleware.

Sliding window per caller, counted in Redis when it is reachable and in
process memory otherwise.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock
from typing import TYPE_CHECKING, ClassVar

from starlette.requests import Request
from starlette.responses import JSONResponse

from servicehub.config import settings
from servicehub.logging import get_logger

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

logger = get_logger(__name__)

RATE_LIMIT_PREFIX = "api_rate:"


class APIRateLimitMiddleware:
    """
    Rate limiting middleware for the HTTP API.

    Every response carries:
    - X-RateLimit-Limit: requests allowed per window
    - X-RateLimit-Remaining: requests left in the current window
    - X-RateLimit-Reset: seconds until the window frees up
    """

    EXEMPT_PATHS: ClassVar[set[str]] = {"/health", "/metrics", "/favicon.ico"}
    EXEMPT_PREFIXES: ClassVar[tuple[str, ...]] = ("/docs", "/openapi", "/redoc", "/ws/")

    def __init__(
        self,
        app: ASGIApp,
        limit: int = settings.api_rate_limit,
        window_seconds: int = settings.api_rate_window,
        key_func: Callable[[Request], str] | None = None,
        redis_url: str | None = settings.redis_url,
    ):
        self.app = app
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_func = key_func or self._default_key_func
        self.redis_url = redis_url
        self._redis = None
        self._redis_available = None if redis_url else False
        self._memory: dict[str, list[float]] = {}
        self._memory_lock = Lock()

    @staticmethod
    def _default_key_func(request: Request) -> str:
        user_id = request.headers.get("X-User-Id")
        if user_id:
            return f"user:{user_id}"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return f"ip:{forwarded.split(',')[0].strip()}"
        return f"ip:{request.client.host if request.client else 'unknown'}"

    def _get_redis(self):
        if self._redis_available is False:
            return None
        if self._redis is None:
            try:
                import redis

                client = redis.from_url(self.redis_url, decode_responses=True)
                client.ping()
                self._redis = client
                self._redis_available = True
                logger.info("api_rate_limiter_redis_connected")
            except Exception as exc:
                logger.warning("api_rate_limiter_redis_unavailable error=%s", exc)
                self._redis_available = False
        return self._redis

    def _should_skip(self, path: str) -> bool:
        return path in self.EXEMPT_PATHS or path.startswith(self.EXEMPT_PREFIXES)

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        if self._should_skip(request.url.path):
            await self.app(scope, receive, send)
            return

        allowed, remaining, reset_in = self.check(self.key_func(request))
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(reset_in),
        }
        if not allowed:
            response = JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Please try again later.", "retry_after": reset_in},
                headers={**headers, "Retry-After": str(reset_in)},
            )
            await response(scope, receive, send)
            return

        encoded = [(name.encode(), value.encode()) for name, value in headers.items()]

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message = {**message, "headers": [*message.get("headers", []), *encoded]}
            await send(message)

        await self.app(scope, receive, send_with_headers)

    def check(self, key: str) -> tuple[bool, int, int]:
        """Count one request for ``key``. Returns (allowed, remaining, reset_in)."""
        redis = self._get_redis()
        if redis is not None:
            try:
                return self._check_redis(redis, key)
            except Exception as exc:
                logger.warning("api_rate_limit_redis_error key=%s error=%s", key, exc)
        return self._check_memory(key)

    def _check_redis(self, redis, key: str) -> tuple[bool, int, int]:
        full_key = f"{RATE_LIMIT_PREFIX}{key}"
        now = time.time()
        pipe = redis.pipeline()
        pipe.zremrangebyscore(full_key, 0, now - self.window_seconds)
        pipe.zcard(full_key)
        pipe.zadd(full_key, {str(now): now})
        pipe.expire(full_key, self.window_seconds + 1)
        _, count, _, _ = pipe.execute()
        if count >= self.limit:
            redis.zrem(full_key, str(now))
            oldest = redis.zrange(full_key, 0, 0, withscores=True)
            reset_in = int(oldest[0][1] + self.window_seconds - now) + 1 if oldest else self.window_seconds
            return False, 0, reset_in
        return True, max(0, self.limit - count - 1), self.window_seconds

    def _check_memory(self, key: str) -> tuple[bool, int, int]:
        now = time.time()
        window_start = now - self.window_seconds
        with self._memory_lock:
            hits = [ts for ts in self._memory.get(key, []) if ts > window_start]
            if len(hits) >= self.limit:
                self._memory[key] = hits
                return False, 0, int(hits[0] + self.window_seconds - now) + 1
            hits.append(now)
            self._memory[key] = hits
            return True, max(0, self.limit - len(hits)), self.window_seconds
