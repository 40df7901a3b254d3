"""Sliding-window rate limiting for user-triggered notification actions."""

from __future__ import annotations

import threading
import time

from servicehub.logging import get_logger

logger = get_logger(__name__)

RATE_LIMIT_PREFIX = "notification_rate:"
DEFAULT_WINDOW_SECONDS = 60
MAX_TRACKED_KEYS = 10_000


class RateLimitExceeded(RuntimeError):
    def __init__(self, retry_after: int):
        super().__init__("Rate limit exceeded")
        self.retry_after = retry_after


class RateLimiter:
    """Per-process limiter, optionally backed by Redis sorted sets."""

    def __init__(self, window_seconds: int = DEFAULT_WINDOW_SECONDS, redis_client=None) -> None:
        self.window_seconds = window_seconds
        self._redis = redis_client
        self._store: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str, limit: int) -> None:
        if limit <= 0:
            return
        now = time.time()
        window_start = now - self.window_seconds
        full_key = f"{RATE_LIMIT_PREFIX}{key}"
        if self._redis is not None:
            try:
                pipe = self._redis.pipeline()
                pipe.zremrangebyscore(full_key, 0, window_start)
                pipe.zadd(full_key, {str(now): now})
                pipe.zrange(full_key, 0, 0, withscores=True)
                pipe.zcard(full_key)
                pipe.expire(full_key, self.window_seconds + 5)
                _, _, oldest_entries, count, _ = pipe.execute()
                if count and int(count) > limit:
                    oldest_ts = oldest_entries[0][1] if oldest_entries else now
                    raise RateLimitExceeded(max(int(oldest_ts + self.window_seconds - now), 1))
                return
            except RateLimitExceeded:
                raise
            except Exception as exc:
                logger.warning("notification_rate_limit_redis_error key=%s error=%s", full_key, exc)

        with self._lock:
            bucket = [ts for ts in self._store.get(full_key, []) if ts > window_start]
            if len(bucket) >= limit:
                self._store[full_key] = bucket
                raise RateLimitExceeded(max(int(bucket[0] + self.window_seconds - now), 1))
            bucket.append(now)
            self._store[full_key] = bucket
            if len(self._store) > MAX_TRACKED_KEYS:
                self._evict_stale(window_start)

    def _evict_stale(self, window_start: float) -> None:
        stale = [key for key, bucket in self._store.items() if not bucket or bucket[-1] <= window_start]
        for key in stale:
            self._store.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


def build_rate_limit_key(action: str, user_id) -> str:
    return f"{action}:{user_id or 'anonymous'}"
