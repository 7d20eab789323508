import threading
import time
from dataclasses import dataclass

import redis

from cardroom.services.redis_client import get_redis_client


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int


class RateLimitService:
    """Fixed-window counters in redis, falling back to process memory."""

    def __init__(self, redis_client: redis.Redis | None = None, *, use_redis: bool = True) -> None:
        self._redis = redis_client if redis_client is not None else (get_redis_client() if use_redis else None)
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str, *, limit: int, window_seconds: int) -> RateLimitDecision:
        limit = max(1, int(limit))
        window_seconds = max(1, int(window_seconds))
        now = time.time()
        bucket = int(now // window_seconds)
        reset_at = (bucket + 1) * window_seconds

        count = self._incr_redis(f"cardroom:ratelimit:{key}:{bucket}", window_seconds)
        if count is None:
            count = self._incr_memory(f"{key}:{bucket}", reset_at, now)

        allowed = count <= limit
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            retry_after_seconds=0 if allowed else max(1, int(reset_at - now)),
        )

    def _incr_redis(self, redis_key: str, window_seconds: int) -> int | None:
        if self._redis is None:
            return None
        try:
            pipe = self._redis.pipeline()
            pipe.incr(redis_key, 1)
            pipe.expire(redis_key, window_seconds + 1)
            count, _ = pipe.execute()
            return int(count)
        except redis.RedisError:
            return None

    def _incr_memory(self, bucket_key: str, reset_at: float, now: float) -> int:
        with self._lock:
            for stale_key in [key for key, (_, expires) in self._windows.items() if now > expires + 1]:
                self._windows.pop(stale_key, None)
            count, _ = self._windows.get(bucket_key, (0, reset_at))
            count += 1
            self._windows[bucket_key] = (count, reset_at)
            return count


rate_limit_service = RateLimitService()
