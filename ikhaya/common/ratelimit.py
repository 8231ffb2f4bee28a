"""Redis token bucket shared by public-facing endpoints."""

from time import time

import redis

from ikhaya.common.config import settings
from ikhaya.common.logging import logger


class RateLimitExceeded(Exception):
    """Raised when a caller has no tokens left in its bucket."""


class TokenBucketLimiter:
    """Capacity = refill rate = `limit_per_minute`; a limit of 0 disables it."""

    def __init__(self, client: redis.Redis, limit_per_minute: int, prefix: str = "tokenbucket") -> None:
        self.client = client
        self.limit_per_minute = limit_per_minute
        self.prefix = prefix

    @classmethod
    def from_settings(cls, prefix: str = "tokenbucket") -> "TokenBucketLimiter":
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        return cls(client, settings.rate_limit_per_minute, prefix=prefix)

    def acquire(self, subject: str) -> None:
        if self.limit_per_minute <= 0:
            return
        key = f"{self.prefix}:{subject}"
        now = time()
        capacity = float(self.limit_per_minute)
        refill_per_sec = capacity / 60.0

        try:
            values = self.client.hmget(key, "tokens", "updated_at")
            tokens = float(values[0]) if values[0] is not None else capacity
            updated_at = float(values[1]) if values[1] is not None else now
            elapsed = max(0.0, now - updated_at)
            tokens = min(capacity, tokens + elapsed * refill_per_sec)
            allowed = tokens >= 1.0
            if allowed:
                tokens -= 1.0
            self.client.hset(key, mapping={"tokens": tokens, "updated_at": now})
            self.client.expire(key, 120)
        except redis.RedisError as exc:
            # Redis outage must not block checkout.
            logger.warning("rate_limit_unavailable subject=%s error=%s", subject, exc)
            return
        if not allowed:
            raise RateLimitExceeded(subject)
