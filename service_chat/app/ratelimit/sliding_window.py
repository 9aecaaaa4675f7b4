"""
Sliding-window rate limiter for the Chat service.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import redis.asyncio as redis

from shared.errors import RateLimitStoreError
from shared.logging import get_logger


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission attempt for a subject."""

    subject: str
    count: int
    limit: int
    remaining: int
    reset_in_seconds: int
    allowed: bool

    def headers(self) -> Dict[str, str]:
        """Standard rate limit headers describing this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_in_seconds)
        return headers


class SlidingWindowRateLimiter:
    """Distributed sliding-window rate limiter using a Redis sorted-set log.

    Each call to :meth:`admit` records one attempt, whether or not it ends up
    allowed, so denied and later-failing requests still consume quota.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        limit: int = 5,
        window_seconds: int = 60,
        key_prefix: str = "chat_rate_limit",
        fail_open: bool = False,
        socket_timeout: float = 2.0,
        redis_client: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds < 1:
            raise ValueError("window_seconds must be at least 1")

        self.redis_url = redis_url
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.fail_open = fail_open
        self.socket_timeout = socket_timeout
        self.logger = get_logger("chat.rate_limiter")
        self._redis = redis_client
        self._clock = clock

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._redis

    def _make_key(self, subject: str) -> str:
        """Generate rate limit key."""
        return f"{self.key_prefix}:{subject}"

    async def admit(self, subject: str) -> AdmissionDecision:
        """Consume one attempt for ``subject`` and decide admit/reject."""
        now_ms = int(self._clock() * 1000)
        window_ms = self.window_seconds * 1000
        key = self._make_key(subject)
        member = f"{now_ms}:{uuid.uuid4().hex}"

        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.zremrangebyscore(key, "-inf", now_ms - window_ms)
                pipeline.zadd(key, {member: now_ms})
                pipeline.zcard(key)
                pipeline.zrange(key, 0, 0, withscores=True)
                pipeline.pexpire(key, window_ms)
                results = await pipeline.execute()

            count = int(results[2])
            expiring = results[3]
            if count > self.limit:
                # Denied attempts stay in the log, so the subject is admitted again
                # only once enough entries expire to leave room for one more.
                expiring = await redis_client.zrange(
                    key, count - self.limit, count - self.limit, withscores=True
                )
        except Exception as e:
            return self._store_failure(subject, e)

        expiring_ms = int(expiring[0][1]) if expiring else now_ms
        reset_ms = max(0, expiring_ms + window_ms - now_ms)

        decision = AdmissionDecision(
            subject=subject,
            count=count,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_in_seconds=max(1, -(-reset_ms // 1000)),
            allowed=count <= self.limit,
        )

        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                subject=subject,
                current_count=count,
                limit=self.limit,
            )
        return decision

    def _store_failure(self, subject: str, error: Exception) -> AdmissionDecision:
        if not self.fail_open:
            self.logger.error("Rate limit store unavailable, failing closed", error=str(error))
            raise RateLimitStoreError(details={"error": str(error)}) from error

        self.logger.warning("Rate limit store unavailable, failing open", error=str(error))
        return AdmissionDecision(
            subject=subject,
            count=0,
            limit=self.limit,
            remaining=self.limit,
            reset_in_seconds=self.window_seconds,
            allowed=True,
        )

    async def get_status(self, subject: str) -> Dict[str, Any]:
        """Current window usage for ``subject`` without consuming an attempt."""
        now_ms = int(self._clock() * 1000)
        key = self._make_key(subject)

        redis_client = await self._get_redis()
        current_count = await redis_client.zcount(key, now_ms - self.window_seconds * 1000 + 1, "+inf")
        return {
            "current_count": int(current_count),
            "limit": self.limit,
            "remaining": max(0, self.limit - int(current_count)),
            "window_seconds": self.window_seconds,
        }

    async def reset(self, subject: str) -> bool:
        """Reset rate limit for ``subject``."""
        try:
            redis_client = await self._get_redis()
            await redis_client.delete(self._make_key(subject))
            self.logger.info("Rate limit reset", subject=subject)
            return True
        except Exception as e:
            self.logger.error("Rate limit reset error", error=str(e))
            return False

    async def check_health(self) -> str:
        """Return 'ok' if Redis answers a ping, otherwise 'error'."""
        try:
            redis_client = await self._get_redis()
            await redis_client.ping()
            return "ok"
        except Exception as e:
            self.logger.error("Rate limit store health check failed", error=str(e))
            return "error"

    async def close(self) -> None:
        """Close the Redis connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
