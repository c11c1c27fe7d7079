"""
Hybrid in-memory + Redis rate limiting.

Counts live in process memory and are written through to Redis every few
seconds, so a burst costs one Redis round trip rather than one per request.
When the limiter cannot decide (Redis down at startup, unexpected error) the
request is refused.
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request, status

from .config import REDIS_URL

logger = logging.getLogger(__name__)

# Sync counts to Redis at most this often (seconds)
SYNC_INTERVAL = 10
CLEANUP_INTERVAL = 60

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    global _redis_client

    if _redis_client is None:
        masked = REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL
        logger.info(f"🔄 Connecting to Redis for rate limiting at {masked}")
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
        _redis_client = client
        logger.info("✅ Redis connected")
    return _redis_client


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """
    FastAPI dependency allowing `limit` requests per `window_seconds`.

    Example:
        log_error_limit = RateLimiter(limit=30, window_seconds=60, key_prefix="log_error")

        @router.post("/log-error")
        async def log_error(payload: ErrorReport, _: None = Depends(log_error_limit)):
            ...
    """

    def __init__(self, limit: int, window_seconds: int, key_prefix: str = "rate_limit", per_ip: bool = True):
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.per_ip = per_ip
        self._entries: dict[str, dict] = {}
        self._lock = Lock()
        self._last_cleanup = 0

    def _cleanup(self, now: int):
        if now - self._last_cleanup < CLEANUP_INTERVAL:
            return
        expired = [k for k, v in self._entries.items() if now >= v["reset_time"]]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug(f"🧹 Dropped {len(expired)} expired {self.key_prefix} entries")
        self._last_cleanup = now

    def _load_entry(self, key: str, client: redis.Redis, now: int) -> dict:
        try:
            count = client.get(key)
            ttl = client.ttl(key)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to read {key} from Redis, counting in memory: {e}")
            count, ttl = None, -1
        if count and ttl > 0:
            return {"count": int(count), "reset_time": now + ttl, "last_sync": now}
        return {"count": 0, "reset_time": now + self.window_seconds, "last_sync": now}

    def hit(self, key: str, client: redis.Redis) -> tuple[bool, int, int]:
        """Count one request. Returns (allowed, count, seconds until reset)"""
        now = int(time.time())
        with self._lock:
            self._cleanup(now)
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = self._load_entry(key, client, now)

            if now >= entry["reset_time"]:
                entry.update(count=0, reset_time=now + self.window_seconds, last_sync=0)

            allowed = entry["count"] < self.limit
            if allowed:
                entry["count"] += 1

            if now - entry["last_sync"] >= SYNC_INTERVAL:
                try:
                    client.set(key, entry["count"], ex=max(1, entry["reset_time"] - now))
                    entry["last_sync"] = now
                except redis.RedisError as e:
                    logger.warning(f"⚠️ Failed to sync {key} to Redis: {e}")

            return allowed, entry["count"], max(0, entry["reset_time"] - now)

    async def __call__(self, request: Request):
        try:
            client = get_redis_client()
        except redis.RedisError as e:
            logger.error(f"❌ Rate limiter unavailable: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Rate limiting service temporarily unavailable",
            ) from e

        scope = client_ip(request) if self.per_ip else "global"
        key = f"{self.key_prefix}:{scope}"
        allowed, count, ttl = self.hit(key, client)

        if not allowed:
            logger.warning(f"🚫 Rate limit exceeded for {key} - {count}/{self.limit}")
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Rate limit exceeded. Maximum {self.limit} requests per {self.window_seconds} seconds.",
                    "retry_after": ttl,
                },
                headers={"Retry-After": str(ttl)},
            )

        request.state.rate_limit_remaining = self.limit - count
