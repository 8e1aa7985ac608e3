"""
Carpool - Rate Limiting
Redis-backed sliding window rate limiter for the public endpoints.
"""
import time
import hashlib

import redis
from fastapi import Request, HTTPException
import structlog

from app.config import settings

logger = structlog.get_logger()

_redis = None


def _get_redis():
    """Lazy Redis connection. None when Redis is unreachable."""
    global _redis
    if _redis is not None:
        return _redis
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=2)
        client.ping()
    except redis.RedisError as e:
        logger.warning("rate_limiter_redis_unavailable", error=str(e))
        return None
    _redis = client
    logger.info("rate_limiter_redis_connected")
    return _redis


def _client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For from the proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _rate_key(ip: str, endpoint: str) -> str:
    ip_hash = hashlib.sha256(ip.encode()).hexdigest()[:16]
    return f"carpool:rl:{endpoint}:{ip_hash}"


async def check_rate_limit(
    request: Request,
    endpoint: str,
    max_requests: int,
    window_seconds: int = 60,
) -> None:
    """
    Sliding window over a sorted set of request timestamps.
    Raises 429 when the window is full; lets the request through if Redis is down.
    """
    r = _get_redis()
    if r is None:
        return

    ip = _client_ip(request)
    key = _rate_key(ip, endpoint)
    now = time.time()

    try:
        pipe = r.pipeline()
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {str(now): now})
        pipe.expire(key, window_seconds + 1)
        current_count = pipe.execute()[1]

        if current_count < max_requests:
            return

        oldest = r.zrange(key, 0, 0, withscores=True)
    except redis.RedisError as e:
        logger.warning("rate_limit_check_failed", error=str(e))
        return

    retry_after = int(window_seconds - (now - oldest[0][1])) + 1 if oldest else window_seconds
    logger.warning("rate_limit_exceeded",
                   ip=ip[:8] + "...", endpoint=endpoint,
                   count=current_count, limit=max_requests)
    raise HTTPException(
        status_code=429,
        detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds}s.",
        headers={"Retry-After": str(retry_after)},
    )


async def rate_limit_calculate(request: Request) -> None:
    """Public trust calculator: RATE_LIMIT_CALCULATE per minute per IP."""
    await check_rate_limit(request, endpoint="calculate", max_requests=settings.RATE_LIMIT_CALCULATE)
