"""
Carpool - Score Cache Layer

Computed trust scores are cached in Redis so a profile page does not hit
Neo4j three times on every render.

Cache Strategy:
    - Complete scores:   TTL = CACHE_TTL_SCORE (15 min default)
    - Incomplete scores: TTL = CACHE_TTL_INCOMPLETE (30 s, retry quickly)
    - Any write to a member's facts invalidates their entry.

Key Schema:
    carpool:trust:{user_id}        → Full JSON score result
    carpool:trust:lock:{user_id}   → Lock held while a score is being computed
"""
import json
import time
from typing import Optional, Dict, Any

import redis
import structlog

from app.config import settings

logger = structlog.get_logger()

LOCK_TTL = 10  # seconds - max time to hold a compute lock


def _score_key(user_id: str) -> str:
    return f"carpool:trust:{user_id}"


def _lock_key(user_id: str) -> str:
    return f"carpool:trust:lock:{user_id}"


class ScoreCache:
    """
    Redis cache for trust scores. Fails open: if Redis is unreachable every
    call becomes a miss/no-op and scoring carries on uncached.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self._url = redis_url or settings.REDIS_URL
        self._pool = None
        self._client: Optional[redis.Redis] = None
        self._enabled = True

    def _connect(self) -> Optional[redis.Redis]:
        """Lazy connect - only opens connection when first used."""
        if self._client is None:
            try:
                self._pool = redis.ConnectionPool.from_url(
                    self._url,
                    max_connections=20,
                    decode_responses=True,
                    socket_connect_timeout=3,
                    socket_timeout=2,
                    retry_on_timeout=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)
                self._client.ping()
                logger.info("score_cache_connected", url=self._url.split("@")[-1])
            except redis.RedisError as e:
                logger.warning("score_cache_unavailable", error=str(e))
                self._enabled = False
                self._client = None
        return self._client

    @property
    def enabled(self) -> bool:
        return self._enabled

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        if not self._enabled:
            return None

        client = self._connect()
        if not client:
            return None

        try:
            raw = client.get(_score_key(user_id))
        except redis.RedisError as e:
            logger.debug("cache_get_error", user_id=user_id, error=str(e))
            return None

        if not raw:
            return None
        logger.debug("cache_hit", user_id=user_id)
        data = json.loads(raw)
        data["_cache"] = "hit"
        return data

    def set(self, user_id: str, score_data: Dict[str, Any], incomplete: bool = False) -> bool:
        if not self._enabled:
            return False

        client = self._connect()
        if not client:
            return False

        ttl = settings.CACHE_TTL_INCOMPLETE if incomplete else settings.CACHE_TTL_SCORE
        payload = dict(score_data, _cached_at=time.time(), _ttl=ttl)
        try:
            client.setex(_score_key(user_id), ttl, json.dumps(payload, default=str))
        except redis.RedisError as e:
            logger.debug("cache_set_error", user_id=user_id, error=str(e))
            return False

        logger.debug("cache_set", user_id=user_id, ttl=ttl)
        return True

    def invalidate(self, user_id: str) -> bool:
        """Drop a cached score after the member's facts change."""
        if not self._enabled:
            return False

        client = self._connect()
        if not client:
            return False

        try:
            removed = bool(client.delete(_score_key(user_id)))
        except redis.RedisError as e:
            logger.warning("cache_invalidate_error", user_id=user_id, error=str(e))
            return False

        logger.debug("cache_invalidated", user_id=user_id, removed=removed)
        return removed

    def acquire_lock(self, user_id: str) -> bool:
        """
        Only one request computes a given member's score at a time; the
        others wait briefly and read the cache.
        """
        if not self._enabled:
            return True

        client = self._connect()
        if not client:
            return True

        try:
            return bool(client.set(_lock_key(user_id), "1", nx=True, ex=LOCK_TTL))
        except redis.RedisError as e:
            logger.debug("cache_lock_error", user_id=user_id, error=str(e))
            return True

    def release_lock(self, user_id: str):
        if not self._enabled:
            return

        client = self._connect()
        if not client:
            return

        try:
            client.delete(_lock_key(user_id))
        except redis.RedisError as e:
            # Lock expires on its own after LOCK_TTL
            logger.debug("cache_unlock_error", user_id=user_id, error=str(e))

    def stats(self) -> Dict[str, Any]:
        if not self._enabled:
            return {"enabled": False}

        client = self._connect()
        if not client:
            return {"enabled": False, "connected": False}

        try:
            info = client.info("memory")
            cached = sum(1 for k in client.scan_iter("carpool:trust:*") if ":lock:" not in k)
            return {
                "enabled": True,
                "connected": True,
                "cached_scores": cached,
                "memory_used": info.get("used_memory_human", "?"),
            }
        except redis.RedisError as e:
            return {"enabled": True, "connected": False, "error": str(e)}

    def close(self):
        if self._pool:
            self._pool.disconnect()
            logger.info("score_cache_disconnected")
