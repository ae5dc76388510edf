import json
from typing import Any, Optional

import redis

from aslan_crm.core.config import settings
from aslan_crm.core.logging import db_logger


# Cache keys for read-heavy automation configuration
AUTOMATION_SETTINGS_KEY = "automation:settings"
STAGE_CHAIN_KEY = "automation:stage_chain"


class RedisClient:
    """
    Thin best-effort wrapper around Redis used as a read cache.

    Every method swallows Redis errors: a cache outage degrades to reading
    the database, it never fails a request.
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
        )

    @property
    def enabled(self) -> bool:
        return settings.CACHE_ENABLED

    def get_json(self, key: str) -> Optional[Any]:
        """Return the cached JSON value for key, or None on miss/outage."""
        if not self.enabled:
            return None
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            db_logger.warning("Cache read failed", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Cache a JSON-serializable value; results are trusted for ttl seconds."""
        if not self.enabled:
            return
        try:
            self.client.set(key, json.dumps(value, default=str), ex=ttl or settings.CACHE_TTL_SECONDS)
        except redis.RedisError as e:
            db_logger.warning("Cache write failed", key=key, error=str(e))

    def invalidate(self, *keys: str) -> None:
        """Drop cached entries after a write."""
        if not self.enabled or not keys:
            return
        try:
            self.client.delete(*keys)
        except redis.RedisError as e:
            db_logger.warning("Cache invalidation failed", keys=list(keys), error=str(e))

    def health_check(self) -> bool:
        """Check Redis connectivity"""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


redis_client = RedisClient()
