import hashlib
import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import redis

from app.config.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class AllocationCache:
    """Redis-backed cache of allocation results keyed by a hash of the request."""

    def __init__(
        self,
        redis_url: str = settings.redis_url,
        enabled: bool = settings.cache_enabled,
        ttl_seconds: int = settings.cache_ttl_seconds,
        client: Optional[redis.Redis] = None,
    ):
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self.redis_client = client or redis.from_url(redis_url, decode_responses=True)

    def get(self, request_hash: str) -> Optional[Dict]:
        """Retrieve a cached allocation result; connection failures count as a miss."""
        if not self.enabled:
            return None
        try:
            cached = self.redis_client.get(f"allocation:{request_hash}")
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {request_hash}: {e}")
            return None
        if cached:
            return json.loads(cached)
        return None

    def set(self, request_hash: str, result: Dict, ttl_seconds: Optional[int] = None) -> None:
        if not self.enabled:
            return
        try:
            self.redis_client.setex(
                f"allocation:{request_hash}",
                ttl_seconds or self.ttl_seconds,
                json.dumps(result, default=str),
            )
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {request_hash}: {e}")

    def delete(self, request_hash: str) -> None:
        """Invalidate cache entry."""
        try:
            self.redis_client.delete(f"allocation:{request_hash}")
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for {request_hash}: {e}")

    @staticmethod
    def hash_request(payload: Dict[str, Any]) -> str:
        """Stable hash of an allocation request (entities, rules, weights, options)."""
        data = json.dumps(payload, sort_keys=True, default=str)
        return hashlib.sha256(data.encode()).hexdigest()[:16]

    def health_check(self) -> bool:
        """Check Redis connection."""
        if not self.enabled:
            return False
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError:
            return False


@lru_cache(maxsize=1)
def get_cache() -> AllocationCache:
    return AllocationCache()
