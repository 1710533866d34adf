"""
Redis result cache for provider analyses
"""

import hashlib
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def hash_key(value: str) -> str:
    """Deterministic cache key for an analysed input"""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


class ResultCache:
    """JSON documents in Redis under a namespace, with per-write TTLs

    Errors are logged and treated as misses; a cache without a client is
    permanently empty.
    """

    def __init__(self, redis_client: Optional[redis.Redis], namespace: str):
        self.redis = redis_client
        self.namespace = namespace

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    def _key(self, raw: str) -> str:
        return f"{self.namespace}:{hash_key(raw)}"

    async def get_json(self, raw: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None

        try:
            cached = await self.redis.get(self._key(raw))
        except Exception as e:
            logger.error(f"Cache read failed for {self.namespace}: {str(e)}")
            return None

        if cached is None:
            return None
        if isinstance(cached, bytes):
            cached = cached.decode("utf-8")

        try:
            return json.loads(cached)
        except ValueError:
            logger.warning(f"Discarding malformed cache entry in {self.namespace}")
            return None

    async def set_json(self, raw: str, value: Dict[str, Any], ttl_seconds: int) -> None:
        if not self.enabled:
            return

        try:
            await self.redis.set(self._key(raw), json.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.error(f"Cache write failed for {self.namespace}: {str(e)}")


async def create_redis_client(redis_url: Optional[str]) -> Optional[redis.Redis]:
    """Connect to Redis, or return None when it is not configured or unreachable"""
    if not redis_url:
        return None

    client = redis.from_url(redis_url, decode_responses=True)
    try:
        await client.ping()
    except Exception as e:
        logger.warning(f"Redis unavailable at startup, continuing without cache: {str(e)}")
        await client.aclose()
        return None
    return client
