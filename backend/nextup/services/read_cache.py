"""
read_cache.py

Read-through cache for per-user read payloads (show detail, watchlists).

Entries never expire; every mutating operation drops all of the user's keys
instead. Each user has an index set listing the keys written for them so
invalidation does not need SCAN. A Redis failure is logged and treated as a
miss so reads fall through to the database.

Keys carry the user's generation counter, which invalidation bumps before
deleting. A reader takes the generation before querying the database and
writes under it, so a payload built before a mutation lands on a key no
later read asks for.
"""
import json
import logging
from typing import Any, Optional

from redis.exceptions import RedisError

from nextup.core.config import settings
from nextup.core.redis_client import get_redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "nextup:cache"


class ReadCache:
    def __init__(self, client=None, enabled: Optional[bool] = None):
        self._client = client
        self.enabled = settings.cache_enabled if enabled is None else enabled

    def _redis(self):
        return self._client if self._client is not None else get_redis()

    @staticmethod
    def key(user_id, kind: str, *parts, generation: int = 0) -> str:
        suffix = ":".join(str(p) for p in parts)
        return f"{KEY_PREFIX}:{user_id}:g{generation}:{kind}" + (f":{suffix}" if suffix else "")

    @staticmethod
    def index_key(user_id) -> str:
        return f"{KEY_PREFIX}:{user_id}:keys"

    @staticmethod
    def generation_key(user_id) -> str:
        return f"{KEY_PREFIX}:{user_id}:generation"

    async def generation(self, user_id) -> Optional[int]:
        """Current generation of the user's entries; None when disabled or Redis is unreachable."""
        if not self.enabled:
            return None
        try:
            raw = await self._redis().get(self.generation_key(user_id))
        except (RedisError, OSError) as e:
            logger.warning(f"[ReadCache] Reading generation for user {user_id} failed: {e}")
            return None
        return int(raw) if raw is not None else 0

    async def get(self, user_id, kind: str, *parts, generation: Optional[int] = None) -> Optional[Any]:
        if not self.enabled:
            return None
        if generation is None:
            generation = await self.generation(user_id)
            if generation is None:
                return None
        key = self.key(user_id, kind, *parts, generation=generation)
        try:
            raw = await self._redis().get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"[ReadCache] get {key} failed, reading from database: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"[ReadCache] Dropping undecodable entry {key}")
            return None

    async def set(self, user_id, kind: str, value: Any, *parts, generation: Optional[int] = None) -> None:
        """Store ``value``; pass the generation read before the payload was built."""
        if not self.enabled:
            return
        if generation is None:
            generation = await self.generation(user_id)
            if generation is None:
                return
        key = self.key(user_id, kind, *parts, generation=generation)
        try:
            client = self._redis()
            await client.sadd(self.index_key(user_id), key)
            await client.set(key, json.dumps(value, default=str))
        except (RedisError, OSError) as e:
            logger.warning(f"[ReadCache] set {key} failed: {e}")

    async def invalidate_user(self, user_id) -> int:
        """Drop every cached entry of the user; returns how many keys were removed."""
        if not self.enabled:
            return 0
        index = self.index_key(user_id)
        try:
            client = self._redis()
            # Bump first: a reader still holding the old generation can no longer be served
            await client.incr(self.generation_key(user_id))
            keys = list(await client.smembers(index) or [])
            await client.delete(index, *keys)
        except (RedisError, OSError) as e:
            logger.warning(f"[ReadCache] Invalidation for user {user_id} failed: {e}")
            return 0
        logger.debug(f"[ReadCache] Invalidated {len(keys)} keys for user {user_id}")
        return len(keys)
