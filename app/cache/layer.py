import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis, RedisError

from app.core.config import Settings, get_settings
from app.core.errors import CacheUnavailable

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier cache-aside store.

    L1: Process-local TTLCache (fast, limited size, short TTL)
    L2: Redis (shared, authoritative for the cache, TTL set with SET EX)

    Features:
    - Values are stored as UTF-8 JSON and validated against a schema on read;
      a payload that fails validation is dropped and reported as a miss
    - Stampede protection with per-key locks
    - Every Redis call is bounded by cache_timeout_seconds
    - Graceful degradation: backend errors and timeouts behave like a miss
      on reads and like a no-op on writes
    - Automatic key namespacing
    """

    def __init__(self, redis: Redis | None = None, settings: Settings | None = None):
        self._settings = settings
        self._redis: Redis | None = redis
        self.l1: TTLCache | None = None
        self._locks = TTLCache(maxsize=10_000, ttl=300)
        self._initialized = False

        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
            "invalid": 0,
        }

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()
        settings = self._settings

        if self.l1 is None and settings.l1_maxsize > 0:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        if self._redis is None:
            self._redis = Redis.from_url(
                settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

        self._initialized = True
        try:
            await self._call("PING", self._redis.ping())
            logger.info("Cache layer initialized")
        except CacheUnavailable as e:
            # The client reconnects on its own; until then every call degrades.
            logger.warning(f"Redis unavailable at startup, running degraded: {e}")

    @property
    def redis(self) -> Redis | None:
        return self._redis

    def _key(self, key: str) -> str:
        """Build namespaced cache key."""
        return f"{self._settings.cache_namespace}{key}"

    async def _call(self, op: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(
                awaitable, timeout=self._settings.cache_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise CacheUnavailable(f"Redis {op} timed out") from e
        except (RedisError, OSError) as e:
            raise CacheUnavailable(f"Redis {op} failed: {e}") from e

    @staticmethod
    def _dump(value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        return value

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    def _validate(self, value: Any, schema: type[BaseModel] | None):
        if schema is None:
            return value
        return schema.model_validate(value)

    async def _discard(self, key: str, reason: Exception):
        logger.warning(f"Discarding unreadable cache entry {key}: {reason}")
        self.stats["invalid"] += 1
        await self.delete(key)
        return False, None

    async def _read(self, key: str, schema: type[BaseModel] | None, local: bool = True):
        """Look a key up in L1 (when local) then L2. Returns (found, value)."""
        l2_key = self._key(key)
        use_l1 = local and self.l1 is not None

        if use_l1 and l2_key in self.l1:
            try:
                value = self._validate(self.l1[l2_key], schema)
                self.stats["l1_hits"] += 1
                return True, value
            except ValidationError:
                self.l1.pop(l2_key, None)

        if self._redis is None:
            return False, None

        try:
            raw = await self._call("GET", self._redis.get(l2_key))
        except CacheUnavailable as e:
            logger.error(f"Cache GET error for {key}: {e}")
            self.stats["errors"] += 1
            return False, None
        except UnicodeDecodeError as e:
            # The client decodes replies strictly; the stored bytes are not UTF-8
            return await self._discard(key, e)

        if raw is None:
            return False, None

        data = self._deserialize(raw)
        try:
            if data is None:
                raise ValueError("payload is not JSON")
            value = self._validate(data, schema)
        except (ValidationError, ValueError) as e:
            return await self._discard(key, e)

        self.stats["l2_hits"] += 1
        if use_l1:
            self.l1[l2_key] = data
        return True, value

    async def get(
        self,
        key: str,
        schema: Optional[type[BaseModel]] = None,
        loader: Optional[Callable[[], Awaitable[Any]]] = None,
        ttl: Optional[int] = None,
        local: bool = True,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            schema: Pydantic model the cached payload must validate against
            loader: Async function to load value on cache miss
            ttl: TTL for L2 cache in seconds (uses default if None)
            local: False keeps the key out of L1, for values that other
                processes invalidate

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()

        found, value = await self._read(key, schema, local)
        if found:
            return value

        if loader is None:
            self.stats["misses"] += 1
            return None

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another coroutine may have filled the key while we waited
            found, value = await self._read(key, schema, local)
            if found:
                return value

            self.stats["misses"] += 1
            logger.debug(f"Cache miss, loading {key}")
            loaded = await loader()
            if loaded is None:
                return None

            data = self._dump(loaded)
            await self._set(key, data, ttl, local)
            return self._validate(data, schema)

    async def _set(self, key: str, data: Any, ttl: int | None = None, local: bool = True):
        l2_key = self._key(key)

        if local and self.l1 is not None:
            self.l1[l2_key] = data

        if self._redis is None:
            return

        try:
            ttl = ttl or self._settings.cache_ttl_seconds
            await self._call("SET", self._redis.set(l2_key, self._serialize(data), ex=ttl))
        except CacheUnavailable as e:
            logger.error(f"Cache SET error for {key}: {e}")
            self.stats["errors"] += 1

    async def set(
        self, key: str, value: Any, ttl: Optional[int] = None, local: bool = True
    ):
        """
        Explicitly set a value in both cache layers.

        Args:
            key: Cache key (will be namespaced automatically)
            value: Pydantic model or JSON-compatible value
            ttl: TTL for L2 cache in seconds
            local: False writes Redis only
        """
        await self.init_cache()
        await self._set(key, self._dump(value), ttl, local)

    async def delete(self, *keys: str):
        """
        Delete keys from both cache layers.

        A failed Redis delete is logged; the entry then lives until its TTL.
        """
        await self.init_cache()
        if not keys:
            return

        l2_keys = [self._key(key) for key in keys]
        if self.l1 is not None:
            for l2_key in l2_keys:
                self.l1.pop(l2_key, None)

        if self._redis is None:
            return

        try:
            await self._call("DEL", self._redis.delete(*l2_keys))
            logger.debug(f"Invalidated {', '.join(keys)}")
        except CacheUnavailable as e:
            logger.error(f"Cache DELETE error for {', '.join(keys)}: {e}")
            self.stats["errors"] += 1

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except (RedisError, OSError) as e:
                logger.error(f"Error closing Redis: {e}")

    def get_stats(self) -> dict:
        total = self.stats["l1_hits"] + self.stats["l2_hits"] + self.stats["misses"]
        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total if total else 0
            ),
        }


def project_key(project_id: str) -> str:
    return f"project:{project_id}"


def task_key(task_id: str) -> str:
    return f"task:{task_id}"


# Cache layer instance (singleton per process)
cache_layer = CacheLayer()
