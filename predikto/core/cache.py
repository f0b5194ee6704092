from __future__ import annotations

import logging
from typing import Any

import orjson
from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class RedisCache:
    """Thin JSON layer over redis. Every key is stored under ``prefix``."""

    def __init__(self, redis_url: str, prefix: str = "predikto:") -> None:
        self.redis = Redis.from_url(redis_url, decode_responses=False)
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def close(self) -> None:
        await self.redis.aclose()

    async def get_json(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(self._key(key))
            if not raw:
                return None
            return orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.warning("cache_json_decode_error", extra={"event": "cache_json_decode_error", "error": key})
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_get_error", extra={"event": "cache_get_error", "error": str(exc)})
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.redis.set(self._key(key), orjson.dumps(value), ex=ttl)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_set_error", extra={"event": "cache_set_error", "error": str(exc)})

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.redis.exists(self._key(key)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_exists_error", extra={"event": "cache_exists_error", "error": str(exc)})
            return False

    async def set_if_absent(self, key: str, ttl: int, value: str = "1") -> bool:
        try:
            return bool(await self.redis.set(self._key(key), value.encode("utf-8"), nx=True, ex=ttl))
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_set_if_absent_error", extra={"event": "cache_set_if_absent_error", "error": str(exc)})
            return False

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys. Returns number of keys removed."""
        if not keys:
            return 0
        try:
            return int(await self.redis.delete(*(self._key(k) for k in keys)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache_delete_error", extra={"event": "cache_delete_error", "error": str(exc)})
            return 0
