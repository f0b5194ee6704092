from __future__ import annotations

from predikto.core.cache import RedisCache


class PendingImports:
    """Users who pressed "Import Existing Account" and owe us a private key."""

    def __init__(self, cache: RedisCache, ttl: int = 600) -> None:
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def _key(user_id: str) -> str:
        return f"import:pending:{user_id}"

    async def begin(self, user_id: str) -> None:
        await self.cache.set_json(self._key(user_id), {"user_id": user_id}, ttl=self.ttl)

    async def is_pending(self, user_id: str) -> bool:
        return await self.cache.exists(self._key(user_id))

    async def clear(self, user_id: str) -> None:
        await self.cache.delete(self._key(user_id))
