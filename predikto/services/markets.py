from __future__ import annotations

import logging

from predikto.adapters.aptos import AptosAdapter
from predikto.core.cache import RedisCache

logger = logging.getLogger(__name__)

CACHE_KEY = "markets:all"


class MarketsService:
    """Read side of the market module, cached in redis for listings."""

    def __init__(self, aptos: AptosAdapter, cache: RedisCache, ttl: int = 180) -> None:
        self.aptos = aptos
        self.cache = cache
        self.ttl = ttl

    async def refresh(self) -> list[dict]:
        markets = [m.as_dict() for m in await self.aptos.fetch_all_markets()]
        await self.cache.set_json(CACHE_KEY, markets, ttl=self.ttl)
        return markets

    async def list_markets(self, force: bool = False) -> list[dict]:
        if not force:
            cached = await self.cache.get_json(CACHE_KEY)
            if isinstance(cached, list):
                return cached
        return await self.refresh()
