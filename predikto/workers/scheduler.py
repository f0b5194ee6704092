from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from predikto.core.container import ServiceHub

logger = logging.getLogger(__name__)


class WorkerScheduler:
    def __init__(self, hub: ServiceHub) -> None:
        self.hub = hub
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    async def _release_stale_requests(self) -> None:
        try:
            count = await self.hub.wallet_service.release_stale()
            if count:
                logger.warning("stale_requests_released", extra={"event": "stale_requests_released", "count": count})
        except Exception as exc:  # noqa: BLE001
            logger.exception("stale_sweep_failed", extra={"event": "stale_sweep_failed", "error": str(exc)})

    async def _refresh_markets_cache(self) -> None:
        try:
            markets = await self.hub.markets_service.refresh()
            logger.info("markets_cache_refreshed", extra={"event": "markets_cache_refreshed", "count": len(markets)})
        except Exception as exc:  # noqa: BLE001
            logger.warning("markets_cache_refresh_failed", extra={"event": "markets_cache_refresh_failed", "error": str(exc)})

    def start(self) -> None:
        self.scheduler.add_job(self._release_stale_requests, "interval", minutes=1, max_instances=1)
        self.scheduler.add_job(self._refresh_markets_cache, "interval", minutes=2, max_instances=1)
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
