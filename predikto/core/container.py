from __future__ import annotations

from dataclasses import dataclass

from aiogram import Bot
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncEngine

from predikto.adapters.aptos import AptosAdapter
from predikto.adapters.llm import AgentRuntime
from predikto.core.cache import RedisCache
from predikto.core.config import Settings
from predikto.db.session import build_engine, build_session_factory
from predikto.services.extraction import ParameterExtractor
from predikto.services.markets import MarketsService
from predikto.services.orchestrator import RequestOrchestrator
from predikto.services.request_state import PendingImports
from predikto.services.wallets import WalletService


@dataclass
class ServiceHub:
    bot: Bot
    settings: Settings
    engine: AsyncEngine
    cache: RedisCache
    aptos: AptosAdapter
    agent: AgentRuntime
    wallet_service: WalletService
    markets_service: MarketsService
    pending_imports: PendingImports
    orchestrator: RequestOrchestrator

    async def close(self) -> None:
        await self.aptos.close()
        await self.cache.close()
        await self.engine.dispose()


def build_hub(bot: Bot, settings: Settings) -> ServiceHub:
    engine = build_engine(settings)
    db_factory = build_session_factory(engine)
    cache = RedisCache(settings.redis_url)
    aptos = AptosAdapter(
        node_url=settings.aptos_node_url,
        module_address=settings.market_module_address,
        module_name=settings.market_module_name,
        network=settings.aptos_network,
        poll_interval=settings.tx_poll_interval_sec,
        hash_timeout=settings.tx_hash_timeout_sec,
    )
    agent = AgentRuntime(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        max_steps=settings.agent_max_steps,
        history_limit=settings.agent_history_limit,
        cache=cache,
    )
    wallet_service = WalletService(
        db_factory,
        aptos,
        Fernet(settings.wallet_encryption_key.encode("utf-8")),
        funder_private_key=settings.funder_private_key,
        funding_amount_octas=settings.funding_amount_octas,
        busy_stale_after=settings.busy_stale_after_sec,
    )
    pending_imports = PendingImports(cache, ttl=settings.import_key_ttl_sec)
    orchestrator = RequestOrchestrator(
        wallets=wallet_service,
        extractor=ParameterExtractor(agent),
        chain=aptos,
        agent=agent,
        pending_imports=pending_imports,
        chat_timeout=settings.chat_timeout_sec,
        chat_replies_enabled=settings.chat_replies_enabled,
    )
    return ServiceHub(
        bot=bot,
        settings=settings,
        engine=engine,
        cache=cache,
        aptos=aptos,
        agent=agent,
        wallet_service=wallet_service,
        markets_service=MarketsService(aptos, cache, ttl=settings.markets_cache_ttl_sec),
        pending_imports=pending_imports,
        orchestrator=orchestrator,
    )
