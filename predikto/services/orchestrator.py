from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from aptos_sdk.account import Account

from predikto.adapters.aptos import AptosAdapter
from predikto.adapters.llm import AgentTool
from predikto.bot import templates
from predikto.core.errors import (
    ExtractionError,
    MarketNotFoundError,
    SubmissionError,
    ValidationError,
)
from predikto.core.fmt import safe_html
from predikto.core.nlu import Intent, classify
from predikto.services.agent_tools import build_market_tools
from predikto.services.extraction import ParameterExtractor, first_agent_text
from predikto.services.request_state import PendingImports
from predikto.services.wallets import WalletService, validate_private_key

logger = logging.getLogger(__name__)

Reply = Callable[[str], Awaitable[Any]]


class Outcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    IMPORTED = "imported"
    REJECTED = "rejected"


class RequestOrchestrator:
    """Runs one chat request per user from classification to on-chain result.

    Every request that takes the busy flag releases it on the way out, whether
    it succeeded, failed, or raised.
    """

    def __init__(
        self,
        wallets: WalletService,
        extractor: ParameterExtractor,
        chain: AptosAdapter,
        agent,
        pending_imports: PendingImports,
        chat_timeout: float = 20.0,
        chat_replies_enabled: bool = True,
        tools_factory: Callable[[AptosAdapter, Account], list[AgentTool]] = build_market_tools,
    ) -> None:
        self.wallets = wallets
        self.extractor = extractor
        self.chain = chain
        self.agent = agent
        self.pending_imports = pending_imports
        self.chat_timeout = chat_timeout
        self.chat_replies_enabled = chat_replies_enabled
        self.tools_factory = tools_factory

    @asynccontextmanager
    async def _busy(self, user_id: str) -> AsyncIterator[bool]:
        if not await self.wallets.try_acquire(user_id):
            yield False
            return
        try:
            yield True
        finally:
            await self.wallets.release(user_id)

    async def handle_message(self, user_id: str, text: str, reply: Reply) -> Outcome:
        if await self.pending_imports.is_pending(user_id):
            return await self.handle_import(user_id, text, reply)

        wallet = await self.wallets.get_or_create_wallet(user_id)
        if wallet.created:
            await self._welcome_new_wallet(user_id, wallet.account, reply)

        intent = classify(text)
        logger.info("message_classified", extra={"event": "message_classified", "user_id": user_id, "intent": intent.value})
        if intent is Intent.BET_PLACEMENT:
            return await self.place_bet_request(user_id, text, wallet.account, reply)
        if intent is Intent.MARKET_CREATION:
            return await self.create_market_request(user_id, text, wallet.account, reply)
        return await self.converse(user_id, text, wallet.account, reply)

    async def _welcome_new_wallet(self, user_id: str, account: Account, reply: Reply) -> None:
        await reply(templates.ACCOUNT_CREATED)
        await reply(f"<code>{account.address()}</code>")
        await reply(templates.ACCOUNT_NEXT_STEPS)
        await reply(templates.WALLET_SETUP)
        try:
            await self.wallets.fund_wallet(user_id, account)
        except Exception as exc:  # noqa: BLE001
            logger.exception("wallet_funding_failed", extra={"event": "wallet_funding_failed", "user_id": user_id, "error": str(exc)})
            await reply(templates.WALLET_SETUP_FAILED)
            return
        await reply(templates.WALLET_SETUP_OK)

    async def begin_import(self, user_id: str, reply: Reply) -> None:
        await self.pending_imports.begin(user_id)
        await reply(templates.IMPORT_PROMPT)

    async def handle_import(self, user_id: str, text: str, reply: Reply) -> Outcome:
        key = validate_private_key(text)
        if key is None:
            await reply(templates.IMPORT_INVALID)
            return Outcome.REJECTED
        try:
            account = await self.wallets.import_wallet(user_id, key)
        except (ValidationError, ValueError) as exc:
            logger.warning("wallet_import_failed", extra={"event": "wallet_import_failed", "user_id": user_id, "error": str(exc)})
            await reply(templates.IMPORT_FAILED)
            return Outcome.FAILED
        await self.pending_imports.clear(user_id)
        await reply(templates.IMPORT_DONE)
        await reply(f"<code>{account.address()}</code>")
        await reply(templates.IMPORT_READY)
        return Outcome.IMPORTED

    async def place_bet_request(self, user_id: str, text: str, account: Account, reply: Reply) -> Outcome:
        async with self._busy(user_id) as acquired:
            if not acquired:
                await reply(templates.BUSY_REQUEST)
                return Outcome.BUSY
            try:
                return await self._place_bet(user_id, text, account, reply)
            except Exception as exc:  # noqa: BLE001
                logger.exception("bet_flow_failed", extra={"event": "bet_flow_failed", "user_id": user_id, "error": str(exc)})
                await reply(templates.REQUEST_ERROR)
                return Outcome.FAILED

    async def _place_bet(self, user_id: str, text: str, account: Account, reply: Reply) -> Outcome:
        await reply(templates.BET_DETECTED)
        try:
            bet = await self.extractor.extract_bet(text, user_id)
        except ExtractionError as exc:
            logger.warning("bet_extraction_failed", extra={"event": "bet_extraction_failed", "user_id": user_id, "error": str(exc)})
            await reply(templates.EXTRACTION_FAILED)
            return Outcome.FAILED

        if not bet.market_id:
            try:
                market = await self.chain.latest_market()
            except MarketNotFoundError:
                await reply(templates.NO_MARKETS)
                return Outcome.NOT_FOUND
            bet = replace(bet, market_id=str(market.id))
            await reply(templates.latest_market_template(market.question))

        await reply(templates.bet_confirmation_template(bet.bet_amount, bet.bet_on_yes, bet.market_id))
        started = time.monotonic()
        try:
            tx_hash = await self.chain.place_bet(int(bet.market_id), bet.bet_amount_octas, bet.bet_on_yes, account)
        except SubmissionError as exc:
            await reply(templates.bet_failed_template(str(exc)))
            return Outcome.FAILED

        logger.info(
            "bet_placed",
            extra={
                "event": "bet_placed",
                "user_id": user_id,
                "market_id": bet.market_id,
                "tx_hash": tx_hash,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        await reply(
            templates.bet_success_template(
                bet.bet_amount,
                bet.bet_on_yes,
                bet.market_id,
                str(account.address()),
                self.chain.explorer_url(tx_hash),
            )
        )
        return Outcome.COMPLETED

    async def create_market_request(self, user_id: str, text: str, account: Account, reply: Reply) -> Outcome:
        async with self._busy(user_id) as acquired:
            if not acquired:
                await reply(templates.BUSY_REQUEST)
                return Outcome.BUSY
            try:
                return await self._create_market(user_id, text, account, reply)
            except Exception as exc:  # noqa: BLE001
                logger.exception("market_flow_failed", extra={"event": "market_flow_failed", "user_id": user_id, "error": str(exc)})
                await reply(templates.REQUEST_ERROR)
                return Outcome.FAILED

    async def _create_market(self, user_id: str, text: str, account: Account, reply: Reply) -> Outcome:
        await reply(templates.MARKET_DETECTED)
        try:
            market = await self.extractor.extract_market(text, user_id)
        except ExtractionError as exc:
            logger.warning("market_extraction_failed", extra={"event": "market_extraction_failed", "user_id": user_id, "error": str(exc)})
            await reply(templates.EXTRACTION_FAILED)
            return Outcome.FAILED

        await reply(templates.market_confirmation_template(market.question, market.description, market.end_timestamp))
        try:
            tx_hash = await self.chain.create_market(market.question, market.description, market.end_timestamp, account)
        except SubmissionError as exc:
            await reply(templates.market_failed_template(str(exc)))
            return Outcome.FAILED

        logger.info("market_created", extra={"event": "market_created", "user_id": user_id, "tx_hash": tx_hash})
        await reply(
            templates.market_success_template(
                market.question,
                str(account.address()),
                market.end_timestamp,
                self.chain.explorer_url(tx_hash),
            )
        )
        return Outcome.COMPLETED

    async def _drain_agent(self, user_id: str, text: str, account: Account) -> str:
        answer = ""
        tools = self.tools_factory(self.chain, account)
        async for chunk in self.agent.run(text, tools, user_id):
            content, _ = first_agent_text(chunk)
            if content:
                answer = content
        return answer

    async def converse(self, user_id: str, text: str, account: Account, reply: Reply) -> Outcome:
        async with self._busy(user_id) as acquired:
            if not acquired:
                await reply(templates.BUSY_CHAT)
                return Outcome.BUSY
            try:
                answer = await asyncio.wait_for(self._drain_agent(user_id, text, account), timeout=self.chat_timeout)
            except asyncio.TimeoutError:
                logger.warning("chat_timeout", extra={"event": "chat_timeout", "user_id": user_id})
                await reply(templates.CHAT_TIMEOUT)
                return Outcome.TIMEOUT
            except Exception as exc:  # noqa: BLE001
                logger.exception("chat_failed", extra={"event": "chat_failed", "user_id": user_id, "error": str(exc)})
                await reply(templates.CHAT_ERROR)
                return Outcome.FAILED
            if self.chat_replies_enabled and answer:
                await reply(safe_html(answer))
            return Outcome.COMPLETED
