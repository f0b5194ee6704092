from __future__ import annotations

import asyncio

import pytest
from aptos_sdk.account import Account

from predikto.adapters.aptos import AptosAdapter, Market
from predikto.bot import templates
from predikto.core.errors import BotError, MarketNotFoundError, SubmissionError
from predikto.services.extraction import BetIntent, MarketIntent, ParameterExtractor
from predikto.services.orchestrator import Outcome, RequestOrchestrator
from predikto.services.wallets import WalletHandle

BTC_TEXT = "let's bet on whether BTC hits 200k, I bet 0.5 APT on yes"


def _text_chunk(text: str) -> dict:
    return {"agent": {"messages": [{"content": [{"type": "text", "text": text}]}]}}


class DummyWallets:
    def __init__(self) -> None:
        self.account = Account.generate()
        self.busy: set[str] = set()
        self.imports: list[tuple[str, str]] = []
        self.created = False

    async def get_or_create_wallet(self, user_id: str) -> WalletHandle:
        return WalletHandle(account=self.account, in_progress=user_id in self.busy, created=self.created)

    async def fund_wallet(self, user_id: str, account: Account) -> str:
        return "0xfund"

    async def import_wallet(self, user_id: str, private_key_hex: str) -> Account:
        self.imports.append((user_id, private_key_hex))
        return AptosAdapter.account_from_private_key(private_key_hex)

    async def try_acquire(self, user_id: str) -> bool:
        if user_id in self.busy:
            return False
        self.busy.add(user_id)
        return True

    async def release(self, user_id: str) -> None:
        self.busy.discard(user_id)


class DummyChain:
    def __init__(self, markets: list[Market] | None = None, fail: Exception | None = None) -> None:
        self.markets = markets if markets is not None else [Market(id=1, question="Old"), Market(id=3, question="Will BTC hit 200k?")]
        self.fail = fail
        self.bets: list[tuple[int, int, bool]] = []
        self.created: list[tuple[str, str, int]] = []

    async def latest_market(self) -> Market:
        if not self.markets:
            raise MarketNotFoundError("No prediction markets found")
        return max(self.markets, key=lambda m: m.id)

    async def place_bet(self, market_id: int, amount_octas: int, bet_on_yes: bool, signer: Account) -> str:
        if self.fail:
            raise self.fail
        self.bets.append((market_id, amount_octas, bet_on_yes))
        return "0xbet"

    async def create_market(self, question: str, description: str, end_timestamp: int, signer: Account) -> str:
        if self.fail:
            raise self.fail
        self.created.append((question, description, end_timestamp))
        return "0xmarket"

    def explorer_url(self, tx_hash: str) -> str:
        return f"https://explorer.test/{tx_hash}"


class DummyAgent:
    def __init__(self, text: str = "", delay: float = 0.0) -> None:
        self.text = text
        self.delay = delay

    async def run(self, prompt: str, tools: list, thread_id: str):
        if self.delay:
            await asyncio.sleep(self.delay)
        yield _text_chunk(self.text)


class DummyExtractor:
    def __init__(self, bet: BetIntent | None = None, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.bet = bet or BetIntent(market_id="", bet_amount=0.1, bet_on_yes=True)
        self.error = error
        self.gate = gate
        self.entered = asyncio.Event()
        self.calls = 0

    async def extract_bet(self, text: str, user_id: str) -> BetIntent:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.bet

    async def extract_market(self, text: str, user_id: str) -> MarketIntent:
        self.calls += 1
        if self.error:
            raise self.error
        return MarketIntent(question="Will it rain?", description="", end_timestamp=1767225600)


class DummyPending:
    def __init__(self) -> None:
        self.users: set[str] = set()

    async def begin(self, user_id: str) -> None:
        self.users.add(user_id)

    async def is_pending(self, user_id: str) -> bool:
        return user_id in self.users

    async def clear(self, user_id: str) -> None:
        self.users.discard(user_id)


def _orchestrator(wallets=None, extractor=None, chain=None, agent=None, **kwargs) -> RequestOrchestrator:
    return RequestOrchestrator(
        wallets=wallets or DummyWallets(),
        extractor=extractor or DummyExtractor(),
        chain=chain or DummyChain(),
        agent=agent or DummyAgent(),
        pending_imports=kwargs.pop("pending", None) or DummyPending(),
        tools_factory=lambda chain, account: [],
        **kwargs,
    )


class Replies:
    def __init__(self) -> None:
        self.sent: list[str] = []

    async def __call__(self, text: str) -> None:
        self.sent.append(text)


@pytest.mark.asyncio
async def test_btc_scenario_bets_on_latest_market() -> None:
    chain = DummyChain()
    agent = DummyAgent('{"betAmount": 0.5, "betOnYes": true, "marketId": ""}')
    wallets = DummyWallets()
    orch = _orchestrator(wallets=wallets, extractor=ParameterExtractor(agent), chain=chain, agent=agent)
    replies = Replies()

    outcome = await orch.handle_message("u1", BTC_TEXT, replies)

    assert outcome is Outcome.COMPLETED
    assert chain.bets == [(3, 50_000_000, True)]
    assert replies.sent[0] == templates.BET_DETECTED
    assert any("https://explorer.test/0xbet" in text for text in replies.sent)
    assert "u1" not in wallets.busy


@pytest.mark.asyncio
async def test_no_markets_means_no_submission() -> None:
    chain = DummyChain(markets=[])
    orch = _orchestrator(chain=chain)
    replies = Replies()

    outcome = await orch.handle_message("u1", BTC_TEXT, replies)

    assert outcome is Outcome.NOT_FOUND
    assert chain.bets == []
    assert replies.sent[-1] == templates.NO_MARKETS


@pytest.mark.asyncio
async def test_second_request_is_refused_while_first_runs() -> None:
    gate = asyncio.Event()
    extractor = DummyExtractor(gate=gate)
    wallets = DummyWallets()
    orch = _orchestrator(wallets=wallets, extractor=extractor)
    first_replies, second_replies = Replies(), Replies()

    first = asyncio.create_task(orch.handle_message("u1", BTC_TEXT, first_replies))
    await asyncio.wait_for(extractor.entered.wait(), timeout=1)
    second = await orch.handle_message("u1", BTC_TEXT, second_replies)

    assert second is Outcome.BUSY
    assert second_replies.sent == [templates.BUSY_REQUEST]
    assert extractor.calls == 1

    gate.set()
    assert await first is Outcome.COMPLETED
    assert "u1" not in wallets.busy


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "extractor_error, chain_error",
    [
        (RuntimeError("extractor exploded"), None),
        (None, SubmissionError("Move abort")),
        (None, RuntimeError("network down")),
    ],
)
async def test_busy_flag_released_after_failures(extractor_error, chain_error) -> None:
    wallets = DummyWallets()
    orch = _orchestrator(
        wallets=wallets,
        extractor=DummyExtractor(bet=BetIntent(market_id="2", bet_amount=1.0, bet_on_yes=False), error=extractor_error),
        chain=DummyChain(fail=chain_error),
    )

    outcome = await orch.handle_message("u1", BTC_TEXT, Replies())

    assert outcome is Outcome.FAILED
    assert "u1" not in wallets.busy


@pytest.mark.asyncio
async def test_market_creation_flow() -> None:
    chain = DummyChain()
    wallets = DummyWallets()
    orch = _orchestrator(wallets=wallets, chain=chain)
    replies = Replies()

    outcome = await orch.handle_message("u1", "Let's bet on whether it rains tomorrow", replies)

    assert outcome is Outcome.COMPLETED
    assert chain.created == [("Will it rain?", "", 1767225600)]
    assert replies.sent[0] == templates.MARKET_DETECTED
    assert "u1" not in wallets.busy


@pytest.mark.asyncio
async def test_invalid_import_key_reprompts_without_writing() -> None:
    wallets = DummyWallets()
    pending = DummyPending()
    orch = _orchestrator(wallets=wallets, pending=pending)
    replies = Replies()

    await orch.begin_import("u1", replies)
    outcome = await orch.handle_message("u1", "not-hex", replies)

    assert outcome is Outcome.REJECTED
    assert replies.sent[-1] == templates.IMPORT_INVALID
    assert wallets.imports == []
    assert await pending.is_pending("u1")


@pytest.mark.asyncio
async def test_valid_import_clears_pending_state() -> None:
    wallets = DummyWallets()
    pending = DummyPending()
    orch = _orchestrator(wallets=wallets, pending=pending)
    key = "ab" * 32

    await orch.begin_import("u1", Replies())
    outcome = await orch.handle_message("u1", f"  {key}\n", Replies())

    assert outcome is Outcome.IMPORTED
    assert wallets.imports == [("u1", key)]
    assert not await pending.is_pending("u1")


@pytest.mark.asyncio
async def test_chat_timeout_releases_flag() -> None:
    wallets = DummyWallets()
    orch = _orchestrator(wallets=wallets, agent=DummyAgent("late", delay=5), chat_timeout=0.05)
    replies = Replies()

    outcome = await orch.handle_message("u1", "hello there", replies)

    assert outcome is Outcome.TIMEOUT
    assert replies.sent == [templates.CHAT_TIMEOUT]
    assert "u1" not in wallets.busy


@pytest.mark.asyncio
async def test_chat_answer_sent_only_when_enabled() -> None:
    silent, loud = Replies(), Replies()

    await _orchestrator(agent=DummyAgent("hi <friend>"), chat_replies_enabled=False).handle_message("u1", "hello there", silent)
    await _orchestrator(agent=DummyAgent("hi <friend>")).handle_message("u1", "hello there", loud)

    assert silent.sent == []
    assert loud.sent == ["hi &lt;friend&gt;"]


@pytest.mark.asyncio
async def test_new_wallet_gets_welcome_and_funding() -> None:
    wallets = DummyWallets()
    wallets.created = True
    replies = Replies()

    await _orchestrator(wallets=wallets).handle_message("u1", "hello there", replies)

    assert replies.sent[0] == templates.ACCOUNT_CREATED
    assert templates.WALLET_SETUP_OK in replies.sent


class FailingFundingWallets(DummyWallets):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.created = True
        self.error = error

    async def fund_wallet(self, user_id: str, account: Account) -> str:
        raise self.error


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        SubmissionError("Funder private key not configured"),
        BotError("funder out of gas"),
        ValueError("non-hexadecimal number found in fromhex()"),
        RuntimeError("database is locked"),
    ],
)
async def test_funding_failure_does_not_drop_first_request(error) -> None:
    chain = DummyChain()
    agent = DummyAgent('{"betAmount": 0.5, "betOnYes": true, "marketId": ""}')
    wallets = FailingFundingWallets(error)
    orch = _orchestrator(wallets=wallets, extractor=ParameterExtractor(agent), chain=chain, agent=agent)
    replies = Replies()

    outcome = await orch.handle_message("u1", BTC_TEXT, replies)

    assert outcome is Outcome.COMPLETED
    assert templates.WALLET_SETUP_FAILED in replies.sent
    assert templates.WALLET_SETUP_OK not in replies.sent
    assert chain.bets == [(3, 50_000_000, True)]
    assert "u1" not in wallets.busy
