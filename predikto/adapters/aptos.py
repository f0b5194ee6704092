from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import orjson
from aptos_sdk import ed25519
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import RestClient
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import EntryFunction, TransactionArgument, TransactionPayload

from predikto.core.errors import MarketNotFoundError, SubmissionError, UpstreamError
from predikto.core.fmt import explorer_url

logger = logging.getLogger(__name__)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Market:
    id: int
    question: str
    description: str = ""
    end_time: int = 0
    status: int = 0
    outcome: int = 0
    total_yes_amount: int = 0
    total_no_amount: int = 0

    @classmethod
    def from_view(cls, row: dict) -> "Market":
        # u64 values come back from the view API as strings.
        return cls(
            id=_as_int(row.get("id")),
            question=str(row.get("question") or ""),
            description=str(row.get("description") or ""),
            end_time=_as_int(row.get("end_time")),
            status=_as_int(row.get("status")),
            outcome=_as_int(row.get("outcome")),
            total_yes_amount=_as_int(row.get("total_yes_amount")),
            total_no_amount=_as_int(row.get("total_no_amount")),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "question": self.question,
            "description": self.description,
            "end_time": self.end_time,
            "status": self.status,
            "outcome": self.outcome,
            "total_yes_amount": self.total_yes_amount,
            "total_no_amount": self.total_no_amount,
        }


class AptosAdapter:
    """Builds, signs and submits prediction-market transactions."""

    def __init__(
        self,
        node_url: str,
        module_address: str,
        module_name: str = "prediction_market",
        network: str = "testnet",
        poll_interval: float = 0.1,
        hash_timeout: float = 10.0,
        client: RestClient | None = None,
    ) -> None:
        self.client = client or RestClient(node_url)
        self.module_address = module_address
        self.module_name = module_name
        self.network = network
        self.poll_interval = poll_interval
        self.hash_timeout = hash_timeout

    async def close(self) -> None:
        await self.client.close()

    @property
    def module_id(self) -> str:
        return f"{self.module_address}::{self.module_name}"

    def function_id(self, function: str) -> str:
        return f"{self.module_id}::{function}"

    def explorer_url(self, tx_hash: str) -> str:
        return explorer_url(tx_hash, self.network)

    @staticmethod
    def generate_account() -> Account:
        return Account.generate()

    @staticmethod
    def account_from_private_key(private_key_hex: str) -> Account:
        # Keys are kept as bare hex, not in the AIP-80 prefixed form.
        private_key = ed25519.PrivateKey.from_str(private_key_hex, strict=False)
        return Account(AccountAddress.from_key(private_key.public_key()), private_key)

    async def submit(self, function: str, args: list[TransactionArgument], signer: Account) -> str:
        return await self._submit_entry(self.module_id, function, args, signer)

    async def _submit_entry(
        self, module: str, function: str, args: list[TransactionArgument], signer: Account
    ) -> str:
        started = time.monotonic()
        try:
            payload = TransactionPayload(EntryFunction.natural(module, function, [], args))
            signed = await self.client.create_bcs_signed_transaction(signer, payload)
            tx_hash = await self.client.submit_bcs_transaction(signed)
            if not tx_hash:
                raise SubmissionError("Node returned no transaction hash")
            await self._await_commit(tx_hash)
        except SubmissionError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "tx_submit_failed",
                extra={"event": "tx_submit_failed", "error": str(exc) or exc.__class__.__name__},
            )
            raise SubmissionError(str(exc) or exc.__class__.__name__) from exc

        logger.info(
            "tx_submitted",
            extra={
                "event": "tx_submitted",
                "tx_hash": tx_hash,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return tx_hash

    async def _await_commit(self, tx_hash: str) -> None:
        deadline = time.monotonic() + self.hash_timeout
        while await self.client.transaction_pending(tx_hash):
            if time.monotonic() >= deadline:
                raise SubmissionError(f"Timed out waiting for transaction {tx_hash}")
            await asyncio.sleep(self.poll_interval)
        txn = await self.client.transaction_by_hash(tx_hash)
        if isinstance(txn, dict) and txn.get("success") is False:
            raise SubmissionError(str(txn.get("vm_status") or "Transaction failed on chain"))

    async def create_market(self, question: str, description: str, end_timestamp: int, signer: Account) -> str:
        args = [
            TransactionArgument(question, Serializer.str),
            TransactionArgument(description, Serializer.str),
            TransactionArgument(int(end_timestamp), Serializer.u64),
        ]
        return await self.submit("create_market", args, signer)

    async def place_bet(self, market_id: int, amount_octas: int, bet_on_yes: bool, signer: Account) -> str:
        args = [
            TransactionArgument(int(market_id), Serializer.u64),
            TransactionArgument(int(amount_octas), Serializer.u64),
            TransactionArgument(bool(bet_on_yes), Serializer.bool),
        ]
        return await self.submit("place_bet", args, signer)

    async def transfer(self, sender: Account, recipient: str, amount_octas: int) -> str:
        args = [
            TransactionArgument(AccountAddress.from_str(str(recipient)), Serializer.struct),
            TransactionArgument(int(amount_octas), Serializer.u64),
        ]
        return await self._submit_entry("0x1::aptos_account", "transfer", args, sender)

    async def fetch_all_markets(self) -> list[Market]:
        try:
            raw = await self.client.view(self.function_id("get_all_markets_data"), [], [])
        except Exception as exc:  # noqa: BLE001
            raise UpstreamError(f"Failed to fetch markets: {exc}") from exc

        data = orjson.loads(raw) if isinstance(raw, (bytes, bytearray, str)) else raw
        if not isinstance(data, list):
            raise UpstreamError("Unexpected market view response")
        # The view returns its values as a list; the first one is the market vector.
        rows = data[0] if data and isinstance(data[0], list) else data
        return [Market.from_view(row) for row in rows or [] if isinstance(row, dict) and "id" in row]

    async def latest_market(self) -> Market:
        markets = await self.fetch_all_markets()
        if not markets:
            raise MarketNotFoundError("No prediction markets found")
        return max(markets, key=lambda m: m.id)
