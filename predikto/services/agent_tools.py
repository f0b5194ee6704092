from __future__ import annotations

import json
import logging

from aptos_sdk.account import Account

from predikto.adapters.aptos import AptosAdapter
from predikto.adapters.llm import AgentTool
from predikto.core.errors import BotError
from predikto.core.fmt import apt_to_octas

logger = logging.getLogger(__name__)

_CREATE_MARKET_SCHEMA = {
    "type": "object",
    "properties": {
        "question": {"type": "string", "description": "Yes/no question being predicted"},
        "description": {"type": "string", "description": "Short market description"},
        "endTimestamp": {"type": "integer", "description": "Resolution time, unix seconds"},
    },
    "required": ["question", "description", "endTimestamp"],
}

_PLACE_BET_SCHEMA = {
    "type": "object",
    "properties": {
        "marketId": {"type": "integer", "description": "Numeric market id"},
        "betAmount": {"type": "number", "description": "Stake in APT"},
        "betOnYes": {"type": "boolean", "description": "True to back YES, false for NO"},
    },
    "required": ["marketId", "betAmount", "betOnYes"],
}


def _ok(**payload) -> str:
    return json.dumps({"success": True, **payload})


def _fail(error: str) -> str:
    return json.dumps({"success": False, "error": error or "Unknown error occurred"})


def build_market_tools(aptos: AptosAdapter, signer: Account) -> list[AgentTool]:
    """Agent tools bound to one user's signer. Results are JSON strings."""

    async def create_prediction_market(args: dict) -> str:
        question = str(args.get("question") or "").strip()
        if not question:
            return _fail("question is required")
        try:
            tx_hash = await aptos.create_market(
                question, str(args.get("description") or ""), int(args.get("endTimestamp") or 0), signer
            )
        except (BotError, TypeError, ValueError) as exc:
            return _fail(str(exc))
        return _ok(
            transactionHash=tx_hash,
            message=f'Successfully created prediction market for: "{question}"',
        )

    async def place_bet(args: dict) -> str:
        try:
            market_id = int(args.get("marketId"))
            amount = float(args.get("betAmount") or 0)
            bet_on_yes = bool(args.get("betOnYes", True))
            if amount <= 0:
                return _fail("betAmount must be positive")
            tx_hash = await aptos.place_bet(market_id, apt_to_octas(amount), bet_on_yes, signer)
        except (BotError, TypeError, ValueError) as exc:
            return _fail(str(exc))
        side = "YES" if bet_on_yes else "NO"
        return _ok(
            transactionHash=tx_hash,
            message=f"Successfully placed bet of {amount} APT on {side} for market {market_id}",
        )

    async def list_prediction_markets(args: dict) -> str:
        try:
            markets = await aptos.fetch_all_markets()
        except BotError as exc:
            return _fail(str(exc))
        return _ok(markets=[m.as_dict() for m in markets])

    return [
        AgentTool(
            name="create_prediction_market",
            description="Create a prediction market on Aptos blockchain",
            parameters=_CREATE_MARKET_SCHEMA,
            handler=create_prediction_market,
        ),
        AgentTool(
            name="place_bet",
            description="Place a bet on a prediction market on Aptos blockchain",
            parameters=_PLACE_BET_SCHEMA,
            handler=place_bet,
        ),
        AgentTool(
            name="list_prediction_markets",
            description="List all prediction markets with their pools",
            parameters={"type": "object", "properties": {}},
            handler=list_prediction_markets,
        ),
    ]
