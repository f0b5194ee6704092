from __future__ import annotations

import calendar
import json
import logging
import re
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from predikto.core.errors import ExtractionError
from predikto.core.fmt import apt_to_octas

logger = logging.getLogger(__name__)

DEFAULT_BET_AMOUNT = 0.1

MARKET_PROMPT = """
Extract the prediction market information from this message: "{message}"

I need:
1. The prediction question (what are people betting on)
2. A brief description of the market
3. When this prediction should resolve (end date)

Format your response EXACTLY like this JSON, with no other text:
{{
  "question": "Will X happen by Y date?",
  "description": "Brief description here",
  "endTimestamp": 1234567890
}}

If no end date is specified, use 3 months from now.
"""

BET_PROMPT = """
Extract the bet placement information from this message: "{message}"

I need:
1. The bet amount in APT
2. Whether the user is betting on "yes" or "no"
3. Any market ID mentioned (if none, assume it's the latest market)

Format your response EXACTLY like this JSON, with no other text:
{{
  "betAmount": 0.5,
  "betOnYes": true,
  "marketId": "optional_market_id_if_mentioned"
}}

If no market ID is specified, leave it as an empty string.
If no bet amount is specified, default to 0.1 APT.
If no yes/no preference is specified, default to "yes".
"""

_FENCED_RE = re.compile(r"```(?:json)?\s*\n?(\{[\s\S]*?\})\s*\n?```", re.IGNORECASE)
_DIGITS_RE = re.compile(r"\d+")


class AgentStream(Protocol):
    def run(self, prompt: str, tools: list, thread_id: str) -> AsyncIterator[dict]: ...


@dataclass(frozen=True)
class MarketIntent:
    question: str
    description: str
    end_timestamp: int


@dataclass(frozen=True)
class BetIntent:
    market_id: str
    bet_amount: float
    bet_on_yes: bool

    @property
    def bet_amount_octas(self) -> int:
        return apt_to_octas(self.bet_amount)


def three_months_from(now: datetime) -> int:
    """Same day three calendar months later, clamped to the month's end."""
    month_index = now.month - 1 + 3
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return int(now.replace(year=year, month=month, day=day).timestamp())


def _first_object(text: str) -> str | None:
    """Return the first balanced top-level ``{...}`` block, honouring JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


def parse_json_object(raw_text: str) -> dict:
    text = (raw_text or "").strip()
    fenced = _FENCED_RE.search(text)
    candidate = fenced.group(1) if fenced else _first_object(text)
    if candidate is None:
        raise ExtractionError("no JSON found")
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"malformed JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("JSON payload is not an object")
    return payload


def first_agent_text(chunk: dict) -> tuple[str | None, bool]:
    """Pull assistant text out of one agent chunk.

    Returns ``(text, final)``; ``final`` is True when the text came from a typed
    content block and no further chunks should be consumed.
    """
    agent = chunk.get("agent") if isinstance(chunk, dict) else None
    if not isinstance(agent, dict):
        return None, False
    messages = agent.get("messages") or []
    if not messages:
        return None, False
    first = messages[0]
    content = first.get("content") if isinstance(first, dict) else getattr(first, "content", None)
    if isinstance(content, str):
        return (content or None), False
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                return block["text"], True
    return None, False


class _MarketPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    question: str = Field(min_length=1)
    description: str = ""
    end_timestamp: int | None = Field(default=None, alias="endTimestamp")

    @field_validator("question", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else ("" if value is None else value)

    @field_validator("end_timestamp", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Any:
        if not value:
            return None
        ts = int(float(value))
        # Milliseconds slip through from JS-minded models.
        return ts // 1000 if ts > 10**12 else ts


class _BetPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    bet_amount: float | None = Field(default=None, alias="betAmount")
    bet_on_yes: bool | None = Field(default=None, alias="betOnYes")
    market_id: str = Field(default="", alias="marketId")

    @field_validator("bet_amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.lower().replace("apt", "").strip()
        return value or None

    @field_validator("bet_amount")
    @classmethod
    def _positive(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("bet amount must be positive")
        return value

    @field_validator("bet_on_yes", mode="before")
    @classmethod
    def _side(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("yes", "y", "true", "for"):
                return True
            if lowered in ("no", "n", "false", "against"):
                return False
        return value

    @field_validator("market_id", mode="before")
    @classmethod
    def _market_id(cls, value: Any) -> str:
        if value is None or value is False:
            return ""
        match = _DIGITS_RE.search(str(value))
        return match.group(0) if match else ""


def market_intent_from(payload: dict, now: datetime | None = None) -> MarketIntent:
    try:
        data = _MarketPayload.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"invalid market details: {exc.errors()[0].get('msg')}") from exc
    end = data.end_timestamp or three_months_from(now or datetime.now(timezone.utc))
    return MarketIntent(question=data.question, description=data.description, end_timestamp=end)


def bet_intent_from(payload: dict) -> BetIntent:
    try:
        data = _BetPayload.model_validate(payload)
    except ValidationError as exc:
        raise ExtractionError(f"invalid bet details: {exc.errors()[0].get('msg')}") from exc
    return BetIntent(
        market_id=data.market_id,
        bet_amount=data.bet_amount or DEFAULT_BET_AMOUNT,
        bet_on_yes=True if data.bet_on_yes is None else data.bet_on_yes,
    )


class ParameterExtractor:
    def __init__(self, agent: AgentStream) -> None:
        self.agent = agent

    async def _ask(self, prompt: str, user_id: str) -> str:
        response = ""
        # Extraction runs tool-less on its own thread so it can never move funds.
        async with aclosing(self.agent.run(prompt, [], f"extract:{user_id}")) as stream:
            async for chunk in stream:
                text, final = first_agent_text(chunk)
                if text is not None:
                    response = text
                if final:
                    break
        logger.debug("extraction_response", extra={"event": "extraction_response", "user_id": user_id})
        return response

    async def extract_market(self, text: str, user_id: str) -> MarketIntent:
        raw = await self._ask(MARKET_PROMPT.format(message=text), user_id)
        return market_intent_from(parse_json_object(raw))

    async def extract_bet(self, text: str, user_id: str) -> BetIntent:
        raw = await self._ask(BET_PROMPT.format(message=text), user_id)
        return bet_intent_from(parse_json_object(raw))
