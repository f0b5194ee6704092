from __future__ import annotations

import re
from enum import Enum


class Intent(str, Enum):
    CONVERSATION = "conversation"
    MARKET_CREATION = "market_creation"
    BET_PLACEMENT = "bet_placement"


MARKET_KEYWORDS = (
    "bet",
    "wager",
    "prediction market",
    "create a market",
    "let's bet",
    "betting",
    "odds",
    "gamble",
    "predict",
    "predikto",
    "prediction",
    "make a bet",
    "create a wager",
    "place a bet",
)

BET_PHRASES = (
    "place my bet",
    "place bet",
    "bet on",
    "i bet",
    "i want to bet",
    "put money on",
    "wager on",
    "stake on",
    "i'll take",
    "going with",
    "putting down",
    "placing",
    "betting on",
    "i'm in for",
    "i'd like to bet",
    "let me bet",
)

AMOUNT_RE = re.compile(r"\d+(\.\d+)?\s*(apt|aptos|coins|tokens)", re.IGNORECASE)
POSITION_RE = re.compile(r"\b(yes|no|true|false|for|against)\b", re.IGNORECASE)


def is_prediction_market_request(text: str) -> bool:
    lower = (text or "").lower()
    return any(keyword in lower for keyword in MARKET_KEYWORDS)


def is_bet_placement_request(text: str) -> bool:
    """A bet phrase plus an amount, a side, or an explicit mention of a market."""
    lower = (text or "").lower()
    if not any(phrase in lower for phrase in BET_PHRASES):
        return False
    has_amount = AMOUNT_RE.search(lower) is not None
    has_position = POSITION_RE.search(lower) is not None
    return has_amount or has_position or "market" in lower


def classify(text: str) -> Intent:
    # Bet placement wins: most bet phrases also contain a market keyword.
    if is_bet_placement_request(text):
        return Intent.BET_PLACEMENT
    if is_prediction_market_request(text):
        return Intent.MARKET_CREATION
    return Intent.CONVERSATION
