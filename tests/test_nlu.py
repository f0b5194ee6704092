from __future__ import annotations

from predikto.core.nlu import Intent, classify, is_bet_placement_request, is_prediction_market_request


def test_market_keywords_are_case_insensitive() -> None:
    assert is_prediction_market_request("Let's make a WAGER on the election")
    assert is_prediction_market_request("what are the ODDS")
    assert not is_prediction_market_request("hello there")
    assert not is_prediction_market_request("")


def test_bet_phrase_needs_amount_side_or_market() -> None:
    assert is_bet_placement_request("place my bet of 0.5 APT")
    assert is_bet_placement_request("I bet yes")
    assert is_bet_placement_request("i want to bet on the latest market")
    assert not is_bet_placement_request("i bet")
    assert not is_bet_placement_request("0.5 APT on yes")


def test_side_requires_word_boundary() -> None:
    # "no" inside "know" is not a side.
    assert not is_bet_placement_request("i bet you know")


def test_classify_prefers_bet_placement() -> None:
    text = "let's bet on whether BTC hits 200k, I bet 0.5 APT on yes"
    assert is_prediction_market_request(text)
    assert classify(text) is Intent.BET_PLACEMENT


def test_classify_market_creation_and_conversation() -> None:
    assert classify("Let's bet on whether ETH flips BTC this year") is Intent.MARKET_CREATION
    assert classify("what's the weather like?") is Intent.CONVERSATION
