from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal

OCTAS_PER_APT = 100_000_000


def safe_html(text: str) -> str:
    """Escape special HTML characters so dynamic content is safe in HTML parse_mode."""
    return str(text).replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def fmt_apt(amount: float | Decimal) -> str:
    """0.5 -> '0.5 APT', 2.0 -> '2 APT'."""
    text = f"{Decimal(str(amount)).normalize():f}"
    return f"{text} APT"


def octas_to_apt(octas: int) -> Decimal:
    return Decimal(int(octas)) / OCTAS_PER_APT


def apt_to_octas(amount: float | Decimal) -> int:
    """Floor conversion to the chain's minor unit, exact for decimal inputs."""
    return int((Decimal(str(amount)) * OCTAS_PER_APT).to_integral_value(rounding=ROUND_FLOOR))


def fmt_timestamp(ts: int) -> str:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def short_address(address: str) -> str:
    text = str(address)
    if len(text) <= 14:
        return text
    return f"{text[:8]}…{text[-4:]}"


def explorer_url(tx_hash: str, network: str = "testnet") -> str:
    return f"https://explorer.aptoslabs.com/txn/{tx_hash}/changes?network={network}"
