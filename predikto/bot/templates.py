from __future__ import annotations

from predikto.core.fmt import fmt_apt, fmt_timestamp, octas_to_apt, safe_html, short_address

# ---------------------------------------------------------------------------
# Fixed replies
# ---------------------------------------------------------------------------

BUSY_REQUEST = "Hold on! I'm still processing your previous request..."
BUSY_CHAT = "Hold on! I'm still processing..."
BET_DETECTED = "I detected a bet placement request! Processing..."
MARKET_DETECTED = "I detected a prediction market request! Processing..."
EXTRACTION_FAILED = (
    "Sorry, I couldn't understand the details of your request. "
    "Please try again with more details."
)
NO_MARKETS = "No prediction markets found. Please create one first."
REQUEST_ERROR = (
    "Sorry, I encountered an error while processing your request. "
    "Please try again with more details."
)
CHAT_TIMEOUT = "I'm sorry, the operation took too long and timed out. Please try again."
CHAT_ERROR = "I'm sorry, an error occurred while processing your request."

IMPORT_PROMPT = "Please send your private key in hex format (64 characters)."
IMPORT_INVALID = "Invalid private key format. Please try again with a valid 64-character hex private key."
IMPORT_FAILED = "Error importing account. Please check your private key and try again."
IMPORT_DONE = "Account successfully imported! Your wallet address is:"
IMPORT_READY = "Your account is ready! You can now start using the bot to create prediction markets."

ACCOUNT_CREATED = "Your new account has been created! Here's your wallet address:"
ACCOUNT_NEXT_STEPS = (
    "You can now start using the bot. Mention betting or prediction-related keywords "
    "in your messages to create prediction markets!"
)
WALLET_SETUP = "Setting up your wallet..."
WALLET_SETUP_OK = "Wallet setup successful! ✅"
WALLET_SETUP_FAILED = "There was an error setting up your wallet. Please contact support."

WELCOME_NEW = "Welcome! Would you like to create a new account or import an existing one?"
WELCOME_BACK = (
    "Welcome back! You can use this bot to create prediction markets. "
    "Just mention betting or prediction-related keywords in your messages."
)
NO_WALLET = "You don't have a wallet yet. Send /start to create or import one."


def help_text() -> str:
    return (
        "🎲 <b>Prediction Market Bot</b> 🎲\n\n"
        "This bot helps you create prediction markets on Aptos blockchain.\n\n"
        "<b>Commands:</b>\n"
        "/start - Start the bot and create your account\n"
        "/wallet - Show your wallet address\n"
        "/markets - List open prediction markets\n"
        "/help - Show this help message\n\n"
        "<b>Creating Markets:</b>\n"
        "Mention keywords like \"bet\", \"wager\", \"prediction\" along with what you want to bet on.\n"
        "Example: <code>Let's bet on whether BTC will reach $200k by the end of the year</code>\n\n"
        "<b>Placing Bets:</b>\n"
        "Say something like <code>place my bet of 0.5 APT on yes</code>\n\n"
        "The bot will detect your intent and help you create a prediction market or place a bet."
    )


def wallet_template(address: str) -> str:
    return f"Your wallet address:\n<code>{safe_html(address)}</code>"


def latest_market_template(question: str) -> str:
    return f'Using the latest prediction market: "{safe_html(question)}"'


def bet_confirmation_template(amount: float, bet_on_yes: bool, market_id: str) -> str:
    return (
        "💰 <b>Placing Bet</b>\n"
        f"Amount: {fmt_apt(amount)}\n"
        f"Position: {'YES' if bet_on_yes else 'NO'}\n"
        f"Market ID: {safe_html(market_id)}\n\n"
        "Processing your bet on Aptos blockchain..."
    )


def bet_success_template(amount: float, bet_on_yes: bool, market_id: str, bettor: str, url: str) -> str:
    return (
        "🎯 <b>Bet Placed Successfully!</b>\n"
        f"Amount: {fmt_apt(amount)} on {'YES' if bet_on_yes else 'NO'}\n"
        f"Market ID: {safe_html(market_id)}\n"
        f"Bettor: <code>{safe_html(short_address(bettor))}</code>\n\n"
        "Transaction Information:\n"
        f"{safe_html(url)}"
    )


def market_confirmation_template(question: str, description: str, end_timestamp: int) -> str:
    lines = ["📝 <b>Creating Prediction Market</b>", f"Question: {safe_html(question)}"]
    if description:
        lines.append(f"Description: {safe_html(description)}")
    lines.append(f"Expiration: {fmt_timestamp(end_timestamp)}")
    lines.append("")
    lines.append("Submitting your market to Aptos blockchain...")
    return "\n".join(lines)


def market_success_template(question: str, creator: str, end_timestamp: int, url: str) -> str:
    return (
        "🎉 <b>Prediction Market Created Successfully!</b>\n"
        f"Question: {safe_html(question)}\n"
        f"Creator: <code>{safe_html(creator)}</code>\n"
        f"Expiration: {fmt_timestamp(end_timestamp)}\n\n"
        "Transaction Information:\n"
        f"{safe_html(url)}\n\n"
        "Place your bets now!"
    )


def bet_failed_template(error: str) -> str:
    return f"Failed to place bet: {safe_html(error)}"


def market_failed_template(error: str) -> str:
    return f"Failed to create prediction market: {safe_html(error)}"


def markets_template(markets: list[dict], limit: int = 10) -> str:
    if not markets:
        return NO_MARKETS
    rows = sorted(markets, key=lambda m: int(m.get("id", 0)), reverse=True)[:limit]
    lines = ["📊 <b>Prediction Markets</b>", ""]
    for m in rows:
        yes = octas_to_apt(int(m.get("total_yes_amount", 0)))
        no = octas_to_apt(int(m.get("total_no_amount", 0)))
        pool = yes + no
        yes_pct = int(yes / pool * 100) if pool else 50
        lines.append(f"<b>#{m.get('id')}</b> {safe_html(m.get('question', ''))}")
        lines.append(
            f"YES {yes_pct}% · NO {100 - yes_pct}% · pool {fmt_apt(pool)} · ends {fmt_timestamp(m.get('end_time', 0))}"
        )
        lines.append("")
    if len(markets) > limit:
        lines.append(f"<i>showing the {limit} newest of {len(markets)} markets</i>")
    return "\n".join(lines).rstrip()
