class BotError(Exception):
    """Base bot error."""


class UpstreamError(BotError):
    """Raised when an upstream API is unavailable."""


class ValidationError(BotError):
    """Raised for invalid user input."""


class ExtractionError(BotError):
    """Raised when LLM output holds no usable structured data."""


class SubmissionError(BotError):
    """Raised when a transaction could not be built, submitted or confirmed."""


class MarketNotFoundError(BotError):
    """Raised when no prediction market exists on chain."""
