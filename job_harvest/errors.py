"""
Error types for the extraction engine.

Strategy components swallow their own failures and report them through
StrategyOutcome; only SessionUnavailable and ExtractionCancelled are meant
to cross the strategy boundary.
"""


class ExtractionError(Exception):
    """Base class for extraction engine errors."""
    pass


class ConfigurationError(ExtractionError):
    """Raised when a required setting (e.g. an API key) is missing."""
    pass


class TransientNetworkError(ExtractionError):
    """Raised on HTTP, transport, or script evaluation failures."""
    pass


class ParseError(ExtractionError):
    """Raised when a payload (JSON, HTML, model reply) cannot be parsed."""
    pass


class SessionUnavailable(ExtractionError):
    """Raised when the browser session is missing or has crashed."""
    pass


class ExtractionCancelled(ExtractionError):
    """Raised inside the engine when the caller cancels an extraction."""
    pass
