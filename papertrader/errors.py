from __future__ import annotations


class PaperTradingError(Exception):
    """Base class for every error raised by the simulation engine."""


class ValidationFailed(PaperTradingError):
    """Malformed symbol/side/qty/price, or trade value below the configured minimum."""


class InvalidPrice(ValidationFailed):
    pass


class InsufficientCash(ValidationFailed):
    pass


class ShortingDisabled(ValidationFailed):
    pass


class PositionLimitExceeded(PaperTradingError):
    pass


class InvalidBracket(PaperTradingError):
    pass


class InvalidPriceSource(PaperTradingError):
    pass


class NoRiskDefined(PaperTradingError):
    pass


class InvalidInput(PaperTradingError):
    pass
