"""Multi-exchange USDT perpetual order routing."""

from trading.errors import (
    ConfigurationError,
    ExchangeApiError,
    LeverageExceededError,
    NotProfitableError,
    QuantityTooSmallError,
    SymbolNotFoundError,
    TradeExecutionError,
    UnsupportedExchangeError,
    ValidationError,
)

__all__ = [
    "ConfigurationError",
    "ExchangeApiError",
    "LeverageExceededError",
    "NotProfitableError",
    "QuantityTooSmallError",
    "SymbolNotFoundError",
    "TradeExecutionError",
    "UnsupportedExchangeError",
    "ValidationError",
]
