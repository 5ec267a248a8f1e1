"""Exception hierarchy shared by the exchange clients, handlers and orchestrator."""

from __future__ import annotations

from typing import Any, Optional


class TradeExecutionError(Exception):
    """Base class for every trading failure surfaced to callers."""

    status_code = 500


class ConfigurationError(TradeExecutionError):
    """Raised when an exchange lacks the credentials required to trade."""

    status_code = 400


class UnsupportedExchangeError(TradeExecutionError):
    """Raised when an exchange id is not present in the handler registry."""

    status_code = 400


class ValidationError(TradeExecutionError):
    """Raised for malformed order input, before any remote call is issued."""

    status_code = 400


class SymbolNotFoundError(TradeExecutionError):
    """Raised when an exchange does not list the requested symbol."""

    status_code = 404


class QuantityTooSmallError(TradeExecutionError):
    """Raised when an amount converts to less than one tradable unit."""

    status_code = 400


class LeverageExceededError(TradeExecutionError):
    """Raised when the requested leverage is above the symbol maximum."""

    status_code = 400


class NotProfitableError(TradeExecutionError):
    """Raised when a hedge close is refused because combined PNL is not positive."""

    status_code = 400

    def __init__(self, message: str, *, total_pnl: float, pnl_legs: Optional[list] = None) -> None:
        super().__init__(message)
        self.total_pnl = total_pnl
        self.pnl_legs = list(pnl_legs or [])


class ExchangeApiError(TradeExecutionError):
    """Raised when an exchange rejects a request or returns an unusable payload.

    ``message`` carries the exchange's own text whenever one was returned, else
    the transport error. ``code`` is the exchange business code (``retCode``,
    ``code``, ``err_code``, ``label``) when present.
    """

    status_code = 502

    def __init__(
        self,
        exchange: str,
        endpoint: str,
        message: str,
        *,
        code: Any = None,
        http_status: Optional[int] = None,
    ) -> None:
        super().__init__(f"{exchange} API error on {endpoint}: {message}")
        self.exchange = exchange
        self.endpoint = endpoint
        self.message = message
        self.code = code
        self.http_status = http_status
