"""Uniform handler contract shared by every supported futures venue."""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from precision_utils import round_down_to_precision, round_to_contracts
from trading.errors import ExchangeApiError, QuantityTooSmallError, SymbolNotFoundError, ValidationError
from trading.rest_client import SignedRestClient

LOGGER = logging.getLogger(__name__)

_QUOTE_SUFFIX_RE = re.compile(r"(?:[-_/]?USDT(?:M|-SWAP)?|[-_]PERP)$")

BUY = "BUY"
SELL = "SELL"
LONG = "long"
SHORT = "short"


def base_asset(symbol: str) -> str:
    """Reduce ``BTC``, ``BTCUSDT``, ``BTC-USDT`` or ``BTC_USDT`` to ``BTC``."""
    text = (symbol or "").strip().upper()
    if not text:
        raise ValidationError("Symbol is required")
    base = _QUOTE_SUFFIX_RE.sub("", text)
    base = base.rstrip("-_/")
    if not base:
        raise ValidationError(f"Invalid symbol `{symbol}`")
    return base


def normalise_side(side: Any) -> str:
    value = str(side or "").strip().upper()
    if value not in (BUY, SELL):
        raise ValidationError(f"Side must be BUY or SELL, got `{side}`")
    return value


def opposite_side(side: str) -> str:
    return SELL if side == BUY else BUY


@dataclass(frozen=True)
class SymbolInfo:
    quantity_precision: int
    max_leverage: float
    contract_multiplier: Optional[Decimal] = None


@dataclass(frozen=True)
class PositionSnapshot:
    symbol: str
    side: Optional[str] = None
    size: Decimal = Decimal("0")
    unrealized_pnl: float = 0.0
    margin_type: Optional[str] = None

    @property
    def is_flat(self) -> bool:
        return self.side is None or self.size <= 0

    @property
    def close_side(self) -> str:
        return SELL if self.side == LONG else BUY

    @classmethod
    def flat(cls, symbol: str) -> "PositionSnapshot":
        return cls(symbol=symbol)


class SymbolInfoCache:
    """Instrument metadata loaded once per handler and kept for the process lifetime.

    Concurrent first lookups share a single request. Only callers that need
    the table wait for it; once loaded, reads no longer take the lock.
    """

    def __init__(self, loader: Callable[[], Dict[str, SymbolInfo]]) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._table: Optional[Dict[str, SymbolInfo]] = None

    def get(self, symbol: str) -> Optional[SymbolInfo]:
        table = self._table
        if table is None:
            with self._lock:
                if self._table is None:
                    self._table = dict(self._loader())
                table = self._table
        return table.get(symbol)

    @property
    def loaded(self) -> bool:
        return self._table is not None


class ExchangeHandler(ABC):
    """Venue adapter: symbol mapping, sizing, margin/leverage and market orders.

    ``amount`` values handed to :meth:`to_order_quantity` are always expressed
    in the base asset; contract venues set ``uses_contracts`` and divide by the
    instrument multiplier.
    """

    exchange_id = ""
    display_name = ""
    uses_contracts = False
    leverage_in_order = False

    def __init__(self, client: SignedRestClient) -> None:
        self.client = client
        self._symbol_cache = SymbolInfoCache(self._load_symbol_table)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.client.base_url!r})"

    # -- symbols --------------------------------------------------------
    @abstractmethod
    def format_symbol(self, symbol: str) -> str:
        """Map any accepted symbol spelling to the venue's instrument id."""

    @abstractmethod
    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        """Fetch the public instrument listing keyed by venue symbol."""

    def get_symbol_info(self, symbol: str) -> SymbolInfo:
        venue_symbol = self.format_symbol(symbol)
        info = self._symbol_cache.get(venue_symbol)
        if info is None:
            raise SymbolNotFoundError(f"{self.display_name} does not list {venue_symbol}")
        return info

    # -- market data ----------------------------------------------------
    @abstractmethod
    def get_price(self, symbol: str) -> float:
        """Last traded price of the perpetual."""

    @abstractmethod
    def get_funding_rate(self, symbol: str) -> float:
        """Current (predicted) funding rate as a decimal fraction."""

    # -- account --------------------------------------------------------
    @abstractmethod
    def get_position(self, symbol: str) -> PositionSnapshot:
        """Live position; flat snapshot when none is open."""

    def get_pnl(self, symbol: str) -> Dict[str, Any]:
        position = self.get_position(symbol)
        if position.is_flat:
            return {"pnl": 0.0, "size": 0.0, "side": None}
        return {
            "pnl": float(position.unrealized_pnl),
            "size": float(position.size),
            "side": position.side,
        }

    @abstractmethod
    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        """Switch the symbol to ``margin_type``; no request when already set."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        """Apply ``leverage``; skipped when the venue already reports it."""

    # -- orders ---------------------------------------------------------
    def to_order_quantity(self, symbol_info: SymbolInfo, amount: Any) -> Decimal:
        value = Decimal(str(amount))
        if self.uses_contracts:
            multiplier = symbol_info.contract_multiplier or Decimal("1")
            quantity = round_to_contracts(value / multiplier)
        else:
            quantity = round_down_to_precision(value, symbol_info.quantity_precision)
        if quantity <= 0:
            raise QuantityTooSmallError(
                f"{self.display_name} amount {amount} is below the minimum tradable size"
            )
        return quantity

    @abstractmethod
    def place_order(
        self,
        symbol: str,
        side: str,
        quantity: Decimal,
        leverage: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Submit a market order of ``quantity`` venue units; returns ``{"orderId": ...}``."""

    @abstractmethod
    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        """Cancel every resting order on the symbol; nothing to cancel is success."""

    @abstractmethod
    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        """Flatten ``position`` with a reduce/close market order."""

    def close_position(self, symbol: str) -> Dict[str, Any]:
        self.cancel_all_open_orders(symbol)
        position = self.get_position(symbol)
        if position.is_flat:
            LOGGER.info("%s_close_skip symbol=%s reason=no_position", self.exchange_id, symbol)
            return {"message": "No open position"}
        LOGGER.info(
            "%s_close_submit symbol=%s side=%s size=%s",
            self.exchange_id,
            symbol,
            position.side,
            position.size,
        )
        return self._submit_close(symbol, position)

    # -- helpers --------------------------------------------------------
    def _swallow_empty(self, exc: ExchangeApiError, action: str, symbol: str) -> bool:
        if not self.client.is_empty_result(exc):
            return False
        LOGGER.info("%s_%s_empty symbol=%s code=%s", self.exchange_id, action, symbol, exc.code)
        return True
