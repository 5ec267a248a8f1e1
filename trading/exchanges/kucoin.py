"""KuCoin Futures USDT-margined perpetuals (``XBTUSDTM`` style contracts)."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from precision_utils import format_decimal, funding_rate_to_float, to_decimal, to_float
from trading.errors import ExchangeApiError, SymbolNotFoundError
from trading.exchanges.base import (
    LONG,
    SHORT,
    ExchangeHandler,
    PositionSnapshot,
    SymbolInfo,
    base_asset,
    normalise_side,
)
from trading.rest_client import SignedRestClient
from trading.signing import KucoinSigner

LOGGER = logging.getLogger(__name__)

SUCCESS_CODE = "200000"
# unknown contract on the public market endpoints
SYMBOL_NOT_FOUND_CODES = ("400100", "40010")

# KuCoin lists bitcoin as XBT.
_BASE_ALIASES = {"BTC": "XBT"}


def _client_oid() -> str:
    return uuid.uuid4().hex


class KucoinClient(SignedRestClient):
    exchange_id = "kucoin"
    display_name = "KuCoin"

    EMPTY_RESULT_CODES = frozenset({"300009"})
    EMPTY_RESULT_MESSAGES = ("position does not exist", "no open positions", "no order")

    def _build_signer(self, credentials):
        return KucoinSigner(credentials, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "code" in payload:
            if str(payload.get("code")) != SUCCESS_CODE:
                return (str(payload.get("msg") or payload.get("message") or payload), str(payload.get("code")))
            return None
        return super()._extract_error(status_code, payload)


class KucoinHandler(ExchangeHandler):
    exchange_id = "kucoin"
    display_name = "KuCoin"
    uses_contracts = True
    leverage_in_order = True

    def format_symbol(self, symbol: str) -> str:
        base = base_asset(symbol)
        return f"{_BASE_ALIASES.get(base, base)}USDTM"

    def _public_data(self, endpoint: str, venue_symbol: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            data = self.client.public_get(endpoint, params).get("data")
        except ExchangeApiError as exc:
            if exc.code in SYMBOL_NOT_FOUND_CODES:
                raise SymbolNotFoundError(f"KuCoin does not list {venue_symbol}") from exc
            raise
        if not data:
            raise SymbolNotFoundError(f"KuCoin does not list {venue_symbol}")
        return data

    def get_price(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        data = self._public_data("/api/v1/ticker", venue_symbol, {"symbol": venue_symbol})
        return to_float(data.get("price"))

    def get_funding_rate(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        data = self._public_data(f"/api/v1/funding-rate/{venue_symbol}/current", venue_symbol)
        return funding_rate_to_float(data.get("value"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        rows = self.client.public_get("/api/v1/contracts/active").get("data") or []
        table: Dict[str, SymbolInfo] = {}
        for entry in rows:
            if entry.get("quoteCurrency") != "USDT" or entry.get("isInverse"):
                continue
            table[entry.get("symbol")] = SymbolInfo(
                quantity_precision=0,
                max_leverage=to_float(entry.get("maxLeverage")),
                contract_multiplier=to_decimal(entry.get("multiplier")),
            )
        LOGGER.info("kucoin_symbol_table_loaded count=%d", len(table))
        return table

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        try:
            data = self.client.signed_request("/api/v1/position", "GET", {"symbol": venue_symbol}).get("data")
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "position", venue_symbol):
                return PositionSnapshot.flat(venue_symbol)
            raise
        if not data:
            return PositionSnapshot.flat(venue_symbol)
        current_qty = to_decimal(data.get("currentQty"), Decimal("0"))
        if current_qty == 0:
            return PositionSnapshot.flat(venue_symbol)
        return PositionSnapshot(
            symbol=venue_symbol,
            side=LONG if current_qty > 0 else SHORT,
            size=abs(current_qty),
            unrealized_pnl=to_float(data.get("unrealisedPnl")),
            margin_type="CROSSED" if data.get("crossMode") else "ISOLATED",
        )

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        # marginMode travels with each order instead.
        LOGGER.info("kucoin_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "margin mode is sent with the order"}

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        LOGGER.info("kucoin_leverage_deferred symbol=%s leverage=%s", self.format_symbol(symbol), leverage)
        return {"skipped": True, "reason": "leverage is sent with the order"}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        payload: Dict[str, Any] = {
            "clientOid": _client_oid(),
            "symbol": venue_symbol,
            "side": normalise_side(side).lower(),
            "type": "market",
            "size": int(quantity),
            "marginMode": "ISOLATED",
        }
        if leverage is not None:
            payload["leverage"] = str(int(leverage))
        LOGGER.info(
            "kucoin_order_submit symbol=%s side=%s contracts=%s leverage=%s",
            venue_symbol,
            payload["side"],
            format_decimal(quantity),
            leverage,
        )
        data = self.client.signed_request("/api/v1/orders", "POST", payload)
        return {"orderId": (data.get("data") or {}).get("orderId")}

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request("/api/v1/orders", "DELETE", {"symbol": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        payload = {
            "clientOid": _client_oid(),
            "symbol": position.symbol,
            "closeOrder": True,
            "type": "market",
        }
        data = self.client.signed_request("/api/v1/orders", "POST", payload)
        return {"orderId": (data.get("data") or {}).get("orderId")}
