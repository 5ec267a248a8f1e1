"""Bybit v5 linear (USDT) perpetuals on a unified trading account."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from precision_utils import format_decimal, funding_rate_to_float, precision_from_step, to_decimal, to_float
from trading.errors import ExchangeApiError, SymbolNotFoundError
from trading.exchanges.base import (
    BUY,
    LONG,
    SHORT,
    ExchangeHandler,
    PositionSnapshot,
    SymbolInfo,
    base_asset,
    normalise_side,
)
from trading.rest_client import SignedRestClient
from trading.signing import BybitSigner

LOGGER = logging.getLogger(__name__)

CATEGORY = "linear"
LEVERAGE_NOT_MODIFIED_CODE = 110043
INVALID_SYMBOL_CODE = 10001


class BybitClient(SignedRestClient):
    exchange_id = "bybit"
    display_name = "Bybit"

    EMPTY_RESULT_CODES = frozenset({"110001", "110017"})
    EMPTY_RESULT_MESSAGES = ("order not exists", "current position is zero")

    def _build_signer(self, credentials):
        return BybitSigner(credentials, recv_window=self.recv_window, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "retCode" in payload:
            if payload.get("retCode") != 0:
                return (str(payload.get("retMsg") or payload), payload.get("retCode"))
            return None
        return super()._extract_error(status_code, payload)


class BybitHandler(ExchangeHandler):
    exchange_id = "bybit"
    display_name = "Bybit"

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}USDT"

    def _ticker(self, venue_symbol: str) -> Dict[str, Any]:
        try:
            payload = self.client.public_get("/v5/market/tickers", {"category": CATEGORY, "symbol": venue_symbol})
        except ExchangeApiError as exc:
            if exc.code == INVALID_SYMBOL_CODE:
                raise SymbolNotFoundError(f"Bybit does not list {venue_symbol}") from exc
            raise
        rows = (payload.get("result") or {}).get("list") or []
        if not rows:
            raise SymbolNotFoundError(f"Bybit does not list {venue_symbol}")
        return rows[0]

    def get_price(self, symbol: str) -> float:
        return to_float(self._ticker(self.format_symbol(symbol)).get("lastPrice"))

    def get_funding_rate(self, symbol: str) -> float:
        return funding_rate_to_float(self._ticker(self.format_symbol(symbol)).get("fundingRate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        table: Dict[str, SymbolInfo] = {}
        cursor: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"category": CATEGORY, "limit": 1000}
            if cursor:
                params["cursor"] = cursor
            result = self.client.public_get("/v5/market/instruments-info", params).get("result") or {}
            for entry in result.get("list") or []:
                if entry.get("quoteCoin") != "USDT" or entry.get("contractType") != "LinearPerpetual":
                    continue
                lot = entry.get("lotSizeFilter") or {}
                lev = entry.get("leverageFilter") or {}
                table[entry.get("symbol")] = SymbolInfo(
                    quantity_precision=precision_from_step(lot.get("qtyStep")),
                    max_leverage=to_float(lev.get("maxLeverage")),
                )
            cursor = result.get("nextPageCursor")
            if not cursor:
                break
        LOGGER.info("bybit_symbol_table_loaded count=%d", len(table))
        return table

    def _position_row(self, venue_symbol: str) -> Optional[Dict[str, Any]]:
        payload = self.client.signed_request(
            "/v5/position/list", "GET", {"category": CATEGORY, "symbol": venue_symbol}
        )
        rows = (payload.get("result") or {}).get("list") or []
        for row in rows:
            if row.get("symbol") == venue_symbol:
                return row
        return None

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        row = self._position_row(venue_symbol)
        if not row:
            return PositionSnapshot.flat(venue_symbol)
        size = to_decimal(row.get("size"), Decimal("0"))
        side = {"Buy": LONG, "Sell": SHORT}.get(row.get("side"))
        if size <= 0 or side is None:
            return PositionSnapshot.flat(venue_symbol)
        return PositionSnapshot(
            symbol=venue_symbol,
            side=side,
            size=size,
            unrealized_pnl=to_float(row.get("unrealisedPnl")),
            margin_type="ISOLATED" if str(row.get("tradeMode")) == "1" else "CROSSED",
        )

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        # Unified accounts select margin mode account-wide, not per symbol.
        LOGGER.info("bybit_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "unified account margin mode is account-wide"}

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        row = self._position_row(venue_symbol)
        if row and to_decimal(row.get("leverage")) == Decimal(int(leverage)):
            LOGGER.info("bybit_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        payload = {
            "category": CATEGORY,
            "symbol": venue_symbol,
            "buyLeverage": str(int(leverage)),
            "sellLeverage": str(int(leverage)),
        }
        try:
            return self.client.signed_request("/v5/position/set-leverage", "POST", payload)
        except ExchangeApiError as exc:
            if exc.code == LEVERAGE_NOT_MODIFIED_CODE:
                LOGGER.info("bybit_leverage_not_modified symbol=%s leverage=%s", venue_symbol, leverage)
                return {"skipped": True, "leverage": int(leverage)}
            raise

    def _submit(self, venue_symbol: str, side: str, quantity: Decimal, *, reduce_only: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "category": CATEGORY,
            "symbol": venue_symbol,
            "side": "Buy" if side == BUY else "Sell",
            "orderType": "Market",
            "qty": format_decimal(quantity),
            "timeInForce": "IOC",
        }
        if reduce_only:
            payload["reduceOnly"] = True
        LOGGER.info(
            "bybit_order_submit symbol=%s side=%s qty=%s reduce_only=%s",
            venue_symbol,
            payload["side"],
            payload["qty"],
            reduce_only,
        )
        data = self.client.signed_request("/v5/order/create", "POST", payload)
        return {"orderId": (data.get("result") or {}).get("orderId")}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        return self._submit(self.format_symbol(symbol), normalise_side(side), quantity)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request(
                "/v5/order/cancel-all", "POST", {"category": CATEGORY, "symbol": venue_symbol}
            )
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        return self._submit(position.symbol, position.close_side, position.size, reduce_only=True)
