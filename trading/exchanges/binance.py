"""Binance USDⓈ-M perpetual futures."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from precision_utils import format_decimal, funding_rate_to_float, precision_from_step, to_decimal, to_float
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
from trading.signing import BinanceSigner

LOGGER = logging.getLogger(__name__)

INVALID_SYMBOL_CODE = -1121
NO_NEED_TO_CHANGE_MARGIN_CODE = -4046
DEFAULT_MAX_LEVERAGE = 125.0


class BinanceClient(SignedRestClient):
    exchange_id = "binance"
    display_name = "Binance"

    EMPTY_RESULT_CODES = frozenset({"-2011", str(NO_NEED_TO_CHANGE_MARGIN_CODE)})

    def _build_signer(self, credentials):
        return BinanceSigner(credentials, recv_window=self.recv_window, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "code" in payload and "msg" in payload:
            code = payload.get("code")
            try:
                failed = int(code) < 0
            except (TypeError, ValueError):
                failed = False
            if failed or status_code >= 400:
                return (str(payload.get("msg")), code)
        return super()._extract_error(status_code, payload)


class BinanceHandler(ExchangeHandler):
    exchange_id = "binance"
    display_name = "Binance"

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}USDT"

    def _public(self, endpoint: str, symbol: str) -> Any:
        try:
            return self.client.public_get(endpoint, {"symbol": symbol})
        except ExchangeApiError as exc:
            if exc.code == INVALID_SYMBOL_CODE:
                raise SymbolNotFoundError(f"Binance does not list {symbol}") from exc
            raise

    def get_price(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        payload = self._public("/fapi/v1/ticker/price", venue_symbol)
        price = to_float(payload.get("price") if isinstance(payload, dict) else None)
        if price <= 0:
            raise SymbolNotFoundError(f"Binance returned no price for {venue_symbol}")
        return price

    def get_funding_rate(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        payload = self._public("/fapi/v1/premiumIndex", venue_symbol)
        return funding_rate_to_float(payload.get("lastFundingRate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        payload = self.client.public_get("/fapi/v1/exchangeInfo")
        max_leverage = self._load_max_leverage()
        table: Dict[str, SymbolInfo] = {}
        for entry in payload.get("symbols") or []:
            if entry.get("contractType") != "PERPETUAL" or entry.get("quoteAsset") != "USDT":
                continue
            symbol = entry.get("symbol")
            precision = int(entry.get("quantityPrecision") or 0)
            for flt in entry.get("filters") or []:
                if flt.get("filterType") == "MARKET_LOT_SIZE" and to_decimal(flt.get("stepSize"), Decimal("0")) > 0:
                    precision = precision_from_step(flt.get("stepSize"))
                    break
                if flt.get("filterType") == "LOT_SIZE":
                    precision = precision_from_step(flt.get("stepSize"))
            table[symbol] = SymbolInfo(
                quantity_precision=precision,
                max_leverage=max_leverage.get(symbol, DEFAULT_MAX_LEVERAGE),
            )
        LOGGER.info("binance_symbol_table_loaded count=%d", len(table))
        return table

    def _load_max_leverage(self) -> Dict[str, float]:
        # Leverage brackets are private on Binance; without keys the venue-wide cap applies.
        if not self.client.has_credentials:
            return {}
        brackets = self.client.signed_request("/fapi/v1/leverageBracket", "GET")
        result: Dict[str, float] = {}
        for entry in brackets or []:
            tiers = entry.get("brackets") or []
            if tiers:
                result[entry.get("symbol")] = to_float(tiers[0].get("initialLeverage"), DEFAULT_MAX_LEVERAGE)
        return result

    def _position_rows(self, venue_symbol: str) -> List[Dict[str, Any]]:
        rows = self.client.signed_request("/fapi/v2/positionRisk", "GET", {"symbol": venue_symbol})
        return [row for row in rows or [] if row.get("symbol") == venue_symbol]

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        rows = self._position_rows(venue_symbol)
        for row in rows:
            amount = to_decimal(row.get("positionAmt"), Decimal("0"))
            if amount == 0:
                continue
            return PositionSnapshot(
                symbol=venue_symbol,
                side=LONG if amount > 0 else SHORT,
                size=abs(amount),
                unrealized_pnl=to_float(row.get("unRealizedProfit")),
                margin_type=str(row.get("marginType") or "").upper() or None,
            )
        return PositionSnapshot.flat(venue_symbol)

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        target = margin_type.upper()
        rows = self._position_rows(venue_symbol)
        current = str(rows[0].get("marginType") or "").upper() if rows else ""
        if current == target or (target == "CROSSED" and current == "CROSS"):
            LOGGER.info("binance_margin_type_skip symbol=%s margin=%s", venue_symbol, target)
            return {"skipped": True, "marginType": target}
        try:
            return self.client.signed_request(
                "/fapi/v1/marginType", "POST", {"symbol": venue_symbol, "marginType": target}
            )
        except ExchangeApiError as exc:
            if exc.code == NO_NEED_TO_CHANGE_MARGIN_CODE:
                return {"skipped": True, "marginType": target}
            raise

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        rows = self._position_rows(venue_symbol)
        if rows and int(to_float(rows[0].get("leverage"))) == int(leverage):
            LOGGER.info("binance_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        LOGGER.info("binance_leverage_set symbol=%s leverage=%s", venue_symbol, leverage)
        return self.client.signed_request(
            "/fapi/v1/leverage", "POST", {"symbol": venue_symbol, "leverage": int(leverage)}
        )

    def _submit(self, venue_symbol: str, side: str, quantity: Decimal, *, reduce_only: bool = False) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "symbol": venue_symbol,
            "side": side,
            "type": "MARKET",
            "quantity": format_decimal(quantity),
        }
        if reduce_only:
            params["reduceOnly"] = "true"
        LOGGER.info(
            "binance_order_submit symbol=%s side=%s qty=%s reduce_only=%s",
            venue_symbol,
            side,
            params["quantity"],
            reduce_only,
        )
        data = self.client.signed_request("/fapi/v1/order", "POST", params)
        return {"orderId": data.get("orderId")}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        return self._submit(self.format_symbol(symbol), normalise_side(side), quantity)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request("/fapi/v1/allOpenOrders", "DELETE", {"symbol": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        return self._submit(position.symbol, position.close_side, position.size, reduce_only=True)
