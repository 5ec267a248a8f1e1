"""MEXC contract (USDT perpetual) API."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from precision_utils import funding_rate_to_float, to_decimal, to_float
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
from trading.signing import MexcSigner

LOGGER = logging.getLogger(__name__)

# order ``side`` codes
OPEN_LONG = 1
CLOSE_SHORT = 2
OPEN_SHORT = 3
CLOSE_LONG = 4
MARKET_ORDER_TYPE = 5
ISOLATED_OPEN_TYPE = 1
POSITION_TYPE_LONG = 1
POSITION_TYPE_SHORT = 2
# contract does not exist / is not activated
SYMBOL_NOT_FOUND_CODES = ("1001", "1002")


class MexcClient(SignedRestClient):
    exchange_id = "mexc"
    display_name = "MEXC"

    EMPTY_RESULT_CODES = frozenset({"20103"})

    def _build_signer(self, credentials):
        return MexcSigner(credentials, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "success" in payload:
            if not payload.get("success"):
                code = payload.get("code")
                return (str(payload.get("message") or payload), str(code) if code is not None else None)
            return None
        return super()._extract_error(status_code, payload)


class MexcHandler(ExchangeHandler):
    exchange_id = "mexc"
    display_name = "MEXC"
    uses_contracts = True

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}_USDT"

    def _public_data(self, endpoint: str, venue_symbol: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            data = self.client.public_get(endpoint, params).get("data")
        except ExchangeApiError as exc:
            if exc.code in SYMBOL_NOT_FOUND_CODES:
                raise SymbolNotFoundError(f"MEXC does not list {venue_symbol}") from exc
            raise
        if not data:
            raise SymbolNotFoundError(f"MEXC does not list {venue_symbol}")
        return data

    def get_price(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        data = self._public_data("/api/v1/contract/ticker", venue_symbol, {"symbol": venue_symbol})
        return to_float(data.get("lastPrice"))

    def get_funding_rate(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        data = self._public_data(f"/api/v1/contract/funding_rate/{venue_symbol}", venue_symbol)
        return funding_rate_to_float(data.get("fundingRate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        rows = self.client.public_get("/api/v1/contract/detail").get("data") or []
        table: Dict[str, SymbolInfo] = {}
        for entry in rows:
            if entry.get("quoteCoin") not in (None, "USDT"):
                continue
            table[entry.get("symbol")] = SymbolInfo(
                quantity_precision=int(entry.get("volScale") or 0),
                max_leverage=to_float(entry.get("maxLeverage")),
                contract_multiplier=to_decimal(entry.get("contractSize")),
            )
        LOGGER.info("mexc_symbol_table_loaded count=%d", len(table))
        return table

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        payload = self.client.signed_request(
            "/api/v1/private/position/open_positions", "GET", {"symbol": venue_symbol}
        )
        for row in payload.get("data") or []:
            volume = to_decimal(row.get("holdVol"), Decimal("0"))
            if row.get("symbol") != venue_symbol or volume <= 0:
                continue
            side = LONG if row.get("positionType") == POSITION_TYPE_LONG else SHORT
            pnl = row.get("unrealisedPnl")
            if pnl is None:
                pnl = self._estimate_pnl(venue_symbol, side, volume, row)
            return PositionSnapshot(
                symbol=venue_symbol,
                side=side,
                size=volume,
                unrealized_pnl=to_float(pnl),
                margin_type="ISOLATED" if row.get("openType") == ISOLATED_OPEN_TYPE else "CROSSED",
            )
        return PositionSnapshot.flat(venue_symbol)

    def _estimate_pnl(self, venue_symbol: str, side: str, volume: Decimal, row: Dict[str, Any]) -> float:
        # open_positions omits unrealised PNL on some accounts; derive it from the mark.
        info = self.get_symbol_info(venue_symbol)
        entry = to_decimal(row.get("holdAvgPrice"), Decimal("0"))
        last = Decimal(str(self.get_price(venue_symbol)))
        multiplier = info.contract_multiplier or Decimal("1")
        direction = Decimal("1") if side == LONG else Decimal("-1")
        return float((last - entry) * volume * multiplier * direction)

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        # openType travels with the leverage change and with each order.
        LOGGER.info("mexc_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "openType is sent with leverage and orders"}

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        current = self.client.signed_request(
            "/api/v1/private/position/leverage", "GET", {"symbol": venue_symbol}
        ).get("data") or []
        if len(current) >= 2 and all(
            int(to_float(row.get("leverage"))) == int(leverage) and row.get("openType") == ISOLATED_OPEN_TYPE
            for row in current
        ):
            LOGGER.info("mexc_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        LOGGER.info("mexc_leverage_set symbol=%s leverage=%s", venue_symbol, leverage)
        result: Dict[str, Any] = {}
        for position_type in (POSITION_TYPE_LONG, POSITION_TYPE_SHORT):
            result = self.client.signed_request(
                "/api/v1/private/position/change_leverage",
                "POST",
                {
                    "symbol": venue_symbol,
                    "leverage": int(leverage),
                    "openType": ISOLATED_OPEN_TYPE,
                    "positionType": position_type,
                },
            )
        return result

    def _submit(self, venue_symbol: str, side_code: int, volume: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbol": venue_symbol,
            "vol": int(volume),
            "side": side_code,
            "type": MARKET_ORDER_TYPE,
            "openType": ISOLATED_OPEN_TYPE,
        }
        if leverage is not None:
            payload["leverage"] = int(leverage)
        LOGGER.info("mexc_order_submit symbol=%s side=%s vol=%s", venue_symbol, side_code, payload["vol"])
        data = self.client.signed_request("/api/v1/private/order/submit", "POST", payload).get("data")
        order_id = data.get("orderId") if isinstance(data, dict) else data
        return {"orderId": order_id}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        side_code = OPEN_LONG if normalise_side(side) == BUY else OPEN_SHORT
        return self._submit(self.format_symbol(symbol), side_code, quantity, leverage)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request("/api/v1/private/order/cancel_all", "POST", {"symbol": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        side_code = CLOSE_LONG if position.side == LONG else CLOSE_SHORT
        return self._submit(position.symbol, side_code, position.size)
