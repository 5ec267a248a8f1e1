"""Bitget v2 mix (USDT-FUTURES) perpetuals."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from precision_utils import format_decimal, funding_rate_to_float, to_decimal, to_float
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
from trading.signing import BitgetSigner

LOGGER = logging.getLogger(__name__)

PRODUCT_TYPE = "USDT-FUTURES"
MARGIN_COIN = "USDT"
SUCCESS_CODE = "00000"
SYMBOL_NOT_FOUND_CODES = ("40034", "40019")


class BitgetClient(SignedRestClient):
    exchange_id = "bitget"
    display_name = "Bitget"

    EMPTY_RESULT_CODES = frozenset({"22001", "22002", "40768"})
    EMPTY_RESULT_MESSAGES = ("no order to cancel", "order does not exist", "no position to close")

    def _build_signer(self, credentials):
        return BitgetSigner(credentials, demo_trading=self.testnet, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "code" in payload:
            if str(payload.get("code")) != SUCCESS_CODE:
                return (str(payload.get("msg") or payload), str(payload.get("code")))
            return None
        return super()._extract_error(status_code, payload)


class BitgetHandler(ExchangeHandler):
    exchange_id = "bitget"
    display_name = "Bitget"

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}USDT"

    def _public(self, endpoint: str, venue_symbol: str) -> Any:
        try:
            payload = self.client.public_get(endpoint, {"symbol": venue_symbol, "productType": PRODUCT_TYPE})
        except ExchangeApiError as exc:
            if exc.code in SYMBOL_NOT_FOUND_CODES:
                raise SymbolNotFoundError(f"Bitget does not list {venue_symbol}") from exc
            raise
        data = payload.get("data")
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise SymbolNotFoundError(f"Bitget does not list {venue_symbol}")
        return data

    def get_price(self, symbol: str) -> float:
        return to_float(self._public("/api/v2/mix/market/ticker", self.format_symbol(symbol)).get("lastPr"))

    def get_funding_rate(self, symbol: str) -> float:
        row = self._public("/api/v2/mix/market/current-fund-rate", self.format_symbol(symbol))
        return funding_rate_to_float(row.get("fundingRate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        payload = self.client.public_get("/api/v2/mix/market/contracts", {"productType": PRODUCT_TYPE})
        table = {
            entry.get("symbol"): SymbolInfo(
                quantity_precision=int(entry.get("volumePlace") or 0),
                max_leverage=to_float(entry.get("maxLever")),
            )
            for entry in payload.get("data") or []
        }
        LOGGER.info("bitget_symbol_table_loaded count=%d", len(table))
        return table

    def _account(self, venue_symbol: str) -> Dict[str, Any]:
        payload = self.client.signed_request(
            "/api/v2/mix/account/account",
            "GET",
            {"symbol": venue_symbol, "productType": PRODUCT_TYPE, "marginCoin": MARGIN_COIN},
        )
        return payload.get("data") or {}

    def _position_rows(self, venue_symbol: str) -> List[Dict[str, Any]]:
        payload = self.client.signed_request(
            "/api/v2/mix/position/single-position",
            "GET",
            {"symbol": venue_symbol, "productType": PRODUCT_TYPE, "marginCoin": MARGIN_COIN},
        )
        return [row for row in payload.get("data") or [] if row.get("symbol") == venue_symbol]

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        for row in self._position_rows(venue_symbol):
            size = to_decimal(row.get("total"), Decimal("0"))
            side = {"long": LONG, "short": SHORT}.get(str(row.get("holdSide") or "").lower())
            if size <= 0 or side is None:
                continue
            margin_mode = str(row.get("marginMode") or "").lower()
            return PositionSnapshot(
                symbol=venue_symbol,
                side=side,
                size=size,
                unrealized_pnl=to_float(row.get("unrealizedPL")),
                margin_type="ISOLATED" if margin_mode == "isolated" else ("CROSSED" if margin_mode else None),
            )
        return PositionSnapshot.flat(venue_symbol)

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        target = "isolated" if margin_type.upper() == "ISOLATED" else "crossed"
        current = str(self._account(venue_symbol).get("marginMode") or "").lower()
        if current == target:
            LOGGER.info("bitget_margin_type_skip symbol=%s margin=%s", venue_symbol, target)
            return {"skipped": True, "marginMode": target}
        LOGGER.info("bitget_margin_type_set symbol=%s from=%s to=%s", venue_symbol, current or "unknown", target)
        return self.client.signed_request(
            "/api/v2/mix/account/set-margin-mode",
            "POST",
            {"symbol": venue_symbol, "productType": PRODUCT_TYPE, "marginCoin": MARGIN_COIN, "marginMode": target},
        )

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        account = self._account(venue_symbol)
        target = Decimal(int(leverage))
        if str(account.get("marginMode") or "").lower() == "isolated":
            current = [to_decimal(account.get("isolatedLongLever")), to_decimal(account.get("isolatedShortLever"))]
        else:
            current = [to_decimal(account.get("crossedMarginLeverage"))]
        if all(value == target for value in current):
            LOGGER.info("bitget_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        LOGGER.info("bitget_leverage_set symbol=%s leverage=%s", venue_symbol, leverage)
        return self.client.signed_request(
            "/api/v2/mix/account/set-leverage",
            "POST",
            {
                "symbol": venue_symbol,
                "productType": PRODUCT_TYPE,
                "marginCoin": MARGIN_COIN,
                "leverage": str(int(leverage)),
            },
        )

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        side_value = normalise_side(side)
        payload = {
            "symbol": venue_symbol,
            "productType": PRODUCT_TYPE,
            "marginMode": "isolated",
            "marginCoin": MARGIN_COIN,
            "size": format_decimal(quantity),
            "side": "buy" if side_value == BUY else "sell",
            "tradeSide": "open",
            "orderType": "market",
        }
        LOGGER.info("bitget_order_submit symbol=%s side=%s size=%s", venue_symbol, payload["side"], payload["size"])
        data = self.client.signed_request("/api/v2/mix/order/place-order", "POST", payload)
        return {"orderId": (data.get("data") or {}).get("orderId")}

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        # cancel-all-orders is scoped by product type and margin coin, not by symbol
        try:
            return self.client.signed_request(
                "/api/v2/mix/order/cancel-all-orders",
                "POST",
                {"productType": PRODUCT_TYPE, "marginCoin": MARGIN_COIN},
            )
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        data = self.client.signed_request(
            "/api/v2/mix/order/close-positions",
            "POST",
            {"symbol": position.symbol, "productType": PRODUCT_TYPE, "holdSide": position.side},
        ).get("data") or {}
        failures = data.get("failureList") or []
        if failures:
            first = failures[0]
            raise ExchangeApiError(
                self.client.display_name,
                "/api/v2/mix/order/close-positions",
                str(first.get("errorMsg") or failures),
                code=first.get("errorCode"),
            )
        successes = data.get("successList") or []
        return {"orderId": successes[0].get("orderId") if successes else None}
