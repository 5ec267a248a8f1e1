"""WhiteBIT collateral (futures) markets, ``BTC_PERP`` style."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from precision_utils import format_decimal, funding_rate_to_float, to_decimal, to_float
from trading.errors import ConfigurationError, ExchangeApiError, SymbolNotFoundError
from trading.exchanges.base import (
    LONG,
    SHORT,
    ExchangeHandler,
    PositionSnapshot,
    SymbolInfo,
    base_asset,
    normalise_side,
)
from trading.rest_client import SignedRestClient, first_present
from trading.signing import WhitebitSigner

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_LEVERAGE = 20.0


class WhitebitClient(SignedRestClient):
    exchange_id = "whitebit"
    display_name = "WhiteBIT"

    EMPTY_RESULT_MESSAGES = ("position not found", "no orders", "orders not found")

    def _build_signer(self, credentials):
        return WhitebitSigner(credentials, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict):
            if status_code >= 400 or payload.get("success") is False:
                message = payload.get("message") or payload.get("errors") or payload
                return (str(message), payload.get("code"))
            return None
        return super()._extract_error(status_code, payload)

    def signed_request(self, endpoint, method="POST", params=None, *, query=None):
        # No futures testnet exists, so a test deployment must never reach live accounts.
        if self.testnet:
            raise ConfigurationError("WhiteBIT private API is only available in production mode")
        return super().signed_request(endpoint, "POST", params, query=query)


class WhitebitHandler(ExchangeHandler):
    exchange_id = "whitebit"
    display_name = "WhiteBIT"

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}_PERP"

    def _futures_row(self, venue_symbol: str) -> Dict[str, Any]:
        rows = self.client.public_get("/api/v4/public/futures").get("result") or []
        for row in rows:
            if row.get("ticker_id") == venue_symbol:
                return row
        raise SymbolNotFoundError(f"WhiteBIT does not list {venue_symbol}")

    def get_price(self, symbol: str) -> float:
        return to_float(self._futures_row(self.format_symbol(symbol)).get("last_price"))

    def get_funding_rate(self, symbol: str) -> float:
        return funding_rate_to_float(self._futures_row(self.format_symbol(symbol)).get("funding_rate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        futures = self.client.public_get("/api/v4/public/futures").get("result") or []
        markets = self.client.public_get("/api/v4/public/markets") or []
        precision = {row.get("name"): int(row.get("stockPrec") or 0) for row in markets}
        table = {
            row.get("ticker_id"): SymbolInfo(
                quantity_precision=precision.get(row.get("ticker_id"), 0),
                max_leverage=to_float(row.get("max_leverage"), DEFAULT_MAX_LEVERAGE) or DEFAULT_MAX_LEVERAGE,
            )
            for row in futures
        }
        LOGGER.info("whitebit_symbol_table_loaded count=%d", len(table))
        return table

    def _open_positions(self, venue_symbol: str) -> List[Dict[str, Any]]:
        try:
            rows = self.client.signed_request("/api/v4/collateral-account/positions/open", params={"market": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "position", venue_symbol):
                return []
            raise
        return [row for row in rows or [] if row.get("market") == venue_symbol]

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        for row in self._open_positions(venue_symbol):
            amount = to_decimal(row.get("amount"), Decimal("0"))
            if amount == 0:
                continue
            return PositionSnapshot(
                symbol=venue_symbol,
                side=LONG if amount > 0 else SHORT,
                size=abs(amount),
                unrealized_pnl=to_float(first_present(row, ("pnl", "unrealizedPnl"))),
                margin_type="ISOLATED",
            )
        return PositionSnapshot.flat(venue_symbol)

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        if margin_type.upper() != "ISOLATED":
            LOGGER.warning("whitebit_margin_type_unsupported symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        else:
            LOGGER.info("whitebit_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "collateral markets have no per-symbol margin toggle"}

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        # Leverage is account-wide and cannot be read back per market.
        LOGGER.info("whitebit_leverage_set symbol=%s leverage=%s", self.format_symbol(symbol), leverage)
        return self.client.signed_request("/api/v4/collateral-account/leverage", params={"leverage": int(leverage)})

    def _submit(self, venue_symbol: str, side: str, quantity: Decimal) -> Dict[str, Any]:
        payload = {"market": venue_symbol, "side": side.lower(), "amount": format_decimal(quantity)}
        LOGGER.info("whitebit_order_submit market=%s side=%s amount=%s", venue_symbol, payload["side"], payload["amount"])
        data = self.client.signed_request("/api/v4/order/collateral/market", params=payload)
        return {"orderId": first_present(data or {}, ("orderId", "id"))}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        return self._submit(self.format_symbol(symbol), normalise_side(side), quantity)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request("/api/v4/order/cancel/all", params={"market": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        return self._submit(position.symbol, position.close_side, position.size)
