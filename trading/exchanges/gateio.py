"""Gate.io USDT-settled perpetual futures (API v4)."""

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
from trading.signing import GateioSigner

LOGGER = logging.getLogger(__name__)

SETTLE = "usdt"
API_PREFIX = GateioSigner.PREFIX
SYMBOL_NOT_FOUND_LABELS = ("CONTRACT_NOT_FOUND", "INVALID_CONTRACT")


class GateioClient(SignedRestClient):
    exchange_id = "gateio"
    display_name = "Gate.io"

    EMPTY_RESULT_CODES = frozenset({"POSITION_NOT_FOUND", "ORDER_NOT_FOUND"})

    def _build_signer(self, credentials):
        return GateioSigner(credentials, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and payload.get("label") and status_code >= 400:
            return (str(payload.get("message") or payload.get("label")), payload.get("label"))
        return super()._extract_error(status_code, payload)

    def public_get(self, endpoint, params=None):
        # the signer adds the prefix for private calls; public paths need it here
        url = f"{self.base_url}{API_PREFIX}{endpoint}"
        response = self._send_request("GET", url, endpoint, params=params)
        payload = self._json_or_error(response, endpoint)
        return self._check(response, payload, endpoint)


class GateioHandler(ExchangeHandler):
    exchange_id = "gateio"
    display_name = "Gate.io"
    uses_contracts = True

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}_USDT"

    def _public(self, endpoint: str, venue_symbol: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return self.client.public_get(endpoint, params)
        except ExchangeApiError as exc:
            if exc.code in SYMBOL_NOT_FOUND_LABELS:
                raise SymbolNotFoundError(f"Gate.io does not list {venue_symbol}") from exc
            raise

    def get_price(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        rows = self._public(f"/futures/{SETTLE}/tickers", venue_symbol, {"contract": venue_symbol})
        if not rows:
            raise SymbolNotFoundError(f"Gate.io does not list {venue_symbol}")
        return to_float(rows[0].get("last"))

    def get_funding_rate(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        contract = self._public(f"/futures/{SETTLE}/contracts/{venue_symbol}", venue_symbol)
        return funding_rate_to_float(contract.get("funding_rate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        rows = self.client.public_get(f"/futures/{SETTLE}/contracts") or []
        table: Dict[str, SymbolInfo] = {}
        for entry in rows:
            if entry.get("in_delisting"):
                continue
            table[entry.get("name")] = SymbolInfo(
                quantity_precision=0,
                max_leverage=to_float(entry.get("leverage_max")),
                contract_multiplier=to_decimal(entry.get("quanto_multiplier")),
            )
        LOGGER.info("gateio_symbol_table_loaded count=%d", len(table))
        return table

    def _position_row(self, venue_symbol: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.signed_request(f"/futures/{SETTLE}/positions/{venue_symbol}", "GET")
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "position", venue_symbol):
                return None
            raise

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        row = self._position_row(venue_symbol)
        size = to_decimal((row or {}).get("size"), Decimal("0"))
        if not row or size == 0:
            return PositionSnapshot.flat(venue_symbol)
        return PositionSnapshot(
            symbol=venue_symbol,
            side=LONG if size > 0 else SHORT,
            size=abs(size),
            unrealized_pnl=to_float(row.get("unrealised_pnl")),
            margin_type="CROSSED" if to_float(row.get("leverage")) == 0 else "ISOLATED",
        )

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        # A non-zero leverage puts the position in isolated mode; set_leverage does the work.
        LOGGER.info("gateio_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "isolated margin follows from a non-zero leverage"}

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        row = self._position_row(venue_symbol)
        if row and to_decimal(row.get("leverage")) == Decimal(int(leverage)):
            LOGGER.info("gateio_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        LOGGER.info("gateio_leverage_set symbol=%s leverage=%s", venue_symbol, leverage)
        return self.client.signed_request(
            f"/futures/{SETTLE}/positions/{venue_symbol}/leverage",
            "POST",
            query={"leverage": str(int(leverage))},
        )

    def _submit(self, venue_symbol: str, signed_size: int, *, reduce_only: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contract": venue_symbol,
            "size": signed_size,
            "price": "0",
            "tif": "ioc",
        }
        if reduce_only:
            payload["reduce_only"] = True
        LOGGER.info(
            "gateio_order_submit contract=%s size=%s reduce_only=%s", venue_symbol, signed_size, reduce_only
        )
        data = self.client.signed_request(f"/futures/{SETTLE}/orders", "POST", payload)
        return {"orderId": data.get("id")}

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        contracts = int(quantity)
        signed_size = contracts if normalise_side(side) == BUY else -contracts
        return self._submit(self.format_symbol(symbol), signed_size)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            cancelled = self.client.signed_request(f"/futures/{SETTLE}/orders", "DELETE", {"contract": venue_symbol})
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise
        return {"cancelled": len(cancelled or [])}

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        contracts = int(position.size)
        signed_size = -contracts if position.side == LONG else contracts
        return self._submit(position.symbol, signed_size, reduce_only=True)
