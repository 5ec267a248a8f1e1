"""HTX (Huobi) USDT-margined linear swaps, isolated margin endpoints."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

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
from trading.rest_client import SignedRestClient, first_present
from trading.signing import HtxSigner

LOGGER = logging.getLogger(__name__)

# used when swap_contract_info omits lever_rate
DEFAULT_MAX_LEVERAGE = 75.0
NO_CANCELLABLE_ORDERS_CODE = "1051"
SYMBOL_NOT_FOUND_CODES = ("1014", "1332", "invalid-parameter", "invalid-contract-code")


def _max_lever_rate(entry: Dict[str, Any]) -> float:
    """Highest tier of ``lever_rate`` ("1,2,5,...,75"), or the default."""
    raw = first_present(entry, ("lever_rate", "max_lever_rate"))
    if raw is None:
        return DEFAULT_MAX_LEVERAGE
    tiers = [to_float(part) for part in str(raw).split(",")]
    return max(tiers) or DEFAULT_MAX_LEVERAGE


class HtxClient(SignedRestClient):
    exchange_id = "htx"
    display_name = "HTX"

    EMPTY_RESULT_CODES = frozenset({NO_CANCELLABLE_ORDERS_CODE})
    EMPTY_RESULT_MESSAGES = ("no cancellable orders", "no orders to cancel")

    def _build_signer(self, credentials):
        host = urlparse(self.base_url).netloc
        return HtxSigner(credentials, host=host, clock=self._clock)

    def _extract_error(self, status_code, payload):
        if isinstance(payload, dict) and "status" in payload:
            if payload.get("status") != "ok":
                message = first_present(payload, ("err_msg", "err-msg")) or str(payload)
                code = first_present(payload, ("err_code", "err-code"))
                return (str(message), str(code) if code is not None else None)
            return None
        return super()._extract_error(status_code, payload)


class HtxHandler(ExchangeHandler):
    exchange_id = "htx"
    display_name = "HTX"
    uses_contracts = True

    def format_symbol(self, symbol: str) -> str:
        return f"{base_asset(symbol)}-USDT"

    def _public(self, endpoint: str, venue_symbol: str) -> Dict[str, Any]:
        try:
            return self.client.public_get(endpoint, {"contract_code": venue_symbol})
        except ExchangeApiError as exc:
            if exc.code in SYMBOL_NOT_FOUND_CODES:
                raise SymbolNotFoundError(f"HTX does not list {venue_symbol}") from exc
            raise

    def get_price(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        tick = self._public("/linear-swap-ex/market/detail/merged", venue_symbol).get("tick") or {}
        if tick.get("close") is None:
            raise SymbolNotFoundError(f"HTX does not list {venue_symbol}")
        return to_float(tick.get("close"))

    def get_funding_rate(self, symbol: str) -> float:
        venue_symbol = self.format_symbol(symbol)
        data = self._public("/linear-swap-api/v1/swap_funding_rate", venue_symbol).get("data") or {}
        if not data:
            raise SymbolNotFoundError(f"HTX does not list {venue_symbol}")
        return funding_rate_to_float(data.get("funding_rate"))

    def _load_symbol_table(self) -> Dict[str, SymbolInfo]:
        rows = self.client.public_get("/linear-swap-api/v1/swap_contract_info", {"business_type": "swap"}).get("data") or []
        table = {
            entry.get("contract_code"): SymbolInfo(
                quantity_precision=0,
                max_leverage=_max_lever_rate(entry),
                contract_multiplier=to_decimal(entry.get("contract_size")),
            )
            for entry in rows
        }
        LOGGER.info("htx_symbol_table_loaded count=%d", len(table))
        return table

    def _position_rows(self, venue_symbol: str) -> List[Dict[str, Any]]:
        payload = self.client.signed_request(
            "/linear-swap-api/v1/swap_position_info", "POST", {"contract_code": venue_symbol}
        )
        return [row for row in payload.get("data") or [] if row.get("contract_code") == venue_symbol]

    def get_position(self, symbol: str) -> PositionSnapshot:
        venue_symbol = self.format_symbol(symbol)
        for row in self._position_rows(venue_symbol):
            volume = to_decimal(row.get("volume"), Decimal("0"))
            if volume <= 0:
                continue
            return PositionSnapshot(
                symbol=venue_symbol,
                side=LONG if row.get("direction") == "buy" else SHORT,
                size=volume,
                unrealized_pnl=to_float(row.get("profit_unreal")),
                margin_type="ISOLATED",
            )
        return PositionSnapshot.flat(venue_symbol)

    def set_margin_type(self, symbol: str, margin_type: str = "ISOLATED") -> Dict[str, Any]:
        # every call here goes through the isolated-margin endpoints
        LOGGER.info("htx_margin_type_noop symbol=%s margin=%s", self.format_symbol(symbol), margin_type)
        return {"skipped": True, "reason": "isolated endpoints are used for every call"}

    def _current_leverage(self, venue_symbol: str) -> Optional[int]:
        payload = self.client.signed_request(
            "/linear-swap-api/v1/swap_account_info", "POST", {"contract_code": venue_symbol}
        )
        for row in payload.get("data") or []:
            if row.get("contract_code") == venue_symbol and row.get("lever_rate") is not None:
                return int(to_float(row.get("lever_rate")))
        return None

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        if self._current_leverage(venue_symbol) == int(leverage):
            LOGGER.info("htx_leverage_skip symbol=%s leverage=%s", venue_symbol, leverage)
            return {"skipped": True, "leverage": int(leverage)}
        LOGGER.info("htx_leverage_set symbol=%s leverage=%s", venue_symbol, leverage)
        return self.client.signed_request(
            "/linear-swap-api/v1/swap_switch_lever_rate",
            "POST",
            {"contract_code": venue_symbol, "lever_rate": int(leverage)},
        )

    def place_order(self, symbol: str, side: str, quantity: Decimal, leverage: Optional[int] = None) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        lever_rate = int(leverage) if leverage is not None else self._current_leverage(venue_symbol) or 1
        payload = {
            "contract_code": venue_symbol,
            "volume": int(quantity),
            "direction": "buy" if normalise_side(side) == BUY else "sell",
            "offset": "open",
            "lever_rate": lever_rate,
            "order_price_type": "opponent",
        }
        LOGGER.info(
            "htx_order_submit contract=%s direction=%s volume=%s lever=%s",
            venue_symbol,
            payload["direction"],
            payload["volume"],
            lever_rate,
        )
        data = self.client.signed_request("/linear-swap-api/v1/swap_order", "POST", payload).get("data") or {}
        return {"orderId": first_present(data, ("order_id_str", "order_id"))}

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        venue_symbol = self.format_symbol(symbol)
        try:
            return self.client.signed_request(
                "/linear-swap-api/v1/swap_cancelall", "POST", {"contract_code": venue_symbol}
            )
        except ExchangeApiError as exc:
            if self._swallow_empty(exc, "cancel", venue_symbol):
                return {}
            raise

    def _submit_close(self, symbol: str, position: PositionSnapshot) -> Dict[str, Any]:
        payload = {
            "contract_code": position.symbol,
            "volume": int(position.size),
            "direction": "sell" if position.side == LONG else "buy",
        }
        data = self.client.signed_request(
            "/linear-swap-api/v1/swap_lightning_close_position", "POST", payload
        ).get("data") or {}
        return {"orderId": first_present(data, ("order_id_str", "order_id"))}
