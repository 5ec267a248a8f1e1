"""Multi-exchange order workflows built on the handler registry.

Every workflow fans its legs out on a thread pool and joins on all of them;
a failing leg is recorded in the result list and never aborts its siblings.
Within one leg the remote calls run strictly in sequence.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from precision_utils import to_decimal
from trading.credentials import CredentialResolver
from trading.errors import (
    ConfigurationError,
    LeverageExceededError,
    NotProfitableError,
    UnsupportedExchangeError,
    ValidationError,
)
from trading.exchanges.base import ExchangeHandler, normalise_side
from trading.registry import HandlerRegistry

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_leverage(value: Any, index: int) -> int:
    leverage = to_decimal(value)
    if leverage is None or leverage <= 0:
        raise ValidationError(f"Order #{index}: leverage must be a positive number")
    if leverage != leverage.to_integral_value():
        raise ValidationError(f"Order #{index}: leverage must be a whole number")
    return int(leverage)


def _parse_amount(value: Any, index: int) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"Order #{index}: amount must be a positive number")
    amount = to_decimal(value)
    if amount is None or amount <= 0:
        raise ValidationError(f"Order #{index}: amount must be a positive number")
    return amount


@dataclass(frozen=True)
class OrderLeg:
    exchange: str
    side: str
    leverage: int
    amount: Decimal

    @classmethod
    def from_payload(cls, payload: Any, index: int = 1) -> "OrderLeg":
        """Validate one ``{exchange, side, leverage, amount}`` request object."""
        if not isinstance(payload, dict):
            raise ValidationError(f"Order #{index} must be an object")
        exchange = str(payload.get("exchange") or "").strip().lower()
        if not exchange:
            raise ValidationError(f"Order #{index}: exchange is required")
        try:
            side = normalise_side(payload.get("side"))
        except ValidationError as exc:
            raise ValidationError(f"Order #{index}: {exc}") from exc
        return cls(
            exchange=exchange,
            side=side,
            leverage=_parse_leverage(payload.get("leverage"), index),
            amount=_parse_amount(payload.get("amount"), index),
        )


@dataclass
class LegResult:
    exchange: str
    side: Optional[str]
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"exchange": self.exchange}
        if self.side is not None:
            result["side"] = self.side
        result.update(self.extra)
        result["success"] = self.success
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


class OrderOrchestrator:
    def __init__(
        self,
        registry: HandlerRegistry,
        credentials: CredentialResolver,
        *,
        max_workers: int = 8,
        margin_type: str = "ISOLATED",
    ) -> None:
        self.registry = registry
        self.credentials = credentials
        self.max_workers = max(1, int(max_workers))
        self.margin_type = margin_type

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    def _fan_out(self, fn: Callable[[T], Any], items: Sequence[T]) -> List[Tuple[Any, Optional[BaseException]]]:
        """Run ``fn`` over ``items`` concurrently; results keep the input order."""
        if not items:
            return []
        outcomes: List[Tuple[Any, Optional[BaseException]]] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as executor:
            futures = [executor.submit(fn, item) for item in items]
            for future in futures:
                try:
                    outcomes.append((future.result(), None))
                except Exception as exc:
                    outcomes.append((None, exc))
        return outcomes

    def resolve_handler(self, exchange_id: str) -> ExchangeHandler:
        """Registry lookup plus credential check, in that order."""
        handler = self.registry.get(exchange_id)
        if handler is None:
            raise UnsupportedExchangeError(f'Exchange "{exchange_id}" is not supported')
        if not self.credentials.has_credentials(exchange_id):
            raise ConfigurationError(f"Missing API credentials for {exchange_id}")
        return handler

    # ------------------------------------------------------------------
    # multi-leg open
    # ------------------------------------------------------------------
    def _execute_leg(self, symbol: str, leg: OrderLeg) -> Dict[str, Any]:
        if leg.amount <= 0 or leg.leverage <= 0:
            raise ValidationError(f"{leg.exchange}: amount and leverage must be positive")
        handler = self.resolve_handler(leg.exchange)
        LOGGER.info(
            "order_leg_start exchange=%s symbol=%s side=%s leverage=%s amount=%s",
            leg.exchange,
            symbol,
            leg.side,
            leg.leverage,
            leg.amount,
        )

        # Any existing position on this venue/symbol is flattened before opening.
        closed = handler.close_position(symbol)
        if closed.get("orderId") is not None:
            LOGGER.warning(
                "order_leg_prior_position_closed exchange=%s symbol=%s order_id=%s",
                leg.exchange,
                symbol,
                closed.get("orderId"),
            )

        symbol_info = handler.get_symbol_info(symbol)
        quantity = handler.to_order_quantity(symbol_info, leg.amount)

        handler.set_margin_type(symbol, self.margin_type)

        if symbol_info.max_leverage > 0 and leg.leverage > symbol_info.max_leverage:
            raise LeverageExceededError(
                f"{handler.display_name}: leverage {leg.leverage}x exceeds the maximum "
                f"{symbol_info.max_leverage:g}x for {handler.format_symbol(symbol)}"
            )

        if not handler.leverage_in_order:
            handler.set_leverage(symbol, leg.leverage)

        order = handler.place_order(symbol, leg.side, quantity, leverage=leg.leverage)
        LOGGER.info(
            "order_leg_submitted exchange=%s symbol=%s side=%s quantity=%s order_id=%s",
            leg.exchange,
            symbol,
            leg.side,
            quantity,
            order.get("orderId"),
        )
        return {
            "price": None,
            "quantity": float(quantity),
            "leverage": leg.leverage,
            "orderId": order.get("orderId"),
            "timestamp": now_utc_iso(),
        }

    def place_multi_order(self, symbol: str, legs: Sequence[OrderLeg]) -> Dict[str, Any]:
        outcomes = self._fan_out(lambda leg: self._execute_leg(symbol, leg), list(legs))
        results: List[Dict[str, Any]] = []
        for leg, (data, exc) in zip(legs, outcomes):
            if exc is None:
                results.append(LegResult(leg.exchange, leg.side, True, data=data).to_dict())
            else:
                LOGGER.warning(
                    "order_leg_failed exchange=%s symbol=%s side=%s error=%s", leg.exchange, symbol, leg.side, exc
                )
                results.append(LegResult(leg.exchange, leg.side, False, error=str(exc)).to_dict())
        success = sum(1 for item in results if item["success"])
        LOGGER.info("order_multi_done symbol=%s success=%d total=%d", symbol, success, len(results))
        return {
            "symbol": symbol,
            "results": results,
            "summary": {"total": len(results), "success": success, "failed": len(results) - success},
        }

    # ------------------------------------------------------------------
    # PNL and closing
    # ------------------------------------------------------------------
    def _position_pnl(self, symbol: str, position: Dict[str, Any]) -> Dict[str, Any]:
        exchange = str(position.get("exchange") or "").strip().lower()
        handler = self.resolve_handler(exchange)
        pnl = handler.get_pnl(position.get("symbol") or symbol)
        return {**position, "exchange": exchange, "pnl": pnl["pnl"], "size": pnl["size"], "side": pnl["side"]}

    def fetch_pnl(self, symbol: str, positions: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        outcomes = self._fan_out(lambda pos: self._position_pnl(symbol, pos), list(positions))
        results = []
        for data, exc in outcomes:
            if exc is None:
                results.append({"success": True, "data": data})
            else:
                results.append({"success": False, "error": str(exc)})
        return {"results": results}

    def _close_one(self, symbol: str, position: Dict[str, Any]) -> Dict[str, Any]:
        exchange = str(position.get("exchange") or "").strip().lower()
        target = position.get("symbol") or symbol
        handler = self.resolve_handler(exchange)
        LOGGER.info("order_close exchange=%s symbol=%s", exchange, target)
        return handler.close_position(target)

    def _close_many(self, symbol: str, positions: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        outcomes = self._fan_out(lambda pos: self._close_one(symbol, pos), list(positions))
        results = []
        for position, (data, exc) in zip(positions, outcomes):
            leg = LegResult(
                exchange=str(position.get("exchange") or "").strip().lower(),
                side=None,
                success=exc is None,
                data=data,
                error=None if exc is None else str(exc),
                extra={"symbol": position.get("symbol") or symbol},
            )
            if exc is not None:
                LOGGER.warning("order_close_failed exchange=%s symbol=%s error=%s", leg.exchange, leg.extra["symbol"], exc)
            results.append(leg.to_dict())
        return results

    def close_hedged(self, symbol: str, positions: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Close a two-leg hedge only when the combined unrealised PNL is positive."""
        if len(positions) != 2:
            raise ValidationError("close-hedged requires exactly 2 positions")
        for position in positions:
            if not isinstance(position, dict) or not position.get("exchange"):
                raise ValidationError("Each position requires an exchange")

        outcomes = self._fan_out(lambda pos: self._position_pnl(symbol, pos), list(positions))
        for _, exc in outcomes:
            if exc is not None:
                raise exc
        pnl_legs = [data for data, _ in outcomes]
        closed_pnl = [float(leg["pnl"]) for leg in pnl_legs]
        total_pnl = sum(closed_pnl)
        LOGGER.info("order_close_hedged_pnl symbol=%s legs=%s total=%.4f", symbol, closed_pnl, total_pnl)

        if total_pnl <= 0:
            raise NotProfitableError(
                f"Cannot close hedge: total PNL is {total_pnl:.4f} USDT (<= 0)",
                total_pnl=total_pnl,
                pnl_legs=pnl_legs,
            )

        results = self._close_many(symbol, positions)
        return {
            "message": "Hedged positions closed",
            "results": results,
            "closedPnl": closed_pnl,
            "totalPnl": total_pnl,
        }

    def force_close(self, symbol: str, positions: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        """Close every listed position regardless of PNL."""
        for position in positions:
            if not isinstance(position, dict) or not position.get("exchange"):
                raise ValidationError("Each position requires an exchange")
        LOGGER.warning("order_force_close symbol=%s count=%d", symbol, len(positions))
        results = self._close_many(symbol, positions)
        closed = sum(1 for item in results if item["success"])
        return {"message": f"Force close finished: {closed}/{len(results)} succeeded", "results": results}

    def close_single(self, symbol: str, exchange: str) -> Dict[str, Any]:
        handler = self.resolve_handler((exchange or "").strip().lower())
        data = handler.close_position(symbol)
        if data.get("orderId") is None:
            message = data.get("message") or f"No open position for {symbol}"
        else:
            message = f"Position {symbol} on {exchange} closed"
        return {"success": True, "message": message, "data": data}
