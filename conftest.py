"""Pytest configuration and fixtures."""

import json
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import pytest
import requests

import config
from trading.credentials import CredentialResolver
from trading.errors import ExchangeApiError
from trading.exchanges.base import ExchangeHandler, PositionSnapshot, SymbolInfo, base_asset
from trading.registry import HANDLER_TYPES, HandlerRegistry

FIXED_NOW = 1700000000.0

CREDENTIALS = {
    "BINANCE_API_KEY": "bn-key",
    "BINANCE_SECRET_KEY": "bn-secret",
    "BYBIT_API_KEY": "by-key",
    "BYBIT_SECRET_KEY": "by-secret",
    "BITGET_API_KEY": "bg-key",
    "BITGET_SECRET_KEY": "bg-secret",
    "BITGET_PASSPHRASE": "bg-pass",
    "KUCOIN_API_KEY": "kc-key",
    "KUCOIN_SECRET_KEY": "kc-secret",
    "KUCOIN_PASSPHRASE": "kc-pass",
    "GATEIO_API_KEY": "gt-key",
    "GATEIO_SECRET_KEY": "gt-secret",
    "HTX_API_KEY": "htx-key",
    "HTX_SECRET_KEY": "htx-secret",
    "WHITEBIT_API_KEY": "wb-key",
    "WHITEBIT_SECRET_KEY": "wb-secret",
    "MEXC_API_KEY": "mx-key",
    "MEXC_SECRET_KEY": "mx-secret",
}


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: Optional[str] = None) -> None:
        self.status_code = status_code
        if text is not None:
            self.text = text
        elif payload is None:
            self.text = ""
        else:
            self.text = json.dumps(payload)
        self.content = self.text.encode("utf-8")

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    """Stand-in for ``requests.Session`` routing by ``(method, path)``.

    Each route holds a queue of responses; the last one repeats. Every call
    is recorded with its parsed query and JSON body.
    """

    def __init__(self) -> None:
        self.routes: Dict[tuple, List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, path: str, payload: Any = None, status: int = 200, *, text: Optional[str] = None, exc: Optional[Exception] = None):
        self.routes.setdefault((method.upper(), path), []).append(exc or FakeResponse(payload, status, text))
        return self

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        parsed = urlparse(url)
        query = {key: values[0] for key, values in parse_qs(parsed.query, keep_blank_values=True).items()}
        for key, value in (params or {}).items():
            query[key] = str(value)
        call = {
            "method": method.upper(),
            "path": parsed.path,
            "query": query,
            "data": data,
            "json": json.loads(data) if data else None,
            "headers": dict(headers or {}),
            "timeout": timeout,
        }
        self.calls.append(call)
        queue = self.routes.get((call["method"], parsed.path))
        if not queue:
            return FakeResponse({"error": f"no route for {method} {parsed.path}"}, 404)
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method.upper() and call["path"] == path]


class StubHandler(ExchangeHandler):
    """In-memory handler recording every contract call in ``calls``."""

    def __init__(
        self,
        exchange_id: str,
        *,
        max_leverage: float = 20.0,
        quantity_precision: int = 3,
        contract_multiplier=None,
        position: Optional[PositionSnapshot] = None,
        pnl: float = 0.0,
        fail_on=(),
        leverage_in_order: bool = False,
        funding_rate: float = 0.0001,
    ) -> None:
        self.exchange_id = exchange_id
        self.display_name = exchange_id.title()
        self.uses_contracts = contract_multiplier is not None
        self.leverage_in_order = leverage_in_order
        super().__init__(SimpleNamespace(base_url=f"stub://{exchange_id}", is_empty_result=lambda exc: False))
        self.info = SymbolInfo(quantity_precision, max_leverage, contract_multiplier)
        self.position = position
        self.pnl = pnl
        self.fail_on = set(fail_on)
        self.funding_rate = funding_rate
        self.calls: List[tuple] = []

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise ExchangeApiError(self.display_name, name, f"{name} rejected")

    def names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def format_symbol(self, symbol):
        return f"{base_asset(symbol)}USDT"

    def _load_symbol_table(self):
        self._record("load_symbols")
        return {"BTCUSDT": self.info, "ETHUSDT": self.info}

    def get_price(self, symbol):
        self._record("get_price", symbol)
        return 50000.0

    def get_funding_rate(self, symbol):
        self._record("get_funding_rate", symbol)
        return self.funding_rate

    def get_position(self, symbol):
        self._record("get_position", symbol)
        if self.position is not None:
            return self.position
        if self.pnl:
            return PositionSnapshot(self.format_symbol(symbol), "long", Decimal("1"), self.pnl)
        return PositionSnapshot.flat(self.format_symbol(symbol))

    def set_margin_type(self, symbol, margin_type="ISOLATED"):
        self._record("set_margin_type", symbol, margin_type)
        return {}

    def set_leverage(self, symbol, leverage):
        self._record("set_leverage", symbol, leverage)
        return {}

    def place_order(self, symbol, side, quantity, leverage=None):
        self._record("place_order", symbol, side, quantity, leverage)
        return {"orderId": f"{self.exchange_id}-1"}

    def cancel_all_open_orders(self, symbol):
        self._record("cancel_all", symbol)
        return {}

    def _submit_close(self, symbol, position):
        self._record("close_order", symbol, position.side, position.size)
        self.position = None
        self.pnl = 0.0
        return {"orderId": f"{self.exchange_id}-close"}


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def credentials_lookup():
    return dict(CREDENTIALS)


@pytest.fixture
def resolver(credentials_lookup):
    return CredentialResolver(lookup=credentials_lookup.get)


@pytest.fixture
def trading_config():
    return config.build_trading_config("production")


@pytest.fixture
def make_handler(fake_session, resolver, trading_config):
    """Build a real handler for ``exchange_id`` wired to the fake session."""

    def _make(exchange_id: str, *, with_credentials: bool = True, testnet: bool = False):
        cfg = config.build_trading_config("testnet") if testnet else trading_config
        client_cls, handler_cls = HANDLER_TYPES[exchange_id]
        client = client_cls(
            cfg.exchange(exchange_id),
            resolver.get_credentials(exchange_id) if with_credentials else None,
            session=fake_session,
            timeout=cfg.request_timeout,
            user_agent=cfg.user_agent,
            recv_window=cfg.recv_window,
            testnet=cfg.is_testnet,
            clock=lambda: FIXED_NOW,
        )
        return handler_cls(client)

    return _make


@pytest.fixture
def stub_handler():
    return StubHandler


@pytest.fixture
def stub_registry():
    def _build(*handlers):
        return HandlerRegistry({handler.exchange_id: handler for handler in handlers})

    return _build


@pytest.fixture
def transport_error():
    return requests.ConnectionError("connection reset by peer")
