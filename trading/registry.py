"""Static exchange id -> handler table, built once at startup."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple, Type

import requests

from config import TradingConfig
from trading.credentials import CredentialResolver
from trading.exchanges import (
    BinanceClient,
    BinanceHandler,
    BitgetClient,
    BitgetHandler,
    BybitClient,
    BybitHandler,
    ExchangeHandler,
    GateioClient,
    GateioHandler,
    HtxClient,
    HtxHandler,
    KucoinClient,
    KucoinHandler,
    MexcClient,
    MexcHandler,
    WhitebitClient,
    WhitebitHandler,
)
from trading.rest_client import SignedRestClient

LOGGER = logging.getLogger(__name__)

HANDLER_TYPES: Dict[str, Tuple[Type[SignedRestClient], Type[ExchangeHandler]]] = {
    "binance": (BinanceClient, BinanceHandler),
    "bybit": (BybitClient, BybitHandler),
    "bitget": (BitgetClient, BitgetHandler),
    "kucoin": (KucoinClient, KucoinHandler),
    "gateio": (GateioClient, GateioHandler),
    "htx": (HtxClient, HtxHandler),
    "whitebit": (WhitebitClient, WhitebitHandler),
    "mexc": (MexcClient, MexcHandler),
}


class HandlerRegistry:
    def __init__(self, handlers: Dict[str, ExchangeHandler]) -> None:
        self._handlers = dict(handlers)

    def get(self, exchange_id: str) -> Optional[ExchangeHandler]:
        """Handler for ``exchange_id`` or ``None`` when the venue is unsupported."""
        return self._handlers.get((exchange_id or "").strip().lower())

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._handlers)


def build_registry(
    trading_config: TradingConfig,
    resolver: CredentialResolver,
    session: Optional[requests.Session] = None,
) -> HandlerRegistry:
    """Instantiate one client + handler per configured venue.

    Venues without credentials still get a handler (public market data works);
    their private calls raise ``ConfigurationError``. A shared ``session`` is
    used by every client when given.
    """
    handlers: Dict[str, ExchangeHandler] = {}
    for exchange_id, (client_cls, handler_cls) in HANDLER_TYPES.items():
        exchange_config = trading_config.exchange(exchange_id)
        if exchange_config is None:
            continue
        credentials = resolver.get_credentials(exchange_id) if resolver.has_credentials(exchange_id) else None
        client = client_cls(
            exchange_config,
            credentials,
            session=session,
            timeout=trading_config.request_timeout,
            user_agent=trading_config.user_agent,
            recv_window=trading_config.recv_window,
            testnet=trading_config.is_testnet,
        )
        handlers[exchange_id] = handler_cls(client)
        LOGGER.info(
            "registry_handler_ready exchange=%s base_url=%s credentials=%s",
            exchange_id,
            exchange_config.base_url,
            credentials is not None,
        )
    return HandlerRegistry(handlers)
