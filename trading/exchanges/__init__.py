"""Per-venue REST clients and handlers."""

from trading.exchanges.base import ExchangeHandler, PositionSnapshot, SymbolInfo
from trading.exchanges.binance import BinanceClient, BinanceHandler
from trading.exchanges.bitget import BitgetClient, BitgetHandler
from trading.exchanges.bybit import BybitClient, BybitHandler
from trading.exchanges.gateio import GateioClient, GateioHandler
from trading.exchanges.htx import HtxClient, HtxHandler
from trading.exchanges.kucoin import KucoinClient, KucoinHandler
from trading.exchanges.mexc import MexcClient, MexcHandler
from trading.exchanges.whitebit import WhitebitClient, WhitebitHandler

__all__ = [
    "BinanceClient",
    "BinanceHandler",
    "BitgetClient",
    "BitgetHandler",
    "BybitClient",
    "BybitHandler",
    "ExchangeHandler",
    "GateioClient",
    "GateioHandler",
    "HtxClient",
    "HtxHandler",
    "KucoinClient",
    "KucoinHandler",
    "MexcClient",
    "MexcHandler",
    "PositionSnapshot",
    "SymbolInfo",
    "WhitebitClient",
    "WhitebitHandler",
]
