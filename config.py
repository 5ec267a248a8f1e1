# Configuration

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

try:
    import config_private  # local secrets; attributes managed per account
except ImportError:  # pragma: no cover - secrets file optional
    config_private = None


def _get_private(attr_name: str, env_name: Optional[str] = None, default: Optional[str] = None):
    """Fetch secrets from config_private first, then environment variables."""
    if config_private and hasattr(config_private, attr_name):
        return getattr(config_private, attr_name)
    return os.getenv(env_name or attr_name, default)


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


TRADING_MODES = ('production', 'testnet')

# Global deployment mode; anything unrecognised falls back to testnet so a typo
# never routes orders to live venues.
TRADING_MODE = str(_get_private('TRADING_MODE', 'TRADING_MODE', 'testnet')).strip().lower()
if TRADING_MODE not in TRADING_MODES:
    TRADING_MODE = 'testnet'

# USDT-margined perpetual endpoints per venue. Venues without a futures
# testnet list their production host for both modes.
EXCHANGES = {
    'binance': {
        'name': 'Binance',
        'urls': {
            'production': 'https://fapi.binance.com',
            'testnet': 'https://testnet.binancefuture.com',
        },
    },
    'bybit': {
        'name': 'Bybit',
        'urls': {
            'production': 'https://api.bybit.com',
            'testnet': 'https://api-testnet.bybit.com',
        },
    },
    'bitget': {
        # demo trading shares the production host and is selected by the `paptrading` header
        'name': 'Bitget',
        'urls': {
            'production': 'https://api.bitget.com',
            'testnet': 'https://api.bitget.com',
        },
    },
    'kucoin': {
        'name': 'KuCoin',
        'urls': {
            'production': 'https://api-futures.kucoin.com',
            'testnet': 'https://api-sandbox-futures.kucoin.com',
        },
    },
    'gateio': {
        'name': 'Gate.io',
        'urls': {
            'production': 'https://api.gateio.ws',
            'testnet': 'https://fx-api-testnet.gateio.ws',
        },
    },
    'htx': {
        'name': 'HTX',
        'urls': {
            'production': 'https://api.hbdm.com',
        },
    },
    'whitebit': {
        'name': 'WhiteBIT',
        'urls': {
            'production': 'https://whitebit.com',
        },
    },
    'mexc': {
        'name': 'MEXC',
        'urls': {
            'production': 'https://contract.mexc.com',
        },
    },
}

# Venues whose API keys are bound to a passphrase.
PASSPHRASE_EXCHANGES = ('bitget', 'kucoin')

REST_CONNECTION_CONFIG = {
    'timeout': float(_get_private('REST_TIMEOUT', 'REST_TIMEOUT', '10')),
    'recv_window': int(float(_get_private('REST_RECV_WINDOW', 'REST_RECV_WINDOW', '5000'))),
    'user_agent': str(_get_private('REST_USER_AGENT', 'REST_USER_AGENT', 'FR-OrderRouter/1.0')),
}

ORDER_MAX_WORKERS = int(float(_get_private('ORDER_MAX_WORKERS', 'ORDER_MAX_WORKERS', '8')))

LOG_DIR = str(_get_private('APP_LOG_DIR', 'APP_LOG_DIR', os.path.join('logs', 'order_router')))
LOG_FILE_NAME = 'order_router.log'
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
LOG_BACKUP_COUNT = 4


@dataclass(frozen=True)
class ExchangeConfig:
    exchange_id: str
    display_name: str
    base_url: str
    supports_testnet: bool


@dataclass(frozen=True)
class TradingConfig:
    """Startup snapshot handed to the registry, clients and orchestrator."""

    mode: str
    exchanges: Dict[str, ExchangeConfig] = field(default_factory=dict)
    request_timeout: float = 10.0
    recv_window: int = 5000
    user_agent: str = 'FR-OrderRouter/1.0'
    max_workers: int = 8

    @property
    def is_testnet(self) -> bool:
        return self.mode == 'testnet'

    def exchange(self, exchange_id: str) -> Optional[ExchangeConfig]:
        return self.exchanges.get((exchange_id or '').lower())


def resolve_base_url(exchange_id: str, mode: str) -> str:
    urls = EXCHANGES[exchange_id]['urls']
    return urls.get(mode) or urls['production']


def build_trading_config(mode: Optional[str] = None) -> TradingConfig:
    """Build the immutable configuration used for the lifetime of the process."""
    selected = (mode or TRADING_MODE).strip().lower()
    if selected not in TRADING_MODES:
        raise ValueError(f"Unknown trading mode `{selected}`; expected one of {TRADING_MODES}")

    exchanges = {
        exchange_id: ExchangeConfig(
            exchange_id=exchange_id,
            display_name=meta['name'],
            base_url=resolve_base_url(exchange_id, selected),
            supports_testnet='testnet' in meta['urls'],
        )
        for exchange_id, meta in EXCHANGES.items()
    }
    return TradingConfig(
        mode=selected,
        exchanges=exchanges,
        request_timeout=float(REST_CONNECTION_CONFIG.get('timeout', 10)),
        recv_window=int(REST_CONNECTION_CONFIG.get('recv_window', 5000)),
        user_agent=str(REST_CONNECTION_CONFIG.get('user_agent', 'FR-OrderRouter/1.0')),
        max_workers=max(1, ORDER_MAX_WORKERS),
    )
