"""Per-exchange API credential lookup."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import config
from trading.errors import ConfigurationError

Lookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ExchangeCredentials:
    exchange_id: str
    api_key: str = field(repr=False)
    secret_key: str = field(repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)


def _config_lookup(name: str) -> Optional[str]:
    return config._get_private(name, name)


class CredentialResolver:
    """Resolve ``{EXCHANGE}_API_KEY`` / ``_SECRET_KEY`` / ``_PASSPHRASE`` values.

    ``lookup`` defaults to ``config_private.py`` then the environment; tests pass
    a plain ``dict.get``.
    """

    def __init__(self, lookup: Optional[Lookup] = None) -> None:
        self._lookup = lookup or _config_lookup

    def _value(self, name: str) -> str:
        raw = self._lookup(name)
        return str(raw).strip() if raw is not None else ""

    @staticmethod
    def requires_passphrase(exchange_id: str) -> bool:
        return (exchange_id or "").lower() in config.PASSPHRASE_EXCHANGES

    def _read(self, exchange_id: str) -> ExchangeCredentials:
        exchange_key = (exchange_id or "").strip().lower()
        prefix = exchange_key.upper()
        passphrase = self._value(f"{prefix}_PASSPHRASE")
        return ExchangeCredentials(
            exchange_id=exchange_key,
            api_key=self._value(f"{prefix}_API_KEY"),
            secret_key=self._value(f"{prefix}_SECRET_KEY"),
            passphrase=passphrase or None,
        )

    def has_credentials(self, exchange_id: str) -> bool:
        if not exchange_id:
            return False
        creds = self._read(exchange_id)
        if not (creds.api_key and creds.secret_key):
            return False
        if self.requires_passphrase(exchange_id) and not creds.passphrase:
            return False
        return True

    def get_credentials(self, exchange_id: str) -> ExchangeCredentials:
        if not self.has_credentials(exchange_id):
            raise ConfigurationError(f"Missing API credentials for {exchange_id}")
        return self._read(exchange_id)
