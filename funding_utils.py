from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from precision_utils import normalize_funding_rate

LOGGER = logging.getLogger(__name__)

DEFAULT_FUNDING_INTERVALS = {
    # USDT perpetuals on these venues settle every 8 hours unless a contract says otherwise.
    'binance': 8.0,
    'bybit': 8.0,
    'bitget': 8.0,
    'kucoin': 8.0,
    'gateio': 8.0,
    'htx': 8.0,
    'whitebit': 8.0,
    'mexc': 8.0,
}


def derive_funding_interval_hours(exchange: str) -> Optional[float]:
    """Settlement interval in hours for the venue, or None when it is unknown."""
    return DEFAULT_FUNDING_INTERVALS.get((exchange or '').lower())


def sort_rates_by_value(rates: Dict[str, Optional[float]]) -> Dict[str, Optional[float]]:
    """Order exchanges by ascending rate; venues without a rate go last."""
    return dict(
        sorted(rates.items(), key=lambda item: (item[1] is None, item[1] if item[1] is not None else 0.0))
    )


def funding_spread(rates: Dict[str, Optional[float]]) -> Optional[Dict[str, Any]]:
    """Highest minus lowest rate, i.e. the carry of shorting the high venue against the low one."""
    present = {exchange: rate for exchange, rate in rates.items() if rate is not None}
    if len(present) < 2:
        return None
    low_exchange = min(present, key=present.get)
    high_exchange = max(present, key=present.get)
    value = present[high_exchange] - present[low_exchange]
    return {
        'value': float(normalize_funding_rate(value) or 0),
        'long': low_exchange,
        'short': high_exchange,
    }


def collect_funding_rates(
    registry: Any,
    symbol: str,
    exchanges: Optional[Iterable[str]] = None,
    *,
    max_workers: int = 8,
) -> Dict[str, Any]:
    """Fetch the current funding rate of ``symbol`` on every requested venue concurrently.

    A venue that fails (unlisted symbol, network error) reports ``None`` and
    its error message; it never hides the other venues' rates.
    """
    selected = [ex.strip().lower() for ex in (exchanges or registry.ids()) if ex and ex.strip()]
    rates: Dict[str, Optional[float]] = {}
    errors: Dict[str, str] = {}

    def _fetch(exchange: str) -> float:
        handler = registry.get(exchange)
        if handler is None:
            raise ValueError(f'Exchange "{exchange}" is not supported')
        return handler.get_funding_rate(symbol)

    if selected:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(selected)))) as executor:
            futures = {exchange: executor.submit(_fetch, exchange) for exchange in selected}
            for exchange, future in futures.items():
                try:
                    rates[exchange] = future.result()
                except Exception as exc:
                    LOGGER.warning("funding_rate_failed exchange=%s symbol=%s err=%s", exchange, symbol, exc)
                    rates[exchange] = None
                    errors[exchange] = str(exc)

    ordered = sort_rates_by_value(rates)
    return {
        'symbol': symbol,
        'rates': ordered,
        'intervals': {exchange: derive_funding_interval_hours(exchange) for exchange in ordered},
        'errors': errors,
        'spread': funding_spread(ordered),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }
