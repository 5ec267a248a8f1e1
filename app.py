import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import requests
from flask import Blueprint, Flask, current_app, jsonify, request

import config
from funding_utils import collect_funding_rates
from trading.credentials import CredentialResolver
from trading.errors import NotProfitableError, TradeExecutionError, UnsupportedExchangeError, ValidationError
from trading.order_orchestrator import OrderLeg, OrderOrchestrator
from trading.registry import HandlerRegistry, build_registry

LOGGER = logging.getLogger(__name__)

_LOGGING_CONFIGURED = False

api = Blueprint('order_router', __name__)


def now_utc_iso() -> str:
    """Return current time as ISO 8601 string in UTC with timezone info."""
    return datetime.now(timezone.utc).isoformat()


def configure_logging() -> None:
    """Rotating file log under LOG_DIR plus WARNING-and-up on stdout."""
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    os.makedirs(config.LOG_DIR, exist_ok=True)
    log_path = os.path.join(config.LOG_DIR, config.LOG_FILE_NAME)

    handler = RotatingFileHandler(
        log_path,
        maxBytes=config.LOG_MAX_BYTES,
        backupCount=config.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    formatter = logging.Formatter("%(asctime)s %(name)s [%(levelname)s] %(message)s")
    handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(logging.WARNING)  # order flow goes to the file; stdout only gets problems
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.addHandler(stream_handler)

    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True


def _orchestrator() -> OrderOrchestrator:
    return current_app.extensions['order_router']['orchestrator']


def _registry() -> HandlerRegistry:
    return current_app.extensions['order_router']['registry']


def _error_response(exc: Exception, **extra: Any):
    if isinstance(exc, TradeExecutionError):
        status = exc.status_code
    else:
        LOGGER.exception("order_router_unhandled_error err=%s", exc)
        status = 500
    body = {'error': type(exc).__name__, 'message': str(exc), 'timestamp': now_utc_iso()}
    body.update(extra)
    return jsonify(body), status


def _symbol_from(payload: dict) -> str:
    symbol = payload.get('symbol')
    if not isinstance(symbol, str) or not symbol.strip():
        raise ValidationError('symbol is required')
    return symbol.strip().upper()


def _positions_from(payload: dict) -> list:
    positions = payload.get('positions')
    if not isinstance(positions, list) or not positions:
        raise ValidationError('positions array is required')
    return positions


@api.route('/health')
def health():
    return jsonify({'status': 'ok', 'mode': current_app.config['TRADING_MODE'], 'timestamp': now_utc_iso()})


@api.route('/api/order/multi', methods=['POST'])
def order_multi():
    """Open the same symbol on several exchanges at once."""
    payload = request.get_json(silent=True) or {}
    try:
        symbol = _symbol_from(payload)
        orders = payload.get('orders')
        if not isinstance(orders, list) or not orders:
            raise ValidationError('orders array is required')
        legs = [OrderLeg.from_payload(order, index) for index, order in enumerate(orders, start=1)]
    except ValidationError as exc:
        return _error_response(exc)

    LOGGER.info("order_multi_request symbol=%s legs=%d", symbol, len(legs))
    try:
        return jsonify(_orchestrator().place_multi_order(symbol, legs))
    except Exception as exc:
        return _error_response(exc)


@api.route('/api/order/pnl', methods=['POST'])
def order_pnl():
    payload = request.get_json(silent=True) or {}
    try:
        symbol = _symbol_from(payload)
        positions = _positions_from(payload)
        return jsonify(_orchestrator().fetch_pnl(symbol, positions))
    except Exception as exc:
        return _error_response(exc)


@api.route('/api/order/close-hedged', methods=['POST'])
def order_close_hedged():
    """Close a two-exchange hedge only when its combined PNL is positive."""
    payload = request.get_json(silent=True) or {}
    try:
        symbol = _symbol_from(payload)
        positions = _positions_from(payload)
        return jsonify(_orchestrator().close_hedged(symbol, positions))
    except NotProfitableError as exc:
        LOGGER.info("order_close_hedged_refused symbol=%s total=%.4f", payload.get('symbol'), exc.total_pnl)
        return _error_response(exc, totalPnl=exc.total_pnl, pnl=exc.pnl_legs)
    except Exception as exc:
        return _error_response(exc)


@api.route('/api/order/force-close', methods=['POST'])
def order_force_close():
    payload = request.get_json(silent=True) or {}
    try:
        symbol = _symbol_from(payload)
        positions = _positions_from(payload)
        return jsonify(_orchestrator().force_close(symbol, positions))
    except Exception as exc:
        return _error_response(exc)


@api.route('/api/order/close-single', methods=['POST'])
def order_close_single():
    payload = request.get_json(silent=True) or {}
    try:
        symbol = _symbol_from(payload)
        exchange = str(payload.get('exchange') or '').strip().lower()
        if not exchange:
            raise ValidationError('exchange is required')
        return jsonify(_orchestrator().close_single(symbol, exchange))
    except Exception as exc:
        return _error_response(exc)


@api.route('/api/exchange')
def list_exchanges():
    trading_config = current_app.extensions['order_router']['trading_config']
    resolver = current_app.extensions['order_router']['resolver']
    return jsonify([
        {
            'id': exchange_id,
            'name': exchange_config.display_name,
            'url': exchange_config.base_url,
            'hasCredentials': resolver.has_credentials(exchange_id),
            'mode': trading_config.mode,
        }
        for exchange_id, exchange_config in trading_config.exchanges.items()
    ])


@api.route('/api/exchange/price')
def exchange_price():
    exchange = (request.args.get('exchange') or '').strip().lower()
    symbol = (request.args.get('symbol') or '').strip().upper()
    try:
        if not exchange or not symbol:
            raise ValidationError('exchange and symbol are required')
        handler = _registry().get(exchange)
        if handler is None:
            raise UnsupportedExchangeError(f'Exchange "{exchange}" is not supported')
        price = handler.get_price(symbol)
    except Exception as exc:
        return _error_response(exc)
    return jsonify({'exchange': exchange, 'symbol': symbol, 'price': price})


@api.route('/api/exchange/funding')
def exchange_funding():
    symbol = (request.args.get('symbol') or '').strip().upper()
    if not symbol:
        return _error_response(ValidationError('symbol is required'))
    raw_exchanges = request.args.get('exchanges')
    exchanges = [item for item in raw_exchanges.split(',') if item.strip()] if raw_exchanges else None
    snapshot = collect_funding_rates(
        _registry(),
        symbol,
        exchanges,
        max_workers=current_app.config['ORDER_MAX_WORKERS'],
    )
    return jsonify(snapshot)


def create_app(
    trading_config: Optional[config.TradingConfig] = None,
    resolver: Optional[CredentialResolver] = None,
    *,
    session: Optional[requests.Session] = None,
    registry: Optional[HandlerRegistry] = None,
) -> Flask:
    """Build the Flask app with its registry and orchestrator wired once."""
    trading_config = trading_config or config.build_trading_config()
    resolver = resolver or CredentialResolver()
    registry = registry or build_registry(trading_config, resolver, session=session)
    orchestrator = OrderOrchestrator(registry, resolver, max_workers=trading_config.max_workers)

    app = Flask(__name__)
    app.json.sort_keys = False  # funding rates are returned in ascending order
    app.config['TRADING_MODE'] = trading_config.mode
    app.config['ORDER_MAX_WORKERS'] = trading_config.max_workers
    app.extensions['order_router'] = {
        'trading_config': trading_config,
        'resolver': resolver,
        'registry': registry,
        'orchestrator': orchestrator,
    }
    app.register_blueprint(api)
    LOGGER.info("order_router_ready mode=%s exchanges=%s", trading_config.mode, ",".join(registry.ids()))
    return app


if __name__ == '__main__':
    configure_logging()
    application = create_app()
    port = int(os.getenv('PORT', '4000'))
    print(f"Order router listening on :{port} (mode={config.TRADING_MODE})")
    application.run(host='0.0.0.0', port=port, debug=False)
