from decimal import Decimal

import pytest

from trading.errors import ExchangeApiError, SymbolNotFoundError

EXCHANGE_INFO = {
    "symbols": [
        {
            "symbol": "BTCUSDT",
            "contractType": "PERPETUAL",
            "quoteAsset": "USDT",
            "quantityPrecision": 3,
            "filters": [
                {"filterType": "LOT_SIZE", "stepSize": "0.001"},
                {"filterType": "MARKET_LOT_SIZE", "stepSize": "0.001"},
            ],
        },
        {
            "symbol": "ETHUSDT",
            "contractType": "PERPETUAL",
            "quoteAsset": "USDT",
            "quantityPrecision": 3,
            "filters": [{"filterType": "LOT_SIZE", "stepSize": "0.01"}],
        },
        {
            "symbol": "BTCUSDT_240329",
            "contractType": "CURRENT_QUARTER",
            "quoteAsset": "USDT",
            "filters": [],
        },
    ]
}

BRACKETS = [
    {"symbol": "BTCUSDT", "brackets": [{"bracket": 1, "initialLeverage": 125}, {"bracket": 2, "initialLeverage": 100}]},
    {"symbol": "ETHUSDT", "brackets": [{"bracket": 1, "initialLeverage": 100}]},
]


def _position(amount="0", margin_type="isolated", leverage="10", pnl="0"):
    return [
        {
            "symbol": "BTCUSDT",
            "positionAmt": amount,
            "marginType": margin_type,
            "leverage": leverage,
            "unRealizedProfit": pnl,
        }
    ]


@pytest.fixture
def binance(make_handler, fake_session):
    fake_session.add("GET", "/fapi/v1/exchangeInfo", EXCHANGE_INFO)
    fake_session.add("GET", "/fapi/v1/leverageBracket", BRACKETS)
    return make_handler("binance")


def test_symbol_table_is_fetched_once(binance, fake_session):
    btc = binance.get_symbol_info("BTC")
    binance.get_symbol_info("BTCUSDT")
    eth = binance.get_symbol_info("eth")

    assert len(fake_session.calls_to("GET", "/fapi/v1/exchangeInfo")) == 1
    assert len(fake_session.calls_to("GET", "/fapi/v1/leverageBracket")) == 1
    assert (btc.quantity_precision, btc.max_leverage) == (3, 125.0)
    assert (eth.quantity_precision, eth.max_leverage) == (2, 100.0)


def test_max_leverage_defaults_without_credentials(make_handler, fake_session):
    fake_session.add("GET", "/fapi/v1/exchangeInfo", EXCHANGE_INFO)
    handler = make_handler("binance", with_credentials=False)

    assert handler.get_symbol_info("BTC").max_leverage == 125.0
    assert fake_session.calls_to("GET", "/fapi/v1/leverageBracket") == []


def test_quarterly_contract_is_not_listed(binance):
    with pytest.raises(SymbolNotFoundError):
        binance.get_symbol_info("BTCUSDT_240329")


def test_quantity_rounds_down_to_step(binance):
    info = binance.get_symbol_info("BTC")
    assert binance.to_order_quantity(info, "0.0019") == Decimal("0.001")


def test_price_and_funding(binance, fake_session):
    fake_session.add("GET", "/fapi/v1/ticker/price", {"symbol": "BTCUSDT", "price": "50123.40"})
    fake_session.add("GET", "/fapi/v1/premiumIndex", {"symbol": "BTCUSDT", "lastFundingRate": "0.00010000"})

    assert binance.get_price("BTC") == 50123.4
    assert binance.get_funding_rate("BTC") == 0.0001
    assert fake_session.calls_to("GET", "/fapi/v1/ticker/price")[0]["query"] == {"symbol": "BTCUSDT"}


def test_invalid_symbol_maps_to_symbol_not_found(binance, fake_session):
    fake_session.add("GET", "/fapi/v1/ticker/price", {"code": -1121, "msg": "Invalid symbol."}, 400)

    with pytest.raises(SymbolNotFoundError):
        binance.get_price("NOPE")


def test_margin_type_is_idempotent(binance, fake_session):
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(margin_type="cross"))
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(margin_type="isolated"))
    fake_session.add("POST", "/fapi/v1/marginType", {"code": 200, "msg": "success"})

    binance.set_margin_type("BTC", "ISOLATED")
    second = binance.set_margin_type("BTC", "ISOLATED")

    posts = fake_session.calls_to("POST", "/fapi/v1/marginType")
    assert len(posts) == 1
    assert posts[0]["query"]["marginType"] == "ISOLATED"
    assert second["skipped"] is True


def test_no_need_to_change_margin_is_success(binance, fake_session):
    fake_session.add("GET", "/fapi/v2/positionRisk", [])
    fake_session.add("POST", "/fapi/v1/marginType", {"code": -4046, "msg": "No need to change margin type."}, 400)

    assert binance.set_margin_type("BTC")["skipped"] is True


def test_leverage_skipped_when_already_set(binance, fake_session):
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(leverage="10"))
    fake_session.add("POST", "/fapi/v1/leverage", {"leverage": 20, "symbol": "BTCUSDT"})

    assert binance.set_leverage("BTC", 10)["skipped"] is True
    binance.set_leverage("BTC", 20)

    posts = fake_session.calls_to("POST", "/fapi/v1/leverage")
    assert len(posts) == 1
    assert posts[0]["query"]["leverage"] == "20"


def test_market_order_carries_signed_query(binance, fake_session):
    fake_session.add("POST", "/fapi/v1/order", {"orderId": 987654321, "status": "NEW"})

    result = binance.place_order("BTC", "BUY", Decimal("0.010"))

    assert result == {"orderId": 987654321}
    query = fake_session.calls_to("POST", "/fapi/v1/order")[0]["query"]
    assert query["symbol"] == "BTCUSDT"
    assert query["side"] == "BUY"
    assert query["type"] == "MARKET"
    assert query["quantity"] == "0.01"
    assert "reduceOnly" not in query
    assert "signature" in query
    assert query["timestamp"] == "1700000000000"


def test_close_flat_position_places_no_order(binance, fake_session):
    fake_session.add("DELETE", "/fapi/v1/allOpenOrders", {"code": 200, "msg": "done"})
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(amount="0"))

    assert binance.close_position("BTC") == {"message": "No open position"}
    assert fake_session.calls_to("POST", "/fapi/v1/order") == []


def test_close_long_sells_reduce_only(binance, fake_session):
    fake_session.add("DELETE", "/fapi/v1/allOpenOrders", {"code": -2011, "msg": "Unknown order sent."}, 400)
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(amount="0.250", pnl="12.5"))
    fake_session.add("POST", "/fapi/v1/order", {"orderId": 42})

    assert binance.close_position("BTC") == {"orderId": 42}
    query = fake_session.calls_to("POST", "/fapi/v1/order")[0]["query"]
    assert query["side"] == "SELL"
    assert query["reduceOnly"] == "true"
    assert query["quantity"] == "0.25"


def test_short_position_and_pnl(binance, fake_session):
    fake_session.add("GET", "/fapi/v2/positionRisk", _position(amount="-0.5", pnl="-3.25"))

    assert binance.get_pnl("BTC") == {"pnl": -3.25, "size": 0.5, "side": "short"}


def test_unexpected_cancel_error_propagates(binance, fake_session):
    fake_session.add("DELETE", "/fapi/v1/allOpenOrders", {"code": -1022, "msg": "Signature for this request is not valid."}, 400)

    with pytest.raises(ExchangeApiError) as excinfo:
        binance.cancel_all_open_orders("BTC")
    assert excinfo.value.code == -1022
