from decimal import Decimal

import pytest

from trading.errors import SymbolNotFoundError

PREFIX = "/api/v4/futures/usdt"


def test_public_paths_carry_api_prefix(make_handler, fake_session):
    fake_session.add(
        "GET",
        f"{PREFIX}/contracts",
        [
            {"name": "BTC_USDT", "quanto_multiplier": "0.0001", "leverage_max": "125", "in_delisting": False},
            {"name": "OLD_USDT", "quanto_multiplier": "1", "leverage_max": "20", "in_delisting": True},
        ],
    )
    handler = make_handler("gateio")

    info = handler.get_symbol_info("BTC")
    assert info.contract_multiplier == Decimal("0.0001")
    assert info.max_leverage == 125.0
    with pytest.raises(SymbolNotFoundError):
        handler.get_symbol_info("OLD")
    assert handler.to_order_quantity(info, Decimal("0.00126")) == Decimal("13")


def test_price_and_funding(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/tickers", [{"contract": "BTC_USDT", "last": "64321.9"}])
    fake_session.add("GET", f"{PREFIX}/contracts/BTC_USDT", {"name": "BTC_USDT", "funding_rate": "0.000087"})
    handler = make_handler("gateio")

    assert handler.get_price("BTC") == 64321.9
    assert handler.get_funding_rate("BTC") == 0.000087
    assert fake_session.calls_to("GET", f"{PREFIX}/tickers")[0]["query"] == {"contract": "BTC_USDT"}


def test_unknown_contract(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/contracts/NOPE_USDT", {"label": "CONTRACT_NOT_FOUND", "message": "contract not found"}, 400)

    with pytest.raises(SymbolNotFoundError):
        make_handler("gateio").get_funding_rate("NOPE")


def test_order_size_is_signed_by_side(make_handler, fake_session):
    fake_session.add("POST", f"{PREFIX}/orders", {"id": 1001, "contract": "BTC_USDT"})
    handler = make_handler("gateio")

    assert handler.place_order("BTC", "SELL", Decimal("3")) == {"orderId": 1001}
    handler.place_order("BTC", "BUY", Decimal("2"))

    bodies = [call["json"] for call in fake_session.calls_to("POST", f"{PREFIX}/orders")]
    assert bodies[0] == {"contract": "BTC_USDT", "size": -3, "price": "0", "tif": "ioc"}
    assert bodies[1]["size"] == 2


def test_close_long_sends_negative_reduce_only(make_handler, fake_session):
    fake_session.add("DELETE", f"{PREFIX}/orders", [{"id": 1}, {"id": 2}])
    fake_session.add("GET", f"{PREFIX}/positions/BTC_USDT", {"contract": "BTC_USDT", "size": 3, "leverage": "10", "unrealised_pnl": "1.2"})
    fake_session.add("POST", f"{PREFIX}/orders", {"id": 2002})

    assert make_handler("gateio").close_position("BTC") == {"orderId": 2002}
    body = fake_session.calls_to("POST", f"{PREFIX}/orders")[0]["json"]
    assert body["size"] == -3
    assert body["reduce_only"] is True


def test_order_not_found_on_cancel_is_benign(make_handler, fake_session):
    fake_session.add("DELETE", f"{PREFIX}/orders", {"label": "ORDER_NOT_FOUND", "message": "Order not found"}, 404)

    assert make_handler("gateio").cancel_all_open_orders("BTC") == {}


def test_cancel_reports_count(make_handler, fake_session):
    fake_session.add("DELETE", f"{PREFIX}/orders", [{"id": 1}, {"id": 2}])

    assert make_handler("gateio").cancel_all_open_orders("BTC") == {"cancelled": 2}


def test_missing_position_is_flat(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/positions/BTC_USDT", {"label": "POSITION_NOT_FOUND", "message": "position not found"}, 400)

    assert make_handler("gateio").get_pnl("BTC") == {"pnl": 0.0, "size": 0.0, "side": None}


def test_leverage_goes_in_query_string(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/positions/BTC_USDT", {"contract": "BTC_USDT", "size": 0, "leverage": "5"})
    fake_session.add("POST", f"{PREFIX}/positions/BTC_USDT/leverage", {"contract": "BTC_USDT", "leverage": "10"})
    handler = make_handler("gateio")

    handler.set_leverage("BTC", 10)

    call = fake_session.calls_to("POST", f"{PREFIX}/positions/BTC_USDT/leverage")[0]
    assert call["query"] == {"leverage": "10"}
    assert call["headers"]["KEY"] == "gt-key"


def test_leverage_skipped_when_already_set(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/positions/BTC_USDT", {"contract": "BTC_USDT", "size": 0, "leverage": "10"})

    assert make_handler("gateio").set_leverage("BTC", 10)["skipped"] is True
    assert fake_session.calls_to("POST", f"{PREFIX}/positions/BTC_USDT/leverage") == []


def test_short_position_and_cross_mode(make_handler, fake_session):
    fake_session.add("GET", f"{PREFIX}/positions/BTC_USDT", {"contract": "BTC_USDT", "size": -4, "leverage": "0", "unrealised_pnl": "-0.7"})

    position = make_handler("gateio").get_position("BTC")
    assert (position.side, position.size, position.margin_type) == ("short", Decimal("4"), "CROSSED")
