import pytest

from app import create_app


@pytest.fixture
def handlers(stub_handler):
    return {
        "binance": stub_handler("binance", funding_rate=0.0003),
        "bybit": stub_handler("bybit", funding_rate=-0.0001),
        "mexc": stub_handler("mexc", funding_rate=0.0001),
    }


@pytest.fixture
def client(handlers, stub_registry, trading_config, resolver):
    app = create_app(trading_config, resolver, registry=stub_registry(*handlers.values()))
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client):
    body = client.get("/health").get_json()
    assert body["status"] == "ok"
    assert body["mode"] == "production"


def test_multi_order_returns_per_leg_results(client, handlers):
    handlers["bybit"].fail_on.add("place_order")
    response = client.post(
        "/api/order/multi",
        json={
            "symbol": "btc",
            "orders": [
                {"exchange": "binance", "side": "BUY", "leverage": 5, "amount": 0.01},
                {"exchange": "bybit", "side": "SELL", "leverage": 5, "amount": 0.01},
            ],
        },
    )

    assert response.status_code == 200
    body = response.get_json()
    assert body["symbol"] == "BTC"
    assert [leg["success"] for leg in body["results"]] == [True, False]
    assert body["summary"] == {"total": 2, "success": 1, "failed": 1}


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"orders": [{"exchange": "binance", "side": "BUY", "leverage": 1, "amount": 1}]}, "symbol is required"),
        ({"symbol": "BTC", "orders": []}, "orders array is required"),
        ({"symbol": "BTC", "orders": [{"exchange": "binance", "side": "LONG", "leverage": 1, "amount": 1}]}, "Order #1"),
    ],
)
def test_multi_order_validation(client, handlers, payload, message):
    response = client.post("/api/order/multi", json=payload)

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "ValidationError"
    assert message in body["message"]
    assert handlers["binance"].calls == []


def test_close_hedged_refusal_carries_pnl(client, handlers):
    handlers["binance"].pnl = 1.0
    handlers["bybit"].pnl = -2.0
    response = client.post(
        "/api/order/close-hedged",
        json={"symbol": "BTC", "positions": [{"exchange": "binance"}, {"exchange": "bybit"}]},
    )

    assert response.status_code == 400
    body = response.get_json()
    assert body["error"] == "NotProfitableError"
    assert body["totalPnl"] == pytest.approx(-1.0)
    assert [leg["pnl"] for leg in body["pnl"]] == [1.0, -2.0]
    assert "close_order" not in handlers["binance"].names()


def test_close_hedged_success(client, handlers):
    handlers["binance"].pnl = 4.0
    handlers["bybit"].pnl = -1.0
    response = client.post(
        "/api/order/close-hedged",
        json={"symbol": "BTC", "positions": [{"exchange": "binance"}, {"exchange": "bybit"}]},
    )

    assert response.status_code == 200
    assert response.get_json()["totalPnl"] == pytest.approx(3.0)


def test_close_hedged_needs_two_positions(client):
    response = client.post("/api/order/close-hedged", json={"symbol": "BTC", "positions": [{"exchange": "binance"}]})
    assert response.status_code == 400


def test_pnl_route(client, handlers):
    handlers["mexc"].pnl = 0.75
    response = client.post("/api/order/pnl", json={"symbol": "BTC", "positions": [{"exchange": "mexc"}]})

    assert response.status_code == 200
    assert response.get_json()["results"][0]["data"]["pnl"] == 0.75


def test_force_close_route(client, handlers):
    handlers["binance"].pnl = -3.0
    response = client.post(
        "/api/order/force-close",
        json={"symbol": "BTC", "positions": [{"exchange": "binance"}, {"exchange": "bybit"}]},
    )

    body = response.get_json()
    assert response.status_code == 200
    assert [leg["success"] for leg in body["results"]] == [True, True]
    assert body["results"][1]["data"] == {"message": "No open position"}


def test_close_single_route(client):
    response = client.post("/api/order/close-single", json={"symbol": "BTC", "exchange": "bybit"})
    assert response.get_json() == {"success": True, "message": "No open position", "data": {"message": "No open position"}}


def test_close_single_unknown_exchange(client):
    response = client.post("/api/order/close-single", json={"symbol": "BTC", "exchange": "okx"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "UnsupportedExchangeError"


def test_exchange_listing(client):
    body = client.get("/api/exchange").get_json()

    ids = [item["id"] for item in body]
    assert ids == ["binance", "bybit", "bitget", "kucoin", "gateio", "htx", "whitebit", "mexc"]
    assert all(item["hasCredentials"] for item in body)
    assert body[0]["url"] == "https://fapi.binance.com"


def test_price_route(client):
    response = client.get("/api/exchange/price?exchange=binance&symbol=btc")
    assert response.get_json() == {"exchange": "binance", "symbol": "BTC", "price": 50000.0}


def test_price_route_errors(client, handlers):
    assert client.get("/api/exchange/price?exchange=binance").status_code == 400
    assert client.get("/api/exchange/price?exchange=okx&symbol=BTC").status_code == 400
    handlers["binance"].fail_on.add("get_price")
    assert client.get("/api/exchange/price?exchange=binance&symbol=BTC").status_code == 502


def test_funding_rates_sorted_ascending(client, handlers):
    handlers["mexc"].fail_on.add("get_funding_rate")
    body = client.get("/api/exchange/funding?symbol=BTC").get_json()

    assert list(body["rates"]) == ["bybit", "binance", "mexc"]
    assert body["rates"]["mexc"] is None
    assert "mexc" in body["errors"]
    assert body["spread"]["long"] == "bybit"
    assert body["spread"]["short"] == "binance"
    assert body["spread"]["value"] == pytest.approx(0.0004)


def test_funding_subset(client):
    body = client.get("/api/exchange/funding?symbol=BTC&exchanges=binance,mexc").get_json()
    assert list(body["rates"]) == ["mexc", "binance"]
