import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs

from trading.credentials import ExchangeCredentials
from trading.signing import (
    BinanceSigner,
    BitgetSigner,
    BybitSigner,
    CanonicalRequest,
    GateioSigner,
    HtxSigner,
    KucoinSigner,
    MexcSigner,
    WhitebitSigner,
)

NOW = 1700000000.0
NOW_MS = "1700000000000"


def _creds(passphrase=None):
    return ExchangeCredentials("test", api_key="api-key", secret_key="secret", passphrase=passphrase)


def _hex256(message):
    return hmac.new(b"secret", message.encode(), hashlib.sha256).hexdigest()


def _b64_256(message, key=b"secret"):
    return base64.b64encode(hmac.new(key, message.encode(), hashlib.sha256).digest()).decode()


def _hex512(message):
    return hmac.new(b"secret", message.encode(), hashlib.sha512).hexdigest()


def test_binance_signs_sorted_query_including_body_fields():
    signer = BinanceSigner(_creds(), recv_window=5000, clock=lambda: NOW)
    signed = signer.sign(CanonicalRequest("POST", "/fapi/v1/order", body={"symbol": "BTCUSDT", "side": "BUY"}))

    unsigned, signature = signed.query_string.split("&signature=")
    assert unsigned == f"recvWindow=5000&side=BUY&symbol=BTCUSDT&timestamp={NOW_MS}"
    assert signature == _hex256(unsigned)
    assert signed.body == ""
    assert signed.headers["X-MBX-APIKEY"] == "api-key"


def test_bybit_post_signs_body_and_get_signs_query():
    signer = BybitSigner(_creds(), recv_window=5000, clock=lambda: NOW)

    post = signer.sign(CanonicalRequest("POST", "/v5/order/create", body={"symbol": "BTCUSDT", "qty": "0.01"}))
    assert post.body == '{"symbol":"BTCUSDT","qty":"0.01"}'
    assert post.headers["X-BAPI-SIGN"] == _hex256(f"{NOW_MS}api-key5000{post.body}")

    get = signer.sign(CanonicalRequest("GET", "/v5/position/list", query=[("category", "linear"), ("symbol", "BTCUSDT")]))
    assert get.query_string == "category=linear&symbol=BTCUSDT"
    assert get.headers["X-BAPI-SIGN"] == _hex256(f"{NOW_MS}api-key5000category=linear&symbol=BTCUSDT")
    assert get.headers["X-BAPI-TIMESTAMP"] == NOW_MS


def test_bitget_prehash_and_demo_header():
    signer = BitgetSigner(_creds("pass"), demo_trading=True, clock=lambda: NOW)
    signed = signer.sign(
        CanonicalRequest("GET", "/api/v2/mix/account/account", query=[("symbol", "BTCUSDT"), ("productType", "USDT-FUTURES")])
    )
    timestamp = "2023-11-14T22:13:20.000Z"
    assert signed.headers["ACCESS-TIMESTAMP"] == timestamp
    expected = f"{timestamp}GET/api/v2/mix/account/account?productType=USDT-FUTURES&symbol=BTCUSDT"
    assert signed.headers["ACCESS-SIGN"] == _b64_256(expected)
    assert signed.headers["ACCESS-PASSPHRASE"] == "pass"
    assert signed.headers["paptrading"] == "1"

    live = BitgetSigner(_creds("pass"), clock=lambda: NOW).sign(CanonicalRequest("GET", "/x"))
    assert "paptrading" not in live.headers


def test_kucoin_signs_passphrase_with_secret():
    signer = KucoinSigner(_creds("pass"), clock=lambda: NOW)
    signed = signer.sign(CanonicalRequest("POST", "/api/v1/orders", body={"symbol": "XBTUSDTM", "size": 1}))

    assert signed.headers["KC-API-SIGN"] == _b64_256(f"{NOW_MS}POST/api/v1/orders{signed.body}")
    assert signed.headers["KC-API-PASSPHRASE"] == _b64_256("pass")
    assert signed.headers["KC-API-KEY-VERSION"] == "3"


def test_gateio_sign_string_uses_prefixed_path_and_body_hash():
    signer = GateioSigner(_creds(), clock=lambda: NOW)
    signed = signer.sign(CanonicalRequest("POST", "/futures/usdt/orders", body={"contract": "BTC_USDT", "size": -3}))

    body_hash = hashlib.sha512(signed.body.encode()).hexdigest()
    expected = f"POST\n/api/v4/futures/usdt/orders\n\n{body_hash}\n1700000000"
    assert signed.path == "/api/v4/futures/usdt/orders"
    assert signed.headers["SIGN"] == _hex512(expected)
    assert signed.headers["Timestamp"] == "1700000000"


def test_gateio_get_hashes_empty_body():
    signed = GateioSigner(_creds(), clock=lambda: NOW).sign(
        CanonicalRequest("GET", "/futures/usdt/positions/BTC_USDT")
    )
    empty_hash = hashlib.sha512(b"").hexdigest()
    assert signed.headers["SIGN"] == _hex512(f"GET\n/api/v4/futures/usdt/positions/BTC_USDT\n\n{empty_hash}\n1700000000")


def test_htx_auth_params_travel_in_query():
    signer = HtxSigner(_creds(), host="api.hbdm.com", clock=lambda: NOW)
    signed = signer.sign(CanonicalRequest("POST", "/linear-swap-api/v1/swap_order", body={"contract_code": "BTC-USDT"}))

    params = parse_qs(signed.query_string)
    assert params["AccessKeyId"] == ["api-key"]
    assert params["SignatureMethod"] == ["HmacSHA256"]
    assert params["SignatureVersion"] == ["2"]
    assert params["Timestamp"] == ["2023-11-14T22:13:20"]

    unsigned = signed.query_string.split("&Signature=")[0]
    expected = f"POST\napi.hbdm.com\n/linear-swap-api/v1/swap_order\n{unsigned}"
    assert params["Signature"] == [_b64_256(expected)]
    assert json.loads(signed.body) == {"contract_code": "BTC-USDT"}


def test_whitebit_payload_carries_request_and_nonce():
    signer = WhitebitSigner(_creds(), clock=lambda: NOW)
    signed = signer.sign(CanonicalRequest("POST", "/api/v4/order/collateral/market", body={"market": "BTC_PERP"}))

    body = json.loads(signed.body)
    assert body == {"market": "BTC_PERP", "request": "/api/v4/order/collateral/market", "nonce": 1700000000000}
    payload_b64 = base64.b64encode(signed.body.encode()).decode()
    assert signed.headers["X-TXC-PAYLOAD"] == payload_b64
    assert signed.headers["X-TXC-SIGNATURE"] == _hex512(payload_b64)


def test_mexc_signs_sorted_query_for_get_and_body_for_post():
    signer = MexcSigner(_creds(), clock=lambda: NOW)

    get = signer.sign(CanonicalRequest("GET", "/api/v1/private/position/open_positions", query=[("symbol", "BTC_USDT")]))
    assert get.headers["Signature"] == _hex256(f"api-key{NOW_MS}symbol=BTC_USDT")

    post = signer.sign(CanonicalRequest("POST", "/api/v1/private/order/submit", body={"symbol": "BTC_USDT", "vol": 2}))
    assert post.headers["Signature"] == _hex256(f"api-key{NOW_MS}{post.body}")
    assert post.headers["Request-Time"] == NOW_MS
