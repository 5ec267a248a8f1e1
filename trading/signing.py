"""Request signing strategies for the supported futures venues.

Every venue authenticates private REST calls differently: what goes into the
canonical string, which digest is used, whether the result is hex or base64,
and whether the credentials travel in headers or in the query string. Each
``Signer`` turns a venue-agnostic :class:`CanonicalRequest` into the exact
query string, body and headers that must be put on the wire, so the clients
never assemble auth material themselves.

All signers take an injectable ``clock`` (seconds since epoch, ``time.time``
by default) which keeps signatures reproducible under test.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

from trading.credentials import ExchangeCredentials

QueryItems = List[Tuple[str, str]]
Clock = Callable[[], float]


@dataclass
class CanonicalRequest:
    method: str
    path: str
    query: QueryItems = field(default_factory=list)
    body: Optional[Dict[str, Any]] = None


@dataclass
class SignedRequest:
    method: str
    path: str
    query_string: str = ""
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)


def _compact_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _hmac_sha256_hexdigest(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _hmac_sha256_base64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def _hmac_sha512_hexdigest(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()


def _stringify(items: QueryItems) -> QueryItems:
    return [(str(key), str(value)) for key, value in items]


class Signer:
    """Base strategy: ``sign(CanonicalRequest) -> SignedRequest``."""

    def __init__(self, credentials: ExchangeCredentials, *, clock: Optional[Clock] = None) -> None:
        self.credentials = credentials
        self._clock = clock or time.time

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        raise NotImplementedError

    def _utc_millis_str(self) -> str:
        return str(int(self._clock() * 1000))

    def _utc_seconds_str(self) -> str:
        return str(int(self._clock()))

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _iso_timestamp(self) -> str:
        return self._now().isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def _body(request: CanonicalRequest) -> str:
        if request.method.upper() in ("GET", "DELETE") or request.body is None:
            return ""
        return _compact_json(request.body)


class BinanceSigner(Signer):
    """Sorted query string (timestamp included) signed with HMAC-SHA256 hex.

    Binance expects POST parameters in the query string as well, so body
    fields are folded into the signed query and no body is sent.
    """

    def __init__(self, credentials: ExchangeCredentials, *, recv_window: int = 5000, clock: Optional[Clock] = None) -> None:
        super().__init__(credentials, clock=clock)
        self.recv_window = recv_window

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        params = _stringify(request.query)
        params.extend(_stringify(list((request.body or {}).items())))
        params.append(("recvWindow", str(self.recv_window)))
        params.append(("timestamp", self._utc_millis_str()))
        query = urlencode(sorted(params))
        signature = _hmac_sha256_hexdigest(self.credentials.secret_key, query)
        return SignedRequest(
            method=request.method.upper(),
            path=request.path,
            query_string=f"{query}&signature={signature}",
            headers={
                "X-MBX-APIKEY": self.credentials.api_key,
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )


class BybitSigner(Signer):
    """``timestamp + apiKey + recvWindow + (body | query)`` with HMAC-SHA256 hex."""

    def __init__(self, credentials: ExchangeCredentials, *, recv_window: int = 5000, clock: Optional[Clock] = None) -> None:
        super().__init__(credentials, clock=clock)
        self.recv_window = recv_window

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        timestamp = self._utc_millis_str()
        recv_str = str(self.recv_window)
        query = urlencode(_stringify(request.query)) if method == "GET" else ""
        body = self._body(request)
        sign_payload = f"{timestamp}{self.credentials.api_key}{recv_str}{body if method != 'GET' else query}"
        signature = _hmac_sha256_hexdigest(self.credentials.secret_key, sign_payload)
        return SignedRequest(
            method=method,
            path=request.path,
            query_string=query,
            body=body,
            headers={
                "X-BAPI-API-KEY": self.credentials.api_key,
                "X-BAPI-SIGN": signature,
                "X-BAPI-TIMESTAMP": timestamp,
                "X-BAPI-RECV-WINDOW": recv_str,
                "Content-Type": "application/json",
            },
        )


class BitgetSigner(Signer):
    """``timestamp + METHOD + path + ?query + body`` with HMAC-SHA256 base64."""

    def __init__(self, credentials: ExchangeCredentials, *, demo_trading: bool = False, clock: Optional[Clock] = None) -> None:
        super().__init__(credentials, clock=clock)
        self.demo_trading = demo_trading

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        timestamp = self._iso_timestamp()
        query = urlencode(sorted(_stringify(request.query)))
        body = self._body(request)
        prehash = f"{timestamp}{method}{request.path}{'?' + query if query else ''}{body}"
        headers = {
            "ACCESS-KEY": self.credentials.api_key,
            "ACCESS-SIGN": _hmac_sha256_base64(self.credentials.secret_key, prehash),
            "ACCESS-TIMESTAMP": timestamp,
            "ACCESS-PASSPHRASE": self.credentials.passphrase or "",
            "Content-Type": "application/json",
            "locale": "en-US",
        }
        if self.demo_trading:
            headers["paptrading"] = "1"
        return SignedRequest(method=method, path=request.path, query_string=query, body=body, headers=headers)


class KucoinSigner(Signer):
    """``timestamp + METHOD + endpoint + ?query + body`` with HMAC-SHA256 base64.

    Key version 2+ also expects the passphrase itself signed with the secret.
    """

    KEY_VERSION = "3"

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        timestamp = self._utc_millis_str()
        query = urlencode(_stringify(request.query))
        body = self._body(request)
        str_for_sign = f"{timestamp}{method}{request.path}{'?' + query if query else ''}{body}"
        secret = self.credentials.secret_key
        return SignedRequest(
            method=method,
            path=request.path,
            query_string=query,
            body=body,
            headers={
                "KC-API-KEY": self.credentials.api_key,
                "KC-API-SIGN": _hmac_sha256_base64(secret, str_for_sign),
                "KC-API-TIMESTAMP": timestamp,
                "KC-API-PASSPHRASE": _hmac_sha256_base64(secret, self.credentials.passphrase or ""),
                "KC-API-KEY-VERSION": self.KEY_VERSION,
                "Content-Type": "application/json",
            },
        )


class GateioSigner(Signer):
    """``METHOD\\n/api/v4{path}\\nquery\\nsha512(body)\\ntimestamp`` with HMAC-SHA512 hex."""

    PREFIX = "/api/v4"

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        timestamp = self._utc_seconds_str()
        query = urlencode(_stringify(request.query))
        body = _compact_json(request.body) if request.body is not None and method == "POST" else ""
        hashed_payload = hashlib.sha512(body.encode("utf-8")).hexdigest()
        full_path = f"{self.PREFIX}{request.path}"
        sign_string = f"{method}\n{full_path}\n{query}\n{hashed_payload}\n{timestamp}"
        return SignedRequest(
            method=method,
            path=full_path,
            query_string=query,
            body=body,
            headers={
                "KEY": self.credentials.api_key,
                "SIGN": _hmac_sha512_hexdigest(self.credentials.secret_key, sign_string),
                "Timestamp": timestamp,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )


class HtxSigner(Signer):
    """Signature v2: auth params travel in the query string, never in headers.

    GET requests sign the business parameters together with the auth
    parameters; POST requests sign only the auth parameters and carry the
    business parameters as a JSON body.
    """

    def __init__(self, credentials: ExchangeCredentials, *, host: str, clock: Optional[Clock] = None) -> None:
        super().__init__(credentials, clock=clock)
        self.host = host

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        params = [
            ("AccessKeyId", self.credentials.api_key),
            ("SignatureMethod", "HmacSHA256"),
            ("SignatureVersion", "2"),
            ("Timestamp", self._now().strftime("%Y-%m-%dT%H:%M:%S")),
        ]
        body = ""
        if method == "GET":
            params.extend(_stringify(request.query))
        else:
            body = _compact_json(request.body or {})
        query = "&".join(f"{quote(key, safe='')}={quote(value, safe='')}" for key, value in sorted(params))
        string_to_sign = f"{method}\n{self.host}\n{request.path}\n{query}"
        signature = _hmac_sha256_base64(self.credentials.secret_key, string_to_sign)
        return SignedRequest(
            method=method,
            path=request.path,
            query_string=f"{query}&Signature={quote(signature, safe='')}",
            body=body,
            headers={"Content-Type": "application/json"},
        )


class WhitebitSigner(Signer):
    """Base64 of the JSON body (with ``request`` and ``nonce``) signed with HMAC-SHA512 hex."""

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        payload = dict(request.body or {})
        payload["request"] = request.path
        payload["nonce"] = int(self._utc_millis_str())
        body = _compact_json(payload)
        payload_b64 = base64.b64encode(body.encode("utf-8")).decode("utf-8")
        return SignedRequest(
            method="POST",
            path=request.path,
            body=body,
            headers={
                "Content-Type": "application/json",
                "X-TXC-APIKEY": self.credentials.api_key,
                "X-TXC-PAYLOAD": payload_b64,
                "X-TXC-SIGNATURE": _hmac_sha512_hexdigest(self.credentials.secret_key, payload_b64),
            },
        )


class MexcSigner(Signer):
    """``accessKey + timestamp + (sorted query | body)`` with HMAC-SHA256 hex."""

    def sign(self, request: CanonicalRequest) -> SignedRequest:
        method = request.method.upper()
        timestamp = self._utc_millis_str()
        query = urlencode(sorted(_stringify(request.query))) if method in ("GET", "DELETE") else ""
        body = self._body(request)
        sign_string = f"{self.credentials.api_key}{timestamp}{query or body}"
        return SignedRequest(
            method=method,
            path=request.path,
            query_string=query,
            body=body,
            headers={
                "ApiKey": self.credentials.api_key,
                "Request-Time": timestamp,
                "Signature": _hmac_sha256_hexdigest(self.credentials.secret_key, sign_string),
                "Content-Type": "application/json",
            },
        )
