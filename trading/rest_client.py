"""Shared HTTP plumbing for the per-exchange REST clients.

A client owns one ``requests.Session``, one :class:`~trading.signing.Signer`
(when credentials are configured) and the venue-specific rules for spotting a
failure inside a response. Subclasses only describe *their* venue: which
signer to build and how an error looks in the body.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

import requests

from config import ExchangeConfig
from trading.credentials import ExchangeCredentials
from trading.errors import ConfigurationError, ExchangeApiError
from trading.signing import CanonicalRequest, Signer

LOGGER = logging.getLogger(__name__)

ErrorInfo = Tuple[str, Any]


class SignedRestClient:
    exchange_id = ""
    display_name = ""

    # Markers of "no position" / "nothing to cancel" replies; see is_empty_result().
    EMPTY_RESULT_CODES: FrozenSet[str] = frozenset()
    EMPTY_RESULT_MESSAGES: Tuple[str, ...] = ()
    EMPTY_RESULT_STATUSES: FrozenSet[int] = frozenset()

    def __init__(
        self,
        exchange_config: ExchangeConfig,
        credentials: Optional[ExchangeCredentials] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        user_agent: str = "FR-OrderRouter/1.0",
        recv_window: int = 5000,
        testnet: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.exchange_config = exchange_config
        self.base_url = exchange_config.base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.user_agent = user_agent
        self.recv_window = recv_window
        self.testnet = testnet
        self._clock = clock or time.time
        self._signer: Optional[Signer] = self._build_signer(credentials) if credentials else None

    def _build_signer(self, credentials: ExchangeCredentials) -> Signer:
        raise NotImplementedError

    @property
    def has_credentials(self) -> bool:
        return self._signer is not None

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def _send_request(
        self,
        method: str,
        url: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Perform an HTTP request and normalise network errors."""
        merged_headers = {"User-Agent": self.user_agent}
        merged_headers.update(headers or {})
        try:
            return self.session.request(
                method=method,
                url=url,
                params=params,
                data=data,
                headers=merged_headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("%s_transport_error method=%s endpoint=%s err=%s", self.exchange_id, method, endpoint, exc)
            raise ExchangeApiError(self.display_name, endpoint, str(exc)) from exc

    def _json_or_error(self, response: requests.Response, endpoint: str) -> Any:
        if not response.content:
            if response.status_code >= 400:
                raise ExchangeApiError(
                    self.display_name,
                    endpoint,
                    f"HTTP {response.status_code}",
                    http_status=response.status_code,
                )
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ExchangeApiError(
                self.display_name,
                endpoint,
                f"Non-JSON response (HTTP {response.status_code}): {response.text[:200]}",
                http_status=response.status_code,
            ) from exc

    def _extract_error(self, status_code: int, payload: Any) -> Optional[ErrorInfo]:
        """Return ``(message, code)`` when ``payload`` signals a failure.

        Several venues answer HTTP 200 with an embedded error code, so
        subclasses inspect the body even when the status is fine.
        """
        if status_code >= 400:
            return (str(payload), None)
        return None

    def _check(self, response: requests.Response, payload: Any, endpoint: str) -> Any:
        failure = self._extract_error(response.status_code, payload)
        if failure is None and response.status_code >= 400:
            failure = (str(payload), None)
        if failure is not None:
            message, code = failure
            LOGGER.warning(
                "%s_request_rejected endpoint=%s status=%s code=%s message=%s",
                self.exchange_id,
                endpoint,
                response.status_code,
                code,
                message,
            )
            raise ExchangeApiError(
                self.display_name,
                endpoint,
                message,
                code=code,
                http_status=response.status_code,
            )
        return payload

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def public_get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        response = self._send_request("GET", url, endpoint, params=params)
        payload = self._json_or_error(response, endpoint)
        return self._check(response, payload, endpoint)

    def _require_signer(self) -> Signer:
        if self._signer is None:
            raise ConfigurationError(f"Missing API credentials for {self.exchange_id}")
        return self._signer

    def signed_request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        *,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Sign and send a private request, returning the parsed body.

        For GET/DELETE ``params`` become the query string; for POST they become
        the JSON body. ``query`` forces parameters into the query string of a
        POST (Gate.io's leverage endpoint takes it that way).
        """
        signer = self._require_signer()
        method_upper = method.upper()
        if method_upper in ("GET", "DELETE"):
            canonical = CanonicalRequest(method_upper, endpoint, query=list((params or {}).items()))
        else:
            canonical = CanonicalRequest(
                method_upper,
                endpoint,
                query=list((query or {}).items()),
                body=dict(params or {}),
            )
        signed = signer.sign(canonical)
        url = f"{self.base_url}{signed.path}"
        if signed.query_string:
            url = f"{url}?{signed.query_string}"

        LOGGER.info("%s_signed_request method=%s endpoint=%s", self.exchange_id, method_upper, endpoint)
        response = self._send_request(
            signed.method,
            url,
            endpoint,
            data=signed.body or None,
            headers=signed.headers,
        )
        payload = self._json_or_error(response, endpoint)
        return self._check(response, payload, endpoint)

    def is_empty_result(self, exc: ExchangeApiError) -> bool:
        """True when ``exc`` is the venue's way of saying "nothing there"."""
        if exc.code is not None and str(exc.code) in self.EMPTY_RESULT_CODES:
            return True
        if exc.http_status is not None and exc.http_status in self.EMPTY_RESULT_STATUSES:
            return True
        message = (exc.message or "").lower()
        return any(marker in message for marker in self.EMPTY_RESULT_MESSAGES)


def first_present(payload: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None
