"""Deribit JSON-RPC over HTTP client for auth, trading, and account data.

Every call is an independent request/reply. Private methods carry the bearer
token obtained once via :meth:`DeribitClient.authenticate`. Calls return the
JSON-RPC ``result`` member and raise :class:`ApiError` otherwise.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, Optional

import requests

from deribit_stream.data.clients import DERIBIT_TESTNET, VenueEndpoint
from deribit_stream.data.websocket import jsonrpc_request
from deribit_stream.errors import ApiError, AuthenticationError

# invalid_credentials, unauthorized
_AUTH_ERROR_CODES = {13004, 13009}


class DeribitClient:
    """Client for the Deribit HTTP API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        endpoint: Optional[VenueEndpoint] = None,
        scope: str = "trade:read_write",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.endpoint = endpoint or DERIBIT_TESTNET
        self.scope = scope
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self.access_token: Optional[str] = None
        self._ids = itertools.count(1)

    # --- Auth -------------------------------------------------------------
    def authenticate(self) -> str:
        """Exchange client credentials for an access token."""

        if not self.client_id or not self.client_secret:
            raise AuthenticationError("client_id and client_secret are required", method="public/auth")
        params = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": self.scope,
        }
        try:
            result = self._call("public/auth", params, private=False)
        except AuthenticationError:
            raise
        except ApiError as exc:
            raise AuthenticationError(exc.message, code=exc.code, method="public/auth") from exc

        token = result.get("access_token") if isinstance(result, dict) else None
        if not token:
            raise AuthenticationError("auth response did not contain an access_token", method="public/auth")
        self.access_token = token
        self.logger.info("Authenticated with %s", self.endpoint.name, extra={"event": "authenticated"})
        return token

    # --- Trading ----------------------------------------------------------
    def buy(self, instrument: str, amount: float, price: Optional[float] = None, **options: Any) -> Dict[str, Any]:
        return self._place("private/buy", instrument, amount, price, **options)

    def sell(self, instrument: str, amount: float, price: Optional[float] = None, **options: Any) -> Dict[str, Any]:
        return self._place("private/sell", instrument, amount, price, **options)

    def edit_order(self, order_id: str, amount: float, price: Optional[float] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"order_id": order_id, "amount": amount}
        if price is not None:
            params["price"] = price
        return self._call("private/edit", params)

    def cancel_order(self, order_id: str) -> Dict[str, Any]:
        return self._call("private/cancel", {"order_id": order_id})

    def get_open_orders(self, instrument: str) -> list:
        return self._call("private/get_open_orders_by_instrument", {"instrument_name": instrument}) or []

    # --- Account ----------------------------------------------------------
    def get_account_summary(self, currency: str = "BTC") -> Dict[str, Any]:
        return self._call("private/get_account_summary", {"currency": currency})

    def get_positions(self, currency: str = "BTC", kind: str = "future") -> list:
        return self._call("private/get_positions", {"currency": currency, "kind": kind}) or []

    # --- Market data ------------------------------------------------------
    def get_order_book(self, instrument: str, depth: Optional[int] = None) -> Dict[str, Any]:
        """Fetch an order book snapshot."""

        params: Dict[str, Any] = {"instrument_name": instrument}
        if depth is not None:
            params["depth"] = depth
        return self._call("public/get_order_book", params, private=False)

    # --- JSON-RPC helpers -------------------------------------------------
    def _place(
        self,
        method: str,
        instrument: str,
        amount: float,
        price: Optional[float],
        order_type: str = "limit",
        label: Optional[str] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"instrument_name": instrument, "amount": amount, "type": order_type}
        if price is not None:
            params["price"] = price
        if label:
            params["label"] = label
        params.update(extra)
        return self._call(method, params)

    def _call(self, method: str, params: Dict[str, Any], private: bool = True) -> Any:
        if private and not self.access_token:
            raise AuthenticationError(f"{method} requires authentication", method=method)

        url = f"{self.endpoint.rest_url.rstrip('/')}/{method}"
        body = jsonrpc_request(method, params, next(self._ids))
        try:
            response = self.session.post(url, headers=self._headers(private), json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            self.logger.warning("POST %s failed: %s", url, exc, extra={"event": "rest_failed", "method": method})
            raise ApiError(f"{method} request failed: {exc}", method=method) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            self.logger.warning(
                "%s returned error %s: %s", method, code, message,
                extra={"event": "rest_error", "method": method, "code": code},
            )
            error_type = AuthenticationError if code in _AUTH_ERROR_CODES else ApiError
            raise error_type(message, code=code, method=method)

        if not response.ok:
            raise ApiError(f"{method} failed with HTTP {response.status_code}", code=response.status_code, method=method)
        if not isinstance(payload, dict) or "result" not in payload:
            raise ApiError(f"{method} returned an unexpected response", method=method)
        return payload["result"]

    def _headers(self, private: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if private and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers


__all__ = ["DeribitClient"]
