"""
client/api.py -- HTTP client for the Townzy API.

One method per server route. Successful register/login calls store the
response in the matching SessionStore; authenticated calls read the token
from it.

Session checks are proactive: a customer or merchant call made without a
valid session raises SessionExpired before any network traffic.

Errors:
  SessionExpired -- no valid credential held for the domain the call needs
  ApiError       -- the server answered non-2xx (status, code, message from
                    the error envelope), or the request never completed
                    (status 0, code "transport_error")

Usage:
    sessions = SessionManager()
    client = TownzyClient("http://localhost:8000", sessions)
    client.login_merchant("secret123", merchant_id="S4K9Q2ZT")
    client.create_category("Alterations", parent_id=1)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from client.session import SessionManager, SessionStore

logger = logging.getLogger("townzy.client")

API_PREFIX = "/api/v1"


class SessionExpired(Exception):
    """No valid credential is held for the session domain a call needs."""

    def __init__(self, domain: str) -> None:
        super().__init__(f"No valid {domain} session. Log in again.")
        self.domain = domain


class ApiError(Exception):
    """A request failed: non-2xx answer (status > 0) or transport failure (status 0)."""

    def __init__(self, status: int, code: str, message: str) -> None:
        super().__init__(f"[{status}] {code}: {message}")
        self.status = status
        self.code = code
        self.message = message


class TownzyClient:
    def __init__(
        self,
        base_url: str,
        sessions: SessionManager,
        http: Optional[requests.Session] = None,
        timeout: float = 10,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.sessions = sessions
        self.timeout = timeout
        if http is None:
            http = requests.Session()
            # Known API host; a short redirect chain is plenty.
            http.max_redirects = 3
        self.http = http

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{API_PREFIX}{path}"
        try:
            resp = self.http.request(method, url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise ApiError(0, "transport_error", str(e)) from e

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        # status_code only: http may be any requests-compatible session.
        if not 200 <= resp.status_code < 300:
            error = payload.get("error") if isinstance(payload, dict) else None
            if isinstance(error, dict):
                raise ApiError(
                    resp.status_code,
                    str(error.get("code") or f"http_{resp.status_code}"),
                    str(error.get("message") or "Request failed."),
                )
            raise ApiError(resp.status_code, f"http_{resp.status_code}", "Request failed.")

        if not isinstance(payload, dict):
            raise ApiError(resp.status_code, "invalid_response", "Response body is not a JSON object.")
        return payload

    def _session_token(self, store: SessionStore) -> str:
        token = store.token
        if token is None:
            raise SessionExpired(store.domain)
        return token

    def _keep(self, store: SessionStore, payload: dict[str, Any]) -> dict[str, Any]:
        if not store.store(payload):
            raise ApiError(200, "invalid_response", "Response carried no token.")
        return payload

    # ------------------------------------------------------------------
    # Customer account
    # ------------------------------------------------------------------

    def register_customer(self, username: str, password: str, email: Optional[str] = None) -> dict[str, Any]:
        body = {"username": username, "password": password, "email": email}
        return self._keep(self.sessions.customer, self._request("POST", "/auth/register", body))

    def login_customer(self, username: str, password: str) -> dict[str, Any]:
        body = {"username": username, "password": password}
        return self._keep(self.sessions.customer, self._request("POST", "/auth/login", body))

    def customer_me(self) -> dict[str, Any]:
        return self._request("GET", "/auth/me", token=self._session_token(self.sessions.customer))

    def logout_customer(self) -> None:
        """Forget the customer session. The merchant session is untouched."""
        self.sessions.customer.clear()

    # ------------------------------------------------------------------
    # Merchant account
    # ------------------------------------------------------------------

    def register_merchant(
        self,
        business_name: str,
        shop_address: str,
        mobile_number: str,
        password: str,
        email: Optional[str] = None,
    ) -> dict[str, Any]:
        body = {
            "business_name": business_name,
            "shop_address": shop_address,
            "mobile_number": mobile_number,
            "password": password,
            "email": email,
        }
        return self._keep(self.sessions.merchant, self._request("POST", "/merchant/register", body))

    def login_merchant(
        self,
        password: str,
        merchant_id: Optional[str] = None,
        mobile_number: Optional[str] = None,
    ) -> dict[str, Any]:
        body = {"password": password, "merchant_id": merchant_id, "mobile_number": mobile_number}
        return self._keep(self.sessions.merchant, self._request("POST", "/merchant/login", body))

    def merchant_me(self) -> dict[str, Any]:
        return self._request("GET", "/merchant/me", token=self._session_token(self.sessions.merchant))

    def logout_merchant(self) -> None:
        """Forget the merchant session. The customer session is untouched."""
        self.sessions.merchant.clear()

    # ------------------------------------------------------------------
    # Public catalog
    # ------------------------------------------------------------------

    def list_categories(self) -> dict[str, Any]:
        return self._request("GET", "/categories")

    def get_category(self, category_id: int) -> dict[str, Any]:
        return self._request("GET", f"/categories/{int(category_id)}")

    def list_subcategories(self, category_id: int) -> dict[str, Any]:
        return self._request("GET", f"/categories/{int(category_id)}/subcategories")

    # ------------------------------------------------------------------
    # Merchant catalog
    # ------------------------------------------------------------------

    def _merchant_call(self, method: str, path: str, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        token = self._session_token(self.sessions.merchant)
        return self._request(method, path, body, token=token)

    def my_categories(self) -> dict[str, Any]:
        return self._merchant_call("GET", "/merchant/categories")

    def create_category(self, name: str, parent_id: Optional[int] = None, **fields: Any) -> dict[str, Any]:
        """Create a category. Extra fields: description, color, icon, sort_order, image_url."""
        return self._merchant_call("POST", "/merchant/categories", {"name": name, "parent_id": parent_id, **fields})

    def available_categories(self) -> dict[str, Any]:
        return self._merchant_call("GET", "/merchant/categories/available")

    def update_category(self, category_id: int, **fields: Any) -> dict[str, Any]:
        """Send only the given fields. Passing a field as None sends an explicit null."""
        return self._merchant_call("PUT", f"/merchant/categories/{int(category_id)}", fields)

    def delete_category(self, category_id: int) -> dict[str, Any]:
        return self._merchant_call("DELETE", f"/merchant/categories/{int(category_id)}")

    def my_subcategories(self, category_id: int) -> dict[str, Any]:
        return self._merchant_call("GET", f"/merchant/categories/{int(category_id)}/subcategories")

    def create_subcategory(self, category_id: int, name: str, **fields: Any) -> dict[str, Any]:
        return self._merchant_call(
            "POST", f"/merchant/categories/{int(category_id)}/subcategories", {"name": name, **fields}
        )
