"""
tests/test_api_auth_routes.py -- Integration tests for the identity endpoints and the gate.

Covers:
  - POST /api/v1/auth/register and /auth/login: 201/200, credential + profile, no-store
  - Customer validation and conflict errors carry the error envelope with stable codes
  - POST /api/v1/merchant/register and /merchant/login by either selector
  - GET /auth/me and /merchant/me: 401 without a credential, 403 for a bad or
    expired one, 403 not_a_merchant for a customer on a merchant route
  - Body validation failures render as 400 validation_error
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from auth.tokens import issue_token


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestCustomerRoutes:
    """Customer register/login and the any-role /auth/me endpoint."""

    def test_register_returns_credential_and_profile(self, api_client):
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "asha_k", "password": "secret123", "email": "asha@example.com"},
        )
        assert resp.status_code == 201
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["token"]
        assert data["expires_in"] > 0
        assert data["user"]["username"] == "asha_k"
        assert data["user"]["email"] == "asha@example.com"
        assert "hashed_password" not in data["user"]

    def test_login_and_me(self, api_client):
        client, _, _ = api_client
        client.post("/api/v1/auth/register", json={"username": "ravi_k", "password": "secret123"})
        resp = client.post("/api/v1/auth/login", json={"username": "ravi_k", "password": "secret123"})
        assert resp.status_code == 200
        token = resp.json()["token"]

        me = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert me.status_code == 200
        body = me.json()
        assert body["role"] == "customer"
        assert body["claims"]["username"] == "ravi_k"

    def test_bad_login_is_generic(self, api_client):
        client, _, _ = api_client
        client.post("/api/v1/auth/register", json={"username": "meena_k", "password": "secret123"})
        wrong = client.post("/api/v1/auth/login", json={"username": "meena_k", "password": "nope-nope"})
        unknown = client.post("/api/v1/auth/login", json={"username": "no_such_user", "password": "nope-nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_malformed_login_is_400(self, api_client):
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"username": "a!", "password": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_format"

    def test_register_with_long_password(self, api_client):
        client, _, _ = api_client
        password = "p" * 100
        resp = client.post("/api/v1/auth/register", json={"username": "long_pw", "password": password})
        assert resp.status_code == 201
        login = client.post("/api/v1/auth/login", json={"username": "long_pw", "password": password})
        assert login.status_code == 200

    def test_duplicate_username(self, api_client):
        client, _, _ = api_client
        client.post("/api/v1/auth/register", json={"username": "dup_user", "password": "secret123"})
        resp = client.post("/api/v1/auth/register", json={"username": "dup_user", "password": "secret123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "customer_exists"

    def test_invalid_username(self, api_client):
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"username": "a b", "password": "secret123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_username"

    def test_missing_body_field_is_validation_error(self, api_client):
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"username": "no_password"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestMerchantRoutes:
    def test_register_generates_identifier(self, api_client):
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/merchant/register",
            json={
                "business_name": "Bolt Electronics",
                "shop_address": "4 Market Road",
                "mobile_number": "9000000002",
                "password": "boltpass1",
            },
        )
        assert resp.status_code == 201
        merchant = resp.json()["merchant"]
        assert merchant["merchant_id"].startswith("S")
        assert merchant["mobile_number"] == "9000000002"

    def test_login_by_merchant_id_and_by_mobile(self, api_client):
        client, _, merchant_id = api_client
        by_id = client.post("/api/v1/merchant/login", json={"merchant_id": merchant_id, "password": "acmepass1"})
        by_mobile = client.post(
            "/api/v1/merchant/login", json={"mobile_number": "9000000001", "password": "acmepass1"}
        )
        assert by_id.status_code == by_mobile.status_code == 200
        assert by_id.json()["merchant"]["merchant_id"] == by_mobile.json()["merchant"]["merchant_id"] == merchant_id

    def test_login_needs_exactly_one_selector(self, api_client):
        client, _, merchant_id = api_client
        resp = client.post(
            "/api/v1/merchant/login",
            json={"merchant_id": merchant_id, "mobile_number": "9000000001", "password": "acmepass1"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "missing_selector"

    def test_duplicate_mobile(self, api_client):
        client, _, _ = api_client
        resp = client.post(
            "/api/v1/merchant/register",
            json={
                "business_name": "Copycat",
                "shop_address": "1 Side Street",
                "mobile_number": "9000000001",
                "password": "copypass1",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "mobile_exists"

    def test_merchant_me(self, api_client):
        client, token, merchant_id = api_client
        resp = client.get("/api/v1/merchant/me", headers=_bearer(token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["role"] == "merchant"
        assert body["subject"] == merchant_id
        assert body["claims"]["business_name"] == "Acme Tailors"


class TestGate:
    """The authorization gate's three refusal outcomes."""

    def test_no_header_is_401(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_non_bearer_scheme_is_401(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

    def test_garbage_token_is_403(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/merchant/me", headers=_bearer("garbage"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_or_expired"

    def test_expired_token_is_403(self, api_client):
        client, _, merchant_id = api_client
        issued = datetime.now(timezone.utc) - timedelta(hours=2)
        token = issue_token(merchant_id, "merchant", {"merchant_id": merchant_id}, ttl_seconds=3600, now=issued)
        resp = client.get("/api/v1/merchant/me", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_or_expired"

    def test_customer_on_merchant_route_is_403(self, api_client):
        client, _, _ = api_client
        token = client.post(
            "/api/v1/auth/register", json={"username": "nosy_customer", "password": "secret123"}
        ).json()["token"]
        resp = client.get("/api/v1/merchant/categories", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_a_merchant"

    def test_lowercase_scheme_accepted(self, api_client):
        client, token, _ = api_client
        resp = client.get("/api/v1/merchant/me", headers={"Authorization": f"bearer {token}"})
        assert resp.status_code == 200

    def test_unknown_route_uses_envelope(self, api_client):
        client, _, _ = api_client
        resp = client.get("/api/v1/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"
