"""
tests/conftest.py -- Shared test fixtures for Townzy unit and integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for principals + catalog
  - _patch_lifespan(): wires test stores and services into app.state, bypassing real startup
  - principal_store / category_store / registry / hierarchy: per-test unit fixtures
  - api_client: TestClient plus a registered merchant credential for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient because it runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any core/auth/api import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4          -- minimum work factor, keeps hashing fast
  RATE_LIMIT_ENABLED=false -- login-heavy tests would otherwise trip the auth limit
  ALLOWED_HOSTS            -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any core/auth/api import so the cached Settings
# sees the test configuration.
os.environ.setdefault("DEBUG", "true")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost", "127.0.0.1"]'

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.registry import IdentityRegistry
from auth.store import PrincipalStore
from catalog.engine import HierarchyEngine
from catalog.store import CategoryStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[PrincipalStore, CategoryStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the module name is used).
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    catalog_url = f"sqlite:///file:test_catalog_{db_suffix}?mode=memory&cache=shared&uri=true"
    return PrincipalStore(db_url=auth_url), CategoryStore(db_url=catalog_url, seed=True)


def _patch_lifespan(principal_store: PrincipalStore, category_store: CategoryStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the default database files.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.principal_store = principal_store
        app.state.category_store = category_store
        app.state.registry = IdentityRegistry(principal_store)
        app.state.hierarchy = HierarchyEngine(category_store, max_depth=10)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh in-memory stores per test
# ---------------------------------------------------------------------------


@pytest.fixture
def principal_store() -> Generator[PrincipalStore, None, None]:
    store = PrincipalStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def category_store() -> Generator[CategoryStore, None, None]:
    """In-memory CategoryStore with the five system roots (ids 1..5) seeded."""
    store = CategoryStore("sqlite:///:memory:", seed=True)
    yield store
    store.close()


@pytest.fixture
def registry(principal_store: PrincipalStore) -> IdentityRegistry:
    return IdentityRegistry(principal_store)


@pytest.fixture
def hierarchy(category_store: CategoryStore) -> HierarchyEngine:
    return HierarchyEngine(category_store, max_depth=10)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, merchant_token, merchant_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. A
    merchant ("Acme Tailors", mobile 9000000001, password "acmepass1") is
    registered before the client starts.
    """
    principal_store, category_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])

    issuance = IdentityRegistry(principal_store).register_merchant(
        business_name="Acme Tailors",
        shop_address="12 High Street",
        mobile_number="9000000001",
        password="acmepass1",
    )

    app.router.lifespan_context = _patch_lifespan(principal_store, category_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, issuance.token, issuance.principal.merchant_id

    principal_store.close()
    category_store.close()
