"""Pytest configuration for shopsync tests

WHAT: Shared fixtures for database isolation, HTTP endpoint tests and
      fake Shopify HTTP traffic
WHY: Every test gets a fresh in-memory database and never talks to Shopify
REFERENCES:
    - shopsync/main.py: FastAPI application
    - shopsync/database.py: Database configuration
    - shopsync/deps.py: Settings
"""

import os
import sys
from pathlib import Path
from typing import Callable, Dict, Generator, List

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment before shopsync modules are imported
# Must be URL-safe base64-encoded 32-byte string (shopsync.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ["APP_URL"] = "https://ingest.example.com"
os.environ["FRONTEND_URL"] = "https://dash.example.com"
os.environ["ADMIN_SECRET_KEY"] = "test-admin-key"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ.pop("SENTRY_DSN", None)


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture(autouse=True)
def _fresh_settings():
    from shopsync.deps import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared by every session of the test (StaticPool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from shopsync.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(test_db_engine, monkeypatch) -> Callable[[], Session]:
    """Session factory also used by background tasks opened outside requests."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)

    from shopsync.services import shopify_sync_service, sync_scheduler
    monkeypatch.setattr(shopify_sync_service, "SessionLocal", factory)
    monkeypatch.setattr(sync_scheduler, "SessionLocal", factory)

    return factory


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_tenant(test_db_session):
    """Create an installed tenant: make_tenant("shop-a.myshopify.com")."""
    from shopsync.services.credential_store import save_installation

    def _make(shop_domain: str = "shop-a.myshopify.com", access_token: str = "shpat_test"):
        tenant, _ = save_installation(test_db_session, shop_domain, access_token=access_token, scope="read_orders")
        return tenant

    return _make


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(session_factory):
    from shopsync.main import create_app
    from shopsync.database import get_db

    test_app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# ============================================================================
# Fake Shopify HTTP
# ============================================================================

class FakeShopify:
    """Routes requests by (method, path) to queued httpx responses.

    Each route holds a list of responses served in order; the last one is
    repeated. Every request is recorded in `requests`.
    """

    def __init__(self):
        self.routes: Dict[tuple, List] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *responses):
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"errors": "Not Found"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(request)
        # Fresh copy so a repeated response is never shared between requests
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def paths(self, method: str = "GET") -> List[str]:
        return [r.url.path for r in self.requests if r.method == method]

    @staticmethod
    def page(key: str, records: list, next_url: str = None) -> httpx.Response:
        """Listing page response with an optional rel="next" Link header."""
        headers = {}
        if next_url:
            headers["Link"] = f'<{next_url}>; rel="next"'
        return httpx.Response(200, json={key: records}, headers=headers)


@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def rest_client_factory(fake_shopify):
    """Build ShopifyRestClient instances wired to fake_shopify, no pacing."""
    from shopsync.services.shopify_client import ShopifyRestClient

    def _make(shop_domain: str = "shop-a.myshopify.com"):
        return ShopifyRestClient(
            shop_domain,
            "shpat_test",
            "2025-01",
            min_request_interval=0,
            transport=fake_shopify.transport,
        )

    return _make
