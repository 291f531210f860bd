"""Tests for the OAuth installation flow (service and HTTP endpoints)."""

import asyncio
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from shopsync.errors import AuthStateMismatch, CredentialExchangeFailed
from shopsync.models import Tenant
from shopsync.routers import shopify_oauth
from shopsync.services.credential_store import get_access_token
from shopsync.services.installation_service import TenantRef, check_state, complete_install
from shopsync.services.signature import compute_callback_hmac
from shopsync.services.webhook_subscription_service import WEBHOOK_TOPICS

SHOP = "shop-a.myshopify.com"


def _webhook_endpoint(request: httpx.Request) -> httpx.Response:
    topic = json.loads(request.content)["webhook"]["topic"]
    if topic == "customers/create":
        return httpx.Response(500, json={"errors": "Internal Server Error"})
    if topic == "orders/create":
        return httpx.Response(422, json={"errors": {"address": ["for this topic has already been taken"]}})
    return httpx.Response(201, json={"webhook": {"id": hash(topic) & 0xFFFF, "topic": topic}})


def _queue_install(fake_shopify, token="shpat_new"):
    fake_shopify.add(
        "POST",
        "/admin/oauth/access_token",
        httpx.Response(200, json={"access_token": token, "scope": "read_products,read_orders"}),
    )
    fake_shopify.add(
        "GET",
        "/admin/api/2025-01/shop.json",
        httpx.Response(200, json={"shop": {"name": "Shop A", "email": "owner@shop-a.com", "currency": "EUR"}}),
    )
    fake_shopify.add("POST", "/admin/api/2025-01/webhooks.json", _webhook_endpoint)


# ============================================================================
# check_state
# ============================================================================

def test_check_state_accepts_matching_tokens():
    check_state("abc123", "abc123")


@pytest.mark.parametrize("state,expected", [("abc", "xyz"), (None, "xyz"), ("abc", None), ("", "")])
def test_check_state_rejects_mismatch_or_missing(state, expected):
    with pytest.raises(AuthStateMismatch):
        check_state(state, expected)


# ============================================================================
# complete_install
# ============================================================================

def test_install_creates_tenant_and_registers_webhooks(fake_shopify, test_db_session):
    _queue_install(fake_shopify)

    ref = asyncio.run(
        complete_install(test_db_session, SHOP, "auth-code", "nonce", "nonce", transport=fake_shopify.transport)
    )

    assert ref.is_new is True
    tenant = test_db_session.get(Tenant, ref.tenant_id)
    assert tenant.shop_domain == SHOP
    assert tenant.shop_name == "Shop A"
    assert tenant.currency == "EUR"
    assert tenant.scope == "read_products,read_orders"
    assert tenant.access_token_enc != "shpat_new"
    assert get_access_token(tenant) == "shpat_new"

    token_request = fake_shopify.requests[0]
    assert json.loads(token_request.content) == {
        "client_id": "test-api-key",
        "client_secret": "test-api-secret",
        "code": "auth-code",
    }

    # One topic failed, one already existed; installation still succeeds
    assert set(ref.webhooks) == set(WEBHOOK_TOPICS)
    assert "error" in ref.webhooks["customers/create"]
    assert ref.webhooks["orders/create"]["status"] == "already_registered"
    assert ref.webhooks["products/create"]["status"] == "created"

    webhook_bodies = [
        json.loads(r.content)["webhook"] for r in fake_shopify.requests if r.url.path.endswith("webhooks.json")
    ]
    assert len(webhook_bodies) == len(WEBHOOK_TOPICS)
    assert all(body["address"] == "https://ingest.example.com/webhooks/receive" for body in webhook_bodies)


def test_state_mismatch_makes_no_http_calls(fake_shopify, test_db_session):
    _queue_install(fake_shopify)

    with pytest.raises(AuthStateMismatch):
        asyncio.run(
            complete_install(test_db_session, SHOP, "auth-code", "forged", "nonce", transport=fake_shopify.transport)
        )

    assert fake_shopify.requests == []
    assert test_db_session.query(Tenant).count() == 0


def test_failed_token_exchange_creates_no_tenant(fake_shopify, test_db_session):
    fake_shopify.add("POST", "/admin/oauth/access_token", httpx.Response(400, json={"error": "invalid_request"}))

    with pytest.raises(CredentialExchangeFailed):
        asyncio.run(
            complete_install(test_db_session, SHOP, "bad-code", "nonce", "nonce", transport=fake_shopify.transport)
        )

    assert test_db_session.query(Tenant).count() == 0


def test_token_response_without_token_fails(fake_shopify, test_db_session):
    fake_shopify.add("POST", "/admin/oauth/access_token", httpx.Response(200, json={"scope": "read_orders"}))

    with pytest.raises(CredentialExchangeFailed):
        asyncio.run(
            complete_install(test_db_session, SHOP, "code", "nonce", "nonce", transport=fake_shopify.transport)
        )


def test_reinstall_rotates_token_on_same_tenant(fake_shopify, test_db_session, make_tenant):
    existing = make_tenant(SHOP, access_token="shpat_old")
    existing.is_active = False
    test_db_session.commit()
    _queue_install(fake_shopify, token="shpat_rotated")

    ref = asyncio.run(
        complete_install(test_db_session, SHOP, "code", "nonce", "nonce", transport=fake_shopify.transport)
    )

    assert ref.is_new is False
    assert ref.tenant_id == existing.id
    assert test_db_session.query(Tenant).count() == 1
    tenant = test_db_session.get(Tenant, existing.id)
    assert tenant.is_active is True
    assert get_access_token(tenant) == "shpat_rotated"


def test_shop_details_failure_does_not_fail_install(fake_shopify, test_db_session):
    _queue_install(fake_shopify)
    fake_shopify.routes[("GET", "/admin/api/2025-01/shop.json")] = [httpx.Response(503)]

    ref = asyncio.run(
        complete_install(test_db_session, SHOP, "code", "nonce", "nonce", transport=fake_shopify.transport)
    )

    assert test_db_session.get(Tenant, ref.tenant_id).shop_name is None


# ============================================================================
# HTTP endpoints
# ============================================================================

def test_install_redirects_to_consent_screen_with_state_cookie(client):
    response = client.get("/auth/install", params={"shop": "shop-a"}, follow_redirects=False)

    assert response.status_code in (302, 307)
    location = urlparse(response.headers["location"])
    assert location.netloc == SHOP
    assert location.path == "/admin/oauth/authorize"
    query = parse_qs(location.query)
    assert query["client_id"] == ["test-api-key"]
    assert query["redirect_uri"] == ["https://ingest.example.com/auth/callback"]
    assert query["scope"] == ["read_products,read_orders,read_customers,read_checkouts"]

    set_cookie = response.headers["set-cookie"]
    assert f"{shopify_oauth.STATE_COOKIE_NAME}={query['state'][0]}" in set_cookie
    assert "httponly" in set_cookie.lower()


def test_install_issues_a_new_state_per_attempt(client):
    first = client.get("/auth/install", params={"shop": SHOP}, follow_redirects=False)
    second = client.get("/auth/install", params={"shop": SHOP}, follow_redirects=False)

    state_of = lambda r: parse_qs(urlparse(r.headers["location"]).query)["state"][0]
    assert state_of(first) != state_of(second)


def test_install_rejects_invalid_shop(client):
    response = client.get("/auth/install", params={"shop": "bad_shop!"}, follow_redirects=False)

    assert response.status_code == 400


def _callback_params(**overrides):
    params = {"code": "auth-code", "shop": SHOP, "state": "nonce", "timestamp": "1700000000"}
    params.update(overrides)
    params["hmac"] = compute_callback_hmac("test-api-secret", params)
    return params


def test_callback_success_redirects_to_dashboard_and_schedules_sync(client, monkeypatch):
    tenant_id = "6f1c1a52-5d43-4a35-9d7e-2f0a0e0b7c11"
    calls = {}
    scheduled = []

    async def fake_complete_install(db, shop_domain, auth_code, state_token, expected_state_token):
        calls.update(shop_domain=shop_domain, code=auth_code, state=state_token, expected=expected_state_token)
        return TenantRef(tenant_id=tenant_id, shop_domain=shop_domain, is_new=True)

    async def fake_initial_sync(tid):
        scheduled.append(tid)

    monkeypatch.setattr(shopify_oauth, "complete_install", fake_complete_install)
    monkeypatch.setattr(shopify_oauth, "run_initial_sync", fake_initial_sync)
    client.cookies.set(shopify_oauth.STATE_COOKIE_NAME, "nonce")

    response = client.get("/auth/callback", params=_callback_params(), follow_redirects=False)

    assert response.status_code in (302, 307)
    assert response.headers["location"] == (
        f"https://dash.example.com/dashboard?tenant={tenant_id}&shop={SHOP}"
    )
    assert calls == {"shop_domain": SHOP, "code": "auth-code", "state": "nonce", "expected": "nonce"}
    assert scheduled == [tenant_id]


def test_callback_without_state_cookie_redirects_to_error(client, monkeypatch):
    scheduled = []

    async def fake_initial_sync(tid):
        scheduled.append(tid)

    monkeypatch.setattr(shopify_oauth, "run_initial_sync", fake_initial_sync)

    response = client.get("/auth/callback", params=_callback_params(), follow_redirects=False)

    assert response.headers["location"] == "https://dash.example.com/install/error?reason=invalid_state"
    assert scheduled == []


def test_callback_with_bad_hmac_never_reaches_install(client, monkeypatch):
    async def fail_if_called(*args, **kwargs):
        raise AssertionError("complete_install should not run")

    monkeypatch.setattr(shopify_oauth, "complete_install", fail_if_called)
    params = _callback_params()
    params["shop"] = "shop-b.myshopify.com"

    response = client.get("/auth/callback", params=params, follow_redirects=False)

    assert response.headers["location"].endswith("reason=invalid_hmac")


def test_callback_relays_shopify_error(client):
    response = client.get("/auth/callback", params={"error": "access_denied"}, follow_redirects=False)

    assert response.headers["location"].endswith("reason=access_denied")


def test_callback_token_exchange_failure_redirects_with_reason(client, monkeypatch):
    async def failing_install(*args, **kwargs):
        raise CredentialExchangeFailed("Token endpoint returned HTTP 400")

    monkeypatch.setattr(shopify_oauth, "complete_install", failing_install)
    client.cookies.set(shopify_oauth.STATE_COOKIE_NAME, "nonce")

    response = client.get("/auth/callback", params=_callback_params(), follow_redirects=False)

    assert response.headers["location"].endswith("reason=token_exchange_failed")
