"""Tests for tenant lookup and encrypted credential storage."""

import uuid

import pytest

from shopsync.errors import TenantNotFound
from shopsync.models import Tenant
from shopsync.security import decrypt_secret, encrypt_secret
from shopsync.services import credential_store


def test_token_is_encrypted_at_rest(test_db_session, make_tenant):
    tenant = make_tenant(access_token="shpat_secret_value")

    stored = test_db_session.query(Tenant).one().access_token_enc
    assert "shpat_secret_value" not in stored
    assert credential_store.get_access_token(tenant) == "shpat_secret_value"


def test_domain_is_stored_lowercase_and_found_case_insensitively(test_db_session, make_tenant):
    tenant = make_tenant("Shop-A.MyShopify.com")

    assert tenant.shop_domain == "shop-a.myshopify.com"
    assert credential_store.find_tenant_by_domain(test_db_session, "SHOP-A.myshopify.com").id == tenant.id
    assert credential_store.find_tenant_by_domain(test_db_session, None) is None


def test_get_tenant_raises_for_unknown_id(test_db_session):
    with pytest.raises(TenantNotFound):
        credential_store.get_tenant(test_db_session, uuid.uuid4())


def test_save_installation_twice_keeps_one_tenant(test_db_session):
    first, created_first = credential_store.save_installation(
        test_db_session, "shop-a.myshopify.com", access_token="old", scope="read_orders"
    )
    second, created_second = credential_store.save_installation(
        test_db_session, "shop-a.myshopify.com", access_token="new", scope="read_orders,read_products"
    )

    assert created_first is True
    assert created_second is False
    assert first.id == second.id
    assert test_db_session.query(Tenant).count() == 1
    assert second.scope == "read_orders,read_products"
    assert credential_store.get_access_token(second) == "new"


def test_update_shop_details_keeps_existing_values(test_db_session, make_tenant):
    tenant = make_tenant()
    credential_store.update_shop_details(test_db_session, tenant, {"name": "Shop A", "currency": "USD"})
    credential_store.update_shop_details(test_db_session, tenant, {"email": "owner@example.com"})

    assert tenant.shop_name == "Shop A"
    assert tenant.currency == "USD"
    assert tenant.email == "owner@example.com"


def test_decrypt_rejects_tampered_ciphertext():
    ciphertext = encrypt_secret("shpat_x", context="test")

    with pytest.raises(ValueError):
        decrypt_secret(ciphertext[:-4] + "AAAA", context="test")
    with pytest.raises(ValueError):
        encrypt_secret("", context="test")
