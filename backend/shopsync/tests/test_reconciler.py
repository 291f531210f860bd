"""Tests for idempotent entity upserts."""

from decimal import Decimal

from shopsync.errors import MalformedPayload
from shopsync.models import AbandonedCheckout, Customer, EntityKind, Order, Product
from shopsync.services import reconciler


def _order(total="150.00", **overrides):
    payload = {
        "id": 450789469,
        "order_number": 1001,
        "name": "#1001",
        "email": "bob@example.com",
        "total_price": total,
        "subtotal_price": "140.00",
        "total_tax": "10.00",
        "currency": "USD",
        "financial_status": "paid",
        "created_at": "2026-10-01T12:00:00-04:00",
        "customer": {"id": 207119551},
        "line_items": [{"id": 1, "title": "Shirt"}],
    }
    payload.update(overrides)
    return payload


def test_same_order_twice_yields_one_row(test_db_session, make_tenant):
    tenant = make_tenant()

    first = reconciler.upsert_order(test_db_session, tenant.id, _order())
    second = reconciler.upsert_order(test_db_session, tenant.id, _order())

    assert first.ok and second.ok
    rows = test_db_session.query(Order).filter(Order.tenant_id == tenant.id).all()
    assert len(rows) == 1
    order = rows[0]
    assert order.external_id == "450789469"
    assert order.order_number == "1001"
    assert order.total_price == Decimal("150.00")
    assert order.customer_external_id == "207119551"
    # 12:00 at -04:00 stored as naive UTC
    assert order.source_created_at.hour == 16
    assert order.raw["line_items"] == [{"id": 1, "title": "Shirt"}]


def test_last_applied_payload_wins(test_db_session, make_tenant):
    tenant = make_tenant()

    reconciler.upsert_order(test_db_session, tenant.id, _order(total="150.00", financial_status="paid"))
    reconciler.upsert_order(test_db_session, tenant.id, _order(total="90.00", financial_status="refunded"))

    order = test_db_session.query(Order).one()
    assert order.total_price == Decimal("90.00")
    assert order.financial_status == "refunded"
    assert order.raw["financial_status"] == "refunded"


def test_same_external_id_in_two_tenants_gives_two_rows(test_db_session, make_tenant):
    tenant_a = make_tenant("shop-a.myshopify.com")
    tenant_b = make_tenant("shop-b.myshopify.com")
    payload = {"id": 632910392, "title": "IPod Nano"}

    assert reconciler.upsert_product(test_db_session, tenant_a.id, payload).ok
    assert reconciler.upsert_product(test_db_session, tenant_b.id, dict(payload, title="Other shop's nano")).ok

    rows = test_db_session.query(Product).order_by(Product.title).all()
    assert len(rows) == 2
    assert {row.tenant_id for row in rows} == {tenant_a.id, tenant_b.id}
    assert {row.title for row in rows} == {"IPod Nano", "Other shop's nano"}


def test_missing_id_is_malformed_and_stores_nothing(test_db_session, make_tenant):
    tenant = make_tenant()

    result = reconciler.upsert_customer(test_db_session, tenant.id, {"email": "no-id@example.com"})

    assert not result.ok
    assert isinstance(result.error, MalformedPayload)
    assert test_db_session.query(Customer).count() == 0


def test_non_object_payload_is_malformed(test_db_session, make_tenant):
    tenant = make_tenant()

    result = reconciler.reconcile(test_db_session, EntityKind.order, tenant.id, ["not", "an", "object"])

    assert isinstance(result.error, MalformedPayload)


def test_missing_money_is_null_not_zero(test_db_session, make_tenant):
    tenant = make_tenant()

    reconciler.upsert_customer(test_db_session, tenant.id, {"id": 1, "email": "a@example.com"})
    reconciler.upsert_order(test_db_session, tenant.id, _order(total=None))

    assert test_db_session.query(Customer).one().total_spent is None
    assert test_db_session.query(Order).one().total_price is None


def test_unparseable_money_is_malformed(test_db_session, make_tenant):
    tenant = make_tenant()

    result = reconciler.upsert_order(test_db_session, tenant.id, _order(total="twelve dollars"))

    assert isinstance(result.error, MalformedPayload)
    assert test_db_session.query(Order).count() == 0


def test_failed_record_does_not_block_the_next_one(test_db_session, make_tenant):
    tenant = make_tenant()

    bad = reconciler.upsert_order(test_db_session, tenant.id, _order(id=None))
    good = reconciler.upsert_order(test_db_session, tenant.id, _order(id=2))

    assert not bad.ok
    assert good.ok
    assert test_db_session.query(Order).count() == 1


def test_checkout_falls_back_to_token_as_external_id(test_db_session, make_tenant):
    tenant = make_tenant()
    payload = {
        "token": "b1946ac92492d2347c6235b4d2611184",
        "email": "cart@example.com",
        "total_price": "42.50",
        "line_items": [{"title": "Mug", "quantity": 2}],
    }

    result = reconciler.upsert_abandoned_checkout(test_db_session, tenant.id, payload)

    assert result.ok
    checkout = test_db_session.query(AbandonedCheckout).one()
    assert checkout.external_id == "b1946ac92492d2347c6235b4d2611184"
    assert checkout.total_price == Decimal("42.50")
    assert checkout.line_items == [{"title": "Mug", "quantity": 2}]


def test_product_projects_first_variant_price(test_db_session, make_tenant):
    tenant = make_tenant()
    payload = {
        "id": 9,
        "title": "Hat",
        "handle": "hat",
        "variants": [{"id": 91, "price": "19.99"}, {"id": 92, "price": "24.99"}],
        "created_at": "2026-09-01T00:00:00Z",
        "unknown_future_field": {"nested": True},
    }

    reconciler.upsert_product(test_db_session, tenant.id, payload)

    product = test_db_session.query(Product).one()
    assert product.price == Decimal("19.99")
    assert product.handle == "hat"
    assert product.raw["unknown_future_field"] == {"nested": True}
