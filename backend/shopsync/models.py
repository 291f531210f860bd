"""SQLAlchemy ORM models and enums.

This module defines the ingestion schema using UUID primary keys. Every
commerce entity is scoped to a tenant and keyed by the platform's external
identifier, so `(tenant_id, external_id)` is unique per table.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Numeric, JSON, Boolean, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class EntityKind(str, enum.Enum):
    product = "product"
    customer = "customer"
    order = "order"
    abandoned_checkout = "abandoned_checkout"


# Tenants -------------------------------------------------------

class Tenant(Base):
    """One installed Shopify store.

    WHAT: Installation record holding the shop domain and the encrypted
          access token captured during OAuth.
    WHY: Every fetch and webhook is resolved to a tenant; the token is only
         ever written by the installation flow (see services/credential_store.py).
    """
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_domain = Column(String, nullable=False, unique=True, index=True)  # e.g. "mystore.myshopify.com"

    # Fernet ciphertext, never plaintext
    access_token_enc = Column(String, nullable=False)
    scope = Column(String, nullable=True)

    installed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    is_active = Column(Boolean, nullable=False, default=True)

    # Shop details (best-effort, filled at install)
    shop_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    currency = Column(String, nullable=True)

    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    products = relationship("Product", back_populates="tenant")
    customers = relationship("Customer", back_populates="tenant")
    orders = relationship("Order", back_populates="tenant")
    abandoned_checkouts = relationship("AbandonedCheckout", back_populates="tenant")

    def __str__(self):
        return self.shop_domain


# Commerce entities ---------------------------------------------

class Product(Base):
    """Product catalog entry, last-seen snapshot."""
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_products_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=False)

    title = Column(String, nullable=True)
    handle = Column(String, nullable=True)
    vendor = Column(String, nullable=True)
    product_type = Column(String, nullable=True)
    status = Column(String, nullable=True)
    price = Column(Numeric(18, 4), nullable=True)  # first variant price
    variants = Column(JSON, nullable=True)
    published_at = Column(DateTime, nullable=True)
    source_created_at = Column(DateTime, nullable=True)
    source_updated_at = Column(DateTime, nullable=True)

    raw = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="products")

    def __str__(self):
        return self.title or self.external_id


class Customer(Base):
    """Customer record with lifetime spend as reported by the platform."""
    __tablename__ = "customers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_customers_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=False)

    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    total_spent = Column(Numeric(18, 4), nullable=True)  # NULL when not reported, never 0
    orders_count = Column(Integer, nullable=True)
    source_created_at = Column(DateTime, nullable=True)
    source_updated_at = Column(DateTime, nullable=True)

    raw = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="customers")

    def __str__(self):
        return self.email or self.external_id


class Order(Base):
    """Order header; line items stay in the raw snapshot."""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=False)

    order_number = Column(String, nullable=True)
    name = Column(String, nullable=True)  # e.g. "#1001"
    email = Column(String, nullable=True)
    customer_external_id = Column(String, nullable=True)
    total_price = Column(Numeric(18, 4), nullable=True)
    subtotal_price = Column(Numeric(18, 4), nullable=True)
    total_tax = Column(Numeric(18, 4), nullable=True)
    currency = Column(String, nullable=True)
    financial_status = Column(String, nullable=True)
    fulfillment_status = Column(String, nullable=True)
    source_created_at = Column(DateTime, nullable=True, index=True)
    cancelled_at = Column(DateTime, nullable=True)

    raw = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="orders")

    def __str__(self):
        return self.name or self.order_number or self.external_id


class AbandonedCheckout(Base):
    """Checkout that has not (yet) converted to an order.

    External id is the checkout `id`, falling back to its `token`.
    """
    __tablename__ = "abandoned_checkouts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_abandoned_checkouts_tenant_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    external_id = Column(String, nullable=False)

    token = Column(String, nullable=True)
    email = Column(String, nullable=True)
    total_price = Column(Numeric(18, 4), nullable=True)
    currency = Column(String, nullable=True)
    line_items = Column(JSON, nullable=True)
    abandoned_checkout_url = Column(String, nullable=True)
    source_created_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    raw = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="abandoned_checkouts")

    def __str__(self):
        return self.email or self.external_id


ENTITY_MODELS = {
    EntityKind.product: Product,
    EntityKind.customer: Customer,
    EntityKind.order: Order,
    EntityKind.abandoned_checkout: AbandonedCheckout,
}
