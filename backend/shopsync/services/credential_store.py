"""Credential store for installed tenants.

WHAT:
    Tenant lookup plus the only write path for the per-tenant Shopify
    access token (encrypted at rest via shopsync.security).

WHY:
    - Fetchers, the scheduler and the webhook receiver only read tenants.
    - The installation flow is the single writer; re-installs rotate the
      token in place instead of creating a second tenant.

REFERENCES:
    - shopsync/security.py (encrypt_secret / decrypt_secret)
    - shopsync/services/installation_service.py (writer)
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopsync.errors import TenantNotFound
from shopsync.models import Tenant
from shopsync.security import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)


def get_tenant(db: Session, tenant_id: UUID) -> Tenant:
    """Load a tenant by internal id or raise TenantNotFound."""
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise TenantNotFound(f"Tenant {tenant_id} not found")
    return tenant


def find_tenant_by_domain(db: Session, shop_domain: Optional[str]) -> Optional[Tenant]:
    if not shop_domain:
        return None
    return db.query(Tenant).filter(Tenant.shop_domain == shop_domain.strip().lower()).first()


def list_active_tenants(db: Session) -> List[Tenant]:
    return db.query(Tenant).filter(Tenant.is_active.is_(True)).order_by(Tenant.installed_at).all()


def save_installation(
    db: Session,
    shop_domain: str,
    *,
    access_token: str,
    scope: Optional[str] = None,
) -> Tuple[Tenant, bool]:
    """Upsert the tenant for `shop_domain` with a fresh access token.

    Existing tenants get their token, scope and install timestamp replaced
    and are reactivated.

    Returns:
        (tenant, created) where `created` is True for a first install.
    """
    shop_domain = shop_domain.strip().lower()
    encrypted = encrypt_secret(access_token, context=f"shopify:{shop_domain}")
    now = datetime.utcnow()

    tenant = find_tenant_by_domain(db, shop_domain)
    created = tenant is None
    if created:
        tenant = Tenant(
            shop_domain=shop_domain,
            access_token_enc=encrypted,
            scope=scope,
            installed_at=now,
            is_active=True,
        )
        db.add(tenant)
        try:
            db.commit()
        except IntegrityError:
            # Concurrent callback for the same shop won the insert
            db.rollback()
            tenant = find_tenant_by_domain(db, shop_domain)
            if tenant is None:
                raise
            created = False

    if not created:
        tenant.access_token_enc = encrypted
        tenant.scope = scope
        tenant.installed_at = now
        tenant.is_active = True
        db.commit()

    db.refresh(tenant)
    logger.info(
        "[CREDENTIALS] %s tenant %s for %s",
        "Created" if created else "Re-installed",
        tenant.id,
        shop_domain,
    )
    return tenant, created


def update_shop_details(db: Session, tenant: Tenant, shop: dict) -> None:
    """Copy display details from a shop.json payload onto the tenant."""
    tenant.shop_name = shop.get("name") or tenant.shop_name
    tenant.email = shop.get("email") or tenant.email
    tenant.currency = shop.get("currency") or tenant.currency
    db.commit()


def get_access_token(tenant: Tenant) -> str:
    """Decrypt the tenant's access token for an outbound API call."""
    return decrypt_secret(tenant.access_token_enc, context=f"shopify:{tenant.shop_domain}")
