"""Shopify sync service functions.

WHAT:
    - sync_tenant: full pull of customers, products and orders for a tenant
    - poll_tenant_checkouts: one page of abandoned checkouts for a tenant
    - run_initial_sync: background-task entrypoint used after install

WHY:
    - HTTP endpoints, the in-process scheduler and the arq worker share the
      same logic; routers stay thin.
    - Each resource kind runs independently: customers failing mid-way
      still lets products and orders complete in the same run.

REFERENCES:
    - shopsync/services/paginated_fetcher.py (page loop)
    - shopsync/services/reconciler.py (record upserts)
    - shopsync/routers/shopify_sync.py (manual trigger)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from shopsync.database import SessionLocal
from shopsync.deps import get_settings
from shopsync.errors import IngestionError
from shopsync.models import Tenant
from shopsync.services.credential_store import get_access_token, get_tenant
from shopsync.services.paginated_fetcher import FetchSummary, ResourceKind, fetch_all
from shopsync.services.reconciler import ReconcileResult, reconcile
from shopsync.services.shopify_client import ShopifyRestClient
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

# Order matters only for log readability; kinds do not depend on each other
FULL_SYNC_RESOURCES = (ResourceKind.customers, ResourceKind.products, ResourceKind.orders)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

@dataclass
class FullSyncReport:
    """Result of a full sync for one tenant."""
    tenant_id: UUID
    shop_domain: str
    resources: List[FetchSummary] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return all(not summary.stopped_early for summary in self.resources)

    @property
    def message(self) -> str:
        failed = [s.resource.value for s in self.resources if s.stopped_early]
        if not failed:
            return "Full sync completed"
        return f"Full sync incomplete for: {', '.join(failed)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "shop_domain": self.shop_domain,
            "success": self.success,
            "message": self.message,
            "duration_seconds": self.duration_seconds,
            "resources": [summary.to_dict() for summary in self.resources],
        }


# =============================================================================
# HELPERS
# =============================================================================

def build_client(tenant: Tenant) -> ShopifyRestClient:
    """REST client for the tenant's store using the stored credential."""
    settings = get_settings()
    return ShopifyRestClient(
        tenant.shop_domain,
        get_access_token(tenant),
        settings.SHOPIFY_API_VERSION,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


def _reconcile_handler(db: Session, tenant_id: UUID, resource: ResourceKind) -> Callable[[Dict[str, Any]], ReconcileResult]:
    kind = resource.entity_kind

    def handle(record: Dict[str, Any]) -> ReconcileResult:
        return reconcile(db, kind, tenant_id, record)

    return handle


async def _fetch_resource(
    db: Session,
    tenant: Tenant,
    client: ShopifyRestClient,
    resource: ResourceKind,
    *,
    params: Optional[Dict[str, Any]] = None,
    max_pages: Optional[int] = None,
) -> FetchSummary:
    """fetch_all guarded so an unexpected bug stays inside this resource kind."""
    try:
        return await fetch_all(
            client,
            resource,
            _reconcile_handler(db, tenant.id, resource),
            params=params,
            max_pages=max_pages,
        )
    except Exception as e:
        logger.exception(f"[SHOPIFY_SYNC] Unexpected error syncing {resource.value} for {tenant.shop_domain}: {e}")
        capture_exception(e, extra={
            "operation": "fetch_resource",
            "tenant_id": str(tenant.id),
            "resource": resource.value,
        })
        db.rollback()
        return FetchSummary(
            resource=resource,
            stopped_early=True,
            error=IngestionError(f"unexpected error: {e.__class__.__name__}"),
        )


# =============================================================================
# SYNC OPERATIONS
# =============================================================================

async def sync_tenant(db: Session, tenant: Tenant, *, client: Optional[ShopifyRestClient] = None) -> FullSyncReport:
    """Run a full sync of every tracked resource kind for one tenant.

    No per-tenant lock: a manual sync may overlap the scheduler or a webhook
    for the same records, and the last upsert applied wins.
    """
    logger.info(f"[SHOPIFY_SYNC] Starting full sync for {tenant.shop_domain}")
    start_time = time.time()
    report = FullSyncReport(tenant_id=tenant.id, shop_domain=tenant.shop_domain)

    owns_client = client is None
    if owns_client:
        client = build_client(tenant)

    try:
        for resource in FULL_SYNC_RESOURCES:
            report.resources.append(await _fetch_resource(db, tenant, client, resource))
    finally:
        if owns_client:
            await client.aclose()

    tenant.last_synced_at = datetime.utcnow()
    db.commit()

    report.duration_seconds = round(time.time() - start_time, 3)
    logger.info(
        f"[SHOPIFY_SYNC] Full sync for {tenant.shop_domain} finished in {report.duration_seconds}s: {report.message}"
    )
    return report


async def poll_tenant_checkouts(
    db: Session,
    tenant: Tenant,
    *,
    client: Optional[ShopifyRestClient] = None,
    page_size: Optional[int] = None,
) -> FetchSummary:
    """Re-fetch the first page of abandoned checkouts for one tenant."""
    page_size = page_size or get_settings().CHECKOUT_POLL_PAGE_SIZE

    owns_client = client is None
    if owns_client:
        client = build_client(tenant)

    try:
        return await _fetch_resource(
            db,
            tenant,
            client,
            ResourceKind.checkouts,
            params=ResourceKind.checkouts.default_params(page_size),
            max_pages=1,
        )
    finally:
        if owns_client:
            await client.aclose()


async def run_initial_sync(tenant_id: UUID) -> Optional[FullSyncReport]:
    """Background entrypoint for the post-install full sync.

    Opens its own session and never raises: installation has already
    succeeded by the time this runs.
    """
    db: Session = SessionLocal()
    try:
        tenant = get_tenant(db, tenant_id)
        return await sync_tenant(db, tenant)
    except Exception as e:
        logger.exception(f"[SHOPIFY_SYNC] Initial sync failed for tenant {tenant_id}: {e}")
        capture_exception(e, extra={
            "operation": "initial_sync",
            "tenant_id": str(tenant_id),
        })
        return None
    finally:
        db.close()
