"""Manual Shopify full-sync endpoint.

WHAT: POST /api/admin/full-sync/{tenant_id} runs a full sync synchronously
WHY: Operators need to backfill or repair a tenant without waiting for
     webhooks; the response reports each resource kind separately
REFERENCES:
    - shopsync/services/shopify_sync_service.py::sync_tenant
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import require_admin_key
from shopsync.errors import TenantNotFound
from shopsync.services.credential_store import get_tenant
from shopsync.services.shopify_sync_service import sync_tenant

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Shopify Sync"],
    dependencies=[Depends(require_admin_key)],
)


class ResourceSyncResult(BaseModel):
    resource: str
    processed_count: int
    failed_count: int
    pages: int
    stopped_early: bool
    error: Optional[str] = None


class FullSyncResponse(BaseModel):
    tenant_id: UUID
    shop_domain: str
    success: bool
    message: str
    duration_seconds: float
    resources: List[ResourceSyncResult]


@router.post("/full-sync/{tenant_id}", response_model=FullSyncResponse)
async def trigger_full_sync(tenant_id: UUID, db: Session = Depends(get_db)):
    """Run a full sync for one tenant and report per-resource results."""
    try:
        tenant = get_tenant(db, tenant_id)
    except TenantNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    logger.info(f"[SHOPIFY_SYNC] Manual full sync requested for {tenant.shop_domain}")
    try:
        report = await sync_tenant(db, tenant)
    except Exception as e:
        logger.exception(f"[SHOPIFY_SYNC] Manual full sync failed for {tenant.shop_domain}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Full sync failed: {e.__class__.__name__}",
        )
    return report.to_dict()
