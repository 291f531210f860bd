"""Dashboard read endpoints.

WHAT: Tenant list plus per-tenant summary, daily orders, top customers and
      recent products
WHY: The dashboard reads reconciled tables through these; nothing here writes
REFERENCES:
    - shopsync/services/metrics_service.py
"""

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.errors import TenantNotFound
from shopsync.models import Tenant
from shopsync.services import metrics_service
from shopsync.services.credential_store import get_tenant

router = APIRouter(prefix="/api", tags=["Metrics"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_domain: str
    shop_name: Optional[str] = None
    installed_at: datetime
    is_active: bool
    last_synced_at: Optional[datetime] = None


class SummaryOut(BaseModel):
    orders_count: int
    revenue: Decimal
    customers_count: int
    abandoned_checkouts_count: int
    products_count: int


class DailyOrdersOut(BaseModel):
    date: str
    orders: int
    revenue: Decimal


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    total_spent: Optional[Decimal] = None


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    title: Optional[str] = None
    handle: Optional[str] = None
    price: Optional[Decimal] = None
    created_at: datetime


class ProductsOut(BaseModel):
    count: int
    recent: List[ProductOut]


def _require_tenant(tenant_id: UUID, db: Session) -> Tenant:
    try:
        return get_tenant(db, tenant_id)
    except TenantNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/tenants", response_model=List[TenantOut])
def list_tenants(db: Session = Depends(get_db)):
    return db.query(Tenant).order_by(Tenant.installed_at.desc()).all()


@router.get("/metrics/{tenant_id}/summary", response_model=SummaryOut)
def summary(
    tenant_id: UUID,
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    _require_tenant(tenant_id, db)
    return asdict(metrics_service.get_summary(db, tenant_id, start, end))


@router.get("/metrics/{tenant_id}/orders-by-date", response_model=List[DailyOrdersOut])
def orders_by_date(
    tenant_id: UUID,
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    _require_tenant(tenant_id, db)
    return metrics_service.get_orders_by_date(db, tenant_id, start, end)


@router.get("/metrics/{tenant_id}/top-customers", response_model=List[CustomerOut])
def top_customers(
    tenant_id: UUID,
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
):
    _require_tenant(tenant_id, db)
    return metrics_service.get_top_customers(db, tenant_id, limit)


@router.get("/metrics/{tenant_id}/products", response_model=ProductsOut)
def products(
    tenant_id: UUID,
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
):
    _require_tenant(tenant_id, db)
    summary = metrics_service.get_summary(db, tenant_id)
    return {
        "count": summary.products_count,
        "recent": metrics_service.get_recent_products(db, tenant_id, limit),
    }
