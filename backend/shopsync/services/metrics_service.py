"""Read-only aggregates over reconciled Shopify data.

WHAT:
    Tenant-scoped summary counts, daily order buckets, top customers by
    spend and recently ingested products, for the dashboard.

WHY:
    Keeps SQL out of the router. Nothing here writes.

NOTES:
    - Date ranges filter on the platform's creation time (orders and
      checkouts). Customer and product counts are totals.
    - Customers with unknown spend (NULL) are excluded from the top list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from shopsync.models import AbandonedCheckout, Customer, Order, Product

logger = logging.getLogger(__name__)


@dataclass
class MetricsSummary:
    orders_count: int
    revenue: Decimal
    customers_count: int
    abandoned_checkouts_count: int
    products_count: int


def _in_range(query, column, start: Optional[datetime], end: Optional[datetime]):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def get_summary(
    db: Session,
    tenant_id: UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> MetricsSummary:
    orders_query = _in_range(
        db.query(func.count(Order.id), func.sum(Order.total_price)).filter(Order.tenant_id == tenant_id),
        Order.source_created_at, start, end,
    )
    orders_count, revenue = orders_query.one()

    checkouts_count = _in_range(
        db.query(func.count(AbandonedCheckout.id)).filter(AbandonedCheckout.tenant_id == tenant_id),
        AbandonedCheckout.source_created_at, start, end,
    ).scalar()

    customers_count = db.query(func.count(Customer.id)).filter(Customer.tenant_id == tenant_id).scalar()
    products_count = db.query(func.count(Product.id)).filter(Product.tenant_id == tenant_id).scalar()

    logger.debug("[METRICS] Summary for tenant %s: %s orders", tenant_id, orders_count)

    return MetricsSummary(
        orders_count=orders_count or 0,
        revenue=Decimal(str(revenue)) if revenue is not None else Decimal("0"),
        customers_count=customers_count or 0,
        abandoned_checkouts_count=checkouts_count or 0,
        products_count=products_count or 0,
    )


def get_orders_by_date(
    db: Session,
    tenant_id: UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Daily buckets of order count and revenue, oldest first."""
    day = func.date(Order.source_created_at)
    query = (
        db.query(day.label("day"), func.count(Order.id), func.sum(Order.total_price))
        .filter(Order.tenant_id == tenant_id, Order.source_created_at.isnot(None))
    )
    query = _in_range(query, Order.source_created_at, start, end)
    rows = query.group_by(day).order_by(day).all()

    return [
        {
            "date": str(bucket),
            "orders": count,
            "revenue": Decimal(str(revenue)) if revenue is not None else Decimal("0"),
        }
        for bucket, count, revenue in rows
    ]


def get_top_customers(db: Session, tenant_id: UUID, limit: int = 5) -> List[Customer]:
    return (
        db.query(Customer)
        .filter(Customer.tenant_id == tenant_id, Customer.total_spent.isnot(None))
        .order_by(Customer.total_spent.desc())
        .limit(limit)
        .all()
    )


def get_recent_products(db: Session, tenant_id: UUID, limit: int = 5) -> List[Product]:
    return (
        db.query(Product)
        .filter(Product.tenant_id == tenant_id)
        .order_by(Product.created_at.desc())
        .limit(limit)
        .all()
    )
