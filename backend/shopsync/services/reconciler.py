"""Entity reconciler: idempotent upserts for Shopify payloads.

WHAT:
    One upsert per entity kind (product, customer, order, abandoned checkout).
    Each projects a fixed set of columns from the payload, keeps the full
    payload in `raw`, and writes with INSERT ... ON CONFLICT on
    (tenant_id, external_id).

WHY:
    - Webhooks and pulls deliver the same records at-least-once and in any
      order; replaying a payload must leave exactly one row with the same
      content.
    - One bad record must never take down its page, webhook or tenant, so
      failures come back inside ReconcileResult instead of being raised.

NOTES:
    - Last applied payload wins. There is no timestamp comparison, so an old
      webhook applied after a newer full-sync page overwrites it.
    - Missing money values are stored as NULL, never 0.

REFERENCES:
    - shopsync/models.py (target tables)
    - shopsync/services/paginated_fetcher.py (pull caller)
    - shopsync/routers/shopify_webhooks.py (push caller)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopsync.errors import IngestionError, MalformedPayload, StorageConstraintViolation
from shopsync.models import ENTITY_MODELS, EntityKind

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one record."""
    kind: EntityKind
    external_id: Optional[str] = None
    error: Optional[IngestionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _parse_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    """Parse a Shopify money string ("19.99") to Decimal; absent -> None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise MalformedPayload(f"{field_name} is not a decimal: {value!r}")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedPayload(f"{field_name} is not a decimal: {value!r}")
    if not parsed.is_finite():
        raise MalformedPayload(f"{field_name} is not a finite decimal: {value!r}")
    return parsed


def _parse_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_datetime(dt_str: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp to naive UTC; unparseable -> None."""
    if not dt_str or not isinstance(dt_str, str):
        return None
    try:
        parsed = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _external_id(payload: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return str(value)
    raise MalformedPayload(f"payload has no {' or '.join(keys)}")


# =============================================================================
# PROJECTIONS
# =============================================================================
# Each returns (external_id, projected columns). Raw payload is added by _upsert.

def _project_product(payload: Dict[str, Any]):
    external_id = _external_id(payload, "id")
    variants = payload.get("variants") if isinstance(payload.get("variants"), list) else None
    first_variant = variants[0] if variants and isinstance(variants[0], dict) else {}
    return external_id, {
        "title": _str_or_none(payload.get("title")),
        "handle": _str_or_none(payload.get("handle")),
        "vendor": _str_or_none(payload.get("vendor")),
        "product_type": _str_or_none(payload.get("product_type")),
        "status": _str_or_none(payload.get("status")),
        "price": _parse_decimal(first_variant.get("price"), "variants[0].price"),
        "variants": variants,
        "published_at": _parse_datetime(payload.get("published_at")),
        "source_created_at": _parse_datetime(payload.get("created_at")),
        "source_updated_at": _parse_datetime(payload.get("updated_at")),
    }


def _project_customer(payload: Dict[str, Any]):
    external_id = _external_id(payload, "id")
    return external_id, {
        "email": _str_or_none(payload.get("email")),
        "first_name": _str_or_none(payload.get("first_name")),
        "last_name": _str_or_none(payload.get("last_name")),
        "phone": _str_or_none(payload.get("phone")),
        "total_spent": _parse_decimal(payload.get("total_spent"), "total_spent"),
        "orders_count": _parse_int(payload.get("orders_count")),
        "source_created_at": _parse_datetime(payload.get("created_at")),
        "source_updated_at": _parse_datetime(payload.get("updated_at")),
    }


def _project_order(payload: Dict[str, Any]):
    external_id = _external_id(payload, "id")
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
    return external_id, {
        "order_number": _str_or_none(payload.get("order_number")),
        "name": _str_or_none(payload.get("name")),
        "email": _str_or_none(payload.get("email")),
        "customer_external_id": _str_or_none(customer.get("id")),
        "total_price": _parse_decimal(payload.get("total_price"), "total_price"),
        "subtotal_price": _parse_decimal(payload.get("subtotal_price"), "subtotal_price"),
        "total_tax": _parse_decimal(payload.get("total_tax"), "total_tax"),
        "currency": _str_or_none(payload.get("currency")),
        "financial_status": _str_or_none(payload.get("financial_status")),
        "fulfillment_status": _str_or_none(payload.get("fulfillment_status")),
        "source_created_at": _parse_datetime(payload.get("created_at")),
        "cancelled_at": _parse_datetime(payload.get("cancelled_at")),
    }


def _project_abandoned_checkout(payload: Dict[str, Any]):
    external_id = _external_id(payload, "id", "token")
    line_items = payload.get("line_items") if isinstance(payload.get("line_items"), list) else None
    return external_id, {
        "token": _str_or_none(payload.get("token")),
        "email": _str_or_none(payload.get("email")),
        "total_price": _parse_decimal(payload.get("total_price"), "total_price"),
        "currency": _str_or_none(payload.get("currency")),
        "line_items": line_items,
        "abandoned_checkout_url": _str_or_none(payload.get("abandoned_checkout_url")),
        "source_created_at": _parse_datetime(payload.get("created_at")),
        "completed_at": _parse_datetime(payload.get("completed_at")),
    }


_PROJECTIONS: Dict[EntityKind, Callable[[Dict[str, Any]], Any]] = {
    EntityKind.product: _project_product,
    EntityKind.customer: _project_customer,
    EntityKind.order: _project_order,
    EntityKind.abandoned_checkout: _project_abandoned_checkout,
}


# =============================================================================
# UPSERT
# =============================================================================

def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")


def _upsert(db: Session, kind: EntityKind, tenant_id: UUID, external_id: str, columns: Dict[str, Any], raw: Dict[str, Any]) -> None:
    model = ENTITY_MODELS[kind]
    now = datetime.utcnow()
    values = {
        **columns,
        "id": uuid.uuid4(),
        "tenant_id": tenant_id,
        "external_id": external_id,
        "raw": raw,
        "created_at": now,
        "updated_at": now,
    }

    insert = _insert_for(db)
    stmt = insert(model).values(**values)
    overwrite = list(columns) + ["raw", "updated_at"]
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "external_id"],
        set_={name: stmt.excluded[name] for name in overwrite},
    )
    db.execute(stmt)


def reconcile(db: Session, kind: EntityKind, tenant_id: UUID, payload: Any) -> ReconcileResult:
    """Project and upsert one payload; errors are returned, not raised.

    Commits on success, rolls back on storage failure so the session stays
    usable for the next record.
    """
    kind = EntityKind(kind)
    result = ReconcileResult(kind=kind)

    try:
        if not isinstance(payload, dict):
            raise MalformedPayload(f"expected JSON object, got {type(payload).__name__}")
        external_id, columns = _PROJECTIONS[kind](payload)
        result.external_id = external_id
    except MalformedPayload as e:
        logger.warning("[RECONCILER] Malformed %s for tenant %s: %s", kind.value, tenant_id, e.message)
        result.error = e
        return result

    try:
        _upsert(db, kind, tenant_id, external_id, columns, payload)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            "[RECONCILER] Failed to store %s %s for tenant %s: %s",
            kind.value, external_id, tenant_id, e,
        )
        result.error = StorageConstraintViolation(f"{kind.value} {external_id}: {e.__class__.__name__}")
        return result

    logger.debug("[RECONCILER] Upserted %s %s for tenant %s", kind.value, external_id, tenant_id)
    return result


def upsert_product(db: Session, tenant_id: UUID, payload: Any) -> ReconcileResult:
    return reconcile(db, EntityKind.product, tenant_id, payload)


def upsert_customer(db: Session, tenant_id: UUID, payload: Any) -> ReconcileResult:
    return reconcile(db, EntityKind.customer, tenant_id, payload)


def upsert_order(db: Session, tenant_id: UUID, payload: Any) -> ReconcileResult:
    return reconcile(db, EntityKind.order, tenant_id, payload)


def upsert_abandoned_checkout(db: Session, tenant_id: UUID, payload: Any) -> ReconcileResult:
    return reconcile(db, EntityKind.abandoned_checkout, tenant_id, payload)
