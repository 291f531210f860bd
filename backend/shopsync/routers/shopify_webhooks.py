"""Shopify webhook receiver.

WHAT:
    Single endpoint for every subscribed topic. Verifies the HMAC, resolves
    the tenant from X-Shopify-Shop-Domain, routes by X-Shopify-Topic and
    hands the payload to the reconciler.

WHY:
    Push delivery keeps data fresh between pulls. Shopify retries any non-2xx
    response, so record-level reconcile failures still answer 200 (the
    record is logged and the next full sync repairs it).

RESPONSES:
    401 - signature missing or invalid (nothing parsed, nothing stored)
    404 - shop domain is not an installed tenant
    200 - dispatched, topic ignored, or body not JSON (logged, not stored)
    500 - unexpected failure

ROUTING:
    products/*  -> product
    customers/* -> customer
    orders/*    -> order
    checkouts/create -> abandoned checkout
    anything else    -> ignored

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks
    - shopsync/services/signature.py
    - shopsync/services/reconciler.py
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import Settings, get_settings
from shopsync.errors import MalformedPayload, SignatureInvalid, TenantNotFound
from shopsync.models import EntityKind
from shopsync.services.credential_store import find_tenant_by_domain
from shopsync.services.reconciler import reconcile
from shopsync.services.signature import verify_webhook_signature
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Shopify Webhooks"])

_PREFIX_ROUTES = (
    ("products/", EntityKind.product),
    ("customers/", EntityKind.customer),
    ("orders/", EntityKind.order),
)
_EXACT_ROUTES = {
    "checkouts/create": EntityKind.abandoned_checkout,
}


def route_topic(topic: Optional[str]) -> Optional[EntityKind]:
    """Entity kind a topic reconciles into, or None to ignore it."""
    if not topic:
        return None
    if topic in _EXACT_ROUTES:
        return _EXACT_ROUTES[topic]
    for prefix, kind in _PREFIX_ROUTES:
        if topic.startswith(prefix):
            return kind
    return None


def _reject(error, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.to_dict())


@router.post("/receive")
async def receive_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify and dispatch one Shopify webhook delivery."""
    body = await request.body()
    hmac_header = request.headers.get("X-Shopify-Hmac-Sha256")

    if not verify_webhook_signature(settings.SHOPIFY_API_SECRET, body, hmac_header):
        logger.warning("[SHOPIFY_WEBHOOK] Rejected delivery with invalid signature")
        return _reject(SignatureInvalid("Invalid webhook signature"), status.HTTP_401_UNAUTHORIZED)

    topic = request.headers.get("X-Shopify-Topic")
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")

    try:
        tenant = find_tenant_by_domain(db, shop_domain)
        if tenant is None:
            logger.warning(f"[SHOPIFY_WEBHOOK] {topic} for unknown shop {shop_domain}")
            return _reject(TenantNotFound(f"Unknown shop: {shop_domain}"), status.HTTP_404_NOT_FOUND)

        try:
            payload = json.loads(body)
        except ValueError as e:
            error = MalformedPayload(f"{topic} body is not JSON: {e}")
            logger.warning(f"[SHOPIFY_WEBHOOK] {topic} for {shop_domain} not stored: {error.code} {error.message}")
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content={"message": "accepted", "topic": topic, "external_id": None},
            )

        kind = route_topic(topic)
        if kind is None:
            logger.info(f"[SHOPIFY_WEBHOOK] Ignoring topic {topic} for {shop_domain}")
            return JSONResponse(status_code=status.HTTP_200_OK, content={"message": "ignored", "topic": topic})

        result = reconcile(db, kind, tenant.id, payload)
        if not result.ok:
            logger.warning(
                f"[SHOPIFY_WEBHOOK] {topic} for {shop_domain} not stored: {result.error.code} {result.error.message}"
            )
        else:
            logger.info(f"[SHOPIFY_WEBHOOK] {topic} for {shop_domain} stored {kind.value} {result.external_id}")

        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "message": "processed" if result.ok else "accepted",
                "topic": topic,
                "external_id": result.external_id,
            },
        )

    except Exception as e:
        logger.exception(f"[SHOPIFY_WEBHOOK] Failed to process {topic} for {shop_domain}: {e}")
        capture_exception(e, extra={"operation": "webhook", "topic": topic, "shop_domain": shop_domain})
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"code": "internal_error", "message": "Webhook processing failed"},
        )
