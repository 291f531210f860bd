"""Shopify webhook subscription service.

WHAT: Registers the webhook topics the receiver handles, right after OAuth
WHY: Push delivery keeps products, customers, orders and checkouts fresh
     between full syncs
REFERENCES:
    - https://shopify.dev/docs/api/admin-rest/latest/resources/webhook#post-webhooks
    - shopsync/routers/shopify_webhooks.py (receiver)
"""

import logging
from typing import Dict

from shopsync.errors import UpstreamRequestFailed
from shopsync.services.shopify_client import ShopifyRestClient

logger = logging.getLogger(__name__)

WEBHOOK_TOPICS = (
    "products/create",
    "products/update",
    "customers/create",
    "customers/update",
    "orders/create",
    "orders/updated",
    "checkouts/create",
)


async def subscribe_to_webhooks(client: ShopifyRestClient, address: str) -> Dict[str, dict]:
    """Subscribe every topic in WEBHOOK_TOPICS to `address`.

    Each topic is attempted independently; a failure is logged and recorded
    in the result and never stops the remaining topics.

    Returns:
        {topic: {"status": "created" | "already_registered", ...} or {"error": ...}}
    """
    if address.startswith("http://"):
        # Shopify only delivers to HTTPS endpoints
        logger.warning(f"[WEBHOOK_SUB] Webhook address is not HTTPS: {address}")

    results: Dict[str, dict] = {}
    for topic in WEBHOOK_TOPICS:
        try:
            results[topic] = await _create_webhook_subscription(client, topic, address)
        except Exception as e:
            logger.error(f"[WEBHOOK_SUB] Failed to subscribe {client.shop_domain} to {topic}: {e}")
            results[topic] = {"error": str(e)}

    created = sum(1 for r in results.values() if "error" not in r)
    logger.info(f"[WEBHOOK_SUB] {client.shop_domain}: {created}/{len(WEBHOOK_TOPICS)} topics subscribed")
    return results


async def _create_webhook_subscription(client: ShopifyRestClient, topic: str, address: str) -> dict:
    payload = {"webhook": {"topic": topic, "address": address, "format": "json"}}
    try:
        response = await client.post("webhooks", payload)
    except UpstreamRequestFailed as e:
        if e.status_code == 422 and "already been taken" in e.message.lower():
            logger.info(f"[WEBHOOK_SUB] Webhook {topic} already registered for {client.shop_domain}")
            return {"status": "already_registered", "topic": topic}
        raise

    webhook = response.json().get("webhook") or {}
    logger.debug(f"[WEBHOOK_SUB] Subscribed {client.shop_domain} to {topic} (id={webhook.get('id')})")
    return {"status": "created", "topic": topic, "subscription_id": webhook.get("id")}
