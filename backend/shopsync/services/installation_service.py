"""Installation orchestrator for the Shopify OAuth callback.

WHAT:
    complete_install() takes the callback parameters and:
    1. Checks the anti-forgery state against the value issued at /auth/install
    2. Exchanges the authorization code for an access token
    3. Upserts the tenant by shop domain (re-install rotates the token)
    4. Captures shop details (best-effort)
    5. Registers webhook topics (best-effort, per topic)

    The initial full sync is scheduled by the router as a background task
    once this returns.

WHY:
    Keeps the router down to cookie handling and redirects, and gives tests
    one coroutine to drive end to end.

REFERENCES:
    - https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
    - shopsync/routers/shopify_oauth.py (caller)
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from shopsync.deps import get_settings
from shopsync.errors import AuthStateMismatch
from shopsync.services.credential_store import save_installation, update_shop_details
from shopsync.services.shopify_client import ShopifyRestClient, exchange_code_for_token
from shopsync.services.webhook_subscription_service import subscribe_to_webhooks

logger = logging.getLogger(__name__)


@dataclass
class TenantRef:
    """What the callback needs to redirect and schedule the initial sync."""
    tenant_id: UUID
    shop_domain: str
    is_new: bool
    webhooks: Dict[str, dict] = field(default_factory=dict)


def check_state(state_token: Optional[str], expected_state_token: Optional[str]) -> None:
    """Raise AuthStateMismatch unless both tokens are present and equal."""
    if not state_token or not expected_state_token:
        raise AuthStateMismatch("OAuth state missing")
    if not hmac.compare_digest(state_token.encode("utf-8"), expected_state_token.encode("utf-8")):
        raise AuthStateMismatch("OAuth state does not match")


async def complete_install(
    db: Session,
    shop_domain: str,
    auth_code: str,
    state_token: Optional[str],
    expected_state_token: Optional[str],
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TenantRef:
    """Finish a Shopify installation.

    Raises:
        AuthStateMismatch: state missing or different from the issued token
        CredentialExchangeFailed: token endpoint failed or returned no token
    """
    settings = get_settings()

    check_state(state_token, expected_state_token)

    access_token, scope = await exchange_code_for_token(
        shop_domain,
        auth_code,
        api_key=settings.SHOPIFY_API_KEY,
        api_secret=settings.SHOPIFY_API_SECRET,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        transport=transport,
    )
    logger.info(f"[SHOPIFY_OAUTH] Token exchanged for {shop_domain} (scope={scope})")

    tenant, created = save_installation(db, shop_domain, access_token=access_token, scope=scope)

    async with ShopifyRestClient(
        shop_domain,
        access_token,
        settings.SHOPIFY_API_VERSION,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        transport=transport,
    ) as client:
        try:
            update_shop_details(db, tenant, await client.get_shop())
        except Exception as e:
            logger.warning(f"[SHOPIFY_OAUTH] Could not fetch shop details for {shop_domain}: {e}")
            db.rollback()

        try:
            webhooks = await subscribe_to_webhooks(client, settings.webhook_address)
        except Exception as e:
            logger.error(f"[SHOPIFY_OAUTH] Webhook registration failed for {shop_domain}: {e}")
            webhooks = {"error": {"error": str(e)}}

    return TenantRef(
        tenant_id=tenant.id,
        shop_domain=tenant.shop_domain,
        is_new=created,
        webhooks=webhooks,
    )
