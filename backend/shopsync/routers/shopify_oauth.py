"""Shopify OAuth 2.0 installation endpoints.

WHAT:
    - GET /auth/install: issue a single-use state cookie and redirect to the
      store's consent screen
    - GET /auth/callback: verify the callback, complete the installation and
      kick off the initial full sync in the background

WHY:
    Installation is the only way tenants and their credentials enter the
    system. Failures redirect to the frontend error page instead of
    returning raw error bodies, since a merchant's browser is on the other end.

REFERENCES:
    - Shopify OAuth: https://shopify.dev/docs/apps/build/authentication-authorization/access-tokens/authorization-code-grant
    - shopsync/services/installation_service.py (orchestration)
"""

import logging
import re
import secrets
from typing import Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from shopsync.database import get_db
from shopsync.deps import Settings, get_settings
from shopsync.errors import AuthStateMismatch, CredentialExchangeFailed
from shopsync.services.installation_service import complete_install
from shopsync.services.shopify_sync_service import run_initial_sync
from shopsync.services.signature import verify_oauth_callback
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Shopify OAuth"])

STATE_COOKIE_NAME = "shopify_oauth_state"
STATE_COOKIE_MAX_AGE = 600  # 10 minutes


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _validate_shopify_config(settings: Settings) -> None:
    """Raise 503 when the app credentials are not configured."""
    missing = [
        name for name in ("SHOPIFY_API_KEY", "SHOPIFY_API_SECRET")
        if not getattr(settings, name)
    ]
    if missing:
        logger.error("[SHOPIFY_OAUTH] Missing required settings: %s", missing)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Shopify integration not configured. Missing: {', '.join(missing)}",
        )


def normalize_shop_domain(shop_input: str) -> str:
    """Normalize shop input to the `{store}.myshopify.com` form.

    Examples:
        'myshop' -> 'myshop.myshopify.com'
        'https://myshop.myshopify.com/admin' -> 'myshop.myshopify.com'
    """
    shop = shop_input.strip().lower()

    if shop.startswith("http://") or shop.startswith("https://"):
        parsed = urlparse(shop)
        shop = parsed.netloc or parsed.path.split("/")[0]

    shop = shop.split("/")[0]

    if not shop.endswith(".myshopify.com"):
        shop = f"{shop}.myshopify.com"

    return shop


def validate_shop_domain(shop_domain: str) -> bool:
    """Store name: alphanumeric and hyphens, 3-100 chars, then .myshopify.com"""
    pattern = r"^[a-z0-9][a-z0-9\-]{1,98}[a-z0-9]\.myshopify\.com$"
    return bool(re.match(pattern, shop_domain.lower()))


def _error_redirect(settings: Settings, reason: str) -> RedirectResponse:
    query = urlencode({"reason": reason})
    response = RedirectResponse(url=f"{settings.FRONTEND_URL.rstrip('/')}/install/error?{query}")
    response.delete_cookie(STATE_COOKIE_NAME)
    return response


# =============================================================================
# OAUTH ENDPOINTS
# =============================================================================

@router.get("/install")
async def shopify_install(
    shop: str = Query(..., description="Shopify store domain (e.g., 'mystore' or 'mystore.myshopify.com')"),
    settings: Settings = Depends(get_settings),
):
    """Redirect the merchant to the Shopify consent screen.

    The state token is random per attempt and lives only in an httpOnly
    cookie; the callback consumes it.
    """
    _validate_shopify_config(settings)

    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid Shopify store domain: {shop_domain}. Expected format: mystore.myshopify.com",
        )

    state = secrets.token_hex(16)
    params = {
        "client_id": settings.SHOPIFY_API_KEY,
        "scope": settings.SHOPIFY_SCOPES,
        "redirect_uri": settings.oauth_redirect_uri,
        "state": state,
    }
    auth_url = f"https://{shop_domain}/admin/oauth/authorize?{urlencode(params)}"

    logger.info(f"[SHOPIFY_OAUTH] Redirecting to Shopify consent for {shop_domain}")

    response = RedirectResponse(url=auth_url)
    response.set_cookie(
        STATE_COOKIE_NAME,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        secure=settings.APP_URL.startswith("https://"),
        samesite="lax",
    )
    return response


@router.get("/callback")
async def shopify_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    code: Optional[str] = Query(None),
    shop: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    state_cookie: Optional[str] = Cookie(default=None, alias=STATE_COOKIE_NAME),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Handle the OAuth callback from Shopify."""
    _validate_shopify_config(settings)

    if error:
        logger.error(f"[SHOPIFY_OAUTH] OAuth error from Shopify: {error}")
        return _error_redirect(settings, error)

    if not code or not shop:
        logger.error("[SHOPIFY_OAUTH] Callback missing code or shop")
        return _error_redirect(settings, "missing_parameters")

    shop_domain = normalize_shop_domain(shop)
    if not validate_shop_domain(shop_domain):
        logger.error(f"[SHOPIFY_OAUTH] Invalid shop domain on callback: {shop}")
        return _error_redirect(settings, "invalid_shop")

    if settings.SHOPIFY_VERIFY_CALLBACK_HMAC and not verify_oauth_callback(
        settings.SHOPIFY_API_SECRET, dict(request.query_params)
    ):
        logger.error(f"[SHOPIFY_OAUTH] Callback HMAC verification failed for {shop_domain}")
        return _error_redirect(settings, "invalid_hmac")

    try:
        tenant_ref = await complete_install(db, shop_domain, code, state, state_cookie)
    except AuthStateMismatch as e:
        logger.error(f"[SHOPIFY_OAUTH] State mismatch for {shop_domain}: {e.message}")
        return _error_redirect(settings, e.code)
    except CredentialExchangeFailed as e:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange failed for {shop_domain}: {e.message}")
        return _error_redirect(settings, e.code)
    except Exception as e:
        logger.exception(f"[SHOPIFY_OAUTH] Installation failed for {shop_domain}: {e}")
        capture_exception(e, extra={"operation": "complete_install", "shop_domain": shop_domain})
        db.rollback()
        return _error_redirect(settings, "server_error")

    # Runs after the redirect has been sent
    background_tasks.add_task(run_initial_sync, tenant_ref.tenant_id)

    logger.info(
        f"[SHOPIFY_OAUTH] Installed {shop_domain} as tenant {tenant_ref.tenant_id} "
        f"({'new' if tenant_ref.is_new else 're-install'})"
    )

    query = urlencode({"tenant": str(tenant_ref.tenant_id), "shop": tenant_ref.shop_domain})
    response = RedirectResponse(url=f"{settings.FRONTEND_URL.rstrip('/')}/dashboard?{query}")
    response.delete_cookie(STATE_COOKIE_NAME)
    return response
