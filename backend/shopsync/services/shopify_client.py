"""Shopify REST Admin API client.

WHAT:
    Thin async wrapper around httpx for the Shopify REST Admin API:
    - Access token header and API version pinning
    - Request pacing (2 requests/second)
    - Uniform UpstreamRequestFailed for transport errors and non-2xx
    - OAuth authorization-code exchange

WHY:
    REST listing endpoints expose cursor pagination through the `Link`
    header, which the paginated fetcher follows page by page. Keeping HTTP
    details here lets tests swap in an httpx.MockTransport.

REFERENCES:
    - REST Admin API: https://shopify.dev/docs/api/admin-rest
    - Pagination: https://shopify.dev/docs/api/usage/pagination-rest
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from shopsync.errors import CredentialExchangeFailed, UpstreamRequestFailed

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2025-01"

# Shopify allows 2 requests/second per app and store (leaky bucket)
RATE_LIMIT_DELAY = 0.5


class ShopifyRestClient:
    """REST client bound to one store.

    Usage:
        async with ShopifyRestClient("mystore.myshopify.com", token) as client:
            response = await client.get(client.resource_url("products"), params={"limit": 250})
            next_url = response.links.get("next", {}).get("url")
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        *,
        timeout: float = 30.0,
        min_request_interval: float = RATE_LIMIT_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop_domain = shop_domain
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}"
        self.min_request_interval = min_request_interval
        self._last_request_time: float = 0
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "X-Shopify-Access-Token": access_token,
                "Accept": "application/json",
            },
        )

    async def __aenter__(self) -> "ShopifyRestClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def resource_url(self, resource: str) -> str:
        """Listing URL for a resource, e.g. `products` -> .../products.json"""
        return f"{self.base_url}/{resource}.json"

    async def _rate_limit(self) -> None:
        if self.min_request_interval <= 0:
            return
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self.min_request_interval:
            await asyncio.sleep(self.min_request_interval - elapsed)
        self._last_request_time = time.monotonic()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request; transport errors and non-2xx raise UpstreamRequestFailed."""
        await self._rate_limit()
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(
                f"[SHOPIFY_CLIENT] {method} {e.request.url.path} on {self.shop_domain} returned {status_code}"
            )
            raise UpstreamRequestFailed(
                f"{method} {e.request.url.path} returned HTTP {status_code}: {e.response.text[:200]}",
                status_code=status_code,
            ) from e
        except httpx.RequestError as e:
            # UnsupportedProtocol is a RequestError too
            logger.warning(f"[SHOPIFY_CLIENT] {method} request to {self.shop_domain} failed: {e!r}")
            raise UpstreamRequestFailed(f"{method} request to {self.shop_domain} failed: {e!r}") from e
        except httpx.InvalidURL as e:
            # Usually a malformed Link header from the previous page
            logger.warning(f"[SHOPIFY_CLIENT] {method} to invalid URL on {self.shop_domain}: {e}")
            raise UpstreamRequestFailed(f"{method} invalid URL {url!r}: {e}") from e

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return await self.request("GET", url, params=params)

    async def post(self, resource: str, payload: Dict[str, Any]) -> httpx.Response:
        return await self.request("POST", self.resource_url(resource), json=payload)

    async def get_shop(self) -> Dict[str, Any]:
        """Fetch shop metadata (name, email, currency)."""
        response = await self.get(self.resource_url("shop"))
        return response.json().get("shop") or {}


async def exchange_code_for_token(
    shop_domain: str,
    code: str,
    *,
    api_key: str,
    api_secret: str,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[str, Optional[str]]:
    """Exchange an OAuth authorization code for an offline access token.

    Returns:
        (access_token, granted_scope)

    Raises:
        CredentialExchangeFailed: non-2xx, network error, or no access_token
    """
    token_url = f"https://{shop_domain}/admin/oauth/access_token"
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(
                token_url,
                json={
                    "client_id": api_key,
                    "client_secret": api_secret,
                    "code": code,
                },
            )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange failed for {shop_domain}: HTTP {e.response.status_code}")
        raise CredentialExchangeFailed(f"Token endpoint returned HTTP {e.response.status_code}") from e
    except httpx.RequestError as e:
        logger.error(f"[SHOPIFY_OAUTH] Token exchange request failed for {shop_domain}: {e!r}")
        raise CredentialExchangeFailed(f"Token endpoint unreachable: {e!r}") from e
    except ValueError as e:
        logger.error(f"[SHOPIFY_OAUTH] Token endpoint returned non-JSON for {shop_domain}")
        raise CredentialExchangeFailed("Token endpoint returned an invalid body") from e

    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        logger.error(f"[SHOPIFY_OAUTH] No access_token in token response for {shop_domain}")
        raise CredentialExchangeFailed("Token response did not contain an access_token")

    return access_token, data.get("scope")
