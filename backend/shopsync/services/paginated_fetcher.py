"""Cursor-following bulk reader for Shopify REST listings.

WHAT:
    `fetch_all` walks every page of one resource listing, handing each record
    to a page handler (normally the reconciler) in page order.

WHY:
    - Full syncs and the checkout poller share one loop.
    - A failing page must only end its own resource kind; the outcome is
      reported in FetchSummary, never raised.

PROTOCOL:
    - Each page body is an object with one array field, e.g. {"products": [...]}
    - The next page is `Link: <https://...page_info=...>; rel="next"`
    - No next link means the listing is exhausted

REFERENCES:
    - https://shopify.dev/docs/api/usage/pagination-rest
    - shopsync/services/shopify_client.py (HTTP)
    - shopsync/services/reconciler.py (default page handler target)
"""

from __future__ import annotations

import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from shopsync.errors import IngestionError, UpstreamRequestFailed
from shopsync.models import EntityKind
from shopsync.services.reconciler import ReconcileResult
from shopsync.services.shopify_client import ShopifyRestClient

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 250


class ResourceKind(str, enum.Enum):
    customers = "customers"
    products = "products"
    orders = "orders"
    checkouts = "checkouts"

    @property
    def entity_kind(self) -> EntityKind:
        return _ENTITY_KINDS[self]

    def default_params(self, page_size: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": page_size}
        if self is ResourceKind.orders:
            # Default listing hides closed/cancelled orders
            params["status"] = "any"
        return params


_ENTITY_KINDS = {
    ResourceKind.customers: EntityKind.customer,
    ResourceKind.products: EntityKind.product,
    ResourceKind.orders: EntityKind.order,
    ResourceKind.checkouts: EntityKind.abandoned_checkout,
}


HandlerOutcome = Union[ReconcileResult, bool, None]
PageHandler = Callable[[Dict[str, Any]], Union[HandlerOutcome, Awaitable[HandlerOutcome]]]


@dataclass
class FetchSummary:
    """Outcome of one fetch_all run for one resource kind."""
    resource: ResourceKind
    processed_count: int = 0
    failed_count: int = 0
    pages: int = 0
    stopped_early: bool = False
    error: Optional[IngestionError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.resource.value,
            "processed_count": self.processed_count,
            "failed_count": self.failed_count,
            "pages": self.pages,
            "stopped_early": self.stopped_early,
            "error": self.error.message if self.error else None,
        }


def find_records(body: Any) -> Tuple[Optional[str], Optional[List[Any]]]:
    """Return (key, records) for the array-valued field of a listing page."""
    if not isinstance(body, dict):
        return None, None
    array_keys = [key for key, value in body.items() if isinstance(value, list)]
    if not array_keys:
        return None, None
    if len(array_keys) > 1:
        logger.warning(f"[FETCHER] Page has several array fields {array_keys}; using '{array_keys[0]}'")
    return array_keys[0], body[array_keys[0]]


def _is_failure(outcome: HandlerOutcome) -> bool:
    if isinstance(outcome, ReconcileResult):
        return not outcome.ok
    return outcome is False


async def fetch_all(
    client: ShopifyRestClient,
    resource: ResourceKind,
    page_handler: PageHandler,
    *,
    params: Optional[Dict[str, Any]] = None,
    max_pages: Optional[int] = None,
) -> FetchSummary:
    """Fetch every page of `resource` and pass each record to `page_handler`.

    Records are handled one at a time in page order before the next page is
    requested. Handler failures (a failed ReconcileResult, False, or an
    exception) are counted and do not stop the page.

    Args:
        client: REST client bound to the tenant's store
        resource: listing to walk
        page_handler: called with each record dict (sync or async)
        params: query params for the first request (defaults per resource)
        max_pages: stop after this many pages (scheduler uses 1)

    Returns:
        FetchSummary; `stopped_early` is True when an upstream error or a
        page without records array ended the walk.
    """
    resource = ResourceKind(resource)
    summary = FetchSummary(resource=resource)
    url: Optional[str] = client.resource_url(resource.value)
    query = params if params is not None else resource.default_params()

    while url:
        try:
            response = await client.get(url, params=query)
            body = response.json()
        except UpstreamRequestFailed as e:
            logger.error(f"[FETCHER] {resource.value} page {summary.pages + 1} failed for {client.shop_domain}: {e.message}")
            summary.stopped_early = True
            summary.error = e
            break
        except ValueError as e:
            logger.error(f"[FETCHER] {resource.value} page {summary.pages + 1} for {client.shop_domain} is not JSON")
            summary.stopped_early = True
            summary.error = UpstreamRequestFailed(f"{resource.value} page is not valid JSON: {e}")
            break

        summary.pages += 1
        _, records = find_records(body)
        if records is None:
            logger.warning(f"[FETCHER] {resource.value} page {summary.pages} for {client.shop_domain} has no records array")
            summary.stopped_early = True
            break

        for record in records:
            summary.processed_count += 1
            try:
                outcome = page_handler(record)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as e:
                logger.exception(f"[FETCHER] Page handler raised for {resource.value} on {client.shop_domain}: {e}")
                outcome = False
            if _is_failure(outcome):
                summary.failed_count += 1

        if max_pages is not None and summary.pages >= max_pages:
            break

        # Next URL already carries page_info and limit
        url = response.links.get("next", {}).get("url")
        query = None

    logger.info(
        f"[FETCHER] {resource.value} for {client.shop_domain}: processed={summary.processed_count} "
        f"failed={summary.failed_count} pages={summary.pages} stopped_early={summary.stopped_early}"
    )
    return summary
