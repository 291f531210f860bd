"""Abandoned checkout re-poll scheduler.

WHAT:
    - poll_abandoned_checkouts: one pass over every active tenant, fetching a
      single page of abandoned checkouts each
    - CheckoutPollScheduler: in-process asyncio timer firing that pass every
      15 minutes

WHY:
    - Abandoned checkouts have no reliable update webhook, so they are
      re-polled on a fixed cadence.
    - One tenant failing (revoked token, store closed, timeout) must never
      stop the others or the next tick.

DESIGN:
    - Each tick is its own task. A slow tick does not delay the next one and
      ticks may overlap; upserts are idempotent.
    - Each tenant gets its own session so a broken transaction stays local.
    - Deployments with Redis can run the same pass from the arq worker
      instead (shopsync/workers/arq_worker.py).

REFERENCES:
    - shopsync/services/shopify_sync_service.py::poll_tenant_checkouts
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set
from uuid import UUID

from sqlalchemy.orm import Session

from shopsync.database import SessionLocal
from shopsync.services.credential_store import get_tenant, list_active_tenants
from shopsync.services.paginated_fetcher import FetchSummary
from shopsync.services.shopify_sync_service import poll_tenant_checkouts
from shopsync.telemetry import capture_exception

logger = logging.getLogger(__name__)

CHECKOUT_POLL_INTERVAL_SECONDS = 15 * 60


@dataclass
class TenantPollResult:
    tenant_id: UUID
    shop_domain: str
    summary: Optional[FetchSummary] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.summary is not None and not self.summary.stopped_early


@dataclass
class CheckoutPollReport:
    started_at: datetime
    results: List[TenantPollResult] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)


async def poll_abandoned_checkouts(
    session_factory: Optional[Callable[[], Session]] = None,
    *,
    page_size: Optional[int] = None,
) -> CheckoutPollReport:
    """Re-fetch abandoned checkouts for every active tenant, one at a time."""
    factory = session_factory or SessionLocal
    report = CheckoutPollReport(started_at=datetime.utcnow())

    db = factory()
    try:
        tenants = [(t.id, t.shop_domain) for t in list_active_tenants(db)]
    finally:
        db.close()

    logger.info(f"[SCHEDULER] Checkout poll starting for {len(tenants)} tenants")

    for tenant_id, shop_domain in tenants:
        result = TenantPollResult(tenant_id=tenant_id, shop_domain=shop_domain)
        tenant_db = factory()
        try:
            tenant = get_tenant(tenant_db, tenant_id)
            result.summary = await poll_tenant_checkouts(tenant_db, tenant, page_size=page_size)
            if result.summary.stopped_early:
                logger.warning(
                    f"[SCHEDULER] Checkout poll for {shop_domain} incomplete: "
                    f"{result.summary.error.message if result.summary.error else 'no records array'}"
                )
        except Exception as e:
            logger.error(f"[SCHEDULER] Checkout poll failed for {shop_domain}: {e}")
            capture_exception(e, extra={
                "operation": "checkout_poll",
                "tenant_id": str(tenant_id),
                "job": "checkout_poll",
            })
            result.error = str(e)
        finally:
            tenant_db.close()
        report.results.append(result)

    logger.info(
        f"[SCHEDULER] Checkout poll complete: {len(report.results)} tenants, {report.failed_count} failed"
    )
    return report


class CheckoutPollScheduler:
    """Owns the background timer task; start() once, stop() on shutdown.

    Usage:
        scheduler = CheckoutPollScheduler(interval_seconds=900)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        interval_seconds: float = CHECKOUT_POLL_INTERVAL_SECONDS,
        poll: Callable[[], Awaitable[CheckoutPollReport]] = poll_abandoned_checkouts,
        *,
        run_at_startup: bool = False,
    ):
        self.interval_seconds = interval_seconds
        self._poll = poll
        self._run_at_startup = run_at_startup
        self._timer: Optional[asyncio.Task] = None
        # Strong refs so in-flight ticks are not garbage collected
        self._ticks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"[SCHEDULER] Checkout poll every {self.interval_seconds}s")
        self._timer = asyncio.create_task(self._run(), name="checkout-poll-timer")

    async def stop(self) -> None:
        tasks = [t for t in [self._timer, *self._ticks] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
        self._ticks.clear()
        logger.info("[SCHEDULER] Checkout poll scheduler stopped")

    async def _run(self) -> None:
        if self._run_at_startup:
            self._spawn_tick()
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._spawn_tick()

    def _spawn_tick(self) -> None:
        task = asyncio.create_task(self._tick(), name="checkout-poll-tick")
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _tick(self) -> None:
        try:
            await self._poll()
        except Exception as e:
            logger.exception(f"[SCHEDULER] Checkout poll tick failed: {e}")
            capture_exception(e, extra={"operation": "checkout_poll_tick"})
