"""ARQ worker for the scheduled abandoned checkout poll.

WHAT:
    Alternative to the in-process scheduler for deployments that run a
    separate worker: the abandoned checkout poll as an arq cron job at
    :00, :15, :30 and :45.

WHY:
    With several API replicas, the in-process timer would poll once per
    replica. Running one worker (ENABLE_SCHEDULER=false on the API) keeps a
    single poller.

USAGE:
    arq shopsync.workers.arq_worker.WorkerSettings

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - shopsync/services/sync_scheduler.py (shared poll function)
"""

import logging
from datetime import datetime, timezone
from typing import Dict
from urllib.parse import urlparse

from arq import cron
from arq.connections import RedisSettings

from shopsync.deps import get_settings
from shopsync.services.sync_scheduler import poll_abandoned_checkouts
from shopsync.telemetry import capture_exception, init_sentry

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Redis connection settings from Settings.REDIS_URL (redis:// or rediss://)."""
    parsed = urlparse(get_settings().REDIS_URL)

    database = int(parsed.path.lstrip("/")) if parsed.path and parsed.path != "/" else 0

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=database,
        ssl=parsed.scheme == "rediss",
    )


# =============================================================================
# JOBS
# =============================================================================

async def scheduled_checkout_poll(ctx: Dict) -> Dict:
    """Cron job: re-poll abandoned checkouts for every tenant."""
    try:
        report = await poll_abandoned_checkouts()
        return {
            "tenants": len(report.results),
            "failed": report.failed_count,
        }
    except Exception as e:
        logger.error(f"[ARQ] Checkout poll job failed: {e}")
        capture_exception(e, extra={"job": "scheduled_checkout_poll"})
        return {"error": str(e)}


# =============================================================================
# LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    init_sentry()
    ctx["startup_time"] = datetime.now(timezone.utc)
    logger.info("[ARQ] Worker starting up (checkout poll cron)")


async def shutdown(ctx: Dict) -> None:
    uptime = datetime.now(timezone.utc) - ctx.get("startup_time", datetime.now(timezone.utc))
    logger.info(f"[ARQ] Worker shutting down after {uptime}, jobs processed: {ctx.get('jobs_processed', 0)}")


async def on_job_end(ctx: Dict) -> None:
    ctx["jobs_processed"] = ctx.get("jobs_processed", 0) + 1


# =============================================================================
# WORKER SETTINGS
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration.

    - unique=False: a tick fires even if the previous one is still running
    - job_timeout=600: ten minutes for a pass over every tenant
    """

    cron_jobs = [
        cron(
            scheduled_checkout_poll,
            minute={0, 15, 30, 45},
            unique=False,
            run_at_startup=False,
        ),
    ]

    on_startup = startup
    on_shutdown = shutdown
    after_job_end = on_job_end

    redis_settings = get_redis_settings()

    max_jobs = 10
    job_timeout = 600
    keep_result = 3600
