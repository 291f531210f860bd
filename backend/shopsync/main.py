"""FastAPI application entrypoint.

Configures CORS, includes routers, exposes a healthcheck endpoint and owns
the in-process checkout poll scheduler.
"""

from datetime import datetime, timezone
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .routers import metrics as metrics_router
from .routers import shopify_oauth as shopify_oauth_router
from .routers import shopify_sync as shopify_sync_router
from .routers import shopify_webhooks as shopify_webhooks_router
from .services.sync_scheduler import CheckoutPollScheduler
from .telemetry import init_sentry


def create_app() -> FastAPI:
    settings = get_settings()

    if init_sentry():
        logger.info("[STARTUP] Sentry error tracking enabled")

    app = FastAPI(
        title="shopsync API",
        description="Multi-tenant Shopify ingestion: OAuth install, webhooks, full and scheduled sync.",
        version="0.1.0",
    )

    # Trust X-Forwarded-Proto so redirects and cookies see https behind a proxy
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(shopify_oauth_router.router)  # Install + OAuth callback
    app.include_router(shopify_webhooks_router.router)  # Webhook receiver
    app.include_router(shopify_sync_router.router)  # Manual full sync
    app.include_router(metrics_router.router)  # Dashboard reads

    @app.get("/health", tags=["Health"], summary="Health check")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.state.checkout_scheduler = CheckoutPollScheduler(
        interval_seconds=settings.CHECKOUT_POLL_INTERVAL_SECONDS,
    )

    @app.on_event("startup")
    async def startup_event():
        if settings.ENABLE_SCHEDULER:
            app.state.checkout_scheduler.start()
        else:
            logger.info("[STARTUP] In-process scheduler disabled (ENABLE_SCHEDULER=false)")

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.checkout_scheduler.stop()

    return app


app = create_app()
