"""Dependency providers and settings management."""

import hmac
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    # Shopify app credentials (Partner Dashboard)
    SHOPIFY_API_KEY: str = ""
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_SCOPES: str = "read_products,read_orders,read_customers,read_checkouts"
    SHOPIFY_API_VERSION: str = "2025-01"
    SHOPIFY_VERIFY_CALLBACK_HMAC: bool = True

    # Public base URL of this service; webhooks and OAuth callback point here
    APP_URL: str = "http://localhost:4000"
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    ADMIN_SECRET_KEY: str = "supersecretkey-change-this-in-production"

    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Abandoned checkout re-poll
    ENABLE_SCHEDULER: bool = True
    CHECKOUT_POLL_INTERVAL_SECONDS: int = 900  # 15 minutes
    CHECKOUT_POLL_PAGE_SIZE: int = 250

    # arq worker
    REDIS_URL: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def webhook_address(self) -> str:
        return f"{self.APP_URL.rstrip('/')}/webhooks/receive"

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.APP_URL.rstrip('/')}/auth/callback"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def require_admin_key(
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard administrative endpoints with the shared admin key."""
    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"), settings.ADMIN_SECRET_KEY.encode("utf-8")
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin key")
