"""Dependency providers and settings management."""

import hmac
import logging
from functools import lru_cache
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .schemas import Order
from .services.sync_context import SyncContext, build_sync_context
from .services.woocommerce_client import WooCommerceAPIError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    # CiviCRM APIv3 REST endpoint, e.g. https://crm.example.org/civicrm/ajax/rest
    CIVICRM_REST_URL: str = "http://localhost/civicrm/ajax/rest"
    CIVICRM_API_KEY: str = ""
    CIVICRM_SITE_KEY: str = ""
    # Base used to build "View in CiviCRM" links written into order notes
    CIVICRM_ADMIN_URL: str = "http://localhost/wp-admin/admin.php"

    # WooCommerce REST API
    WOOCOMMERCE_URL: str = "http://localhost"
    WOOCOMMERCE_CONSUMER_KEY: str = ""
    WOOCOMMERCE_CONSUMER_SECRET: str = ""
    WOOCOMMERCE_WEBHOOK_SECRET: Optional[str] = None
    WP_ADMIN_URL: str = "http://localhost/wp-admin/"

    # WordPress database (multisite: WC_BLOG_ID is the blog running WooCommerce)
    WP_TABLE_PREFIX: str = "wp_"
    CURRENT_BLOG_ID: int = 1
    WC_BLOG_ID: Optional[int] = None

    # Contribution defaults
    FINANCIAL_TYPE_ID: str = "1"
    FINANCIAL_TYPE_VAT_ID: Optional[str] = None
    SHIPPING_FINANCIAL_TYPE_ID: str = "8"
    CAMPAIGN_ID: Optional[str] = None
    IGNORE_ZERO_AMOUNT_ORDERS: bool = False
    INVOICE_ID_SUFFIX: str = "woocommerce"

    # Location types used for billing/shipping addresses, phones and emails
    LOCATION_TYPE_BILLING: int = 5
    LOCATION_TYPE_SHIPPING: int = 1

    # Labels
    CONTACT_SOURCE_LABEL: str = "Woocommerce purchase"
    DEFAULT_SOURCE_LABEL: str = "shop"

    # UTM attribution cookies (0 = session cookie)
    UTM_COOKIE_TTL_SECONDS: int = 0
    COOKIE_HASH: str = ""

    # Behaviour flags
    HIDE_ORDERS_TAB_FOR_NON_CUSTOMERS: bool = False
    BYPASS_CONTACT_UPDATE: bool = False
    CAMPAIGN_LIST: str = "campaigns"  # "campaigns" (active only) or "all"

    # Shared secret for the admin-facing endpoints (order panel, orders tab)
    ADMIN_API_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def store_blog_id(self) -> int:
        return self.WC_BLOG_ID or self.CURRENT_BLOG_ID


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def require_admin_token(
    x_woocivi_admin_token: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject admin requests that do not carry the configured shared secret."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin API is not configured")

    if not x_woocivi_admin_token or not hmac.compare_digest(x_woocivi_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")


def get_sync_context(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Generator[SyncContext, None, None]:
    """Build the per-request synchronizer context."""
    yield build_sync_context(settings, db)


def fetch_order(ctx: SyncContext, order_id: int) -> Order:
    """Load an order from the store, translating store failures into HTTP errors."""
    try:
        return ctx.store.get_order(order_id)
    except WooCommerceAPIError as e:
        if e.status_code == status.HTTP_404_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Order {order_id} not found")
        logger.error("[DEPS] Could not load order %s: %s", order_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="WooCommerce API unavailable")
