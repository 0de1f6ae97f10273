"""FastAPI application entrypoint.

Includes the webhook, storefront and admin routers and exposes a
healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import schemas
from .deps import get_settings
from .routers import contact_orders as contact_orders_router
from .routers import order_admin as order_admin_router
from .routers import storefront as storefront_router
from .routers import woocommerce_webhooks as woocommerce_webhooks_router


def create_app() -> FastAPI:
    app = FastAPI(
        title="woocivi API",
        description="""
        woocivi keeps a WooCommerce store and a CiviCRM instance in step.

        This API provides endpoints for:
        - WooCommerce order webhooks (order.created, order.updated)
        - Storefront checkout callback and UTM attribution capture
        - The CiviCRM panel of the WooCommerce order screen
        - The WooCommerce Orders tab of CiviCRM contact screens

        ## Authentication

        Webhooks are verified with the WooCommerce webhook secret (HMAC-SHA256).
        Admin endpoints require the `X-Woocivi-Admin-Token` header.
        The checkout callback requires the order key.
        """,
        version="1.0.0",
    )

    settings = get_settings()

    # The storefront endpoints are called from the shop's own pages
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.WOOCOMMERCE_URL.rstrip("/")],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(woocommerce_webhooks_router.router)
    app.include_router(storefront_router.router)
    app.include_router(order_admin_router.router)
    app.include_router(contact_orders_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    logger.info("[APP] woocivi app created (store=%s, crm=%s)", settings.WOOCOMMERCE_URL, settings.CIVICRM_REST_URL)
    return app


app = create_app()
