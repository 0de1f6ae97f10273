"""WooCommerce order webhooks.

WHAT:
    Single delivery URL for the store's order webhooks:
    1. order.created - save-order pipeline (POS orders, membership check)
    2. order.updated - status pipeline (contribution completion + status)

WHY:
    Webhooks are how order lifecycle events leave WooCommerce. Each delivery
    is signed with the webhook secret and runs its pipeline stage inline.
    Pipeline failures are reported in the response body and as order notes,
    never as a non-2xx status, so WooCommerce does not disable the webhook
    after repeated failures.

REFERENCES:
    - https://woocommerce.github.io/woocommerce-rest-api-docs/#webhooks
    - woocivi/services/order_sync_service.py
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from woocivi.deps import Settings, get_settings, get_sync_context
from woocivi.schemas import Order
from woocivi.services.order_sync_service import (
    handle_order_saved,
    handle_status_changed,
    status_needs_sync,
)
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/woocommerce", tags=["WooCommerce Webhooks"])

TOPIC_HEADER = "X-WC-Webhook-Topic"
SIGNATURE_HEADER = "X-WC-Webhook-Signature"


# =============================================================================
# SIGNATURE VERIFICATION
# =============================================================================

def verify_woocommerce_webhook(request_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Verify that a delivery came from the store.

    WHAT: Compares X-WC-Webhook-Signature with base64(HMAC-SHA256(body, secret))
    WHY: The delivery URL is public; unsigned calls must not touch CiviCRM
    """
    if not secret:
        logger.error("[WOO_WEBHOOK] WOOCOMMERCE_WEBHOOK_SECRET not configured")
        return False

    if not signature:
        logger.warning("[WOO_WEBHOOK] Missing signature header")
        return False

    computed = base64.b64encode(
        hmac.new(secret.encode("utf-8"), request_body, hashlib.sha256).digest()
    ).decode("utf-8")

    is_valid = hmac.compare_digest(computed, signature)
    if not is_valid:
        logger.warning("[WOO_WEBHOOK] Invalid signature")
    return is_valid


def is_ping(request_body: bytes) -> bool:
    """WooCommerce pings a new webhook with a form body `webhook_id=<id>`."""
    return request_body.startswith(b"webhook_id=")


# =============================================================================
# ENDPOINT
# =============================================================================

@router.post("/orders")
async def handle_order_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    ctx: SyncContext = Depends(get_sync_context),
):
    """Dispatch an order webhook to its pipeline."""
    body = await request.body()

    if is_ping(body):
        logger.info("[WOO_WEBHOOK] Ping received")
        return JSONResponse(status_code=status.HTTP_200_OK, content={"message": "pong"})

    if not verify_woocommerce_webhook(body, request.headers.get(SIGNATURE_HEADER), settings.WOOCOMMERCE_WEBHOOK_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error("[WOO_WEBHOOK] Failed to parse JSON: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if not isinstance(payload, dict) or "id" not in payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payload is not an order")

    try:
        order = Order.from_woocommerce(payload)
    except ValidationError as e:
        logger.error("[WOO_WEBHOOK] Malformed order payload: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed order payload")

    topic = request.headers.get(TOPIC_HEADER, "")
    logger.info("[WOO_WEBHOOK] %s received for order %s", topic or "<no topic>", order.id)

    if topic == "order.created":
        result = await run_in_threadpool(handle_order_saved, ctx, order)
    elif topic == "order.updated":
        if not status_needs_sync(order):
            logger.info("[WOO_WEBHOOK] Order %s status %s already synced", order.id, order.status)
            return JSONResponse(
                status_code=status.HTTP_200_OK,
                content={"message": "Status already synced", "order_id": order.id},
            )
        result = await run_in_threadpool(handle_status_changed, ctx, order)
    else:
        logger.info("[WOO_WEBHOOK] Ignoring topic %r", topic)
        return JSONResponse(status_code=status.HTTP_200_OK, content={"message": f"Topic {topic!r} ignored"})

    return result.to_out(ctx)
