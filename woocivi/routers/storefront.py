"""Storefront endpoints: UTM capture and the checkout callback.

WHAT:
    - GET  /storefront/utm                - store utm_* parameters as cookies
    - POST /storefront/checkout/{order_id} - checkout processed; runs the
      full pipeline with the visitor's attribution cookies

WHY:
    Attribution lives in the visitor's browser until an order exists. Both
    calls come from the shop's pages, so the browser's cookies travel with
    them. The checkout callback is authenticated with the order key shown to
    the customer after checkout.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from woocivi.deps import fetch_order, get_sync_context
from woocivi.schemas import OrderSyncOut
from woocivi.services.order_sync_service import handle_checkout_processed
from woocivi.services.sync_context import SyncContext
from woocivi.services.utm_service import (
    apply_cookie_instructions,
    attribution_from_cookies,
    capture_utm,
    expire_utm_cookies,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/storefront", tags=["Storefront"])


@router.get("/utm")
def capture_utm_parameters(
    utm_campaign: Optional[str] = Query(default=None),
    utm_source: Optional[str] = Query(default=None),
    utm_medium: Optional[str] = Query(default=None),
    ctx: SyncContext = Depends(get_sync_context),
):
    """Remember the visit's campaign / source / medium until checkout."""
    if utm_campaign is None and utm_source is None and utm_medium is None:
        return JSONResponse(content={"stored": []})

    instructions = capture_utm(ctx, campaign=utm_campaign, source=utm_source, medium=utm_medium)
    response = JSONResponse(
        content={"stored": [instruction.name for instruction in instructions if not instruction.expires]}
    )
    apply_cookie_instructions(response, instructions)
    return response


@router.post("/checkout/{order_id}", response_model=OrderSyncOut)
def checkout_processed(
    order_id: int,
    request: Request,
    key: str = Query(..., description="WooCommerce order key (wc_order_...)"),
    ctx: SyncContext = Depends(get_sync_context),
):
    """Push a freshly placed order to CiviCRM."""
    order = fetch_order(ctx, order_id)
    if not order.order_key or not hmac.compare_digest(order.order_key, key):
        logger.warning("[STOREFRONT] Order key mismatch for order %s", order_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid order key")

    utm = attribution_from_cookies(request.cookies, ctx.settings)
    result = handle_checkout_processed(ctx, order, utm)

    response = JSONResponse(content=result.to_out(ctx).model_dump(mode="json"))
    if result.utm_consumed:
        apply_cookie_instructions(response, expire_utm_cookies(ctx.settings))
    return response
