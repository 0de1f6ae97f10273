"""Order edit screen panel: CiviCRM campaign, source and contact link.

WHAT:
    - GET  /admin/orders/{order_id}/civicrm - panel data
    - POST /admin/orders/{order_id}/civicrm - save campaign / source, or push
      a new order to CiviCRM

WHY:
    Staff correct attribution after the fact and create orders by hand. The
    panel edits flow through the same pipelines as storefront orders.

REFERENCES:
    - woocivi/services/order_panel_service.py
    - woocivi/services/order_sync_service.py (handle_admin_save)
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from woocivi.database import get_db
from woocivi.deps import fetch_order, get_sync_context, require_admin_token
from woocivi.schemas import OrderPanelOut, OrderPanelUpdate, OrderSyncOut
from woocivi.services.order_panel_service import build_order_panel
from woocivi.services.order_sync_service import handle_admin_save
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/orders",
    tags=["Order Admin"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("/{order_id}/civicrm", response_model=OrderPanelOut)
def get_order_panel(
    order_id: int,
    ctx: SyncContext = Depends(get_sync_context),
    db: Session = Depends(get_db),
):
    order = fetch_order(ctx, order_id)
    return build_order_panel(ctx, db, order)


@router.post("/{order_id}/civicrm", response_model=OrderSyncOut)
def save_order_panel(
    order_id: int,
    payload: OrderPanelUpdate,
    ctx: SyncContext = Depends(get_sync_context),
):
    """Apply posted panel values to the order and its contribution."""
    order = fetch_order(ctx, order_id)
    logger.info(
        "[ORDER_ADMIN] Saving order %s (campaign=%s, source=%r, create=%s)",
        order_id, payload.campaign_id, payload.source, payload.create_in_civicrm,
    )
    result = handle_admin_save(ctx, order, payload)
    return result.to_out(ctx)
