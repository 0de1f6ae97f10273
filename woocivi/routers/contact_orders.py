"""WooCommerce Orders tab of the CiviCRM contact screen."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from woocivi.database import get_db
from woocivi.deps import get_sync_context, require_admin_token
from woocivi.schemas import ContactOrdersOut, OrdersTabOut
from woocivi.services.orders_tab_service import contact_orders, orders_tab
from woocivi.services.sync_context import SyncContext

router = APIRouter(
    prefix="/civicrm/contacts",
    tags=["Contact Orders"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("/{contact_id}/orders", response_model=ContactOrdersOut)
def list_contact_orders(
    contact_id: int,
    ctx: SyncContext = Depends(get_sync_context),
    db: Session = Depends(get_db),
):
    return contact_orders(ctx, db, contact_id)


@router.get("/{contact_id}/orders/tab", response_model=Optional[OrdersTabOut])
def get_orders_tab(
    contact_id: int,
    ctx: SyncContext = Depends(get_sync_context),
    db: Session = Depends(get_db),
):
    """Tab descriptor; null when the tab is hidden for this contact."""
    return orders_tab(ctx, db, contact_id)
