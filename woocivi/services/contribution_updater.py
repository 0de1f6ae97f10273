"""Patch an existing contribution after its order changes.

WHAT:
    - `update_order_status`: order status -> contribution status
    - `update_campaign`: campaign id -> campaign name on the contribution
    - `update_source`: free-text source
    - `generate_source`: the source label an order should carry

WHY:
    The contribution is created once per order and never recreated. Later
    order events only patch one field, found through the order's invoice id.
    APIv3's Contribution.create revalidates the record on update, so every
    patch re-supplies financial type, receive date, total and contact.
"""

import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from woocivi.schemas import META_ORDER_NUMBER, Order, UtmAttribution
from woocivi.services.sync_context import SyncContext

if TYPE_CHECKING:
    from woocivi.deps import Settings

logger = logging.getLogger(__name__)

POS_SOURCE = "pos"

CONTRIBUTION_STATUS_MAP = {
    "completed": 1,
    "pending": 2,
    "cancelled": 3,
    "failed": 4,
    "processing": 5,
    "on-hold": 5,
    "refunded": 7,
}
DEFAULT_CONTRIBUTION_STATUS = 1

RESUPPLIED_FIELDS = ["id", "financial_type_id", "receive_date", "total_amount", "contact_id"]


def get_invoice_id(order: Order, suffix: str) -> str:
    """Stable per-order key the contribution is created and later found under."""
    order_number = order.meta_value(META_ORDER_NUMBER)
    if order_number:
        return str(order_number)
    return f"{order.id}_{suffix}"


def map_contribution_status(order_status: str) -> int:
    """Map a WooCommerce status (with or without the `wc-` prefix) to a contribution status id."""
    status = order_status[3:] if order_status.startswith("wc-") else order_status
    return CONTRIBUTION_STATUS_MAP.get(status, DEFAULT_CONTRIBUTION_STATUS)


def generate_source(order: Order, utm: Optional[UtmAttribution], settings: "Settings") -> str:
    if order.is_pos:
        return POS_SOURCE

    parts = []
    if utm is not None:
        parts = [value for value in (utm.source, utm.medium) if value]
    if parts:
        return " / ".join(parts)
    return settings.DEFAULT_SOURCE_LABEL


def find_contribution(ctx: SyncContext, order: Order) -> Optional[Dict[str, Any]]:
    """The order's contribution, looked up by invoice id (None when absent)."""
    invoice_id = get_invoice_id(order, ctx.settings.INVOICE_ID_SUFFIX)
    result = ctx.civicrm.getsingle("Contribution", {"invoice_id": invoice_id, "return": RESUPPLIED_FIELDS})
    if not result.ok:
        logger.info("[CONTRIBUTION] Not able to find contribution for invoice %s", invoice_id)
        return None
    return result.value


def _patch(ctx: SyncContext, order: Order, changes: Dict[str, Any]) -> bool:
    contribution = find_contribution(ctx, order)
    if contribution is None:
        return False

    params = {field: contribution.get(field) for field in RESUPPLIED_FIELDS}
    params.update(changes)
    result = ctx.civicrm.create("Contribution", params)
    if not result.ok:
        logger.warning(
            "[CONTRIBUTION] Not able to update contribution %s (order %s): %s",
            params["id"], order.id, result.error_message,
        )
        return False

    logger.info("[CONTRIBUTION] Contribution %s updated: %s", params["id"], sorted(changes))
    return True


def update_order_status(ctx: SyncContext, order: Order) -> bool:
    return _patch(ctx, order, {"contribution_status_id": map_contribution_status(order.status)})


def update_campaign(ctx: SyncContext, order: Order, campaign_id: Any) -> bool:
    campaign_name = ""
    if campaign_id:
        lookup = ctx.lookups.campaign_name(campaign_id)
        if not lookup.ok:
            logger.warning("[CONTRIBUTION] Not able to fetch campaign %s", campaign_id)
            return False
        campaign_name = lookup.value
    return _patch(ctx, order, {"campaign_id": campaign_name})


def update_source(ctx: SyncContext, order: Order, source: str) -> bool:
    return _patch(ctx, order, {"source": source})
