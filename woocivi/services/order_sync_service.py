"""Order sync orchestrator: the per-event pipelines.

WHAT:
    One entry point per order lifecycle event:
    - handle_checkout_processed: storefront checkout (full pipeline)
    - handle_order_saved: webhook order.created (POS orders get the full
      pipeline, others only a membership check)
    - handle_status_changed: webhook order.updated
    - handle_admin_save: order panel POST (campaign / source edits)

WHY:
    Stages run in a fixed order: contact, details, source, campaign,
    contribution, membership. The membership comes last so its payment can
    be linked to the contribution just created. Contact failures stop the
    pipeline and leave a note on the order. Every other stage is idempotent
    through the order meta markers, so a later event completes whatever an
    earlier one could not.

FLOW (checkout):
    linked contact -> add/update contact -> contact details -> source
    -> campaign -> contribution -> membership

REFERENCES:
    - woocivi/routers/woocommerce_webhooks.py
    - woocivi/routers/storefront.py
    - woocivi/routers/order_admin.py
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from woocivi.schemas import (
    META_CAMPAIGN_ID,
    META_MEMBERSHIP_ID,
    META_SOURCE,
    META_SYNCED_STATUS,
    Order,
    OrderPanelUpdate,
    OrderSyncOut,
    UtmAttribution,
)
from woocivi.services.contact_details import reconcile_contact_details
from woocivi.services.contact_resolver import add_update_contact, find_contact_id, get_linked_contact_id
from woocivi.services.contribution_builder import add_contribution
from woocivi.services.contribution_updater import (
    generate_source,
    update_campaign,
    update_order_status,
    update_source,
)
from woocivi.services.membership_service import check_membership
from woocivi.services.sync_context import SyncContext
from woocivi.services.utm_service import consume_utm_campaign

logger = logging.getLogger(__name__)

NOTE_CONTACT_NOT_FETCHED = "CiviCRM Contact could not be fetched"
NOTE_CONTACT_NOT_WRITTEN = "CiviCRM Contact could not be found or created"


@dataclass
class OrderSyncResult:
    order_id: int
    success: bool = True
    stages: List[str] = field(default_factory=list)
    contact_id: Optional[int] = None
    contribution_id: Optional[int] = None
    membership_id: Optional[int] = None
    errors: List[str] = field(default_factory=list)
    # True once a contribution was attempted; the UTM cookies are spent
    utm_consumed: bool = False

    def fail(self, message: str) -> "OrderSyncResult":
        self.success = False
        self.errors.append(message)
        return self

    def to_out(self, ctx: SyncContext) -> OrderSyncOut:
        return OrderSyncOut(
            order_id=self.order_id,
            success=self.success,
            stages=self.stages,
            contact_id=self.contact_id,
            contribution_id=self.contribution_id,
            membership_id=self.membership_id,
            notes=list(ctx.notes),
            errors=self.errors,
        )


def _membership_unevaluated(order: Order) -> bool:
    return order.meta_value(META_MEMBERSHIP_ID) == ""


def _run_membership(ctx: SyncContext, order: Order, result: OrderSyncResult, contact_id: Optional[int] = None) -> None:
    membership_id = check_membership(ctx, order, contact_id)
    result.stages.append("membership")
    if membership_id:
        result.membership_id = membership_id


def handle_checkout_processed(
    ctx: SyncContext, order: Order, utm: Optional[UtmAttribution] = None
) -> OrderSyncResult:
    """Full pipeline for a freshly placed order."""
    result = OrderSyncResult(order_id=order.id)
    logger.info("[ORDER_SYNC] Checkout processed for order %s", order.id)

    linked_id = get_linked_contact_id(ctx, order)
    if linked_id is None:
        ctx.note(order, NOTE_CONTACT_NOT_FETCHED)
        return result.fail(NOTE_CONTACT_NOT_FETCHED)

    resolution = add_update_contact(ctx, order, linked_id)
    if not resolution.ok:
        ctx.note(order, NOTE_CONTACT_NOT_WRITTEN)
        return result.fail(NOTE_CONTACT_NOT_WRITTEN)
    result.contact_id = resolution.contact_id
    result.stages.append("contact")

    if resolution.wrote_contact:
        reconcile_contact_details(ctx, order, resolution.contact_id)
        result.stages.append("contact_details")

    source = generate_source(order, utm, ctx.settings)
    update_source(ctx, order, source)
    ctx.annotate(order, META_SOURCE, source)
    result.stages.append("source")

    consume_utm_campaign(ctx, order, utm)
    result.stages.append("campaign")

    outcome = add_contribution(ctx, order, resolution.contact_id, utm)
    result.stages.append("contribution")
    result.contribution_id = outcome.contribution_id
    result.utm_consumed = outcome.attempted

    if _membership_unevaluated(order):
        _run_membership(ctx, order, result, resolution.contact_id)

    return result


def handle_order_saved(ctx: SyncContext, order: Order) -> OrderSyncResult:
    """order.created: POS orders never pass through the storefront checkout."""
    if order.is_pos:
        result = handle_checkout_processed(ctx, order)
        if not result.success:
            return result
    else:
        result = OrderSyncResult(order_id=order.id)

    if _membership_unevaluated(order):
        _run_membership(ctx, order, result, result.contact_id)
    return result


def status_needs_sync(order: Order) -> bool:
    """False when the order's current status was already mirrored.

    Meta writes made by the pipeline itself come back as order.updated
    deliveries; those carry the status stamped at the end of the last run.
    """
    return order.meta_value(META_SYNCED_STATUS) != order.status


def handle_status_changed(ctx: SyncContext, order: Order) -> OrderSyncResult:
    """order.updated: complete a newly paid order and mirror its status."""
    result = OrderSyncResult(order_id=order.id)
    logger.info("[ORDER_SYNC] Order %s status is now %s", order.id, order.status)

    contact_id = find_contact_id(ctx, order)
    if contact_id is None:
        ctx.note(order, NOTE_CONTACT_NOT_FETCHED)
        return result.fail(NOTE_CONTACT_NOT_FETCHED)
    result.contact_id = contact_id or None

    outcome = add_contribution(ctx, order, contact_id)
    result.stages.append("contribution")
    result.contribution_id = outcome.contribution_id

    if order.meta_value(META_MEMBERSHIP_ID) in ("", "0", 0):
        _run_membership(ctx, order, result, contact_id)

    if update_order_status(ctx, order):
        result.stages.append("status")
    ctx.annotate(order, META_SYNCED_STATUS, order.status)
    return result


def handle_admin_save(ctx: SyncContext, order: Order, update: OrderPanelUpdate) -> OrderSyncResult:
    """Apply the campaign / source edits posted from the order screen."""
    result = OrderSyncResult(order_id=order.id)

    if update.campaign_id is not None:
        current_campaign = str(order.meta_value(META_CAMPAIGN_ID))
        if str(update.campaign_id) != current_campaign:
            update_campaign(ctx, order, update.campaign_id)
            ctx.annotate(order, META_CAMPAIGN_ID, str(update.campaign_id))
            result.stages.append("campaign")

    if update.source is not None and update.source != order.meta_value(META_SOURCE):
        update_source(ctx, order, update.source)
        ctx.annotate(order, META_SOURCE, update.source)
        result.stages.append("source")

    if update.create_in_civicrm:
        pipeline = handle_checkout_processed(ctx, order)
        result.stages.extend(pipeline.stages)
        result.contact_id = pipeline.contact_id
        result.contribution_id = pipeline.contribution_id
        result.membership_id = pipeline.membership_id
        if not pipeline.success:
            result.success = False
            result.errors.extend(pipeline.errors)
            return result

    if _membership_unevaluated(order):
        _run_membership(ctx, order, result, result.contact_id)
    return result
