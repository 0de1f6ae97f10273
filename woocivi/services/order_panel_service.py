"""CiviCRM panel of the WooCommerce order edit screen."""

import logging
from typing import List

from sqlalchemy import distinct, select
from sqlalchemy.orm import Session

from woocivi.schemas import META_CAMPAIGN_ID, META_SOURCE, Order, OrderPanelOut
from woocivi.services.contact_resolver import get_linked_contact_id
from woocivi.services.site_scope import site_scope
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)


def known_sources(ctx: SyncContext, db: Session) -> List[str]:
    """Distinct `_order_source` values, offered as autocomplete suggestions."""
    with site_scope(ctx.site, ctx.settings.store_blog_id) as site:
        postmeta = site.tables.postmeta
        values = db.execute(
            select(distinct(postmeta.c.meta_value))
            .where(postmeta.c.meta_key == META_SOURCE)
            .order_by(postmeta.c.meta_value)
        ).scalars().all()
    return [value for value in values if value]


def build_order_panel(ctx: SyncContext, db: Session, order: Order) -> OrderPanelOut:
    include_inactive = ctx.settings.CAMPAIGN_LIST != "campaigns"
    selected = order.meta_value(META_CAMPAIGN_ID) or ctx.settings.CAMPAIGN_ID

    contact_url = None
    contact_id = get_linked_contact_id(ctx, order)
    if contact_id:
        contact_url = ctx.civicrm_url(
            "civicrm/contact/view", cid=contact_id, action="view", context="dashboard"
        )

    return OrderPanelOut(
        order_id=order.id,
        campaigns=ctx.lookups.campaigns(include_inactive=include_inactive),
        selected_campaign_id=str(selected) if selected else None,
        source=str(order.meta_value(META_SOURCE)),
        known_sources=known_sources(ctx, db),
        contact_url=contact_url,
    )
