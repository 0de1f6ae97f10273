"""Orders tab on the CiviCRM contact screen.

WHAT:
    Lists a contact's WooCommerce orders straight from the WordPress database
    and builds the tab descriptor (with its order count) for the contact
    summary screen.

WHY:
    A contact is tied to orders either through its WordPress user
    (`_customer_user`) or, for guests, through the billing email
    (`_billing_email`). Reading postmeta directly lists every order in one
    round-trip instead of one REST call per order.

    On multisite installs all queries run against the WooCommerce blog's
    tables (see `site_scope`).

REFERENCES:
    - woocivi/routers/contact_orders.py
    - woocivi/services/site_scope.py
"""

import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy import Integer, and_, cast, func, select
from sqlalchemy.orm import Session

from woocivi.schemas import ContactOrderRow, ContactOrdersOut, OrdersTabOut
from woocivi.services.site_scope import site_scope
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

ORDER_POST_TYPE = "shop_order"
ORDER_STATUSES = {
    "wc-pending": "Pending payment",
    "wc-processing": "Processing",
    "wc-on-hold": "On hold",
    "wc-completed": "Completed",
    "wc-cancelled": "Cancelled",
    "wc-refunded": "Refunded",
    "wc-failed": "Failed",
}
ROW_META_KEYS = (
    "_order_number",
    "_order_total",
    "_billing_first_name",
    "_billing_last_name",
    "_shipping_first_name",
    "_shipping_last_name",
)


def get_wordpress_user_id(ctx: SyncContext, contact_id: int) -> Optional[int]:
    result = ctx.civicrm.get("UFMatch", {"contact_id": contact_id, "return": ["uf_id"]})
    row = result.first
    if not row or not row.get("uf_id"):
        return None
    return abs(int(row["uf_id"]))


def _order_filter(ctx: SyncContext, contact_id: int) -> Optional[Tuple[str, str]]:
    """(meta_key, meta_value) identifying the contact's orders, None when there is none."""
    user_id = get_wordpress_user_id(ctx, contact_id)
    if user_id:
        return "_customer_user", str(user_id)

    contact = ctx.civicrm.getsingle("Contact", {"id": contact_id, "return": ["email"]})
    if not contact.ok:
        logger.warning("[ORDERS_TAB] Unable to find contact %s: %s", contact_id, contact.error_message)
        return None
    email = contact.value.get("email")
    if not email:
        return None
    return "_billing_email", email


def _order_posts(ctx: SyncContext, db: Session, meta_key: str, meta_value: str):
    tables = ctx.site.tables
    posts, postmeta = tables.posts, tables.postmeta
    query = (
        select(posts.c.ID, posts.c.post_date, posts.c.post_status)
        .join(postmeta, and_(postmeta.c.post_id == posts.c.ID, postmeta.c.meta_key == meta_key))
        .where(
            posts.c.post_type == ORDER_POST_TYPE,
            posts.c.post_status.in_(list(ORDER_STATUSES)),
            postmeta.c.meta_value == meta_value,
        )
        .order_by(posts.c.post_date.desc(), posts.c.ID.desc())
    )
    return db.execute(query).all()


def _order_meta(ctx: SyncContext, db: Session, order_ids: List[int]) -> Dict[int, Dict[str, str]]:
    postmeta = ctx.site.tables.postmeta
    rows = db.execute(
        select(postmeta.c.post_id, postmeta.c.meta_key, postmeta.c.meta_value).where(
            postmeta.c.post_id.in_(order_ids), postmeta.c.meta_key.in_(ROW_META_KEYS)
        )
    ).all()
    meta: Dict[int, Dict[str, str]] = defaultdict(dict)
    for post_id, key, value in rows:
        meta[post_id][key] = value or ""
    return meta


def _item_counts(ctx: SyncContext, db: Session, order_ids: List[int]) -> Dict[int, int]:
    tables = ctx.site.tables
    items, itemmeta = tables.order_items, tables.order_itemmeta
    rows = db.execute(
        select(items.c.order_id, func.sum(cast(itemmeta.c.meta_value, Integer)))
        .join(itemmeta, itemmeta.c.order_item_id == items.c.order_item_id)
        .where(
            items.c.order_id.in_(order_ids),
            items.c.order_item_type == "line_item",
            itemmeta.c.meta_key == "_qty",
        )
        .group_by(items.c.order_id)
    ).all()
    return {order_id: int(total or 0) for order_id, total in rows}


def _format_total(value: str) -> str:
    try:
        return f"{Decimal(value):.2f}"
    except (InvalidOperation, ValueError):
        return value


def get_orders(ctx: SyncContext, db: Session, contact_id: int) -> List[ContactOrderRow]:
    """The contact's orders, newest first."""
    order_filter = _order_filter(ctx, contact_id)
    if order_filter is None:
        return []

    with site_scope(ctx.site, ctx.settings.store_blog_id):
        posts = _order_posts(ctx, db, *order_filter)
        order_ids = [post.ID for post in posts]
        if not order_ids:
            return []
        meta = _order_meta(ctx, db, order_ids)
        counts = _item_counts(ctx, db, order_ids)

    admin_url = ctx.settings.WP_ADMIN_URL.rstrip("/")
    rows = []
    for post in posts:
        order_meta = meta.get(post.ID, {})
        billing_name = f"{order_meta.get('_billing_first_name', '')} {order_meta.get('_billing_last_name', '')}"
        shipping_name = f"{order_meta.get('_shipping_first_name', '')} {order_meta.get('_shipping_last_name', '')}"
        rows.append(ContactOrderRow(
            order_id=post.ID,
            order_number=order_meta.get("_order_number") or str(post.ID),
            order_date=post.post_date,
            billing_name=billing_name.strip(),
            shipping_name=shipping_name.strip(),
            item_count=counts.get(post.ID, 0),
            total=_format_total(order_meta.get("_order_total", "")),
            status=post.post_status[3:] if post.post_status.startswith("wc-") else post.post_status,
            edit_url=f"{admin_url}/post.php?{urlencode({'post': post.ID, 'action': 'edit'})}",
        ))
    return rows


def count_orders(ctx: SyncContext, db: Session, contact_id: int) -> int:
    order_filter = _order_filter(ctx, contact_id)
    if order_filter is None:
        return 0
    with site_scope(ctx.site, ctx.settings.store_blog_id):
        return len(_order_posts(ctx, db, *order_filter))


def new_order_url(ctx: SyncContext, user_id: int) -> str:
    admin_url = ctx.settings.WP_ADMIN_URL.rstrip("/")
    return f"{admin_url}/post-new.php?{urlencode({'post_type': ORDER_POST_TYPE, 'user_id': user_id})}"


def contact_orders(ctx: SyncContext, db: Session, contact_id: int) -> ContactOrdersOut:
    user_id = get_wordpress_user_id(ctx, contact_id)
    return ContactOrdersOut(
        contact_id=contact_id,
        orders=get_orders(ctx, db, contact_id),
        add_order_url=new_order_url(ctx, user_id) if user_id else None,
    )


def orders_tab(ctx: SyncContext, db: Session, contact_id: int) -> Optional[OrdersTabOut]:
    """Tab descriptor, or None when the tab is hidden for contacts without orders."""
    count = count_orders(ctx, db, contact_id)
    if ctx.settings.HIDE_ORDERS_TAB_FOR_NON_CUSTOMERS and not count:
        return None
    return OrdersTabOut(
        url=ctx.civicrm_url("civicrm/contact/view/purchases", reset=1, cid=contact_id, no_redirect=1),
        count=count,
    )
