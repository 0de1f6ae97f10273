"""Per-request bundle of collaborators handed to every synchronizer stage.

WHAT:
    `SyncContext` carries the CiviCRM client, the WooCommerce client, the
    settings, the cached CiviCRM lookups and the WordPress options store.
    It also owns the two write-backs every stage performs on the order:
    audit notes and meta annotations.

WHY:
    Stages receive their collaborators explicitly instead of reaching for
    module globals, so tests swap in fakes by building a context by hand.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, List, Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from woocivi.schemas import Order
from woocivi.services.civicrm_client import CiviCRMClient
from woocivi.services.civicrm_lookups import CiviCRMLookups
from woocivi.services.options_store import OptionsStore
from woocivi.services.site_scope import SiteContext
from woocivi.services.woocommerce_client import WooCommerceAPIError, WooCommerceClient

if TYPE_CHECKING:
    from woocivi.deps import Settings

logger = logging.getLogger(__name__)

# (order, membership_type, default_start) -> start date
MembershipStartHook = Callable[[Order, Any, datetime], datetime]


@dataclass
class SyncContext:
    civicrm: CiviCRMClient
    store: WooCommerceClient
    settings: "Settings"
    lookups: CiviCRMLookups
    site: SiteContext
    options: Optional[OptionsStore] = None
    membership_start_date_hook: Optional[MembershipStartHook] = None
    notes: List[str] = field(default_factory=list)

    def note(self, order: Order, text: str) -> None:
        """Add an order note visible to shop staff.

        A note that cannot be written is logged and dropped; losing the audit
        trail never aborts the stage that produced it.
        """
        self.notes.append(text)
        try:
            self.store.add_order_note(order.id, text)
        except WooCommerceAPIError as e:
            logger.warning("[SYNC] Could not add note to order %s: %s", order.id, e)

    def annotate(self, order: Order, key: str, value: Any) -> None:
        """Write one synchronizer-owned meta value back onto the order."""
        order.meta[key] = value
        try:
            self.store.update_order_meta(order.id, key, value)
        except WooCommerceAPIError as e:
            logger.error("[SYNC] Could not store %s on order %s: %s", key, order.id, e)

    def civicrm_url(self, path: str, **query: Any) -> str:
        """Link into the CiviCRM admin UI, e.g. civicrm_url("civicrm/contact/view", cid=5)."""
        params = {"page": "CiviCRM", "q": path, **query}
        return f"{self.settings.CIVICRM_ADMIN_URL}?{urlencode(params)}"

    def civicrm_link(self, path: str, label: str, **query: Any) -> str:
        return f'<a href="{self.civicrm_url(path, **query)}">{label}</a>'


def build_sync_context(settings: "Settings", db: Optional[Session] = None) -> SyncContext:
    """Wire the production collaborators from settings."""
    civicrm = CiviCRMClient(
        rest_url=settings.CIVICRM_REST_URL,
        api_key=settings.CIVICRM_API_KEY,
        site_key=settings.CIVICRM_SITE_KEY,
    )
    store = WooCommerceClient(
        store_url=settings.WOOCOMMERCE_URL,
        consumer_key=settings.WOOCOMMERCE_CONSUMER_KEY,
        consumer_secret=settings.WOOCOMMERCE_CONSUMER_SECRET,
    )
    site = SiteContext(base_prefix=settings.WP_TABLE_PREFIX, current_blog_id=settings.CURRENT_BLOG_ID)
    options = OptionsStore(db, site, settings.store_blog_id) if db is not None else None

    return SyncContext(
        civicrm=civicrm,
        store=store,
        settings=settings,
        lookups=CiviCRMLookups(civicrm, settings),
        site=site,
        options=options,
    )
