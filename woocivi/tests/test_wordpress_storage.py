"""Tests for the services reading the WordPress database directly.

WHAT:
    - DATABASE_URL resolution from the environment or a local .env
    - site_scope switching and restoring the multisite blog
    - OptionsStore get/update
    - Orders tab listing, counting and descriptor
    - Order panel source suggestions

WHY:
    WooCommerce runs on blog 3 in these tests, so every query must land on
    the wp_3_ tables while rows in wp_ tables stay invisible.

REFERENCES:
    woocivi/database.py
    woocivi/services/site_scope.py
    woocivi/services/options_store.py
    woocivi/services/orders_tab_service.py
    woocivi/services/order_panel_service.py
"""

from datetime import datetime

import pytest
from conftest import civi_values, make_order
from sqlalchemy import insert

from woocivi import database
from woocivi.models import wordpress_tables
from woocivi.schemas import META_CAMPAIGN_ID, META_SOURCE
from woocivi.services.options_store import OptionsStore
from woocivi.services.order_panel_service import build_order_panel, known_sources
from woocivi.services.orders_tab_service import contact_orders, count_orders, get_orders, orders_tab
from woocivi.services.site_scope import SiteContext, site_scope

STORE_BLOG_ID = 3


@pytest.fixture
def store_ctx(ctx):
    ctx.settings.WC_BLOG_ID = STORE_BLOG_ID
    return ctx


def _add_order(db, prefix, order_id, customer, status="wc-completed", post_type="shop_order",
               posted=datetime(2024, 3, 15, 10, 0), meta=None, quantities=()):
    tables = wordpress_tables(prefix)
    db.execute(insert(tables.posts).values(ID=order_id, post_date=posted, post_status=status, post_type=post_type))

    order_meta = {"_customer_user": str(customer), "_order_total": "115"}
    order_meta.update(meta or {})
    for key, value in order_meta.items():
        db.execute(insert(tables.postmeta).values(post_id=order_id, meta_key=key, meta_value=value))

    for index, (item_type, qty) in enumerate(quantities):
        item_id = order_id * 10 + index
        db.execute(insert(tables.order_items).values(
            order_item_id=item_id, order_item_name="item", order_item_type=item_type, order_id=order_id
        ))
        db.execute(insert(tables.order_itemmeta).values(order_item_id=item_id, meta_key="_qty", meta_value=qty))
    db.commit()


@pytest.fixture
def orders(wp_session):
    _add_order(
        wp_session, "wp_3_", 100, 7,
        meta={"_billing_first_name": "Ada", "_billing_last_name": "Lovelace", "_billing_email": "ada@example.org"},
        quantities=[("line_item", "2"), ("line_item", "1"), ("shipping", "1")],
    )
    _add_order(wp_session, "wp_3_", 101, 7, status="wc-processing", posted=datetime(2024, 4, 1, 9, 0),
               meta={"_order_number": "WC-101"})
    _add_order(wp_session, "wp_3_", 102, 8)
    _add_order(wp_session, "wp_3_", 103, 7, status="trash")
    _add_order(wp_session, "wp_3_", 104, 7, post_type="shop_order_refund")
    # Main site rows must never leak into the store blog's listing
    _add_order(wp_session, "wp_", 200, 7)
    return wp_session


# ============================================================================
# Database URL
# ============================================================================

def test_database_url_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "mysql+pymysql://wp:secret@db/wordpress")
    assert database._get_database_url() == "mysql+pymysql://wp:secret@db/wordpress"


def test_database_url_falls_back_to_dotenv(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    def fake_load_dotenv(override=False):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///from-dotenv.db")
        return True

    monkeypatch.setattr(database, "load_dotenv", fake_load_dotenv)
    assert database._get_database_url() == "sqlite:///from-dotenv.db"


def test_missing_database_url_is_an_error(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(database, "load_dotenv", lambda override=False: False)

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        database._get_database_url()


# ============================================================================
# Site scope
# ============================================================================

def test_site_scope_switches_prefix_and_restores():
    site = SiteContext(base_prefix="wp_", current_blog_id=1)

    with site_scope(site, 3) as scoped:
        assert scoped.prefix == "wp_3_"
        assert scoped.tables.posts.name == "wp_3_posts"

    assert site.prefix == "wp_"
    assert not site.is_switched


def test_site_scope_restores_after_error():
    site = SiteContext(base_prefix="wp_", current_blog_id=1)

    with pytest.raises(RuntimeError):
        with site_scope(site, 3):
            raise RuntimeError("query failed")

    assert site.current_blog_id == 1


def test_site_scope_without_blog_is_a_no_op():
    site = SiteContext(base_prefix="wp_", current_blog_id=2)
    with site_scope(site, None) as scoped:
        assert scoped.prefix == "wp_2_"


# ============================================================================
# Options
# ============================================================================

def test_options_roundtrip_on_store_blog(wp_session):
    site = SiteContext()
    options = OptionsStore(wp_session, site, STORE_BLOG_ID)

    assert options.get_option("woocommerce_civicrm_sales_tax_field_id") is None
    assert options.get_option("missing", "fallback") == "fallback"

    options.update_option("woocommerce_civicrm_sales_tax_field_id", 11)
    options.update_option("woocommerce_civicrm_sales_tax_field_id", 12)

    assert options.get_option("woocommerce_civicrm_sales_tax_field_id") == "12"
    assert OptionsStore(wp_session, site, 1).get_option("woocommerce_civicrm_sales_tax_field_id") is None
    assert site.current_blog_id == 1


# ============================================================================
# Orders tab
# ============================================================================

def test_linked_contact_orders_newest_first(store_ctx, civicrm, orders):
    civicrm.on("UFMatch", "get", civi_values({"uf_id": "7"}))

    rows = get_orders(store_ctx, orders, 55)

    assert [row.order_id for row in rows] == [101, 100]
    newest, oldest = rows
    assert newest.order_number == "WC-101"
    assert newest.status == "processing"
    assert oldest.order_number == "100"
    assert oldest.billing_name == "Ada Lovelace"
    assert oldest.item_count == 3
    assert oldest.total == "115.00"
    assert oldest.edit_url == "https://shop.test/wp-admin/post.php?post=100&action=edit"
    assert store_ctx.site.current_blog_id == 1


def test_guest_contact_orders_matched_by_billing_email(store_ctx, civicrm, orders):
    civicrm.on("Contact", "getsingle", {"id": "55", "email": "ada@example.org"})

    rows = get_orders(store_ctx, orders, 55)

    assert [row.order_id for row in rows] == [100]


def test_contact_without_email_has_no_orders(store_ctx, civicrm, orders):
    civicrm.on("Contact", "getsingle", {"id": "55", "email": ""})
    assert get_orders(store_ctx, orders, 55) == []
    assert count_orders(store_ctx, orders, 55) == 0


def test_contact_orders_add_order_url(store_ctx, civicrm, orders):
    civicrm.on("UFMatch", "get", civi_values({"uf_id": "7"}))

    out = contact_orders(store_ctx, orders, 55)

    assert len(out.orders) == 2
    assert out.add_order_url == "https://shop.test/wp-admin/post-new.php?post_type=shop_order&user_id=7"


def test_orders_tab_descriptor(store_ctx, civicrm, orders):
    civicrm.on("UFMatch", "get", civi_values({"uf_id": "7"}))

    tab = orders_tab(store_ctx, orders, 55)

    assert tab.count == 2
    assert tab.url.startswith("https://crm.test/wp-admin/admin.php?page=CiviCRM&q=civicrm%2Fcontact%2Fview%2Fpurchases")
    assert "cid=55" in tab.url


def test_orders_tab_hidden_for_non_customers(store_ctx, civicrm, orders):
    store_ctx.settings.HIDE_ORDERS_TAB_FOR_NON_CUSTOMERS = True
    civicrm.on("UFMatch", "get", civi_values({"uf_id": "99"}))

    assert orders_tab(store_ctx, orders, 56) is None


def test_orders_tab_shown_with_zero_count_by_default(store_ctx, civicrm, orders):
    civicrm.on("UFMatch", "get", civi_values({"uf_id": "99"}))
    assert orders_tab(store_ctx, orders, 56).count == 0


# ============================================================================
# Order panel
# ============================================================================

def test_known_sources_are_distinct_and_sorted(store_ctx, wp_session):
    _add_order(wp_session, "wp_3_", 300, 7, meta={META_SOURCE: "shop"})
    _add_order(wp_session, "wp_3_", 301, 7, meta={META_SOURCE: "pos"})
    _add_order(wp_session, "wp_3_", 302, 7, meta={META_SOURCE: "shop"})
    _add_order(wp_session, "wp_3_", 303, 7, meta={META_SOURCE: ""})

    assert known_sources(store_ctx, wp_session) == ["pos", "shop"]


def test_order_panel(store_ctx, civicrm, wp_session):
    civicrm.on("Campaign", "get", civi_values({"id": "4", "name": "spring", "title": "Spring"}))
    civicrm.on("UFMatch", "get", civi_values({"contact_id": "31"}))
    order = make_order(customer_id=7, meta={META_CAMPAIGN_ID: "4", META_SOURCE: "shop"})

    panel = build_order_panel(store_ctx, wp_session, order)

    assert panel.campaigns == {"4": "Spring"}
    assert panel.selected_campaign_id == "4"
    assert panel.source == "shop"
    assert "cid=31" in panel.contact_url
    assert civicrm.calls_to("Campaign", "get")[0]["is_active"] == 1


def test_order_panel_lists_inactive_campaigns_when_configured(store_ctx, civicrm, wp_session):
    store_ctx.settings.CAMPAIGN_LIST = "all"
    store_ctx.settings.CAMPAIGN_ID = "9"

    panel = build_order_panel(store_ctx, wp_session, make_order())

    assert "is_active" not in civicrm.calls_to("Campaign", "get")[0]
    assert panel.selected_campaign_id == "9"
    assert panel.contact_url is None
