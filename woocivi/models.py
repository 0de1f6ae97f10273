"""SQLAlchemy table definitions for the WordPress/WooCommerce store database.

WHAT:
    Core `Table` objects for the handful of WordPress tables this service
    reads and writes directly:
    - {prefix}posts / {prefix}postmeta (orders and their meta)
    - {prefix}woocommerce_order_items / {prefix}woocommerce_order_itemmeta
    - {prefix}options (plugin options such as provisioned custom field ids)

WHY:
    The store database is owned by WordPress, not by us. Table names depend on
    the configured prefix and, on multisite installs, on the blog id
    (`wp_` vs `wp_3_`), so the tables are built per prefix instead of being
    declared once as ORM classes.

REFERENCES:
    - https://codex.wordpress.org/Database_Description
    - woocivi/services/site_scope.py (selects the active prefix)
"""

from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy import BigInteger, Column, DateTime, Integer, MetaData, String, Table, Text

# SQLite only autoincrements INTEGER PRIMARY KEY columns
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


@dataclass(frozen=True)
class WordPressTables:
    """Tables of one WordPress site, bound to a single table prefix."""
    prefix: str
    metadata: MetaData
    posts: Table
    postmeta: Table
    options: Table
    order_items: Table
    order_itemmeta: Table


@lru_cache(maxsize=None)
def wordpress_tables(prefix: str) -> WordPressTables:
    """Build (once per prefix) the table objects for a WordPress site."""
    metadata = MetaData()

    posts = Table(
        f"{prefix}posts",
        metadata,
        Column("ID", ID_TYPE, primary_key=True),
        Column("post_author", BigInteger, default=0),
        Column("post_date", DateTime, nullable=True),
        Column("post_date_gmt", DateTime, nullable=True),
        Column("post_title", Text, default=""),
        Column("post_status", String(20), default="publish"),
        Column("post_type", String(20), default="post"),
        Column("post_parent", BigInteger, default=0),
    )

    postmeta = Table(
        f"{prefix}postmeta",
        metadata,
        Column("meta_id", ID_TYPE, primary_key=True),
        Column("post_id", BigInteger, nullable=False, index=True),
        Column("meta_key", String(255), nullable=True, index=True),
        Column("meta_value", Text, nullable=True),
    )

    options = Table(
        f"{prefix}options",
        metadata,
        Column("option_id", ID_TYPE, primary_key=True),
        Column("option_name", String(191), nullable=False, unique=True),
        Column("option_value", Text, nullable=False, default=""),
        Column("autoload", String(20), nullable=False, default="yes"),
    )

    order_items = Table(
        f"{prefix}woocommerce_order_items",
        metadata,
        Column("order_item_id", ID_TYPE, primary_key=True),
        Column("order_item_name", Text, nullable=False, default=""),
        Column("order_item_type", String(200), nullable=False, default=""),
        Column("order_id", BigInteger, nullable=False, index=True),
    )

    order_itemmeta = Table(
        f"{prefix}woocommerce_order_itemmeta",
        metadata,
        Column("meta_id", ID_TYPE, primary_key=True),
        Column("order_item_id", BigInteger, nullable=False, index=True),
        Column("meta_key", String(255), nullable=True),
        Column("meta_value", Text, nullable=True),
    )

    return WordPressTables(
        prefix=prefix,
        metadata=metadata,
        posts=posts,
        postmeta=postmeta,
        options=options,
        order_items=order_items,
        order_itemmeta=order_itemmeta,
    )


def table_prefix_for(base_prefix: str, blog_id: int | None) -> str:
    """Return the table prefix of a blog (the main site keeps the base prefix)."""
    if blog_id is None or int(blog_id) <= 1:
        return base_prefix
    return f"{base_prefix}{int(blog_id)}_"

