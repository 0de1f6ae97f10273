"""Multisite scope guard for WordPress table access.

WHAT:
    `SiteContext` tracks which blog's tables are active. `site_scope()`
    switches to another blog for the duration of a `with` block and always
    switches back, whether the block returns early or raises.

WHY:
    On a network install WooCommerce may run on a different blog than the one
    CiviCRM is attached to. Every query against order storage must run against
    the WooCommerce blog's tables (`wp_3_posts` instead of `wp_posts`), and
    leaving the scope switched would point later queries at the wrong site.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from woocivi.models import WordPressTables, table_prefix_for, wordpress_tables

logger = logging.getLogger(__name__)


class SiteContext:
    """Active WordPress blog for one request."""

    def __init__(self, base_prefix: str = "wp_", current_blog_id: int = 1):
        self.base_prefix = base_prefix
        self.home_blog_id = current_blog_id
        self.current_blog_id = current_blog_id

    @property
    def prefix(self) -> str:
        return table_prefix_for(self.base_prefix, self.current_blog_id)

    @property
    def tables(self) -> WordPressTables:
        return wordpress_tables(self.prefix)

    @property
    def is_switched(self) -> bool:
        return self.current_blog_id != self.home_blog_id


@contextmanager
def site_scope(site: SiteContext, blog_id: Optional[int]) -> Iterator[SiteContext]:
    """Run the enclosed block against `blog_id`'s tables, then restore.

    A `None` blog id, or the blog that is already active, leaves the context
    untouched.
    """
    if blog_id is None or blog_id == site.current_blog_id:
        yield site
        return

    previous = site.current_blog_id
    site.current_blog_id = blog_id
    logger.debug("[SITE_SCOPE] Switched blog %s -> %s", previous, blog_id)
    try:
        yield site
    finally:
        site.current_blog_id = previous
        logger.debug("[SITE_SCOPE] Restored blog %s", previous)
