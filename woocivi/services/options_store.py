"""WordPress options access (get_option / update_option equivalents)."""

import logging
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from woocivi.services.site_scope import SiteContext, site_scope

logger = logging.getLogger(__name__)


class OptionsStore:
    """Reads and writes rows of the store blog's `{prefix}options` table."""

    def __init__(self, db: Session, site: SiteContext, blog_id: Optional[int] = None):
        self.db = db
        self.site = site
        self.blog_id = blog_id

    def get_option(self, name: str, default: Optional[str] = None) -> Optional[str]:
        with site_scope(self.site, self.blog_id) as site:
            options = site.tables.options
            value = self.db.execute(
                select(options.c.option_value).where(options.c.option_name == name)
            ).scalar_one_or_none()
        return default if value is None else value

    def update_option(self, name: str, value) -> None:
        with site_scope(self.site, self.blog_id) as site:
            options = site.tables.options
            exists = self.db.execute(
                select(options.c.option_id).where(options.c.option_name == name)
            ).first()
            if exists:
                self.db.execute(
                    update(options).where(options.c.option_name == name).values(option_value=str(value))
                )
            else:
                self.db.execute(
                    insert(options).values(option_name=name, option_value=str(value), autoload="yes")
                )
            self.db.commit()
        logger.info("[OPTIONS] %s updated", name)
