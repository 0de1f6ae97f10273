"""UTM attribution carried in storefront cookies until checkout.

WHAT:
    - `capture_utm`: turn utm_campaign / utm_source / utm_medium query
      parameters into cookie instructions (campaign only if CiviCRM knows it)
    - `attribution_from_cookies`: read them back at checkout
    - `consume_utm_campaign`: move the campaign onto the order
    - `expire_utm_cookies`: clear all three once an order consumed them

WHY:
    Attribution is client-side state. Nothing is stored server-side until an
    order exists; the service only tells the router which cookies to set or
    expire on the response.
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, TYPE_CHECKING
from urllib.parse import urlparse

from starlette.responses import Response

from woocivi.schemas import META_CAMPAIGN_ID, Order, UtmAttribution
from woocivi.services.sync_context import SyncContext

if TYPE_CHECKING:
    from woocivi.deps import Settings

logger = logging.getLogger(__name__)

UTM_KINDS = ("campaign", "source", "medium")


@dataclass
class CookieInstruction:
    """One Set-Cookie the router must emit (`value=None` expires the cookie)."""
    name: str
    value: Optional[str] = None
    max_age: Optional[int] = None
    secure: bool = False

    @property
    def expires(self) -> bool:
        return self.value is None

    def apply(self, response: Response) -> None:
        if self.expires:
            response.delete_cookie(self.name, path="/")
        else:
            response.set_cookie(
                self.name,
                self.value,
                max_age=self.max_age,
                path="/",
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )


def cookie_name(kind: str, settings: "Settings") -> str:
    return f"woocommerce_civicrm_utm_{kind}_{settings.COOKIE_HASH}"


def apply_cookie_instructions(response: Response, instructions: List[CookieInstruction]) -> None:
    for instruction in instructions:
        instruction.apply(response)


def capture_utm(
    ctx: SyncContext,
    campaign: Optional[str] = None,
    source: Optional[str] = None,
    medium: Optional[str] = None,
) -> List[CookieInstruction]:
    """Cookies to set for the UTM parameters present on a storefront request."""
    settings = ctx.settings
    max_age = settings.UTM_COOKIE_TTL_SECONDS or None
    secure = urlparse(settings.WOOCOMMERCE_URL).scheme == "https"
    instructions: List[CookieInstruction] = []

    if campaign is not None:
        lookup = ctx.lookups.campaign_id_by_name(campaign)
        if not lookup.ok:
            logger.warning("[UTM] Not able to fetch campaign %r, attribution not stored", campaign)
            return []
        if lookup.value:
            instructions.append(
                CookieInstruction(cookie_name("campaign", settings), lookup.value, max_age, secure)
            )
        else:
            logger.info("[UTM] Unknown campaign %r, clearing campaign cookie", campaign)
            instructions.append(CookieInstruction(cookie_name("campaign", settings)))

    if source is not None:
        instructions.append(CookieInstruction(cookie_name("source", settings), source, max_age, secure))
    if medium is not None:
        instructions.append(CookieInstruction(cookie_name("medium", settings), medium, max_age, secure))

    return instructions


def attribution_from_cookies(cookies: Mapping[str, str], settings: "Settings") -> UtmAttribution:
    values = {kind: (cookies.get(cookie_name(kind, settings)) or "").strip() or None for kind in UTM_KINDS}
    return UtmAttribution(campaign_id=values["campaign"], source=values["source"], medium=values["medium"])


def consume_utm_campaign(ctx: SyncContext, order: Order, utm: Optional[UtmAttribution]) -> Optional[str]:
    """Write the attributed campaign onto the order.

    Without attribution an order that has no campaign yet gets the global
    default; a campaign already chosen on the order screen is kept.
    """
    if utm is not None and utm.campaign_id:
        campaign_id = utm.campaign_id
    else:
        campaign_id = order.meta_value(META_CAMPAIGN_ID) or ctx.settings.CAMPAIGN_ID

    ctx.annotate(order, META_CAMPAIGN_ID, campaign_id or "")
    return campaign_id


def expire_utm_cookies(settings: "Settings") -> List[CookieInstruction]:
    return [CookieInstruction(cookie_name(kind, settings)) for kind in UTM_KINDS]
