"""Contact resolution: map an order's customer to a CiviCRM contact.

WHAT:
    1. Linked account: the WooCommerce customer (a WordPress user) is looked
       up in CiviCRM's UFMatch table.
    2. Dedupe: guests, and customers without a linked contact, are matched
       with CiviCRM's Unsupervised dedupe rule on type, names and email.
    3. Create/update: the contact is written with the order's billing names.

WHY:
    Every later stage needs a contact id. A contact that cannot be fetched,
    matched or written is terminal for the pipeline, and the caller records
    that on the order so staff can see which stage failed.

REFERENCES:
    - https://docs.civicrm.org/dev/en/latest/api/v3/usage/ (Contact.duplicatecheck)
    - woocivi/services/order_sync_service.py (pipelines calling this module)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from woocivi.schemas import Order
from woocivi.services.civicrm_client import ApiResult
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

UNRESOLVED_CONTACT_ID = 0
DEFAULT_CONTACT_TYPE = "Individual"
DEDUPE_RULE_TYPE = "Unsupervised"


@dataclass
class ContactResolution:
    """Outcome of `add_update_contact`.

    `contact_id` is None when the contact could not be found or written.
    `action` is "create", "update" or "bypass".
    """
    contact_id: Optional[int]
    action: str = "create"

    @property
    def ok(self) -> bool:
        return bool(self.contact_id)

    @property
    def wrote_contact(self) -> bool:
        return self.ok and self.action != "bypass"


# =============================================================================
# LOOKUPS
# =============================================================================

def get_linked_contact_id(ctx: SyncContext, order: Order) -> Optional[int]:
    """Contact linked to the order's WordPress user.

    Returns:
        The contact id, 0 for guests or unlinked users, None when the lookup
        itself failed
    """
    if not order.customer_id:
        return UNRESOLVED_CONTACT_ID

    result = ctx.civicrm.get("UFMatch", {"uf_id": order.customer_id, "return": ["contact_id"]})
    if not result.ok:
        logger.error(
            "[CONTACT_SYNC] UFMatch lookup failed for order %s (user %s): %s",
            order.id, order.customer_id, result.error_message,
        )
        return None

    row = result.first
    if not row or not row.get("contact_id"):
        return UNRESOLVED_CONTACT_ID
    return int(row["contact_id"])


def match_contact(ctx: SyncContext, order: Order, contact_type: str = DEFAULT_CONTACT_TYPE) -> ApiResult:
    """Run the Unsupervised dedupe rule against the order's billing data.

    `value` of a successful result is the first matching contact id, or 0.
    """
    billing = order.billing
    match: Dict[str, Any] = {"contact_type": contact_type, "email": billing.email}
    if billing.first_name:
        match["first_name"] = billing.first_name
    if billing.last_name:
        match["last_name"] = billing.last_name

    result = ctx.civicrm.attempt(
        "Contact",
        "duplicatecheck",
        {"match": match, "rule_type": DEDUPE_RULE_TYPE, "check_permissions": 0},
    )
    if not result.ok:
        return result

    first = result.first
    return ApiResult(ok=True, value=int(first["id"]) if first else UNRESOLVED_CONTACT_ID)


def find_contact_id(ctx: SyncContext, order: Order) -> Optional[int]:
    """Read-only resolution: linked contact first, then a dedupe match."""
    contact_id = get_linked_contact_id(ctx, order)
    if contact_id is None or contact_id:
        return contact_id

    matched = match_contact(ctx, order)
    if not matched.ok:
        return None
    return matched.value


# =============================================================================
# CREATE / UPDATE
# =============================================================================

def add_update_contact(ctx: SyncContext, order: Order, contact_id: int) -> ContactResolution:
    """Create or update the order's contact from its billing names and email.

    Name fields are only sent when the order has a value for them, so an
    empty checkout field never blanks a name already stored in CiviCRM.
    """
    if ctx.settings.BYPASS_CONTACT_UPDATE and contact_id:
        logger.info("[CONTACT_SYNC] Contact update bypassed for order %s (contact %s)", order.id, contact_id)
        return ContactResolution(contact_id=contact_id, action="bypass")

    contact: Dict[str, Any] = {"contact_type": DEFAULT_CONTACT_TYPE}
    action = "create"
    existing_source = ""

    if contact_id:
        existing = ctx.civicrm.getsingle(
            "Contact",
            {"id": contact_id, "return": ["id", "contact_source", "first_name", "last_name", "contact_type"]},
        )
        if not existing.ok:
            logger.error("[CONTACT_SYNC] Contact %s not found for order %s", contact_id, order.id)
            return ContactResolution(contact_id=None)
        contact["contact_type"] = existing.value.get("contact_type") or DEFAULT_CONTACT_TYPE
        contact["id"] = contact_id
        existing_source = existing.value.get("contact_source") or ""
        action = "update"
    else:
        matched = match_contact(ctx, order, contact["contact_type"])
        if not matched.ok:
            # A failed dedupe never falls through to create
            logger.error("[CONTACT_SYNC] Dedupe failed for order %s: %s", order.id, matched.error_message)
            return ContactResolution(contact_id=None)
        if matched.value:
            contact["id"] = matched.value
            action = "update"

    billing = order.billing
    if billing.first_name:
        contact["first_name"] = billing.first_name
    if billing.last_name:
        contact["last_name"] = billing.last_name
    if billing.email:
        contact["email"] = billing.email
    if billing.full_name:
        contact["display_name"] = f"{billing.first_name} {billing.last_name}"
    if action == "create" or (contact_id and not existing_source):
        contact["contact_source"] = ctx.settings.CONTACT_SOURCE_LABEL

    result = ctx.civicrm.create("Contact", contact)
    if not result.id:
        logger.error("[CONTACT_SYNC] Not able to %s contact for order %s: %s", action, order.id, result.error_message)
        return ContactResolution(contact_id=None)

    resolved_id = result.id
    link = ctx.civicrm_link("civicrm/contact/view", "View", reset=1, cid=resolved_id)
    if action == "update":
        ctx.note(order, f"CiviCRM Contact Updated - {link}")
    else:
        ctx.note(order, f"Created new CiviCRM Contact - {link}")

    logger.info("[CONTACT_SYNC] Order %s -> contact %s (%s)", order.id, resolved_id, action)
    return ContactResolution(contact_id=resolved_id, action=action)
