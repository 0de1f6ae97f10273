"""Mirror the order's phone, email and addresses onto the CiviCRM contact.

WHAT:
    For each address category (billing, shipping) and its configured location
    type, create or update the matching Phone, Email and Address records.

WHY:
    The same customer orders repeatedly. A value already stored anywhere on
    the contact is never written twice, and a record already sitting at the
    category's location type is updated in place rather than duplicated.

    Each record is written on its own. One failing write is logged and the
    remaining records are still processed.
"""

import logging
from typing import Any, Dict, List, Optional

from woocivi.schemas import AddressCategory, AddressFields, Order
from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

PHONE_TYPE_ID = 1

ADDRESS_MATCH_FIELDS = ("street_address", "supplemental_address_1", "city", "postal_code")


def _same_location(record: Dict[str, Any], location_type_id: int) -> bool:
    return str(record.get("location_type_id") or "") == str(location_type_id)


def _existing(ctx: SyncContext, entity: str, contact_id: int) -> Optional[List[Dict[str, Any]]]:
    result = ctx.civicrm.get(entity, {"contact_id": contact_id, "options": {"limit": 0}})
    if not result.ok:
        logger.warning("[CONTACT_DETAILS] Could not load %s records of contact %s", entity, contact_id)
        return None
    return result.values


def _write(ctx: SyncContext, order: Order, entity: str, params: Dict[str, Any], note: str) -> bool:
    result = ctx.civicrm.create(entity, params)
    if not result.ok:
        logger.warning(
            "[CONTACT_DETAILS] Not able to write %s for order %s: %s", entity, order.id, result.error_message
        )
        return False

    if "id" in params:
        logger.info("[CONTACT_DETAILS] Updated %s %s in place", entity, params["id"])
    else:
        ctx.note(order, note)
    return True


def sync_phone(
    ctx: SyncContext,
    order: Order,
    category: AddressCategory,
    location_type_id: int,
    contact_id: int,
    existing_phones: List[Dict[str, Any]],
) -> bool:
    phone_value = order.address(category).phone
    params: Dict[str, Any] = {
        "phone_type_id": PHONE_TYPE_ID,
        "location_type_id": location_type_id,
        "phone": phone_value,
        "contact_id": contact_id,
    }
    for existing in existing_phones:
        if existing.get("phone") == phone_value:
            return False
        if _same_location(existing, location_type_id):
            params["id"] = existing["id"]

    note = f"Created new CiviCRM Phone of type {category.value}: {phone_value}"
    return _write(ctx, order, "Phone", params, note)


def sync_email(
    ctx: SyncContext,
    order: Order,
    category: AddressCategory,
    location_type_id: int,
    contact_id: int,
    existing_emails: List[Dict[str, Any]],
) -> bool:
    email_value = order.address(category).email
    params: Dict[str, Any] = {
        "location_type_id": location_type_id,
        "email": email_value,
        "contact_id": contact_id,
    }
    for existing in existing_emails:
        if existing.get("email") == email_value:
            return False
        if _same_location(existing, location_type_id):
            params["id"] = existing["id"]

    note = f"Created new CiviCRM Email of type {category.value}: {email_value}"
    return _write(ctx, order, "Email", params, note)


def address_params(
    ctx: SyncContext, fields: AddressFields, location_type_id: int, contact_id: int
) -> Dict[str, Any]:
    country_id = ctx.lookups.country_id(fields.country)
    params: Dict[str, Any] = {
        "location_type_id": location_type_id,
        "contact_id": contact_id,
        "name": fields.company,
        "street_address": fields.address_1,
        "supplemental_address_1": fields.address_2,
        "city": fields.city,
        "postal_code": fields.postcode,
    }
    if country_id:
        params["country_id"] = country_id
    state_id = ctx.lookups.state_province_id(fields.state, country_id)
    if state_id:
        params["state_province_id"] = state_id
    return params


def is_same_address(existing: Dict[str, Any], params: Dict[str, Any]) -> bool:
    return all(
        str(existing.get(key) or "") == str(params.get(key) or "")
        for key in ADDRESS_MATCH_FIELDS
    )


def sync_address(
    ctx: SyncContext,
    order: Order,
    category: AddressCategory,
    location_type_id: int,
    contact_id: int,
    existing_addresses: List[Dict[str, Any]],
) -> bool:
    fields = order.address(category)
    if not fields.address_1 or not fields.postcode:
        return False

    params = address_params(ctx, fields, location_type_id, contact_id)
    for existing in existing_addresses:
        if _same_location(existing, location_type_id):
            params["id"] = existing["id"]
        elif is_same_address(existing, params):
            return False

    note = f"Created new CiviCRM Address of type {category.value}: {fields.address_1}"
    return _write(ctx, order, "Address", params, note)


def reconcile_contact_details(ctx: SyncContext, order: Order, contact_id: int) -> int:
    """Write the order's contact details onto `contact_id`.

    Returns:
        Number of records created or updated
    """
    existing_addresses = _existing(ctx, "Address", contact_id)
    existing_phones = _existing(ctx, "Phone", contact_id)
    existing_emails = _existing(ctx, "Email", contact_id)
    if existing_addresses is None or existing_phones is None or existing_emails is None:
        logger.warning("[CONTACT_DETAILS] Skipping details of order %s", order.id)
        return 0

    written = 0
    for category, location_type_id in ctx.lookups.location_types.items():
        fields = order.address(category)

        if category.carries_contact_details and fields.phone:
            written += sync_phone(ctx, order, category, location_type_id, contact_id, existing_phones)

        if category.carries_contact_details and fields.email:
            written += sync_email(ctx, order, category, location_type_id, contact_id, existing_emails)

        written += sync_address(ctx, order, category, location_type_id, contact_id, existing_addresses)

    logger.info("[CONTACT_DETAILS] Order %s: %d detail record(s) written for contact %s", order.id, written, contact_id)
    return written
