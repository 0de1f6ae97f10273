"""Provision the contribution custom fields holding sales tax and shipping cost.

The "Woocommerce purchases" custom group (extending Contribution) and its two
String fields are looked up by name first and created only when missing.
Their ids are kept in the store's WordPress options so later orders skip the
lookups entirely.
"""

import logging
from typing import Optional, Tuple

from woocivi.services.sync_context import SyncContext

logger = logging.getLogger(__name__)

CUSTOM_GROUP_NAME = "Woocommerce_purchases"
CUSTOM_GROUP_TITLE = "Woocommerce Purchases"
SALES_TAX_LABEL = "Sales tax"
SHIPPING_COST_LABEL = "Shipping Cost"

OPTION_GROUP_ID = "woocommerce_civicrm_contribution_group_id"
OPTION_SALES_TAX_FIELD_ID = "woocommerce_civicrm_sales_tax_field_id"
OPTION_SHIPPING_COST_FIELD_ID = "woocommerce_civicrm_shipping_cost_field_id"


def _ensure_group(ctx: SyncContext) -> Optional[str]:
    found = ctx.civicrm.getsingle("CustomGroup", {"name": CUSTOM_GROUP_NAME, "return": ["id"]})
    if found.id:
        return str(found.id)

    created = ctx.civicrm.create(
        "CustomGroup",
        {
            "title": CUSTOM_GROUP_TITLE,
            "name": CUSTOM_GROUP_NAME,
            "extends": ["Contribution"],
            "weight": 1,
            "collapse_display": 0,
            "is_active": 1,
        },
    )
    if not created.id:
        logger.error("[CUSTOM_FIELDS] Not able to create custom group: %s", created.error_message)
        return None
    logger.info("[CUSTOM_FIELDS] Created custom group %s", created.id)
    return str(created.id)


def _ensure_field(ctx: SyncContext, group_id: str, label: str, weight: int) -> Optional[str]:
    found = ctx.civicrm.getsingle("CustomField", {"custom_group_id": group_id, "label": label, "return": ["id"]})
    if found.id:
        return str(found.id)

    created = ctx.civicrm.create(
        "CustomField",
        {
            "custom_group_id": group_id,
            "label": label,
            "html_type": "Text",
            "data_type": "String",
            "weight": weight,
            "is_required": 0,
            "is_searchable": 0,
            "is_active": 1,
        },
    )
    if not created.id:
        logger.error("[CUSTOM_FIELDS] Not able to create custom field %r: %s", label, created.error_message)
        return None
    logger.info("[CUSTOM_FIELDS] Created custom field %r (%s)", label, created.id)
    return str(created.id)


def ensure_contribution_custom_fields(ctx: SyncContext) -> Tuple[Optional[str], Optional[str]]:
    """Return the (sales tax, shipping cost) custom field ids, creating them if needed.

    Either id is None when it could not be provisioned; the contribution is
    then created without that value.
    """
    options = ctx.options
    if options is not None:
        tax_field_id = options.get_option(OPTION_SALES_TAX_FIELD_ID)
        shipping_field_id = options.get_option(OPTION_SHIPPING_COST_FIELD_ID)
        if options.get_option(OPTION_GROUP_ID) and tax_field_id and shipping_field_id:
            return tax_field_id, shipping_field_id

    group_id = _ensure_group(ctx)
    if not group_id:
        return None, None

    tax_field_id = _ensure_field(ctx, group_id, SALES_TAX_LABEL, weight=1)
    shipping_field_id = _ensure_field(ctx, group_id, SHIPPING_COST_LABEL, weight=2)

    if options is not None:
        options.update_option(OPTION_GROUP_ID, group_id)
        if tax_field_id:
            options.update_option(OPTION_SALES_TAX_FIELD_ID, tax_field_id)
        if shipping_field_id:
            options.update_option(OPTION_SHIPPING_COST_FIELD_ID, shipping_field_id)

    return tax_field_id, shipping_field_id
