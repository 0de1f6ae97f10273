"""Contribution builder: turn a paid order into one CiviCRM contribution.

WHAT:
    Assembles the contribution header (contact, financial type, payment
    instrument, transaction/invoice ids, source, campaign, tax and shipping
    custom fields) and its line items, then submits it with APIv3
    `Order.create`.

WHY:
    The contribution is the financial record of the order and must exist at
    most once. The builder is a no-op when the order already carries a
    contribution id, is not paid yet, or is a zero-amount order the site has
    chosen to ignore. The id returned by CiviCRM is stamped onto the order
    right after creation, and a membership already stored on the order is
    linked to the new contribution as its payment.

    Amounts are rendered with CiviCRM's own monetary separators and rounded
    half-up to 2 decimals; CiviCRM rejects amounts with finer precision.

REFERENCES:
    - https://docs.civicrm.org/dev/en/latest/financial/orderAPI/
    - woocivi/services/contribution_updater.py (invoice id, source label)
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

from woocivi.schemas import (
    EXCLUDED_FINANCIAL_TYPE,
    META_CAMPAIGN_ID,
    META_CONTRIBUTION_ID,
    META_MEMBERSHIP_ID,
    META_PRODUCT_FINANCIAL_TYPE,
    Order,
    OrderItem,
    UtmAttribution,
)
from woocivi.services.contribution_updater import generate_source, get_invoice_id
from woocivi.services.custom_fields import ensure_contribution_custom_fields
from woocivi.services.membership_service import link_membership_payment
from woocivi.services.sync_context import SyncContext
from woocivi.services.woocommerce_client import WooCommerceAPIError

if TYPE_CHECKING:
    from woocivi.deps import Settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PRICE_FIELD_ID = "1"
SHIPPING_LABEL = "Shipping"
TRANSACTION_ID_PREFIX = "Woocommerce Order - "

PAYMENT_INSTRUMENT_MAP = {
    "paypal": 1,
    "cod": 3,
    "cheque": 4,
    "bacs": 5,
}
# Unknown gateways are most likely card processors
DEFAULT_PAYMENT_INSTRUMENT = 1


@dataclass
class ContributionOutcome:
    """What `add_contribution` did for one order."""
    contribution_id: Optional[int] = None
    attempted: bool = False
    skipped: Optional[str] = None


# =============================================================================
# FORMATTING HELPERS
# =============================================================================

def round_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any, decimal_separator: str = ".", thousand_separator: str = "") -> str:
    """Format an amount the way PHP's number_format(value, 2, dec, thousands) does."""
    amount = round_money(value)
    sign = "-" if amount < 0 else ""
    whole, fraction = f"{abs(amount):.2f}".split(".")
    if thousand_separator:
        whole = f"{int(whole):,}".replace(",", thousand_separator)
    return f"{sign}{whole}{decimal_separator}{fraction}"


def map_payment_instrument(payment_method: str) -> int:
    return PAYMENT_INSTRUMENT_MAP.get(payment_method, DEFAULT_PAYMENT_INSTRUMENT)


def create_detail_string(items: Iterable[OrderItem]) -> str:
    """Contribution note listing the order items, e.g. "Hat x 2, Scarf x 1"."""
    return ", ".join(f"{item.name} x {item.quantity}" for item in items)


def resolve_financial_type(order: Order, settings: "Settings", item_types: List[Optional[str]]) -> str:
    """Financial type of the contribution header.

    Args:
        order: The order
        settings: Settings holding the default and VAT financial types
        item_types: Explicit per-product override of each non-excluded item,
            None where the item falls back to the default

    The VAT type replaces the default when the order carries tax. When every
    item carries the same explicit override, that override wins over both.
    """
    financial_type = settings.FINANCIAL_TYPE_ID
    if order.total_tax > 0 and settings.FINANCIAL_TYPE_VAT_ID:
        financial_type = settings.FINANCIAL_TYPE_VAT_ID

    overrides = set(item_types)
    if len(overrides) == 1 and None not in overrides:
        financial_type = overrides.pop()
    return financial_type


def product_financial_types(ctx: SyncContext, order: Order) -> Dict[int, str]:
    """Per-product financial type meta ('' when unset) of the order's products."""
    types: Dict[int, str] = {}
    for item in order.line_items:
        if item.product_id in types:
            continue
        try:
            types[item.product_id] = str(ctx.store.get_product_meta(item.product_id, META_PRODUCT_FINANCIAL_TYPE) or "")
        except WooCommerceAPIError as e:
            logger.warning("[CONTRIBUTION] Product %s meta unavailable: %s", item.product_id, e)
            types[item.product_id] = ""
    return types


# =============================================================================
# PARAMS
# =============================================================================

def build_line_items(
    order: Order,
    settings: "Settings",
    product_types: Dict[int, str],
    separators: Tuple[str, str] = (".", ""),
) -> Tuple[List[Dict[str, Any]], List[Optional[str]]]:
    """Line items of the contribution, plus the explicit override of each kept item."""
    decimal_separator, thousand_separator = separators
    line_items: List[Dict[str, Any]] = []
    item_types: List[Optional[str]] = []

    shipping = round_money(order.shipping_total)
    if shipping > 0:
        shipping_cost = format_money(shipping, decimal_separator, thousand_separator)
        line_items.append({
            "price_field_id": PRICE_FIELD_ID,
            "qty": 1,
            "line_total": shipping_cost,
            "unit_price": shipping_cost,
            "label": SHIPPING_LABEL,
            "financial_type_id": settings.SHIPPING_FINANCIAL_TYPE_ID,
        })

    for item in order.line_items:
        override = product_types.get(item.product_id) or None
        if override == EXCLUDED_FINANCIAL_TYPE:
            continue

        quantity = item.quantity or 1
        line_items.append({
            "price_field_id": PRICE_FIELD_ID,
            "qty": quantity,
            "line_total": format_money(item.total, decimal_separator, thousand_separator),
            "unit_price": format_money(item.total / quantity, decimal_separator, thousand_separator),
            "label": item.name,
            "financial_type_id": override or settings.FINANCIAL_TYPE_ID,
        })
        item_types.append(override)

    return line_items, item_types


def build_contribution_params(
    order: Order,
    contact_id: int,
    settings: "Settings",
    *,
    product_types: Dict[int, str],
    separators: Tuple[str, str] = (".", ""),
    source: str = "",
    campaign_name: str = "",
    tax_field_id: Optional[str] = None,
    shipping_field_id: Optional[str] = None,
) -> Dict[str, Any]:
    """APIv3 `Order.create` params for the order (no side effects)."""
    decimal_separator, thousand_separator = separators
    line_items, item_types = build_line_items(order, settings, product_types, separators)

    params: Dict[str, Any] = {
        "contact_id": contact_id,
        "financial_type_id": resolve_financial_type(order, settings, item_types),
        "payment_instrument_id": map_payment_instrument(order.payment_method),
        "trxn_id": f"{TRANSACTION_ID_PREFIX}{order.id}",
        "invoice_id": get_invoice_id(order, settings.INVOICE_ID_SUFFIX),
        "source": source,
        "receive_date": order.date_paid.strftime("%Y-%m-%d %H:%M:%S") if order.date_paid else None,
        "note": create_detail_string(order.line_items),
        "line_items": [{"params": {}, "line_item": line_items}],
    }
    if campaign_name:
        params["campaign_id"] = campaign_name
    if tax_field_id:
        params[f"custom_{tax_field_id}"] = format_money(order.total_tax, decimal_separator, thousand_separator)
    if shipping_field_id:
        params[f"custom_{shipping_field_id}"] = format_money(
            order.shipping_total, decimal_separator, thousand_separator
        )
    return params


def has_contribution(order: Order) -> bool:
    return order.meta_value(META_CONTRIBUTION_ID) not in ("", 0, "0")


# =============================================================================
# CREATION
# =============================================================================

def add_contribution(
    ctx: SyncContext,
    order: Order,
    contact_id: int,
    utm: Optional[UtmAttribution] = None,
) -> ContributionOutcome:
    """Create the order's contribution unless one exists or the order does not qualify."""
    settings = ctx.settings

    if settings.IGNORE_ZERO_AMOUNT_ORDERS and order.total == 0:
        return ContributionOutcome(skipped="zero amount")
    if order.date_paid is None:
        return ContributionOutcome(skipped="not paid")
    if has_contribution(order):
        return ContributionOutcome(
            contribution_id=int(order.meta_value(META_CONTRIBUTION_ID)), skipped="already created"
        )
    if not contact_id:
        logger.warning("[CONTRIBUTION] Order %s has no contact, contribution not created", order.id)
        return ContributionOutcome(skipped="no contact")

    campaign_name = ""
    campaign_id = order.meta_value(META_CAMPAIGN_ID) or settings.CAMPAIGN_ID
    if campaign_id:
        lookup = ctx.lookups.campaign_name(campaign_id)
        if not lookup.ok:
            logger.error("[CONTRIBUTION] Not able to fetch campaign %s for order %s", campaign_id, order.id)
            return ContributionOutcome(skipped="campaign lookup failed")
        campaign_name = lookup.value

    tax_field_id, shipping_field_id = ensure_contribution_custom_fields(ctx)
    separators = ctx.lookups.monetary_separators()

    params = build_contribution_params(
        order,
        contact_id,
        settings,
        product_types=product_financial_types(ctx, order),
        separators=separators,
        source=generate_source(order, utm, settings),
        campaign_name=campaign_name,
        tax_field_id=tax_field_id,
        shipping_field_id=shipping_field_id,
    )

    result = ctx.civicrm.create("Order", params)
    contribution_id = result.id
    if not contribution_id:
        logger.error("[CONTRIBUTION] Not able to add contribution for order %s: %s", order.id, result.error_message)
        ctx.note(order, "CiviCRM Contribution could not be created")
        return ContributionOutcome(attempted=True)

    link = ctx.civicrm_link(
        "civicrm/contact/view/contribution",
        str(contribution_id),
        reset=1,
        id=contribution_id,
        cid=contact_id,
        action="view",
        context="dashboard",
        selectedChild="contribute",
    )
    ctx.note(order, f"Contribution {link} has been created in CiviCRM")
    ctx.annotate(order, META_CONTRIBUTION_ID, contribution_id)

    # Membership created by an earlier event, before the order was paid
    membership_id = order.meta_value(META_MEMBERSHIP_ID)
    if membership_id not in ("", 0, "0"):
        link_membership_payment(ctx, order, int(membership_id), contribution_id)

    logger.info("[CONTRIBUTION] Order %s -> contribution %s", order.id, contribution_id)
    return ContributionOutcome(contribution_id=contribution_id, attempted=True)
