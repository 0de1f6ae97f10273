"""Membership evaluator: create a membership for membership-selling orders.

WHAT:
    Scans the order's line items for a product whose financial type sells a
    CiviCRM membership type, computes the membership dates and creates the
    membership plus its MembershipPayment link to the order's contribution.

WHY:
    One order buys at most one membership. The `_civicrm_membership` order
    meta is the idempotency marker:
    - ""  not evaluated yet
    - "0" evaluated, no membership item matched (or creation failed)
    - id  the membership created for this order

    Fixed-period types renew on a calendar date rather than N units after
    purchase, so the purchase is assigned to the annual cycle it belongs to:
    the cycle that has already started, or the upcoming one when the paid
    date falls after the rollover day that precedes the cycle start.

REFERENCES:
    - https://docs.civicrm.org/user/en/latest/membership/defining-memberships/
"""

import calendar
import logging
from datetime import date, datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from woocivi.schemas import (
    META_CAMPAIGN_ID,
    META_MEMBERSHIP_ID,
    META_PRODUCT_FINANCIAL_TYPE,
    META_SOURCE,
    MembershipPeriodType,
    MembershipType,
    Order,
)
from woocivi.services.contact_resolver import get_linked_contact_id
from woocivi.services.contribution_updater import find_contribution
from woocivi.services.sync_context import SyncContext
from woocivi.services.woocommerce_client import WooCommerceAPIError

logger = logging.getLogger(__name__)

MEMBERSHIP_STATUS = "Current"
LIFETIME_UNIT = "lifetime"

DURATION_UNITS = {
    "day": "days",
    "week": "weeks",
    "month": "months",
    "year": "years",
}


# =============================================================================
# DATE ARITHMETIC
# =============================================================================

def _month_day(value: Union[str, int]) -> tuple:
    """Split a CiviCRM MMDD value ("101", "0101", 1231) into (month, day)."""
    digits = str(int(value)).zfill(4)
    return int(digits[:2]), int(digits[2:])


def _anniversary(year: int, month_day: tuple) -> date:
    month, day = month_day
    # 0229 in a non-leap year
    day = min(day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_fixed_period_start(
    paid: Union[date, datetime],
    start_day: Union[str, int],
    rollover_day: Union[str, int],
) -> date:
    """Start of the fixed membership cycle a purchase on `paid` belongs to.

    Examples (start 0101, rollover 0601):
        2024-03-15 -> 2024-01-01 (cycle started this year)
        2023-12-20 -> 2023-01-01

    A rollover day that precedes the cycle start within the year (e.g. start
    1001, rollover 0701) moves purchases made between the rollover and the
    start onto the upcoming cycle.
    """
    paid_date = paid.date() if isinstance(paid, datetime) else paid
    start_md = _month_day(start_day)
    rollover_md = _month_day(rollover_day)

    this_year_start = _anniversary(paid_date.year, start_md)
    if this_year_start <= paid_date:
        return this_year_start

    this_year_rollover = _anniversary(paid_date.year, rollover_md)
    if this_year_rollover < this_year_start and this_year_rollover <= paid_date:
        return this_year_start

    return _anniversary(paid_date.year - 1, start_md)


def compute_end_date(start: date, duration_unit: str, duration_interval: int) -> Optional[date]:
    """End date of a membership; None for lifetime memberships."""
    if duration_unit == LIFETIME_UNIT:
        return None
    unit = DURATION_UNITS.get(duration_unit)
    if unit is None:
        raise ValueError(f"Unsupported membership duration unit: {duration_unit!r}")
    return start + relativedelta(**{unit: int(duration_interval)})


def compute_membership_dates(ctx: SyncContext, order: Order, membership_type: MembershipType):
    """(start, end) dates of a membership bought by a paid order."""
    start: Union[date, datetime] = order.date_paid
    if ctx.membership_start_date_hook is not None:
        start = ctx.membership_start_date_hook(order, membership_type, start)

    if membership_type.period_type is MembershipPeriodType.fixed:
        start = compute_fixed_period_start(
            start,
            membership_type.fixed_period_start_day or "0101",
            membership_type.fixed_period_rollover_day or membership_type.fixed_period_start_day or "0101",
        )
    elif isinstance(start, datetime):
        start = start.date()

    end = compute_end_date(start, membership_type.duration_unit, membership_type.duration_interval)
    return start, end


# =============================================================================
# EVALUATION
# =============================================================================

def link_membership_payment(
    ctx: SyncContext, order: Order, membership_id: int, contribution_id: Optional[int] = None
) -> bool:
    """Record the order's contribution as the payment of `membership_id`.

    The contribution is looked up by invoice id when not given. Returns
    False when the order has no contribution yet or the link failed.
    """
    if contribution_id is None:
        contribution = find_contribution(ctx, order)
        if contribution is None:
            logger.info("[MEMBERSHIP] No contribution yet for order %s, membership %s not linked", order.id, membership_id)
            return False
        contribution_id = contribution["id"]

    result = ctx.civicrm.create(
        "MembershipPayment",
        {"membership_id": membership_id, "contribution_id": contribution_id},
    )
    if not result.ok:
        logger.warning("[MEMBERSHIP] Not able to link membership %s: %s", membership_id, result.error_message)
        return False
    return True


def _item_financial_type(ctx: SyncContext, product_id: int) -> str:
    try:
        return str(ctx.store.get_product_meta(product_id, META_PRODUCT_FINANCIAL_TYPE) or "")
    except WooCommerceAPIError as e:
        logger.warning("[MEMBERSHIP] Product %s meta unavailable: %s", product_id, e)
        return ""


def check_membership(ctx: SyncContext, order: Order, contact_id: Optional[int] = None) -> Optional[int]:
    """Create the order's membership if one of its items sells a membership type.

    Returns:
        The membership id, 0 when no item produced a membership, None when the
        order could not be evaluated (no contact, not paid); the marker is
        left untouched in that case so a later event evaluates it again
    """
    if not contact_id:
        contact_id = get_linked_contact_id(ctx, order)
    if not contact_id:
        return None
    if order.date_paid is None:
        return None

    membership_types = ctx.lookups.membership_types_by_financial_type()
    membership_id = 0

    for item in order.line_items:
        membership_type = membership_types.get(_item_financial_type(ctx, item.product_id))
        if membership_type is None:
            continue

        try:
            start, end = compute_membership_dates(ctx, order, membership_type)
        except ValueError as e:
            logger.warning("[MEMBERSHIP] Skipping item %s of order %s: %s", item.id, order.id, e)
            continue

        params = {
            "membership_type_id": membership_type.name,
            "contact_id": contact_id,
            "join_date": start.isoformat(),
            "start_date": start.isoformat(),
            "campaign_id": order.meta_value(META_CAMPAIGN_ID),
            "source": order.meta_value(META_SOURCE),
            "status_id": MEMBERSHIP_STATUS,
        }
        if end is not None:
            params["end_date"] = end.isoformat()

        result = ctx.civicrm.create("Membership", params)
        if not result.id:
            logger.debug("[MEMBERSHIP] Membership not created for order %s item %s", order.id, item.id)
            continue

        membership_id = result.id
        link = ctx.civicrm_link(
            "civicrm/contact/view/membership",
            str(membership_id),
            reset=1,
            id=membership_id,
            cid=contact_id,
            action="view",
            context="dashboard",
            selectedChild="member",
        )
        ctx.note(order, f"Membership {link} has been created in CiviCRM")
        link_membership_payment(ctx, order, membership_id)
        logger.info("[MEMBERSHIP] Order %s -> membership %s (%s)", order.id, membership_id, membership_type.name)
        break

    ctx.annotate(order, META_MEMBERSHIP_ID, membership_id)
    return membership_id
