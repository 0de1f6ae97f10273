"""Pydantic schemas for orders, CiviCRM reference data and API payloads."""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# ORDER META KEYS
# =============================================================================
# Kept identical to the keys the WordPress plugin used, so that orders synced
# before the migration keep their idempotency markers.

META_CONTRIBUTION_ID = "_woocommerce_civicrm_contribution_id"
META_MEMBERSHIP_ID = "_civicrm_membership"
META_CAMPAIGN_ID = "_woocommerce_civicrm_campaign_id"
META_SOURCE = "_order_source"
META_POS = "_pos"
META_ORDER_NUMBER = "_order_number"
META_SYNCED_STATUS = "_woocommerce_civicrm_synced_status"

# Product meta
META_PRODUCT_FINANCIAL_TYPE = "_civicrm_contribution_type"
EXCLUDED_FINANCIAL_TYPE = "exclude"


class AddressCategory(str, enum.Enum):
    """Order address blocks that are mirrored into CiviCRM."""
    billing = "billing"
    shipping = "shipping"

    @property
    def carries_contact_details(self) -> bool:
        # WooCommerce has no shipping email and the shipping phone is not synced
        return self is AddressCategory.billing


class AddressFields(BaseModel):
    """One address block (billing or shipping) of a WooCommerce order."""

    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    email: str = ""
    phone: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class OrderItem(BaseModel):
    """A line item of an order."""

    id: int = 0
    product_id: int = 0
    name: str = ""
    quantity: int = 0
    total: Decimal = Decimal("0")


class Order(BaseModel):
    """WooCommerce order as consumed by the synchronizer.

    WHAT: Subset of the WooCommerce REST `order` resource plus its meta data
    WHY: Stages read typed attributes instead of poking at raw JSON, and
         address blocks are reached through `address()` with an explicit
         category instead of building getter names from strings
    """

    id: int
    number: str = ""
    order_key: str = ""
    status: str = "pending"
    customer_id: int = 0
    currency: str = ""
    total: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    shipping_total: Decimal = Decimal("0")
    payment_method: str = ""
    date_created: Optional[datetime] = None
    date_paid: Optional[datetime] = None
    billing: AddressFields = Field(default_factory=AddressFields)
    shipping: AddressFields = Field(default_factory=AddressFields)
    line_items: List[OrderItem] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_woocommerce(cls, payload: Dict[str, Any]) -> "Order":
        """Build an Order from a WooCommerce REST API / webhook payload."""
        meta = {
            entry.get("key"): entry.get("value")
            for entry in payload.get("meta_data") or []
            if entry.get("key")
        }
        items = [
            OrderItem(
                id=item.get("id") or 0,
                product_id=item.get("product_id") or 0,
                name=item.get("name") or "",
                quantity=item.get("quantity") or 0,
                total=item.get("total") or "0",
            )
            for item in payload.get("line_items") or []
        ]
        return cls(
            id=payload["id"],
            number=str(payload.get("number") or payload["id"]),
            order_key=payload.get("order_key") or "",
            status=payload.get("status") or "pending",
            customer_id=payload.get("customer_id") or 0,
            currency=payload.get("currency") or "",
            total=payload.get("total") or "0",
            total_tax=payload.get("total_tax") or "0",
            shipping_total=payload.get("shipping_total") or "0",
            payment_method=payload.get("payment_method") or "",
            date_created=payload.get("date_created") or None,
            date_paid=payload.get("date_paid") or None,
            billing=payload.get("billing") or {},
            shipping=payload.get("shipping") or {},
            line_items=items,
            meta=meta,
        )

    def address(self, category: AddressCategory) -> AddressFields:
        return {
            AddressCategory.billing: self.billing,
            AddressCategory.shipping: self.shipping,
        }[category]

    def meta_value(self, key: str, default: Any = "") -> Any:
        value = self.meta.get(key)
        return default if value is None else value

    @property
    def is_pos(self) -> bool:
        return bool(self.meta_value(META_POS)) or self.meta_value(META_SOURCE) == "pos"

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.line_items)


# =============================================================================
# CIVICRM REFERENCE DATA
# =============================================================================

class MembershipPeriodType(str, enum.Enum):
    rolling = "rolling"
    fixed = "fixed"


class MembershipType(BaseModel):
    """CiviCRM membership type, keyed by the financial type that sells it."""

    id: int
    name: str
    financial_type_id: str
    duration_unit: str = "year"
    duration_interval: int = 1
    period_type: MembershipPeriodType = MembershipPeriodType.rolling
    fixed_period_start_day: Optional[str] = None
    fixed_period_rollover_day: Optional[str] = None

    @field_validator("financial_type_id", "fixed_period_start_day", "fixed_period_rollover_day", mode="before")
    @classmethod
    def _as_string(cls, value: Any) -> Any:
        return None if value in (None, "") else str(value)


class UtmAttribution(BaseModel):
    """Attribution values carried by the visitor's cookies until checkout."""

    campaign_id: Optional[str] = None
    source: Optional[str] = None
    medium: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.campaign_id or self.source or self.medium)


# =============================================================================
# API PAYLOADS
# =============================================================================

class ContactOrderRow(BaseModel):
    """One row of the Orders tab on a CiviCRM contact screen."""

    order_id: int
    order_number: str
    order_date: Optional[datetime] = None
    billing_name: str = ""
    shipping_name: str = ""
    item_count: int = 0
    total: str = ""
    status: str = ""
    edit_url: str = ""


class ContactOrdersOut(BaseModel):
    contact_id: int
    orders: List[ContactOrderRow] = Field(default_factory=list)
    add_order_url: Optional[str] = Field(
        default=None,
        description="Link to create an order for the linked WordPress user (absent when unlinked)",
    )


class OrdersTabOut(BaseModel):
    """Tab descriptor added to the CiviCRM contact summary screen."""

    id: str = "woocommerce-orders"
    title: str = "WooCommerce Orders"
    url: str
    count: int
    weight: int = 99


class OrderPanelOut(BaseModel):
    """CiviCRM fields shown on the WooCommerce order edit screen."""

    order_id: int
    campaigns: Dict[str, str] = Field(default_factory=dict, description="Campaign id -> name")
    selected_campaign_id: Optional[str] = None
    source: str = ""
    known_sources: List[str] = Field(default_factory=list, description="Distinct historical sources")
    contact_url: Optional[str] = None


class OrderPanelUpdate(BaseModel):
    """Values posted from the order edit screen."""

    campaign_id: Optional[int] = Field(default=None, description="CiviCRM campaign id")
    source: Optional[str] = Field(default=None, max_length=255)
    create_in_civicrm: bool = Field(
        default=False,
        description="Set by the new-order form to push the order to CiviCRM immediately",
    )


class OrderSyncOut(BaseModel):
    order_id: int
    success: bool
    stages: List[str] = Field(default_factory=list)
    contact_id: Optional[int] = None
    contribution_id: Optional[int] = None
    membership_id: Optional[int] = None
    notes: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])
