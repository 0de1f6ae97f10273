"""Cached CiviCRM reference data used by the synchronizer stages.

WHAT:
    Country / state-province ids, membership types keyed by financial type,
    campaign names and lists, and the monetary separators.

WHY:
    These change rarely, and a single order can need the same lookup
    several times (billing and shipping in the same country). Lookups are
    cached for the lifetime of one `SyncContext`, i.e. one request.
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from woocivi.schemas import AddressCategory, MembershipType
from woocivi.services.civicrm_client import ApiResult, CiviCRMClient

if TYPE_CHECKING:
    from woocivi.deps import Settings

logger = logging.getLogger(__name__)

DEFAULT_DECIMAL_SEPARATOR = "."
DEFAULT_THOUSAND_SEPARATOR = ""


class CiviCRMLookups:
    """Per-request cache in front of CiviCRM reference data."""

    def __init__(self, civicrm: CiviCRMClient, settings: "Settings"):
        self.civicrm = civicrm
        self.settings = settings
        self._countries: Dict[str, Optional[int]] = {}
        self._states: Dict[Tuple[str, Optional[int]], Optional[int]] = {}
        self._membership_types: Optional[Dict[str, MembershipType]] = None
        self._separators: Optional[Tuple[str, str]] = None

    # =========================================================================
    # LOCATION TYPES
    # =========================================================================

    @property
    def location_types(self) -> Dict[AddressCategory, int]:
        return {
            AddressCategory.billing: self.settings.LOCATION_TYPE_BILLING,
            AddressCategory.shipping: self.settings.LOCATION_TYPE_SHIPPING,
        }

    # =========================================================================
    # COUNTRIES / STATES
    # =========================================================================

    def country_id(self, iso_code: str) -> Optional[int]:
        if not iso_code:
            return None
        if iso_code not in self._countries:
            result = self.civicrm.get("Country", {"iso_code": iso_code, "return": ["id"]})
            row = result.first
            self._countries[iso_code] = int(row["id"]) if row else None
        return self._countries[iso_code]

    def state_province_id(self, abbreviation: str, country_id: Optional[int]) -> Optional[int]:
        if not abbreviation:
            return None
        key = (abbreviation, country_id)
        if key not in self._states:
            params = {"abbreviation": abbreviation, "return": ["id"]}
            if country_id:
                params["country_id"] = country_id
            row = self.civicrm.get("StateProvince", params).first
            self._states[key] = int(row["id"]) if row else None
        return self._states[key]

    # =========================================================================
    # MEMBERSHIP TYPES
    # =========================================================================

    def membership_types_by_financial_type(self) -> Dict[str, MembershipType]:
        """Active membership types keyed by financial type id (as a string)."""
        if self._membership_types is None:
            result = self.civicrm.get(
                "MembershipType",
                {"is_active": 1, "options": {"limit": 0}},
            )
            if not result.ok:
                logger.warning("[CIVICRM_LOOKUPS] Could not load membership types: %s", result.error_message)
            types: Dict[str, MembershipType] = {}
            for row in result.values:
                if not row.get("financial_type_id"):
                    continue
                membership_type = MembershipType(
                    id=row["id"],
                    name=row.get("name") or "",
                    financial_type_id=row["financial_type_id"],
                    duration_unit=row.get("duration_unit") or "year",
                    duration_interval=row.get("duration_interval") or 1,
                    period_type=row.get("period_type") or "rolling",
                    fixed_period_start_day=row.get("fixed_period_start_day"),
                    fixed_period_rollover_day=row.get("fixed_period_rollover_day"),
                )
                types[membership_type.financial_type_id] = membership_type
            self._membership_types = types
        return self._membership_types

    # =========================================================================
    # CAMPAIGNS
    # =========================================================================

    def campaign_name(self, campaign_id) -> ApiResult:
        """Resolve a campaign id to its name ('' when no such campaign)."""
        result = self.civicrm.get(
            "Campaign",
            {"id": campaign_id, "return": ["name"], "options": {"limit": 1}},
        )
        if not result.ok:
            return result
        row = result.first
        return ApiResult(ok=True, value=(row or {}).get("name") or "")

    def campaign_id_by_name(self, name: str) -> ApiResult:
        result = self.civicrm.get("Campaign", {"name": name, "return": ["id"]})
        if not result.ok:
            return result
        row = result.first
        return ApiResult(ok=True, value=str(row["id"]) if row else None)

    def campaigns(self, include_inactive: bool = False) -> Dict[str, str]:
        params = {"return": ["id", "name", "title"], "options": {"limit": 0, "sort": "title"}}
        if not include_inactive:
            params["is_active"] = 1
        result = self.civicrm.get("Campaign", params)
        return {
            str(row["id"]): row.get("title") or row.get("name") or str(row["id"])
            for row in result.values
        }

    # =========================================================================
    # MONETARY SETTINGS
    # =========================================================================

    def monetary_separators(self) -> Tuple[str, str]:
        """CiviCRM's decimal and thousand separators, '.' and '' when unavailable."""
        if self._separators is None:
            decimal_separator = DEFAULT_DECIMAL_SEPARATOR
            thousand_separator = DEFAULT_THOUSAND_SEPARATOR

            decimal_result = self.civicrm.getvalue("Setting", {"name": "monetaryDecimalPoint"})
            thousand_result = self.civicrm.getvalue("Setting", {"name": "monetaryThousandSeparator"})

            if decimal_result.ok and thousand_result.ok:
                if isinstance(decimal_result.value, str):
                    decimal_separator = decimal_result.value
                if isinstance(thousand_result.value, str):
                    thousand_separator = thousand_result.value
            else:
                logger.warning("[CIVICRM_LOOKUPS] Not able to fetch monetary settings, using defaults")

            self._separators = (decimal_separator, thousand_separator)
        return self._separators
