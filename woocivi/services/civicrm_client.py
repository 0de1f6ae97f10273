"""CiviCRM APIv3 REST client.

WHAT:
    Synchronous wrapper for CiviCRM's `civicrm/ajax/rest` endpoint with:
    - Site key / API key authentication
    - APIv3 error envelope handling (`is_error`, `error_message`)
    - `attempt()`, which returns an explicit `ApiResult` instead of raising

WHY:
    Every synchronizer stage talks to CiviCRM through this client. Stages
    decide for themselves whether a failed call halts the pipeline or is
    logged and skipped, so the client hands them a result value rather than
    forcing a try/except around each call.

    No automatic retries: a retried `create` can double-create a record, and
    the order-level idempotency markers are the recovery path instead.

REFERENCES:
    - https://docs.civicrm.org/dev/en/latest/api/v3/rest/
    - woocivi/services/woocommerce_client.py (sibling client for the store)
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class CiviCRMAPIError(Exception):
    """Custom exception for CiviCRM API errors."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        action: Optional[str] = None,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.entity = entity
        self.action = action
        self.error_code = error_code
        self.status_code = status_code


@dataclass
class ApiResult:
    """Outcome of a single CiviCRM call."""
    ok: bool
    value: Any = None
    error: Optional[CiviCRMAPIError] = None

    @property
    def values(self) -> List[Dict[str, Any]]:
        """`values` of a get response as a list, whatever shape CiviCRM used."""
        if not self.ok or not isinstance(self.value, dict):
            return []
        values = self.value.get("values") or []
        if isinstance(values, dict):
            return list(values.values())
        return list(values)

    @property
    def first(self) -> Optional[Dict[str, Any]]:
        values = self.values
        return values[0] if values else None

    @property
    def id(self) -> Optional[int]:
        """Record id of a create/getsingle response."""
        if not self.ok or not isinstance(self.value, dict):
            return None
        record_id = self.value.get("id")
        if record_id in (None, "", 0, "0"):
            return None
        return int(record_id)

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


class CiviCRMClient:
    """Client for CiviCRM's APIv3 REST interface.

    Usage:
        client = CiviCRMClient(rest_url="https://crm.example.org/civicrm/ajax/rest",
                               api_key="...", site_key="...")
        contact = client.call("Contact", "getsingle", {"id": 42})
        result = client.attempt("Contribution", "getsingle", {"invoice_id": "123_woocommerce"})
    """

    def __init__(
        self,
        rest_url: str,
        api_key: str,
        site_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize CiviCRM client.

        Args:
            rest_url: Full URL of the REST endpoint
            api_key: API key of the CiviCRM user the service acts as
            site_key: CIVICRM_SITE_KEY of the installation
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.rest_url = rest_url
        self.api_key = api_key
        self.site_key = site_key
        self.timeout = timeout
        self._transport = transport

    def call(self, entity: str, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute one APIv3 call.

        Returns:
            The decoded response: the full envelope for get/create, the record
            for getsingle, the bare value for getvalue

        Raises:
            CiviCRMAPIError: On transport failure or an `is_error` response
        """
        data = {
            "entity": entity,
            "action": action,
            "api_key": self.api_key,
            "key": self.site_key,
            "json": json.dumps(params or {}),
        }
        headers = {"X-Requested-With": "XMLHttpRequest"}

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.rest_url, data=data, headers=headers)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "[CIVICRM_CLIENT] HTTP error %s on %s.%s", e.response.status_code, entity, action
            )
            raise CiviCRMAPIError(
                f"HTTP {e.response.status_code} calling {entity}.{action}",
                entity=entity,
                action=action,
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.warning("[CIVICRM_CLIENT] Request error on %s.%s: %s", entity, action, e)
            raise CiviCRMAPIError(
                f"Request error calling {entity}.{action}: {e}", entity=entity, action=action
            ) from e
        except ValueError as e:
            raise CiviCRMAPIError(
                f"Invalid JSON returned by {entity}.{action}", entity=entity, action=action
            ) from e

        if isinstance(payload, dict) and payload.get("is_error"):
            message = payload.get("error_message") or "Unknown CiviCRM error"
            raise CiviCRMAPIError(
                message,
                entity=entity,
                action=action,
                error_code=payload.get("error_code"),
            )

        return payload

    def attempt(self, entity: str, action: str, params: Optional[Dict[str, Any]] = None) -> ApiResult:
        """Execute one call and report the outcome instead of raising."""
        try:
            return ApiResult(ok=True, value=self.call(entity, action, params))
        except CiviCRMAPIError as e:
            logger.warning("[CIVICRM_CLIENT] %s.%s failed: %s", entity, action, e)
            return ApiResult(ok=False, error=e)

    # =========================================================================
    # CONVENIENCE WRAPPERS
    # =========================================================================

    def get(self, entity: str, params: Optional[Dict[str, Any]] = None) -> ApiResult:
        return self.attempt(entity, "get", {"sequential": 1, **(params or {})})

    def getsingle(self, entity: str, params: Dict[str, Any]) -> ApiResult:
        return self.attempt(entity, "getsingle", params)

    def create(self, entity: str, params: Dict[str, Any]) -> ApiResult:
        return self.attempt(entity, "create", params)

    def getvalue(self, entity: str, params: Dict[str, Any]) -> ApiResult:
        return self.attempt(entity, "getvalue", params)
