"""WooCommerce REST API client.

WHAT:
    Wrapper for the WooCommerce REST API (`/wp-json/wc/v3`) covering what
    the synchronizer needs from the store:
    - Fetch an order
    - Read product meta (per-product financial type / exclusion flag)
    - Write order meta (idempotency markers, campaign, source)
    - Add order notes (audit trail visible to shop staff)

WHY:
    The order is owned by WooCommerce. The synchronizer only reads it and
    writes back a small set of annotations, and every write goes through
    the store's own API so WooCommerce hooks and caches stay consistent.

REFERENCES:
    - https://woocommerce.github.io/woocommerce-rest-api-docs/
"""

import logging
from typing import Any, Dict, Optional

import httpx

from woocivi.schemas import Order

logger = logging.getLogger(__name__)


class WooCommerceAPIError(Exception):
    """Custom exception for WooCommerce API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class WooCommerceClient:
    """REST client for one WooCommerce store.

    Usage:
        store = WooCommerceClient(store_url="https://shop.example.org",
                                  consumer_key="ck_xxx", consumer_secret="cs_xxx")
        order = store.get_order(123)
        store.add_order_note(123, "Contribution 9 has been created in CiviCRM")
    """

    def __init__(
        self,
        store_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = f"{store_url.rstrip('/')}/wp-json/wc/v3"
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.timeout = timeout
        self._transport = transport
        self._product_meta_cache: Dict[int, Dict[str, Any]] = {}

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(
                timeout=self.timeout,
                auth=(self.consumer_key, self.consumer_secret),
                transport=self._transport,
            ) as client:
                response = client.request(method, url, json=json)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "[WOO_CLIENT] HTTP error %s on %s %s", e.response.status_code, method, path
            )
            raise WooCommerceAPIError(
                f"WooCommerce API error {e.response.status_code} on {method} {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.warning("[WOO_CLIENT] Request error on %s %s: %s", method, path, e)
            raise WooCommerceAPIError(f"Request error on {method} {path}: {e}") from e

    # =========================================================================
    # ORDERS
    # =========================================================================

    def get_order(self, order_id: int) -> Order:
        payload = self._request("GET", f"/orders/{order_id}")
        return Order.from_woocommerce(payload)

    def update_order_meta(self, order_id: int, key: str, value: Any) -> None:
        self._request("PUT", f"/orders/{order_id}", json={"meta_data": [{"key": key, "value": value}]})
        logger.debug("[WOO_CLIENT] Order %s meta %s=%r", order_id, key, value)

    def add_order_note(self, order_id: int, note: str) -> None:
        self._request("POST", f"/orders/{order_id}/notes", json={"note": note})

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    def get_product_meta(self, product_id: int, key: str) -> Any:
        """Return one meta value of a product ('' when unset).

        Product meta is cached per client, so an order with several units of
        the same product costs one request.
        """
        if not product_id:
            return ""

        if product_id not in self._product_meta_cache:
            payload = self._request("GET", f"/products/{product_id}")
            self._product_meta_cache[product_id] = {
                entry.get("key"): entry.get("value")
                for entry in payload.get("meta_data") or []
                if entry.get("key")
            }

        value = self._product_meta_cache[product_id].get(key)
        return "" if value is None else value
