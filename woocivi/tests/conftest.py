"""Pytest configuration for woocivi tests

WHAT: Shared fakes (CiviCRM, WooCommerce store), order factory, sync context
      and an in-memory WordPress database
WHY: Stages are exercised against recording fakes instead of live systems,
     so every test can assert exactly which CiviCRM calls were made
REFERENCES:
    - woocivi/services/sync_context.py: SyncContext wiring
    - woocivi/services/civicrm_client.py: client the fake stands in for
    - woocivi/models.py: WordPress table definitions
"""

import itertools
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root is in path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("WOOCOMMERCE_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

from woocivi.deps import Settings  # noqa: E402
from woocivi.models import wordpress_tables  # noqa: E402
from woocivi.schemas import Order  # noqa: E402
from woocivi.services.civicrm_client import CiviCRMAPIError, CiviCRMClient  # noqa: E402
from woocivi.services.civicrm_lookups import CiviCRMLookups  # noqa: E402
from woocivi.services.options_store import OptionsStore  # noqa: E402
from woocivi.services.site_scope import SiteContext  # noqa: E402
from woocivi.services.sync_context import SyncContext  # noqa: E402
from woocivi.services.woocommerce_client import WooCommerceAPIError  # noqa: E402


# ============================================================================
# Fake CiviCRM
# ============================================================================

Handler = Callable[[Dict[str, Any]], Any]


class FakeCiviCRM(CiviCRMClient):
    """CiviCRM client answering from registered handlers and recording calls.

    `on(entity, action, response)` registers a response: a value returned as
    is, a callable receiving the params, or an exception instance to raise.
    Unregistered creates succeed with a fresh id; unregistered gets return no
    rows; unregistered getsingle/getvalue fail like CiviCRM does.
    """

    def __init__(self):
        super().__init__(rest_url="http://crm.test/civicrm/ajax/rest", api_key="key", site_key="site")
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.handlers: Dict[Tuple[str, str], Any] = {}
        self._ids = itertools.count(100)

    def on(self, entity: str, action: str, response: Any) -> "FakeCiviCRM":
        self.handlers[(entity, action)] = response
        return self

    def fail(self, entity: str, action: str, message: str = "API error") -> "FakeCiviCRM":
        return self.on(entity, action, CiviCRMAPIError(message, entity=entity, action=action))

    def call(self, entity: str, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        params = dict(params or {})
        self.calls.append((entity, action, params))

        handler = self.handlers.get((entity, action))
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(params)
        if handler is not None:
            return handler

        if action == "create":
            return {"is_error": 0, "id": next(self._ids), "values": []}
        if action in ("get", "duplicatecheck"):
            return {"is_error": 0, "count": 0, "values": []}
        raise CiviCRMAPIError(f"No {entity}.{action} result", entity=entity, action=action)

    def calls_to(self, entity: str, action: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            params for called_entity, called_action, params in self.calls
            if called_entity == entity and (action is None or called_action == action)
        ]


def civi_values(*rows: Dict[str, Any]) -> Dict[str, Any]:
    """APIv3 `get` envelope for the given rows."""
    return {"is_error": 0, "count": len(rows), "values": list(rows)}


# ============================================================================
# Fake store
# ============================================================================

class FakeStore:
    """WooCommerce client double keeping notes and meta writes in memory."""

    def __init__(self):
        self.notes: Dict[int, List[str]] = {}
        self.meta_writes: List[Tuple[int, str, Any]] = []
        self.product_meta: Dict[int, Dict[str, Any]] = {}
        self.orders: Dict[int, Order] = {}
        self.fail_notes = False

    def get_order(self, order_id: int) -> Order:
        if order_id not in self.orders:
            raise WooCommerceAPIError(f"Order {order_id} not found", status_code=404)
        return self.orders[order_id]

    def update_order_meta(self, order_id: int, key: str, value: Any) -> None:
        self.meta_writes.append((order_id, key, value))

    def add_order_note(self, order_id: int, note: str) -> None:
        if self.fail_notes:
            raise WooCommerceAPIError("notes unavailable", status_code=500)
        self.notes.setdefault(order_id, []).append(note)

    def get_product_meta(self, product_id: int, key: str) -> Any:
        value = self.product_meta.get(product_id, {}).get(key)
        return "" if value is None else value

    def meta_written(self, order_id: int, key: str) -> List[Any]:
        return [value for written_id, written_key, value in self.meta_writes
                if written_id == order_id and written_key == key]


# ============================================================================
# Order factory
# ============================================================================

def make_order(**overrides: Any) -> Order:
    """Order built from a WooCommerce-shaped payload with sensible defaults.

    `meta` may be given as a plain dict; it is turned into `meta_data`.
    """
    payload: Dict[str, Any] = {
        "id": 42,
        "number": "42",
        "order_key": "wc_order_abc123",
        "status": "processing",
        "customer_id": 0,
        "currency": "EUR",
        "total": "115.00",
        "total_tax": "10.00",
        "shipping_total": "5.00",
        "payment_method": "bacs",
        "date_created": "2024-03-15T10:00:00",
        "date_paid": "2024-03-15T10:05:00",
        "billing": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "company": "",
            "address_1": "12 Analytical Row",
            "address_2": "",
            "city": "London",
            "state": "",
            "postcode": "N1 9GU",
            "country": "GB",
            "email": "ada@example.org",
            "phone": "+44 20 7946 0000",
        },
        "shipping": {},
        "line_items": [
            {"id": 1, "product_id": 501, "name": "Engine manual", "quantity": 2, "total": "60.00"},
            {"id": 2, "product_id": 502, "name": "Punch cards", "quantity": 1, "total": "40.00"},
        ],
        "meta_data": [],
    }
    meta = overrides.pop("meta", None)
    payload.update(overrides)
    if meta:
        payload["meta_data"] = [{"key": key, "value": value} for key, value in meta.items()]
    return Order.from_woocommerce(payload)


# ============================================================================
# Context fixtures
# ============================================================================

def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "CIVICRM_ADMIN_URL": "https://crm.test/wp-admin/admin.php",
        "WOOCOMMERCE_URL": "https://shop.test",
        "WP_ADMIN_URL": "https://shop.test/wp-admin/",
        "FINANCIAL_TYPE_ID": "1",
        "FINANCIAL_TYPE_VAT_ID": "9",
        "SHIPPING_FINANCIAL_TYPE_ID": "8",
        "COOKIE_HASH": "abc",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def civicrm() -> FakeCiviCRM:
    return FakeCiviCRM()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def ctx(civicrm, store, settings) -> SyncContext:
    return SyncContext(
        civicrm=civicrm,
        store=store,
        settings=settings,
        lookups=CiviCRMLookups(civicrm, settings),
        site=SiteContext(base_prefix=settings.WP_TABLE_PREFIX, current_blog_id=settings.CURRENT_BLOG_ID),
    )


# ============================================================================
# WordPress database fixtures
# ============================================================================

@pytest.fixture
def wp_engine():
    """In-memory WordPress database with the main site and blog 3 tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    for prefix in ("wp_", "wp_3_"):
        wordpress_tables(prefix).metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


@pytest.fixture
def wp_session(wp_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=wp_engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def options_ctx(ctx, wp_session) -> SyncContext:
    """Sync context whose options store is backed by the in-memory database."""
    ctx.options = OptionsStore(wp_session, ctx.site, ctx.settings.store_blog_id)
    return ctx
