"""Unit tests for the CiviCRM and WooCommerce HTTP clients.

WHAT:
    Request shape, APIv3 error envelope handling and ApiResult accessors,
    exercised through httpx.MockTransport (no network).

REFERENCES:
    woocivi/services/civicrm_client.py
    woocivi/services/woocommerce_client.py
"""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from woocivi.services.civicrm_client import ApiResult, CiviCRMAPIError, CiviCRMClient
from woocivi.services.woocommerce_client import WooCommerceAPIError, WooCommerceClient


def _client(handler) -> CiviCRMClient:
    return CiviCRMClient(
        rest_url="https://crm.test/civicrm/ajax/rest",
        api_key="api-key",
        site_key="site-key",
        transport=httpx.MockTransport(handler),
    )


def test_call_posts_entity_action_and_json_params():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["form"] = parse_qs(request.content.decode())
        seen["headers"] = request.headers
        return httpx.Response(200, json={"is_error": 0, "id": 7, "values": [{"id": 7}]})

    result = _client(handler).call("Contact", "create", {"first_name": "Ada"})

    assert result["id"] == 7
    form = seen["form"]
    assert form["entity"] == ["Contact"]
    assert form["action"] == ["create"]
    assert form["api_key"] == ["api-key"]
    assert form["key"] == ["site-key"]
    assert json.loads(form["json"][0]) == {"first_name": "Ada"}
    assert seen["headers"]["X-Requested-With"] == "XMLHttpRequest"


def test_is_error_envelope_raises():
    def handler(request):
        return httpx.Response(200, json={"is_error": 1, "error_message": "Mandatory key(s) missing", "error_code": "mandatory_missing"})

    with pytest.raises(CiviCRMAPIError) as exc:
        _client(handler).call("Contribution", "create", {})

    assert str(exc.value) == "Mandatory key(s) missing"
    assert exc.value.error_code == "mandatory_missing"
    assert exc.value.entity == "Contribution"


def test_http_error_raises_with_status():
    with pytest.raises(CiviCRMAPIError) as exc:
        _client(lambda request: httpx.Response(503, text="down")).call("Contact", "get", {})
    assert exc.value.status_code == 503


def test_invalid_json_raises():
    with pytest.raises(CiviCRMAPIError):
        _client(lambda request: httpx.Response(200, text="<html>login</html>")).call("Contact", "get", {})


def test_attempt_returns_failed_result_instead_of_raising():
    def handler(request):
        return httpx.Response(200, json={"is_error": 1, "error_message": "Expected one Contribution but found 0"})

    result = _client(handler).attempt("Contribution", "getsingle", {"invoice_id": "1_woocommerce"})

    assert result.ok is False
    assert result.id is None
    assert "Expected one" in result.error_message


def test_get_sends_sequential_and_lists_values():
    sent = {}

    def handler(request):
        sent.update(json.loads(parse_qs(request.content.decode())["json"][0]))
        return httpx.Response(200, json={"is_error": 0, "values": {"3": {"id": "3"}, "4": {"id": "4"}}})

    result = _client(handler).get("Campaign", {"is_active": 1})

    assert sent == {"sequential": 1, "is_active": 1}
    assert [row["id"] for row in result.values] == ["3", "4"]
    assert result.first == {"id": "3"}


def test_api_result_id_treats_zero_as_missing():
    assert ApiResult(ok=True, value={"id": 0}).id is None
    assert ApiResult(ok=True, value={"id": "12"}).id == 12
    assert ApiResult(ok=False).values == []


# ---------------------------------------------------------------------------
# WooCommerce client
# ---------------------------------------------------------------------------

def _store(handler) -> WooCommerceClient:
    return WooCommerceClient(
        store_url="https://shop.test/",
        consumer_key="ck_test",
        consumer_secret="cs_test",
        transport=httpx.MockTransport(handler),
    )


def test_get_order_parses_meta_and_items():
    def handler(request):
        assert request.url.path == "/wp-json/wc/v3/orders/42"
        assert request.headers["Authorization"].startswith("Basic ")
        return httpx.Response(200, json={
            "id": 42,
            "status": "completed",
            "total": "12.50",
            "billing": {"first_name": "Ada", "email": None},
            "line_items": [{"id": 1, "product_id": 9, "name": "Hat", "quantity": 1, "total": "12.50"}],
            "meta_data": [{"id": 1, "key": "_pos", "value": "1"}],
        })

    order = _store(handler).get_order(42)

    assert order.status == "completed"
    assert order.billing.email == ""
    assert order.line_items[0].product_id == 9
    assert order.is_pos


def test_product_meta_is_cached_per_product():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"id": 9, "meta_data": [{"key": "_civicrm_contribution_type", "value": "4"}]})

    store = _store(handler)
    assert store.get_product_meta(9, "_civicrm_contribution_type") == "4"
    assert store.get_product_meta(9, "_other") == ""
    assert calls == ["/wp-json/wc/v3/products/9"]


def test_update_order_meta_puts_meta_data():
    sent = {}

    def handler(request):
        sent["method"] = request.method
        sent["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": 42})

    _store(handler).update_order_meta(42, "_woocommerce_civicrm_contribution_id", 77)

    assert sent["method"] == "PUT"
    assert sent["body"] == {"meta_data": [{"key": "_woocommerce_civicrm_contribution_id", "value": 77}]}


def test_store_http_error_raises():
    with pytest.raises(WooCommerceAPIError) as exc:
        _store(lambda request: httpx.Response(404, json={"code": "woocommerce_rest_shop_order_invalid_id"})).get_order(1)
    assert exc.value.status_code == 404
