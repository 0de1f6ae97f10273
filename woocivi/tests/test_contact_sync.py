"""Tests for contact resolution and contact detail reconciliation.

REFERENCES:
    woocivi/services/contact_resolver.py
    woocivi/services/contact_details.py
"""

from conftest import civi_values, make_order

from woocivi.services.contact_details import reconcile_contact_details
from woocivi.services.contact_resolver import (
    add_update_contact,
    find_contact_id,
    get_linked_contact_id,
)


# ============================================================================
# Contact resolver
# ============================================================================

def test_guest_order_is_unresolved_without_lookup(ctx, civicrm):
    assert get_linked_contact_id(ctx, make_order(customer_id=0)) == 0
    assert civicrm.calls == []


def test_linked_user_resolves_through_ufmatch(ctx, civicrm):
    civicrm.on("UFMatch", "get", civi_values({"contact_id": "31"}))

    assert get_linked_contact_id(ctx, make_order(customer_id=7)) == 31
    assert civicrm.calls_to("UFMatch")[0]["uf_id"] == 7


def test_ufmatch_failure_is_reported_as_none(ctx, civicrm):
    civicrm.fail("UFMatch", "get")
    assert get_linked_contact_id(ctx, make_order(customer_id=7)) is None


def test_new_contact_is_created_with_source_label(ctx, civicrm, store):
    civicrm.on("Contact", "create", {"is_error": 0, "id": 55})

    resolution = add_update_contact(ctx, make_order(), 0)

    assert resolution.contact_id == 55
    assert resolution.action == "create"
    created = civicrm.calls_to("Contact", "create")[0]
    assert "id" not in created
    assert created["first_name"] == "Ada"
    assert created["display_name"] == "Ada Lovelace"
    assert created["contact_source"] == "Woocommerce purchase"
    assert store.notes[42][0].startswith("Created new CiviCRM Contact - <a href=")


def test_dedupe_match_updates_first_matching_contact(ctx, civicrm, store):
    civicrm.on("Contact", "duplicatecheck", civi_values({"id": "12"}, {"id": "13"}))
    civicrm.on("Contact", "create", {"is_error": 0, "id": 12})

    resolution = add_update_contact(ctx, make_order(), 0)

    assert resolution.contact_id == 12
    assert resolution.action == "update"
    dedupe = civicrm.calls_to("Contact", "duplicatecheck")[0]
    assert dedupe["rule_type"] == "Unsupervised"
    assert dedupe["match"]["email"] == "ada@example.org"
    assert civicrm.calls_to("Contact", "create")[0]["id"] == 12
    assert "contact_source" not in civicrm.calls_to("Contact", "create")[0]
    assert store.notes[42][0].startswith("CiviCRM Contact Updated - ")


def test_empty_order_names_do_not_overwrite_contact(ctx, civicrm):
    civicrm.on("Contact", "getsingle", {"id": "8", "contact_type": "Individual", "contact_source": "Event"})
    civicrm.on("Contact", "create", {"is_error": 0, "id": 8})
    order = make_order(billing={"first_name": "", "last_name": "", "email": "ada@example.org"})

    add_update_contact(ctx, order, 8)

    created = civicrm.calls_to("Contact", "create")[0]
    assert "first_name" not in created
    assert "last_name" not in created
    assert "display_name" not in created
    assert "contact_source" not in created
    # Linked contacts skip dedupe
    assert civicrm.calls_to("Contact", "duplicatecheck") == []


def test_unknown_linked_contact_fails(ctx, civicrm):
    resolution = add_update_contact(ctx, make_order(), 999)
    assert resolution.contact_id is None
    assert not resolution.ok


def test_dedupe_failure_does_not_create(ctx, civicrm):
    civicrm.fail("Contact", "duplicatecheck")

    resolution = add_update_contact(ctx, make_order(), 0)

    assert not resolution.ok
    assert civicrm.calls_to("Contact", "create") == []


def test_bypass_flag_returns_linked_contact_untouched(ctx, civicrm):
    ctx.settings.BYPASS_CONTACT_UPDATE = True

    resolution = add_update_contact(ctx, make_order(), 31)

    assert resolution.contact_id == 31
    assert resolution.action == "bypass"
    assert not resolution.wrote_contact
    assert civicrm.calls == []


def test_find_contact_id_falls_back_to_dedupe(ctx, civicrm):
    civicrm.on("Contact", "duplicatecheck", civi_values({"id": "12"}))
    assert find_contact_id(ctx, make_order(customer_id=0)) == 12


# ============================================================================
# Contact detail reconciler
# ============================================================================

def _existing(civicrm, addresses=(), phones=(), emails=()):
    civicrm.on("Address", "get", civi_values(*addresses))
    civicrm.on("Phone", "get", civi_values(*phones))
    civicrm.on("Email", "get", civi_values(*emails))


def test_details_are_created_for_new_contact(ctx, civicrm, store):
    civicrm.on("Country", "get", civi_values({"id": "1226"}))
    _existing(civicrm)

    written = reconcile_contact_details(ctx, make_order(), 55)

    assert written == 3
    phone = civicrm.calls_to("Phone", "create")[0]
    assert phone == {"phone_type_id": 1, "location_type_id": 5, "phone": "+44 20 7946 0000", "contact_id": 55}
    address = civicrm.calls_to("Address", "create")[0]
    assert address["street_address"] == "12 Analytical Row"
    assert address["country_id"] == 1226
    assert address["location_type_id"] == 5
    assert "Created new CiviCRM Phone of type billing: +44 20 7946 0000" in store.notes[42]
    assert "Created new CiviCRM Email of type billing: ada@example.org" in store.notes[42]
    assert "Created new CiviCRM Address of type billing: 12 Analytical Row" in store.notes[42]


def test_existing_phone_value_is_reused_even_at_other_location(ctx, civicrm):
    _existing(civicrm, phones=[{"id": "3", "location_type_id": "1", "phone": "+44 20 7946 0000"}])

    reconcile_contact_details(ctx, make_order(shipping={}), 55)

    assert civicrm.calls_to("Phone", "create") == []


def test_phone_at_same_location_is_updated_in_place(ctx, civicrm, store):
    _existing(civicrm, phones=[{"id": "3", "location_type_id": "5", "phone": "0000"}])

    reconcile_contact_details(ctx, make_order(), 55)

    phone = civicrm.calls_to("Phone", "create")[0]
    assert phone["id"] == "3"
    assert not any("Phone" in note for note in store.notes.get(42, []))


def test_same_address_at_other_location_is_not_duplicated(ctx, civicrm):
    _existing(civicrm, addresses=[{
        "id": "9",
        "location_type_id": "1",
        "street_address": "12 Analytical Row",
        "city": "London",
        "postal_code": "N1 9GU",
    }])

    reconcile_contact_details(ctx, make_order(), 55)

    assert civicrm.calls_to("Address", "create") == []


def test_address_requires_street_and_postcode(ctx, civicrm):
    _existing(civicrm)
    order = make_order(billing={"first_name": "Ada", "address_1": "12 Analytical Row", "postcode": ""})

    reconcile_contact_details(ctx, order, 55)

    assert civicrm.calls_to("Address", "create") == []


def test_shipping_address_gets_its_own_location_without_phone(ctx, civicrm):
    _existing(civicrm)
    order = make_order(shipping={"address_1": "1 Dock St", "postcode": "E1 8AA", "phone": "999"})

    reconcile_contact_details(ctx, order, 55)

    locations = [params["location_type_id"] for params in civicrm.calls_to("Address", "create")]
    assert locations == [5, 1]
    assert all(params["phone"] != "999" for params in civicrm.calls_to("Phone", "create"))


def test_failed_record_does_not_stop_the_others(ctx, civicrm):
    _existing(civicrm)
    civicrm.fail("Phone", "create")

    written = reconcile_contact_details(ctx, make_order(), 55)

    assert written == 2
    assert len(civicrm.calls_to("Email", "create")) == 1
    assert len(civicrm.calls_to("Address", "create")) == 1
