import pytest

from po_change.errors import NotFoundError
from po_change.models import RequestFilters, RequestSort, UserProfile
from po_change.policy import Scope
from po_change.storage import SqliteIdentityProvider, Storage
from po_change.views import sort_requests

def row(**overrides):
    data = {
        "request_date": "2026-03-01",
        "request_type": "existing_order_change",
        "category_of_request": "quantity_change",
        "priority": "normal",
        "customer": "Sales",
        "so_number": "SO-1",
        "requesting_dept": "Sales",
        "requester_id": "user-1",
        "requester_name": "Dana Kim",
        "current_shipment_date": "2026-03-20",
        "items": [{"item_code": "A-100", "item_name": "Widget", "quantity": 5}],
        "request_details": "Increase quantity",
        "status": "pending",
        "completed": False,
    }
    data.update(overrides)
    return data

@pytest.fixture()
def storage(tmp_path):
    return Storage(str(tmp_path / "storage.db"))

def test_insert_assigns_id_and_timestamps(storage):
    created = storage.insert_request(row())
    assert created.id
    assert created.created_at == created.updated_at
    assert created.items[0].item_code == "A-100"
    assert created.completed is False
    assert storage.get_request(created.id) == created

def test_soft_deleted_rows_disappear_from_every_read(storage):
    keep = storage.insert_request(row(so_number="keep"))
    gone = storage.insert_request(row(so_number="gone"))
    storage.soft_delete_request_by_id(gone.id)

    assert storage.get_request(gone.id) is None
    listed = storage.list_requests(Scope(all_rows=True))
    assert [r.id for r in listed] == [keep.id]
    with pytest.raises(NotFoundError):
        storage.update_request_by_id(gone.id, {"priority": "urgent"})
    with pytest.raises(NotFoundError):
        storage.soft_delete_request_by_id(gone.id)

def test_department_scope_requires_customer_and_dept_match(storage):
    storage.insert_request(row(so_number="own"))
    storage.insert_request(row(so_number="other-customer", customer="Export"))
    storage.insert_request(row(so_number="other-dept", customer="Sales", requesting_dept="Export"))

    listed = storage.list_requests(Scope(department="Sales"))
    assert [r.so_number for r in listed] == ["own"]

def test_home_customer_scope_widens_visibility(storage):
    storage.insert_request(row(so_number="own"))
    storage.insert_request(row(so_number="home", customer="HQ", requesting_dept="Export"))
    storage.insert_request(row(so_number="elsewhere", customer="Export", requesting_dept="Export"))

    listed = storage.list_requests(Scope(department="Sales", home_customer="HQ"), sort=RequestSort(sort_by="so_number", order="asc"))
    assert [r.so_number for r in listed] == ["home", "own"]

def test_empty_scope_sees_nothing(storage):
    storage.insert_request(row())
    assert storage.list_requests(Scope()) == []

def test_search_filters_and_sort(storage):
    storage.insert_request(row(so_number="SO-3", customer="Acme", requesting_dept="Acme", priority="low"))
    storage.insert_request(row(so_number="SO-2", customer="Acme", requesting_dept="Acme", priority="urgent"))
    storage.insert_request(row(so_number="SO-1", customer="Other", requesting_dept="Other", priority="urgent"))

    found = storage.list_requests(Scope(all_rows=True), search="ACME", sort=RequestSort(sort_by="priority", order="asc"))
    assert [r.so_number for r in found] == ["SO-2", "SO-3"]

    urgent = storage.list_requests(Scope(all_rows=True), filters=RequestFilters(priority="urgent"), sort=RequestSort(sort_by="so_number", order="asc"))
    assert [r.so_number for r in urgent] == ["SO-1", "SO-2"]

def test_search_matches_item_codes(storage):
    storage.insert_request(row(items=[{"item_code": "ZX-9", "item_name": "Gear", "quantity": 1}]))
    storage.insert_request(row())
    assert len(storage.list_requests(Scope(all_rows=True), search="zx-9")) == 1

def test_update_changes_fields_and_items(storage):
    created = storage.insert_request(row())
    storage.update_request_by_id(created.id, {"completed": True, "items": [{"item_code": "B", "item_name": "Bolt", "quantity": -2}]})
    updated = storage.get_request(created.id)
    assert updated.completed is True
    assert updated.items[0].quantity == -2
    assert updated.updated_at >= created.updated_at

def test_profiles_and_identity(storage):
    storage.upsert_profile(UserProfile(id="u1", email="a@corp.test", full_name="Ann", department="Sales", role="requester"))
    storage.upsert_profile(UserProfile(id="u1", email="a@corp.test", full_name="Ann", department="Export", role="requester"))
    assert storage.get_profile("u1").department == "Export"
    assert len(storage.list_profiles()) == 1

    identity = SqliteIdentityProvider(storage)
    assert identity.current_user("u1").email == "a@corp.test"
    assert identity.current_user("nobody") is None
    assert identity.current_user(None) is None

def test_audit_log_roundtrip(storage):
    storage.write_audit("r1", "created", "Ann", {"priority": "urgent"})
    storage.write_audit("r1", "reviewed", "Ben", {"feasibility": "approved"})
    entries = storage.list_audit("r1")
    assert [e.event_type for e in entries] == ["created", "reviewed"]
    assert entries[1].details == {"feasibility": "approved"}

def test_search_ignores_json_keys_and_like_wildcards(storage):
    storage.insert_request(row(customer="Acme", requesting_dept="Acme"))
    storage.insert_request(row(customer="Other", requesting_dept="Other"))

    everything = Scope(all_rows=True)
    assert storage.list_requests(everything, search="quantity") == []
    assert storage.list_requests(everything, search="item_code") == []
    assert storage.list_requests(everything, search='"') == []
    assert storage.list_requests(everything, search="_") == []
    assert storage.list_requests(everything, search="%") == []
    assert len(storage.list_requests(everything, search="widget")) == 2
    assert [r.customer for r in storage.list_requests(everything, search="acm")] == ["Acme"]

def test_search_treats_wildcards_as_literal_text(storage):
    storage.insert_request(row(customer="50%_off", requesting_dept="Promo"))
    storage.insert_request(row(customer="500 off", requesting_dept="Promo"))
    found = storage.list_requests(Scope(all_rows=True), search="50%_")
    assert [r.customer for r in found] == ["50%_off"]

def test_missing_shipment_dates_sort_like_the_in_memory_sort(storage):
    storage.insert_request(row(so_number="none", current_shipment_date=None))
    storage.insert_request(row(so_number="late", current_shipment_date="2026-04-01"))
    storage.insert_request(row(so_number="early", current_shipment_date="2026-03-05"))

    for order in ("asc", "desc"):
        listed = storage.list_requests(Scope(all_rows=True), sort=RequestSort(sort_by="current_shipment_date", order=order))
        assert [r.so_number for r in listed] == [r.so_number for r in sort_requests(listed, "current_shipment_date", order)]

    ascending = storage.list_requests(Scope(all_rows=True), sort=RequestSort(sort_by="current_shipment_date", order="asc"))
    assert [r.so_number for r in ascending] == ["early", "late", "none"]
