import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from po_change.config import get_settings
from po_change.errors import NotFoundError, PermissionDeniedError, SessionExpiredError
from po_change.models import RequestSort
from po_change.notifications import EmailNotifier
from po_change.policy import Scope
from po_change.supabase_gateway import SupabaseGateway

class FakeQuery:
    """Records the PostgREST builder chain and answers execute() from a queue."""

    def __init__(self, client, table):
        self.client = client
        self.calls = [("table", table)]

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs) if kwargs else (name, *args))
        return self

    def select(self, *args, **kwargs):
        return self._record("select", *args, **kwargs)

    def is_(self, *args):
        return self._record("is_", *args)

    def or_(self, *args):
        return self._record("or_", *args)

    def eq(self, *args):
        return self._record("eq", *args)

    def order(self, *args, **kwargs):
        return self._record("order", *args, **kwargs)

    def limit(self, *args):
        return self._record("limit", *args)

    def insert(self, *args):
        return self._record("insert", *args)

    def update(self, *args):
        return self._record("update", *args)

    def execute(self):
        self.client.executed.append(self.calls)
        result = self.client.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return SimpleNamespace(data=result)

class FakeAdmin:
    def __init__(self, emails):
        self.emails = emails
        self.looked_up = []

    def get_user_by_id(self, user_id):
        self.looked_up.append(user_id)
        if user_id not in self.emails:
            raise RuntimeError("User not found")
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=self.emails[user_id]))

class FakeClient:
    def __init__(self, results, emails=None):
        self.results = list(results)
        self.executed = []
        self.auth = SimpleNamespace(admin=FakeAdmin(emails or {}))

    def table(self, name):
        return FakeQuery(self, name)

def api_error(code, message):
    return APIError({"code": code, "message": message, "details": None, "hint": None})

def db_row(make_request, **overrides):
    return make_request(**overrides).model_dump()

def test_department_scope_is_quoted_into_one_or_filter(make_request):
    client = FakeClient([[db_row(make_request, customer="Sales, Inc", requesting_dept="Sales, Inc")]])
    gateway = SupabaseGateway(client)

    rows = gateway.list_requests(Scope(department="Sales, Inc"))

    assert rows[0].customer == "Sales, Inc"
    calls = client.executed[0]
    assert ("is_", "deleted_at", "null") in calls
    assert ("or_", 'and(customer.eq."Sales, Inc",requesting_dept.eq."Sales, Inc")') in calls
    assert calls[-2:] == [("order", ("created_at",), {"desc": True}), ("order", ("created_at",), {"desc": True})]

def test_home_customer_adds_a_second_clause():
    client = FakeClient([[]])
    SupabaseGateway(client).list_requests(Scope(department="Sales", home_customer='HQ "Main" (East)'))
    or_calls = [c for c in client.executed[0] if c[0] == "or_"]
    assert or_calls == [
        ("or_", 'and(customer.eq."Sales",requesting_dept.eq."Sales"),customer.eq."HQ \\"Main\\" (East)"')
    ]

def test_empty_scope_never_queries():
    client = FakeClient([])
    assert SupabaseGateway(client).list_requests(Scope()) == []
    assert client.executed == []

def test_search_strips_filter_syntax():
    client = FakeClient([[]])
    SupabaseGateway(client).list_requests(Scope(all_rows=True), search="acme, (x)")
    or_calls = [c for c in client.executed[0] if c[0] == "or_"]
    assert or_calls == [
        ("or_", "customer.ilike.%acme x%,requesting_dept.ilike.%acme x%,requester_name.ilike.%acme x%,so_number.ilike.%acme x%")
    ]

def test_priority_sort_is_ranked_in_process(make_request):
    client = FakeClient([[
        db_row(make_request, so_number="low", priority="low"),
        db_row(make_request, so_number="urgent", priority="urgent"),
        db_row(make_request, so_number="normal", priority="normal"),
    ]])
    rows = SupabaseGateway(client).list_requests(Scope(all_rows=True), sort=RequestSort(sort_by="priority", order="asc"))

    assert [r.so_number for r in rows] == ["urgent", "normal", "low"]
    orders = [c for c in client.executed[0] if c[0] == "order"]
    assert orders[0] == ("order", ("created_at",), {"desc": False})

def test_unknown_sort_column_falls_back_to_created_at():
    client = FakeClient([[]])
    SupabaseGateway(client).list_requests(Scope(all_rows=True), sort=RequestSort(sort_by="id; drop", order="asc"))
    orders = [c for c in client.executed[0] if c[0] == "order"]
    assert orders[0] == ("order", ("created_at",), {"desc": False})

def test_remote_errors_are_classified():
    client = FakeClient([api_error("42501", "new row violates row-level security policy")])
    with pytest.raises(PermissionDeniedError):
        SupabaseGateway(client).list_requests(Scope(all_rows=True))

    client = FakeClient([api_error("PGRST303", "JWT expired")])
    with pytest.raises(SessionExpiredError):
        SupabaseGateway(client).get_request("r1")

def test_update_with_no_returned_row_is_not_found():
    client = FakeClient([[]])
    with pytest.raises(NotFoundError):
        SupabaseGateway(client).update_request_by_id("r1", {"priority": "urgent"})

def test_soft_delete_sets_deleted_at_on_live_row():
    client = FakeClient([[{"id": "r1"}]])
    SupabaseGateway(client).soft_delete_request_by_id("r1")

    calls = client.executed[0]
    update = next(c for c in calls if c[0] == "update")
    assert set(update[1]) == {"deleted_at", "updated_at"}
    assert ("eq", "id", "r1") in calls
    assert ("is_", "deleted_at", "null") in calls

def test_recipients_get_their_email_from_auth_admin():
    profiles = [
        {"id": "u1", "full_name": "Ann", "department": "Sales", "role": "reviewer"},
        {"id": "u2", "full_name": "Ben", "department": "Sales", "role": "admin"},
        {"id": "u3", "full_name": "Cat", "department": "Sales", "role": "requester"},
    ]
    client = FakeClient([profiles], emails={"u1": "ann@corp.test", "u3": None})

    recipients = SupabaseGateway(client).list_recipients()

    assert [(p.id, p.email) for p in recipients] == [("u1", "ann@corp.test")]
    assert client.auth.admin.looked_up == ["u1", "u2", "u3"]

def test_new_request_email_reaches_profiles_without_email_column(monkeypatch):
    monkeypatch.setenv("RESEND_API_KEY", "re_test")
    profiles = [{"id": "u1", "full_name": "Ann", "department": "Sales", "role": "reviewer"}]
    client = FakeClient([profiles], emails={"u1": "ann@corp.test"})
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content)["to"])
        return httpx.Response(200, json={"id": "email-1"})

    notifier = EmailNotifier(
        get_settings(),
        recipients=SupabaseGateway(client).list_recipients,
        transport=httpx.MockTransport(handler),
    )
    count = asyncio.run(notifier.notify_new_request("r1", "SO-1", "Acme", "Dana", "normal"))

    assert count == 1
    assert sent == [["ann@corp.test"]]
