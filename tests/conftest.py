from pathlib import Path
import pytest

from po_change.models import Request
from po_change.utils import new_id

@pytest.fixture(autouse=True)
def _isolate_test_db(tmp_path, monkeypatch):
    # Force the app onto a temporary sqlite db for each test
    monkeypatch.setenv("BACKEND", "sqlite")
    monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "test.db"))

    # No outbound email during tests
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    monkeypatch.setenv("ROLE_OVERRIDE_EMAILS", "")
    monkeypatch.setenv("NON_ADMIN_DELETE_ENABLED", "true")
    monkeypatch.setenv("ADMIN_EDIT_OVERRIDE", "false")
    monkeypatch.delenv("HOME_CUSTOMER", raising=False)
    monkeypatch.setenv("PRIORITY_WINDOW", "5")

    Path(tmp_path).mkdir(parents=True, exist_ok=True)

@pytest.fixture()
def make_request():
    def _make(**overrides) -> Request:
        data = {
            "id": new_id(),
            "request_date": "2026-03-01",
            "request_type": "existing_order_change",
            "category_of_request": "quantity_change",
            "priority": "normal",
            "customer": "Sales",
            "so_number": "SO-1001",
            "requesting_dept": "Sales",
            "requester_id": "user-1",
            "requester_name": "Dana Kim",
            "current_shipment_date": "2026-03-20",
            "items": [{"item_code": "A-100", "item_name": "Widget", "quantity": 5}],
            "request_details": "Increase quantity",
            "status": "pending",
            "completed": False,
            "created_at": "2026-03-01T09:00:00+00:00",
            "updated_at": "2026-03-01T09:00:00+00:00",
        }
        data.update(overrides)
        return Request.model_validate(data)
    return _make
