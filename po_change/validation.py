from __future__ import annotations

import json
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from po_change.errors import MissingDepartmentError, ValidationError
from po_change.models import ITEMLESS_CATEGORIES, AuthUser, Request, RequestDraft, RequestPatch, UserProfile
from po_change.utils import is_blank

SCHEMA_PATH = Path(__file__).parent / "schemas" / "request_schema.json"


@lru_cache(maxsize=1)
def load_schema_validator(schema_path: str = str(SCHEMA_PATH)) -> Draft202012Validator:
    schema = json.loads(Path(schema_path).read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def requires_items(category: str) -> bool:
    return category not in ITEMLESS_CATEGORIES


def check_draft_fields(draft: RequestDraft) -> None:
    """Form-level rules, in the order the user sees them."""
    if is_blank(draft.customer):
        raise ValidationError("Customer is required.")
    if draft.request_type == "existing_order_change":
        if is_blank(draft.so_number):
            raise ValidationError("SO number is required for changes to an existing order.")
        if draft.category_of_request == "shipping_method_change" and is_blank(draft.shipping_method):
            raise ValidationError("Shipping method is required for a shipping method change.")
    if is_blank(draft.request_details):
        raise ValidationError("Request details are required.")
    if requires_items(draft.category_of_request) and not draft.items:
        raise ValidationError("At least one line item (item code, item name, quantity) is required.")


def validate_draft(draft: RequestDraft, profile: UserProfile | None) -> None:
    check_draft_fields(draft)
    if profile is None or is_blank(profile.department):
        raise MissingDepartmentError(
            "Your profile has no department. Ask an administrator to complete it before filing requests."
        )


def leadtime_days(request_date: str, shipment_date: str | None) -> int | None:
    if not shipment_date:
        return None
    return (date.fromisoformat(shipment_date) - date.fromisoformat(request_date)).days


def build_insert_payload(draft: RequestDraft, user: AuthUser, profile: UserProfile, today: date | None = None) -> dict[str, Any]:
    """Validate ``draft`` and return the row to insert."""
    validate_draft(draft, profile)

    request_date = (today or date.today()).isoformat()
    current = draft.current_shipment_date
    if draft.request_type == "new_order_addition":
        # A new order has no prior schedule; the desired date becomes the current one
        current = draft.desired_shipment_date or current

    payload: dict[str, Any] = draft.model_dump()
    payload.update(
        {
            "customer": draft.customer.strip(),
            "so_number": draft.so_number.strip(),
            "request_details": draft.request_details.strip(),
            "current_shipment_date": current,
            "leadtime": draft.leadtime if draft.leadtime is not None else leadtime_days(request_date, current),
            "requesting_dept": profile.department,
            "requester_id": user.id,
            "requester_name": profile.full_name,
            "request_date": request_date,
            "feasibility": None,
            "status": "pending",
            "completed": False,
        }
    )
    # Guardrail: the row must match the table contract before it leaves the process
    errors = sorted(load_schema_validator().iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        msg = "; ".join(f"{list(e.path)}: {e.message}" for e in errors)
        raise ValidationError(f"Request payload is invalid: {msg}")
    return payload


def build_update_fields(request: Request, patch: RequestPatch) -> dict[str, Any]:
    """Merge an owner edit onto ``request``, re-check the creation rules, return changed fields."""
    changes = patch.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update.")

    merged = request.model_dump()
    merged.update(changes)
    check_draft_fields(RequestDraft.model_validate({k: merged[k] for k in RequestDraft.model_fields if k in merged}))

    if "current_shipment_date" in changes and "leadtime" not in changes:
        changes["leadtime"] = leadtime_days(request.request_date, changes["current_shipment_date"])
    return changes
