from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from po_change.errors import AuthorizationError, TransitionError, ValidationError
from po_change.models import Feasibility, Request, Status, UserProfile
from po_change.policy import Capabilities, can_review
from po_change.utils import is_blank, now_utc

TERMINAL = frozenset({"approved", "rejected"})

_STATUS_BY_FEASIBILITY: dict[Optional[str], Status] = {
    "approved": "approved",
    "rejected": "rejected",
    "pending": "pending",
    None: "pending",
}


def status_for_feasibility(feasibility: Optional[Feasibility]) -> Status:
    return _STATUS_BY_FEASIBILITY[feasibility]


def apply_review(
    request: Request,
    feasibility: Feasibility,
    review_details: str,
    reviewer: UserProfile,
    caps: Capabilities,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Compute the update for a reviewer decision.

    Approved and rejected are terminal: a request can be re-confirmed with the
    same decision but never moved to the other one or back to pending.
    """
    if not can_review(caps):
        raise AuthorizationError("Only reviewers or admins can review requests.")
    if is_blank(review_details):
        raise ValidationError("Review details are required.")
    if request.feasibility in TERMINAL and feasibility != request.feasibility:
        raise TransitionError(
            f"Request is already {request.feasibility}; it cannot be changed to {feasibility}."
        )

    return {
        "feasibility": feasibility,
        "status": status_for_feasibility(feasibility),
        "review_details": review_details.strip(),
        "reviewer_id": reviewer.id,
        "reviewer_name": reviewer.full_name,
        "reviewing_dept": reviewer.department,
        "reviewed_at": (now or now_utc()).isoformat(),
    }
