"""Read-only projections over a list of requests: stats, priority queue, search, sorting."""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Iterable, Optional

from dateutil.parser import parse as dt_parse

from po_change.models import PriorityEntry, PriorityQueue, Request, RequestFilters, Stats

PRIORITY_RANK = {"urgent": 0, "normal": 1, "low": 2}
SEARCH_FIELDS = ("customer", "requesting_dept", "requester_name", "so_number")
SORT_KEYS = ("current_shipment_date", "request_date", "created_at", "so_number", "customer", "priority")
DEFAULT_PRIORITY_SORT = "current_shipment_date"


def _live(requests: Iterable[Request]) -> list[Request]:
    return [r for r in requests if not r.deleted_at]


def statistics(requests: Iterable[Request]) -> Stats:
    rows = _live(requests)
    return Stats(
        total=len(rows),
        pending=sum(1 for r in rows if r.status == "pending"),
        approved=sum(1 for r in rows if r.status == "approved"),
        completed=sum(1 for r in rows if r.completed),
    )


def _as_date(value: str | date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return dt_parse(value).date()


def days_left(shipment_date: str | date | datetime, today: date | None = None) -> int:
    # Both sides truncated to midnight, so the difference is a whole number of days
    delta = _as_date(shipment_date) - (today or date.today())
    return math.ceil(delta.total_seconds() / 86400)


def urgency_level(days: int) -> str:
    if days <= 5:
        return "urgent"
    if days <= 10:
        return "normal"
    return "low"


def matches_search(request: Request, query: str | None) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    haystack = [str(getattr(request, f) or "") for f in SEARCH_FIELDS]
    haystack.extend(i.item_code for i in request.items)
    haystack.extend(i.item_name for i in request.items)
    return any(needle in value.lower() for value in haystack)


def _timestamp(value: Optional[str]) -> float:
    if not value:
        return float("-inf")
    return dt_parse(value).timestamp()


def _sort_value(request: Request, key: str):
    if key == "priority":
        return PRIORITY_RANK.get(request.priority, PRIORITY_RANK["normal"])
    if key in ("so_number", "customer"):
        return (getattr(request, key) or "").lower()
    if key in ("current_shipment_date", "request_date"):
        value = getattr(request, key)
        # Missing dates sort last in ascending order
        return _as_date(value).toordinal() if value else math.inf
    return _timestamp(getattr(request, key))


def sort_requests(requests: Iterable[Request], sort_by: str = "created_at", order: str = "desc") -> list[Request]:
    """Sort by ``sort_by``; ties keep the most recently created first."""
    if sort_by not in SORT_KEYS:
        sort_by = "created_at"
    # Stable sorts: apply the tie-break first, then the primary key
    rows = sorted(requests, key=lambda r: _timestamp(r.created_at), reverse=True)
    return sorted(rows, key=lambda r: _sort_value(r, sort_by), reverse=(order == "desc"))


def filter_requests(
    requests: Iterable[Request],
    filters: RequestFilters | None = None,
    search: str | None = None,
) -> list[Request]:
    filters = filters or RequestFilters()
    out = []
    for r in _live(requests):
        if filters.status is not None and r.status != filters.status:
            continue
        if filters.completed is not None and r.completed != filters.completed:
            continue
        if filters.priority is not None and r.priority != filters.priority:
            continue
        if filters.category_of_request is not None and r.category_of_request != filters.category_of_request:
            continue
        if not matches_search(r, search):
            continue
        out.append(r)
    return out


def priority_queue(
    requests: Iterable[Request],
    sort_by: str = DEFAULT_PRIORITY_SORT,
    order: str = "asc",
    window: int = 5,
    today: date | None = None,
) -> PriorityQueue:
    open_rows = [r for r in _live(requests) if r.status != "rejected" and not r.completed]
    entries = []
    for r in sort_requests(open_rows, sort_by if sort_by in SORT_KEYS else DEFAULT_PRIORITY_SORT, order):
        entry = PriorityEntry(request=r)
        if r.current_shipment_date:
            entry.days_left = days_left(r.current_shipment_date, today)
            entry.urgency = urgency_level(entry.days_left)
        entries.append(entry)
    return PriorityQueue(visible=entries[:window], overflow=entries[window:])
