"""
Spreadsheet import of line items and Excel export of request listings.

Import accepts .xlsx or .csv with a header row. Columns are matched by header
name (item code / item name / quantity); when no header matches, the first three
columns are taken in that order.
"""

from __future__ import annotations

import csv
import zipfile
from io import BytesIO, StringIO
from typing import Any, Iterable, Optional

import openpyxl
from loguru import logger
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from po_change.errors import NoValidRowsError
from po_change.models import LineItem, Request
from po_change.utils import normalize_whitespace

HEADER_ALIASES = {
    "item_code": {"itemcode", "erpcode", "code", "partnumber", "sku"},
    "item_name": {"itemname", "name", "description", "partname"},
    "quantity": {"quantity", "qty", "amount"},
}

EXPORT_COLUMNS: list[tuple[str, str]] = [
    ("request_date", "Request Date"),
    ("so_number", "SO Number"),
    ("customer", "Customer"),
    ("requesting_dept", "Requesting Dept"),
    ("requester_name", "Requester"),
    ("request_type", "Request Type"),
    ("category_of_request", "Category"),
    ("priority", "Priority"),
    ("current_shipment_date", "Current Shipment Date"),
    ("desired_shipment_date", "Desired Shipment Date"),
    ("confirmed_shipment_date", "Confirmed Shipment Date"),
    ("leadtime", "Lead Time (days)"),
    ("items", "Items"),
    ("shipping_method", "Shipping Method"),
    ("reason_for_request", "Reason"),
    ("request_details", "Request Details"),
    ("feasibility", "Feasibility"),
    ("review_details", "Review Details"),
    ("reviewing_dept", "Reviewing Dept"),
    ("reviewer_name", "Reviewer"),
    ("status", "Status"),
    ("completed", "Completed"),
]


def _header_key(value: Any) -> str:
    return "".join(ch for ch in str(value or "").lower() if ch.isalnum())


def _read_rows(content: bytes, filename: str) -> list[list[Any]]:
    if filename.lower().endswith(".csv"):
        text = content.decode("utf-8-sig", errors="replace")
        return [row for row in csv.reader(StringIO(text))]
    try:
        wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise NoValidRowsError("The uploaded file is not a readable spreadsheet.", detail=str(exc)) from exc
    try:
        ws = wb.worksheets[0]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def _column_map(header: list[Any]) -> Optional[dict[str, int]]:
    keys = [_header_key(h) for h in header]
    mapping: dict[str, int] = {}
    for field, aliases in HEADER_ALIASES.items():
        for idx, key in enumerate(keys):
            if key in aliases:
                mapping[field] = idx
                break
    return mapping if len(mapping) == len(HEADER_ALIASES) else None


def _parse_quantity(value: Any) -> Optional[int]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        number = value
    else:
        try:
            number = float(str(value).replace(",", "").strip())
        except ValueError:
            return None
    # Fractional quantities are rejected, never truncated
    if not number.is_integer():
        return None
    return int(number)


def parse_line_items(content: bytes, filename: str) -> list[LineItem]:
    """Return the usable line items in an uploaded file.

    Rows missing a code, a name or a whole-number quantity are skipped.
    Raises NoValidRowsError when no row survives.
    """
    rows = [r for r in _read_rows(content, filename) if any(c not in (None, "") for c in r)]
    if not rows:
        raise NoValidRowsError("The uploaded file has no rows.")

    mapping = _column_map(rows[0])
    data_rows = rows[1:]
    if mapping is None:
        # No recognised header; fall back to column order and keep the first row
        # only if it looks like data
        mapping = {"item_code": 0, "item_name": 1, "quantity": 2}
        if _parse_quantity(rows[0][2] if len(rows[0]) > 2 else None) is not None:
            data_rows = rows

    items: list[LineItem] = []
    skipped = 0
    width = max(mapping.values()) + 1
    for row in data_rows:
        cells = list(row) + [None] * (width - len(row))
        code = normalize_whitespace(str(cells[mapping["item_code"]] or ""))
        name = normalize_whitespace(str(cells[mapping["item_name"]] or ""))
        qty = _parse_quantity(cells[mapping["quantity"]])
        if not code or not name or qty is None:
            skipped += 1
            continue
        items.append(LineItem(item_code=code, item_name=name, quantity=qty))

    if not items:
        raise NoValidRowsError("No valid rows were found. Expected item code, item name and quantity columns.")
    if skipped:
        logger.info(f"Spreadsheet import of {filename}: {len(items)} rows kept, {skipped} skipped")
    return items


def _cell_value(request: Request, field: str) -> Any:
    value = getattr(request, field)
    if field == "items":
        return "\n".join(f"{i.item_code} | {i.item_name} | {i.quantity}" for i in value)
    if field == "completed":
        return "Yes" if value else "No"
    return value if value is not None else ""


def export_requests(requests: Iterable[Request], title: str = "PO Change Requests") -> bytes:
    """Write the requests, in the given order, to an .xlsx workbook and return its bytes."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title[:31]

    ws.append([label for _, label in EXPORT_COLUMNS])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    count = 0
    for req in requests:
        ws.append([_cell_value(req, field) for field, _ in EXPORT_COLUMNS])
        count += 1

    for idx, (_, label) in enumerate(EXPORT_COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(label) + 2)
    ws.freeze_panes = "A2"

    buffer = BytesIO()
    wb.save(buffer)
    logger.debug(f"Exported {count} requests to xlsx")
    return buffer.getvalue()
