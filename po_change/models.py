from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from dateutil.parser import parse as dt_parse
from pydantic import BaseModel, Field, field_validator, model_validator

RequestType = Literal["existing_order_change", "new_order_addition"]
Category = Literal[
    "product_addition",
    "material_addition",
    "product_removal",
    "material_removal",
    "item_code_change",
    "quantity_change",
    "schedule_change",
    "shipping_method_change",
]
Priority = Literal["urgent", "normal", "low"]
Status = Literal["pending", "in_review", "approved", "rejected", "completed"]
Feasibility = Literal["approved", "rejected", "pending"]
SortKey = Literal["current_shipment_date", "request_date", "created_at", "so_number", "customer", "priority"]
SortOrder = Literal["asc", "desc"]

# Categories whose change does not touch line items
ITEMLESS_CATEGORIES = frozenset({"schedule_change", "shipping_method_change"})


class Role(str, Enum):
    REQUESTER = "requester"
    REVIEWER = "reviewer"
    ADMIN = "admin"


def _iso_date(value: Optional[str]) -> Optional[str]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return dt_parse(str(value)).date().isoformat()


class LineItem(BaseModel):
    item_code: str
    item_name: str
    quantity: int  # signed delta


class UserProfile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: str = ""
    department: str = ""
    role: str = ""  # comma-joined tags as stored, e.g. "requester,reviewer"


class AuthUser(BaseModel):
    id: str
    email: Optional[str] = None


class RequestDraft(BaseModel):
    request_type: RequestType = "existing_order_change"
    category_of_request: Category = "quantity_change"
    priority: Priority = "normal"
    customer: str = ""
    so_number: str = ""
    current_shipment_date: Optional[str] = None
    desired_shipment_date: Optional[str] = None
    leadtime: Optional[int] = None
    items: list[LineItem] = Field(default_factory=list)
    shipping_method: Optional[str] = None
    reason_for_request: str = ""
    request_details: str = ""

    # Single-item shorthand, folded into ``items``
    item_code: Optional[str] = Field(default=None, exclude=True)
    item_name: Optional[str] = Field(default=None, exclude=True)
    quantity: Optional[int] = Field(default=None, exclude=True)

    @field_validator("current_shipment_date", "desired_shipment_date", mode="before")
    @classmethod
    def normalize_dates(cls, value):
        return _iso_date(value)

    @model_validator(mode="after")
    def fold_single_item(self) -> "RequestDraft":
        if not self.items and self.item_code and self.item_name and self.quantity is not None:
            self.items = [LineItem(item_code=self.item_code, item_name=self.item_name, quantity=self.quantity)]
        return self


class RequestPatch(BaseModel):
    """Owner edit. Unset fields are left untouched."""

    category_of_request: Optional[Category] = None
    priority: Optional[Priority] = None
    customer: Optional[str] = None
    so_number: Optional[str] = None
    current_shipment_date: Optional[str] = None
    desired_shipment_date: Optional[str] = None
    leadtime: Optional[int] = None
    items: Optional[list[LineItem]] = None
    shipping_method: Optional[str] = None
    reason_for_request: Optional[str] = None
    request_details: Optional[str] = None

    @field_validator("current_shipment_date", "desired_shipment_date", mode="before")
    @classmethod
    def normalize_dates(cls, value):
        return _iso_date(value)


class Request(BaseModel):
    id: str
    request_date: str
    request_type: RequestType = "existing_order_change"
    category_of_request: Category = "quantity_change"
    priority: Priority = "normal"
    customer: str
    so_number: str = ""
    requesting_dept: str
    requester_id: Optional[str] = None
    requester_name: str = ""
    current_shipment_date: Optional[str] = None
    desired_shipment_date: Optional[str] = None
    confirmed_shipment_date: Optional[str] = None
    leadtime: Optional[int] = None
    items: list[LineItem] = Field(default_factory=list)
    shipping_method: Optional[str] = None
    reason_for_request: str = ""
    request_details: str = ""
    feasibility: Optional[Feasibility] = None
    review_details: Optional[str] = None
    reviewing_dept: Optional[str] = None
    reviewer_id: Optional[str] = None
    reviewer_name: Optional[str] = None
    reviewed_at: Optional[str] = None
    status: Status = "pending"
    completed: bool = False
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None


class ReviewAction(BaseModel):
    feasibility: Feasibility
    review_details: str = ""


class CompletedToggle(BaseModel):
    completed: bool


class ConfirmedShipmentDate(BaseModel):
    confirmed_shipment_date: Optional[str] = None

    @field_validator("confirmed_shipment_date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return _iso_date(value)


class Stats(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    completed: int = 0


class PriorityEntry(BaseModel):
    request: Request
    days_left: Optional[int] = None
    urgency: Optional[Literal["urgent", "normal", "low"]] = None


class PriorityQueue(BaseModel):
    visible: list[PriorityEntry] = Field(default_factory=list)
    overflow: list[PriorityEntry] = Field(default_factory=list)


class RequestFilters(BaseModel):
    status: Optional[Status] = None
    completed: Optional[bool] = None
    priority: Optional[Priority] = None
    category_of_request: Optional[Category] = None


class RequestSort(BaseModel):
    sort_by: str = "created_at"
    order: SortOrder = "desc"


class AuditEntry(BaseModel):
    id: int
    request_id: str
    event_type: str
    actor: str
    details: dict
    created_at: str
