from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from loguru import logger

from po_change.errors import AuthorizationError, NotFoundError
from po_change.gateway import PersistenceGateway
from po_change.lifecycle import apply_review
from po_change.models import (
    AuditEntry,
    AuthUser,
    PriorityQueue,
    Request,
    RequestDraft,
    RequestFilters,
    RequestPatch,
    RequestSort,
    ReviewAction,
    Stats,
    UserProfile,
)
from po_change.policy import (
    AccessPolicy,
    Capabilities,
    Scope,
    can_delete,
    can_edit,
    can_set_confirmed_date,
    can_toggle_completed,
    is_visible,
    scope_for,
)
from po_change.validation import build_insert_payload, build_update_fields
from po_change.views import DEFAULT_PRIORITY_SORT, priority_queue, statistics


class AuditLog(Protocol):
    def write_audit(self, request_id: str, event_type: str, actor: str, details: dict) -> None: ...

    def list_audit(self, request_id: str) -> list[AuditEntry]: ...


@dataclass(frozen=True)
class Actor:
    user: AuthUser
    profile: Optional[UserProfile]
    caps: Capabilities

    @property
    def label(self) -> str:
        if self.profile and self.profile.full_name:
            return self.profile.full_name
        return self.user.email or self.user.id


class RequestService:
    """Runs every request operation: policy check, one gateway call, audit."""

    def __init__(self, gateway: PersistenceGateway, policy: AccessPolicy, audit: Optional[AuditLog] = None) -> None:
        self.gateway = gateway
        self.policy = policy
        self.audit = audit

    def actor_for(self, user: AuthUser, profile: Optional[UserProfile]) -> Actor:
        return Actor(user=user, profile=profile, caps=Capabilities.for_user(user, profile, self.policy))

    def _audit(self, request_id: str, event_type: str, actor: Actor, details: dict) -> None:
        if self.audit is not None:
            self.audit.write_audit(request_id, event_type, actor.label, details)

    def scope(self, actor: Actor) -> Scope:
        return scope_for(actor.caps, actor.profile, self.policy)

    # reads

    def list_requests(
        self,
        actor: Actor,
        search: Optional[str] = None,
        filters: Optional[RequestFilters] = None,
        sort: Optional[RequestSort] = None,
    ) -> list[Request]:
        return self.gateway.list_requests(self.scope(actor), search=search, filters=filters, sort=sort)

    def get(self, actor: Actor, request_id: str) -> Request:
        request = self.gateway.get_request(request_id)
        # Rows outside the caller's scope are reported as missing
        if request is None or not is_visible(actor.caps, actor.profile, request, self.policy):
            raise NotFoundError("The request could not be found.", detail=request_id)
        return request

    def stats(self, actor: Actor, search: Optional[str] = None, filters: Optional[RequestFilters] = None) -> Stats:
        return statistics(self.list_requests(actor, search=search, filters=filters))

    def priority(
        self,
        actor: Actor,
        sort_by: str = DEFAULT_PRIORITY_SORT,
        order: str = "asc",
        window: int = 5,
        today: Optional[date] = None,
    ) -> PriorityQueue:
        return priority_queue(self.list_requests(actor), sort_by=sort_by, order=order, window=window, today=today)

    def pending_for_reminder(self, actor: Actor) -> list[Request]:
        if not actor.caps.is_admin:
            raise AuthorizationError("Only admins can send review reminders.")
        return self.gateway.list_requests(
            Scope(all_rows=True),
            filters=RequestFilters(status="pending"),
            sort=RequestSort(sort_by="created_at", order="asc"),
        )

    def audit_trail(self, actor: Actor, request_id: str) -> list[AuditEntry]:
        self.get(actor, request_id)
        if self.audit is None:
            raise NotFoundError("No audit trail is kept for this backend.")
        return self.audit.list_audit(request_id)

    # writes

    def create(self, actor: Actor, draft: RequestDraft, today: Optional[date] = None) -> Request:
        payload = build_insert_payload(draft, actor.user, actor.profile, today=today)
        request = self.gateway.insert_request(payload)
        self._audit(request.id, "created", actor, {"priority": request.priority, "category": request.category_of_request})
        logger.info(f"Request {request.id} created by {actor.user.id} for customer '{request.customer}'")
        return request

    def _check_owner_action(self, actor: Actor, request: Request, verb: str) -> None:
        if request.requester_id != actor.user.id and not (actor.caps.is_admin and self.policy.admin_edit_override):
            raise AuthorizationError(f"You can only {verb} your own requests.")
        if request.status != "pending":
            raise AuthorizationError(f"Only requests awaiting review can be changed; this one is {request.status}.")

    def update(self, actor: Actor, request_id: str, patch: RequestPatch) -> Request:
        request = self.get(actor, request_id)
        if not can_edit(actor.user.id, actor.caps, request, self.policy):
            self._check_owner_action(actor, request, "edit")
            raise AuthorizationError("You cannot edit this request.")
        fields = build_update_fields(request, patch)
        self.gateway.update_request_by_id(request_id, fields)
        self._audit(request_id, "updated", actor, {"fields": sorted(fields)})
        return self.get(actor, request_id)

    def delete(self, actor: Actor, request_id: str) -> None:
        request = self.get(actor, request_id)
        if not can_delete(actor.user.id, actor.caps, request, self.policy):
            if not actor.caps.is_admin and not self.policy.non_admin_delete_enabled:
                raise AuthorizationError("Deleting requests is disabled.")
            self._check_owner_action(actor, request, "delete")
            raise AuthorizationError("You cannot delete this request.")
        self.gateway.soft_delete_request_by_id(request_id)
        self._audit(request_id, "deleted", actor, {})
        logger.info(f"Request {request_id} soft-deleted by {actor.user.id}")

    def review(self, actor: Actor, request_id: str, action: ReviewAction) -> Request:
        request = self.get(actor, request_id)
        reviewer = actor.profile or UserProfile(id=actor.user.id, email=actor.user.email)
        fields = apply_review(request, action.feasibility, action.review_details, reviewer, actor.caps)
        self.gateway.update_request_by_id(request_id, fields)
        self._audit(request_id, "reviewed", actor, {"feasibility": action.feasibility})
        logger.info(f"Request {request_id} reviewed by {actor.user.id}: {action.feasibility}")
        return self.get(actor, request_id)

    def set_completed(self, actor: Actor, request_id: str, completed: bool) -> Request:
        if not can_toggle_completed(actor.caps):
            raise AuthorizationError("Only admins can change the completed flag.")
        self.get(actor, request_id)
        self.gateway.update_request_by_id(request_id, {"completed": completed})
        self._audit(request_id, "completed_toggled", actor, {"completed": completed})
        return self.get(actor, request_id)

    def set_confirmed_shipment_date(self, actor: Actor, request_id: str, confirmed: Optional[str]) -> Request:
        if not can_set_confirmed_date(actor.caps):
            raise AuthorizationError("Only reviewers or admins can confirm shipment dates.")
        self.get(actor, request_id)
        self.gateway.update_request_by_id(request_id, {"confirmed_shipment_date": confirmed})
        self._audit(request_id, "confirmed_date_set", actor, {"confirmed_shipment_date": confirmed})
        return self.get(actor, request_id)
