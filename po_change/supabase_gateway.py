"""Hosted backend: the `requests` and `user_profiles` tables behind Supabase.

Row-level security on the hosted tables is the authoritative access control;
every query here runs with the caller's JWT so those policies apply.
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger
from postgrest.exceptions import APIError
from supabase import Client, create_client

from po_change.errors import NotFoundError, SessionExpiredError, classify_remote_error
from po_change.models import AuthUser, Request, RequestFilters, RequestSort, UserProfile
from po_change.policy import Scope
from po_change.utils import now_utc_iso
from po_change.views import SORT_KEYS, sort_requests

REQUESTS_TABLE = "requests"
PROFILES_TABLE = "user_profiles"
SEARCHABLE = ("customer", "requesting_dept", "requester_name", "so_number")


def make_client(url: str, key: str, token: Optional[str] = None) -> Client:
    client = create_client(url, key)
    if token:
        client.postgrest.auth(token)
    return client


def _quoted(value: str) -> str:
    # Double-quoted PostgREST value; reserved characters inside stay literal
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _ilike_term(text: str) -> str:
    # PostgREST filter syntax reserves commas and parentheses
    return "".join(ch for ch in text if ch not in ",()").strip()


class SupabaseGateway:
    def __init__(self, client: Client) -> None:
        self.client = client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except APIError as exc:
            logger.warning(f"Supabase {action} failed: code={exc.code} message={exc.message}")
            raise classify_remote_error(exc, action) from exc

    def list_requests(
        self,
        scope: Scope,
        search: Optional[str] = None,
        filters: Optional[RequestFilters] = None,
        sort: Optional[RequestSort] = None,
    ) -> list[Request]:
        query = self.client.table(REQUESTS_TABLE).select("*").is_("deleted_at", "null")

        if not scope.all_rows:
            clauses = []
            if scope.department:
                department = _quoted(scope.department)
                clauses.append(f"and(customer.eq.{department},requesting_dept.eq.{department})")
            if scope.home_customer:
                clauses.append(f"customer.eq.{_quoted(scope.home_customer)}")
            if not clauses:
                return []
            query = query.or_(",".join(clauses))

        term = _ilike_term(search or "")
        if term:
            query = query.or_(",".join(f"{col}.ilike.%{term}%" for col in SEARCHABLE))

        if filters:
            for column, value in filters.model_dump(exclude_none=True).items():
                query = query.eq(column, value)

        sort = sort or RequestSort()
        column = sort.sort_by if sort.sort_by in SORT_KEYS and sort.sort_by != "priority" else "created_at"
        query = query.order(column, desc=sort.order == "desc").order("created_at", desc=True)

        response = self._execute(query, "request listing")
        rows = [Request.model_validate(row) for row in response.data or []]
        if sort.sort_by == "priority":
            # Stored as text; rank urgent < normal < low in process
            rows = sort_requests(rows, "priority", sort.order)
        return rows

    def get_request(self, request_id: str) -> Optional[Request]:
        query = self.client.table(REQUESTS_TABLE).select("*").eq("id", request_id).is_("deleted_at", "null")
        response = self._execute(query, "request lookup")
        rows = response.data or []
        return Request.model_validate(rows[0]) if rows else None

    def insert_request(self, payload: dict[str, Any]) -> Request:
        response = self._execute(self.client.table(REQUESTS_TABLE).insert(payload), "request creation")
        return Request.model_validate(response.data[0])

    def update_request_by_id(self, request_id: str, fields: dict[str, Any]) -> None:
        body = dict(fields, updated_at=now_utc_iso())
        query = self.client.table(REQUESTS_TABLE).update(body).eq("id", request_id).is_("deleted_at", "null")
        response = self._execute(query, "request update")
        if not response.data:
            raise NotFoundError("The request could not be found.", detail=request_id)

    def soft_delete_request_by_id(self, request_id: str) -> None:
        self.update_request_by_id(request_id, {"deleted_at": now_utc_iso()})

    def list_profiles(self) -> list[UserProfile]:
        response = self._execute(self.client.table(PROFILES_TABLE).select("*"), "profile listing")
        return [UserProfile.model_validate(row) for row in response.data or []]

    def list_recipients(self) -> list[UserProfile]:
        """Profiles with the email address held by Supabase auth.

        ``user_profiles`` has no email column, so each address is looked up with
        the auth admin API. Needs a client built with the service-role key.
        """
        recipients = []
        for profile in self.list_profiles():
            email = profile.email
            if not email:
                try:
                    response = self.client.auth.admin.get_user_by_id(profile.id)
                except Exception as exc:  # auth client raises its own error hierarchy
                    logger.warning(f"Could not look up the email of user {profile.id}: {exc}")
                    continue
                email = response.user.email if response and response.user else None
            if email:
                recipients.append(profile.model_copy(update={"email": email}))
        return recipients


class SupabaseIdentityProvider:
    def __init__(self, client: Client) -> None:
        self.client = client

    def current_user(self, token: Optional[str]) -> Optional[AuthUser]:
        if not token:
            return None
        try:
            response = self.client.auth.get_user(token)
        except Exception as exc:  # auth client raises its own error hierarchy
            logger.info(f"Token rejected by Supabase auth: {exc}")
            raise SessionExpiredError("Your session has expired. Please sign in again.") from exc
        if response is None or response.user is None:
            return None
        return AuthUser(id=response.user.id, email=response.user.email)

    def current_profile(self, user_id: str) -> Optional[UserProfile]:
        query = self.client.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1)
        try:
            response = query.execute()
        except APIError as exc:
            raise classify_remote_error(exc, "profile lookup") from exc
        rows = response.data or []
        return UserProfile.model_validate(rows[0]) if rows else None
