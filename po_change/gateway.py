"""Interfaces of the collaborators the request service talks to."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from po_change.models import AuthUser, Request, RequestFilters, RequestSort, UserProfile
from po_change.policy import Scope


class PersistenceGateway(Protocol):
    def list_requests(
        self,
        scope: Scope,
        search: Optional[str] = None,
        filters: Optional[RequestFilters] = None,
        sort: Optional[RequestSort] = None,
    ) -> list[Request]: ...

    def get_request(self, request_id: str) -> Optional[Request]: ...

    def insert_request(self, payload: dict[str, Any]) -> Request: ...

    def update_request_by_id(self, request_id: str, fields: dict[str, Any]) -> None: ...

    def soft_delete_request_by_id(self, request_id: str) -> None: ...

    def list_profiles(self) -> list[UserProfile]: ...


class IdentityProvider(Protocol):
    def current_user(self, token: Optional[str]) -> Optional[AuthUser]: ...

    def current_profile(self, user_id: str) -> Optional[UserProfile]: ...
