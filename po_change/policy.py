from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from po_change.models import AuthUser, Request, Role, UserProfile


@dataclass(frozen=True)
class AccessPolicy:
    # Accounts granted requester and reviewer capability regardless of their profile role
    override_emails: frozenset[str] = frozenset()
    non_admin_delete_enabled: bool = True
    admin_edit_override: bool = False
    # Customer whose reviewers also see requests filed by other departments
    home_customer: Optional[str] = None


@dataclass(frozen=True)
class Capabilities:
    roles: frozenset[Role]
    is_requester: bool
    is_reviewer: bool
    is_admin: bool

    @classmethod
    def for_user(cls, user: AuthUser | None, profile: UserProfile | None, policy: AccessPolicy) -> "Capabilities":
        roles = parse_roles(profile.role if profile else "")
        overridden = bool(user and user.email and user.email.lower() in policy.override_emails)
        return cls(
            roles=roles,
            is_requester=has_capability(roles, Role.REQUESTER) or overridden,
            is_reviewer=has_capability(roles, Role.REVIEWER) or has_capability(roles, Role.ADMIN) or overridden,
            is_admin=has_capability(roles, Role.ADMIN),
        )


@dataclass(frozen=True)
class Scope:
    """Row visibility handed to the persistence gateway."""

    all_rows: bool = False
    department: Optional[str] = None
    home_customer: Optional[str] = None


def parse_roles(text: str | None) -> frozenset[Role]:
    tags: set[Role] = set()
    for raw in (text or "").split(","):
        tag = raw.strip().lower()
        try:
            tags.add(Role(tag))
        except ValueError:
            continue
    return frozenset(tags)


def has_capability(roles: frozenset[Role], role: Role) -> bool:
    return role in roles


def can_create(profile: UserProfile | None) -> bool:
    return bool(profile and profile.department.strip())


def _owner_pending(user_id: str, request: Request) -> bool:
    return request.requester_id == user_id and request.status == "pending"


def can_edit(user_id: str, caps: Capabilities, request: Request, policy: AccessPolicy) -> bool:
    if request.deleted_at:
        return False
    if _owner_pending(user_id, request):
        return True
    return caps.is_admin and policy.admin_edit_override


def can_delete(user_id: str, caps: Capabilities, request: Request, policy: AccessPolicy) -> bool:
    if not caps.is_admin and not policy.non_admin_delete_enabled:
        return False
    return can_edit(user_id, caps, request, policy)


def can_review(caps: Capabilities) -> bool:
    return caps.is_reviewer or caps.is_admin


def can_toggle_completed(caps: Capabilities) -> bool:
    return caps.is_admin


def can_set_confirmed_date(caps: Capabilities) -> bool:
    return caps.is_reviewer or caps.is_admin


def scope_for(caps: Capabilities, profile: UserProfile | None, policy: AccessPolicy) -> Scope:
    if caps.is_admin:
        return Scope(all_rows=True)
    department = profile.department.strip() if profile else ""
    home = policy.home_customer if caps.is_reviewer else None
    return Scope(department=department or None, home_customer=home)


def in_scope(request: Request, scope: Scope) -> bool:
    """In-memory equivalent of the gateway's scoped query."""
    if request.deleted_at:
        return False
    if scope.all_rows:
        return True
    if scope.department and request.customer == scope.department and request.requesting_dept == scope.department:
        return True
    if scope.home_customer and request.customer == scope.home_customer:
        return True
    return False


def is_visible(caps: Capabilities, profile: UserProfile | None, request: Request, policy: AccessPolicy) -> bool:
    return in_scope(request, scope_for(caps, profile, policy))
