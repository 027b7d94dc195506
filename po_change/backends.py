"""Wires a persistence gateway and identity provider for the configured backend."""

from __future__ import annotations

from typing import Optional

from po_change.config import Settings
from po_change.gateway import IdentityProvider
from po_change.models import UserProfile
from po_change.policy import AccessPolicy
from po_change.service import RequestService
from po_change.storage import SqliteIdentityProvider, Storage
from po_change.supabase_gateway import SupabaseGateway, SupabaseIdentityProvider, make_client


def policy_from_settings(settings: Settings) -> AccessPolicy:
    return AccessPolicy(
        override_emails=frozenset(settings.role_override_emails),
        non_admin_delete_enabled=settings.non_admin_delete_enabled,
        admin_edit_override=settings.admin_edit_override,
        home_customer=settings.home_customer,
    )


class SqliteBackend:
    def __init__(self, settings: Settings) -> None:
        self.policy = policy_from_settings(settings)
        self.storage = Storage(settings.sqlite_path)

    def identity(self, token: Optional[str]) -> IdentityProvider:
        return SqliteIdentityProvider(self.storage)

    def service(self, token: Optional[str]) -> RequestService:
        return RequestService(self.storage, self.policy, audit=self.storage)

    def recipients(self) -> list[UserProfile]:
        return self.storage.list_profiles()


class SupabaseBackend:
    def __init__(self, settings: Settings) -> None:
        if not settings.supabase_url or not settings.supabase_key or not settings.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL, SUPABASE_KEY and SUPABASE_SERVICE_ROLE_KEY must be set when BACKEND=supabase"
            )
        self.settings = settings
        self.policy = policy_from_settings(settings)

    def _client(self, token: Optional[str] = None):
        return make_client(self.settings.supabase_url, self.settings.supabase_key, token)

    def identity(self, token: Optional[str]) -> IdentityProvider:
        return SupabaseIdentityProvider(self._client(token))

    def service(self, token: Optional[str]) -> RequestService:
        return RequestService(SupabaseGateway(self._client(token)), self.policy)

    def recipients(self) -> list[UserProfile]:
        # Service-role client: bypasses RLS on profiles and may call the auth admin API
        admin = make_client(self.settings.supabase_url, self.settings.supabase_service_role_key)
        return SupabaseGateway(admin).list_recipients()


def build_backend(settings: Settings):
    if settings.backend == "supabase":
        return SupabaseBackend(settings)
    if settings.backend == "sqlite":
        return SqliteBackend(settings)
    raise RuntimeError(f"Unknown BACKEND '{settings.backend}' (expected 'sqlite' or 'supabase')")
