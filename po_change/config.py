from dataclasses import dataclass
import os
from dotenv import load_dotenv

load_dotenv()

def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")

def _csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())

@dataclass(frozen=True)
class Settings:
    backend: str
    sqlite_path: str
    supabase_url: str | None
    supabase_key: str | None
    supabase_service_role_key: str | None
    resend_api_key: str | None
    from_email: str
    from_name: str
    app_url: str
    role_override_emails: tuple[str, ...]
    non_admin_delete_enabled: bool
    admin_edit_override: bool
    home_customer: str | None
    priority_window: int
    log_level: str

def get_settings() -> Settings:
    return Settings(
        backend=os.getenv("BACKEND", "sqlite").lower(),
        sqlite_path=os.getenv("SQLITE_PATH", "data/po_change.db"),
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_key=os.getenv("SUPABASE_KEY") or None,
        supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        from_email=os.getenv("FROM_EMAIL", "noreply@example.com"),
        from_name=os.getenv("FROM_NAME", "PO Change Requests"),
        app_url=os.getenv("APP_URL", "http://localhost:3000").rstrip("/"),
        role_override_emails=_csv("ROLE_OVERRIDE_EMAILS"),
        non_admin_delete_enabled=_flag("NON_ADMIN_DELETE_ENABLED", "true"),
        admin_edit_override=_flag("ADMIN_EDIT_OVERRIDE", "false"),
        home_customer=os.getenv("HOME_CUSTOMER") or None,
        priority_window=int(os.getenv("PRIORITY_WINDOW", "5")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
