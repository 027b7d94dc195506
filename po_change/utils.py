import re
import uuid
from datetime import datetime, timezone

EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
PHONE_RE = re.compile(r"\b(\+?\d[\d\s\-()]{7,}\d)\b")

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def now_utc_iso() -> str:
    return now_utc().isoformat()

def new_id() -> str:
    return str(uuid.uuid4())

def redact_pii(text: str) -> str:
    # Redact emails and phone-like strings before they reach logs
    text = EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    text = PHONE_RE.sub("[REDACTED_PHONE]", text)
    return text

def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()

def is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
