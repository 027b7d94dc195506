import json
import os
import sqlite3
from typing import Any, Optional

from po_change.errors import NotFoundError
from po_change.models import AuditEntry, AuthUser, Request, RequestFilters, RequestSort, UserProfile
from po_change.policy import Scope
from po_change.utils import new_id, now_utc_iso

SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
  id TEXT PRIMARY KEY,
  request_date TEXT NOT NULL,
  request_type TEXT NOT NULL,
  category_of_request TEXT NOT NULL,
  priority TEXT NOT NULL,
  customer TEXT NOT NULL,
  so_number TEXT NOT NULL DEFAULT '',
  requesting_dept TEXT NOT NULL,
  requester_id TEXT,
  requester_name TEXT NOT NULL DEFAULT '',
  current_shipment_date TEXT,
  desired_shipment_date TEXT,
  confirmed_shipment_date TEXT,
  leadtime INTEGER,
  items_json TEXT NOT NULL DEFAULT '[]',
  shipping_method TEXT,
  reason_for_request TEXT NOT NULL DEFAULT '',
  request_details TEXT NOT NULL,
  feasibility TEXT,
  review_details TEXT,
  reviewing_dept TEXT,
  reviewer_id TEXT,
  reviewer_name TEXT,
  reviewed_at TEXT,
  status TEXT NOT NULL DEFAULT 'pending',
  completed INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  deleted_at TEXT
);

CREATE TABLE IF NOT EXISTS user_profiles (
  id TEXT PRIMARY KEY,
  email TEXT,
  full_name TEXT NOT NULL DEFAULT '',
  department TEXT NOT NULL DEFAULT '',
  role TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS audit_log (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  request_id TEXT NOT NULL,
  event_type TEXT NOT NULL,
  actor TEXT NOT NULL,
  details_json TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);
CREATE INDEX IF NOT EXISTS idx_audit_request_id ON audit_log(request_id);
"""

SORTABLE = {
    "current_shipment_date": "current_shipment_date",
    "request_date": "request_date",
    "created_at": "created_at",
    "so_number": "so_number COLLATE NOCASE",
    "customer": "customer COLLATE NOCASE",
    "priority": "CASE priority WHEN 'urgent' THEN 0 WHEN 'normal' THEN 1 ELSE 2 END",
}
SEARCHABLE = ("customer", "requesting_dept", "requester_name", "so_number")
ITEM_SEARCH = (
    "EXISTS (SELECT 1 FROM json_each(items_json) WHERE "
    "LOWER(json_extract(value, '$.item_code')) LIKE ? ESCAPE '\\' OR "
    "LOWER(json_extract(value, '$.item_name')) LIKE ? ESCAPE '\\')"
)


def like_pattern(text: str) -> str:
    """Case-folded LIKE pattern matching ``text`` as a plain substring."""
    escaped = text.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def row_to_request(row: sqlite3.Row) -> Request:
    data = dict(row)
    data["items"] = json.loads(data.pop("items_json") or "[]")
    data["completed"] = bool(data["completed"])
    return Request.model_validate(data)


def _to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    cols = dict(fields)
    if "items" in cols:
        cols["items_json"] = json.dumps([dict(i) for i in cols.pop("items") or []], ensure_ascii=False)
    if "completed" in cols:
        cols["completed"] = int(bool(cols["completed"]))
    return cols


class Storage:
    """SQLite implementation of the persistence gateway, used for development and tests.

    Unlike the hosted backend there is no row-level security here; the service's
    policy checks are the only guard.
    """

    def __init__(self, path: str) -> None:
        if os.path.dirname(path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
        self.path = path
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.executescript(SCHEMA)

    # requests

    def list_requests(
        self,
        scope: Scope,
        search: Optional[str] = None,
        filters: Optional[RequestFilters] = None,
        sort: Optional[RequestSort] = None,
    ) -> list[Request]:
        where = ["deleted_at IS NULL"]
        params: list[Any] = []

        if not scope.all_rows:
            clauses = []
            if scope.department:
                clauses.append("(customer = ? AND requesting_dept = ?)")
                params.extend([scope.department, scope.department])
            if scope.home_customer:
                clauses.append("customer = ?")
                params.append(scope.home_customer)
            if not clauses:
                return []
            where.append("(" + " OR ".join(clauses) + ")")

        if search and search.strip():
            needle = like_pattern(search)
            clauses = [f"LOWER({c}) LIKE ? ESCAPE '\\'" for c in SEARCHABLE] + [ITEM_SEARCH]
            where.append("(" + " OR ".join(clauses) + ")")
            params.extend([needle] * (len(SEARCHABLE) + 2))

        if filters:
            for column, value in filters.model_dump(exclude_none=True).items():
                where.append(f"{column} = ?")
                params.append(int(value) if isinstance(value, bool) else value)

        sort = sort or RequestSort()
        order_expr = SORTABLE.get(sort.sort_by, SORTABLE["created_at"])
        direction = "ASC" if sort.order == "asc" else "DESC"
        # Missing values sort last ascending and first descending, as sort_requests does
        order_by = f"{order_expr} IS NULL {direction}, {order_expr} {direction}, created_at DESC"
        sql = f"SELECT * FROM requests WHERE {' AND '.join(where)} ORDER BY {order_by}"

        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
            return [row_to_request(r) for r in rows]

    def get_request(self, request_id: str) -> Optional[Request]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM requests WHERE id = ? AND deleted_at IS NULL", (request_id,)
            ).fetchone()
            return row_to_request(row) if row else None

    def insert_request(self, payload: dict[str, Any]) -> Request:
        created = now_utc_iso()
        cols = _to_columns(payload)
        cols.update({"id": new_id(), "created_at": created, "updated_at": created})
        names = list(cols.keys())
        with self._conn() as conn:
            conn.execute(
                f"INSERT INTO requests({', '.join(names)}) VALUES({', '.join('?' for _ in names)})",
                [cols[n] for n in names],
            )
            row = conn.execute("SELECT * FROM requests WHERE id = ?", (cols["id"],)).fetchone()
            return row_to_request(row)

    def update_request_by_id(self, request_id: str, fields: dict[str, Any]) -> None:
        cols = _to_columns(fields)
        cols["updated_at"] = now_utc_iso()
        assignments = ", ".join(f"{name} = ?" for name in cols)
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE requests SET {assignments} WHERE id = ? AND deleted_at IS NULL",
                [*cols.values(), request_id],
            )
            if cur.rowcount == 0:
                raise NotFoundError("The request could not be found.", detail=request_id)

    def soft_delete_request_by_id(self, request_id: str) -> None:
        now = now_utc_iso()
        with self._conn() as conn:
            cur = conn.execute(
                "UPDATE requests SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now, now, request_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("The request could not be found.", detail=request_id)

    # profiles

    def upsert_profile(self, profile: UserProfile) -> None:
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO user_profiles(id, email, full_name, department, role) VALUES(?,?,?,?,?) "
                "ON CONFLICT(id) DO UPDATE SET email = excluded.email, full_name = excluded.full_name, "
                "department = excluded.department, role = excluded.role",
                (profile.id, profile.email, profile.full_name, profile.department, profile.role),
            )

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM user_profiles WHERE id = ?", (user_id,)).fetchone()
            return UserProfile.model_validate(dict(row)) if row else None

    def list_profiles(self) -> list[UserProfile]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM user_profiles ORDER BY full_name").fetchall()
            return [UserProfile.model_validate(dict(r)) for r in rows]

    # audit

    def write_audit(self, request_id: str, event_type: str, actor: str, details: dict) -> None:
        created = now_utc_iso()
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO audit_log(request_id, event_type, actor, details_json, created_at) VALUES(?,?,?,?,?)",
                (request_id, event_type, actor, json.dumps(details, ensure_ascii=False, default=str), created),
            )

    def list_audit(self, request_id: str) -> list[AuditEntry]:
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT id, request_id, event_type, actor, details_json, created_at FROM audit_log "
                "WHERE request_id = ? ORDER BY id ASC",
                (request_id,),
            ).fetchall()
        out = []
        for r in rows:
            data = dict(r)
            data["details"] = json.loads(data.pop("details_json"))
            out.append(AuditEntry.model_validate(data))
        return out


class SqliteIdentityProvider:
    """Development identity: the bearer token is the user's profile id."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def current_user(self, token: Optional[str]) -> Optional[AuthUser]:
        if not token:
            return None
        profile = self.storage.get_profile(token)
        if profile is None:
            return None
        return AuthUser(id=profile.id, email=profile.email)

    def current_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.storage.get_profile(user_id)
