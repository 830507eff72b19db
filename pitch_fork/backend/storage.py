import copy
import os
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .models import utc_now

try:
    import psycopg
    from psycopg import sql
    from psycopg.rows import dict_row
    from psycopg.types.json import Jsonb
except Exception:  # pragma: no cover - only relevant when Postgres is enabled.
    psycopg = None
    sql = None
    dict_row = None
    Jsonb = None


TABLE_COLUMNS: Dict[str, tuple] = {
    "users": ("id", "email", "password_hash", "name", "created_at"),
    "user_profiles": (
        "id", "user_id", "user_type", "first_name", "last_name", "phone", "company_name",
        "created_at", "updated_at",
    ),
    "companies": (
        "id", "name", "url", "industry", "description", "address", "country",
        "contact_name_1", "title_1", "email_1", "phone_1",
        "contact_name_2", "title_2", "email_2", "phone_2",
        "funding_sought", "funding_stage", "serviceable_market_size", "key_team_members",
        "revenue", "valuation", "status", "overall_score", "recommendation",
        "date_submitted", "created_at", "updated_at",
    ),
    "documents": (
        "id", "company_id", "filename", "document_name", "description", "path",
        "size_bytes", "content_type", "date_added",
    ),
    "analysis": (
        "id", "company_id", "investor_user_id", "status", "recommendation",
        "recommendation_reason", "overall_score", "comments", "history", "analyzed_at",
        "created_at", "updated_at",
    ),
    "analysis_reports": (
        "id", "analysis_id", "company_id", "report_type", "file_name", "file_path",
        "generated_by", "generated_at",
    ),
    "investor_details": (
        "id", "user_id", "name", "email", "firm_name", "focus_areas", "comment",
        "investment_criteria_doc", "is_active", "created_at", "updated_at",
    ),
    "prompts": ("id", "prompt_name", "prompt_detail", "preferred_llm", "created_at", "updated_at"),
    "messages": (
        "id", "company_id", "sender_type", "sender_id", "recipient_type", "recipient_id",
        "message_title", "message_detail", "message_status", "date_sent",
    ),
    "extracted_data": ("id", "file_path", "extracted_info", "created_at"),
    "analysis_jobs": (
        "id", "kind", "company_id", "analysis_id", "analysis_type", "requested_by", "status",
        "progress", "result", "error", "created_at", "updated_at",
    ),
}

JSON_COLUMNS = {
    ("extracted_data", "extracted_info"),
    ("analysis_jobs", "result"),
}

# Columns stamped with the current time when an insert leaves them empty.
TIMESTAMP_COLUMNS = {"created_at", "updated_at", "date_added", "date_sent", "generated_at", "date_submitted"}

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        name TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        user_type TEXT NOT NULL,
        first_name TEXT NULL,
        last_name TEXT NULL,
        phone TEXT NULL,
        company_name TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS companies (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        url TEXT NULL,
        industry TEXT NULL,
        description TEXT NULL,
        address TEXT NULL,
        country TEXT NULL,
        contact_name_1 TEXT NULL,
        title_1 TEXT NULL,
        email_1 TEXT NULL,
        phone_1 TEXT NULL,
        contact_name_2 TEXT NULL,
        title_2 TEXT NULL,
        email_2 TEXT NULL,
        phone_2 TEXT NULL,
        funding_sought TEXT NULL,
        funding_stage TEXT NULL,
        serviceable_market_size TEXT NULL,
        key_team_members TEXT NULL,
        revenue TEXT NULL,
        valuation TEXT NULL,
        status TEXT NOT NULL DEFAULT 'Submitted',
        overall_score DOUBLE PRECISION NULL,
        recommendation TEXT NULL,
        date_submitted TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
        filename TEXT NOT NULL,
        document_name TEXT NULL,
        description TEXT NULL,
        path TEXT NOT NULL,
        size_bytes BIGINT NULL,
        content_type TEXT NULL,
        date_added TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis (
        id TEXT PRIMARY KEY,
        company_id TEXT NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
        investor_user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        recommendation TEXT NULL,
        recommendation_reason TEXT NULL,
        overall_score DOUBLE PRECISION NULL,
        comments TEXT NULL,
        history TEXT NULL,
        analyzed_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_reports (
        id TEXT PRIMARY KEY,
        analysis_id TEXT NOT NULL REFERENCES analysis(id) ON DELETE CASCADE,
        company_id TEXT NOT NULL,
        report_type TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_path TEXT NOT NULL,
        generated_by TEXT NULL,
        generated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS investor_details (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL UNIQUE,
        name TEXT NULL,
        email TEXT NULL,
        firm_name TEXT NULL,
        focus_areas TEXT NULL,
        comment TEXT NULL,
        investment_criteria_doc TEXT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prompts (
        id TEXT PRIMARY KEY,
        prompt_name TEXT NOT NULL,
        prompt_detail TEXT NOT NULL,
        preferred_llm TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        company_id TEXT NULL,
        sender_type TEXT NOT NULL,
        sender_id TEXT NULL,
        recipient_type TEXT NOT NULL,
        recipient_id TEXT NULL,
        message_title TEXT NOT NULL,
        message_detail TEXT NULL,
        message_status TEXT NOT NULL DEFAULT 'unread',
        date_sent TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS extracted_data (
        id TEXT PRIMARY KEY,
        file_path TEXT NOT NULL,
        extracted_info JSONB NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_jobs (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        company_id TEXT NULL,
        analysis_id TEXT NULL,
        analysis_type TEXT NULL,
        requested_by TEXT NULL,
        status TEXT NOT NULL,
        progress INTEGER NOT NULL CHECK (progress BETWEEN 0 AND 100),
        result JSONB NULL,
        error TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_company ON documents (company_id, date_added DESC)",
    "CREATE INDEX IF NOT EXISTS idx_analysis_company_investor ON analysis (company_id, investor_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_reports_company ON analysis_reports (company_id, generated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_messages_company ON messages (company_id, date_sent DESC)",
)


class DuplicateRecordError(ValueError):
    pass


class NotFoundError(LookupError):
    pass


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


def _check_columns(table: str, columns: Iterable[str]) -> None:
    known = TABLE_COLUMNS.get(table)
    if known is None:
        raise ValueError(f"Unknown table: {table}")
    unknown = sorted(set(columns) - set(known))
    if unknown:
        raise ValueError(f"Unknown columns for {table}: {', '.join(unknown)}")


def _prepare_insert(table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    _check_columns(table, values.keys())
    now = utc_now()
    row = dict(values)
    row.setdefault("id", str(uuid.uuid4()))
    for column in TABLE_COLUMNS[table]:
        if column in TIMESTAMP_COLUMNS and row.get(column) is None:
            row[column] = now
    return row


def _sort_rows(rows: List[dict], column: str, descending: bool) -> List[dict]:
    """Order by one column with None last in both directions, like NULLS LAST."""
    present = [row for row in rows if row.get(column) is not None]
    missing = [row for row in rows if row.get(column) is None]
    present.sort(key=lambda row: row[column], reverse=descending)
    return present + missing


class RecordStore(Protocol):
    storage_name: str

    def insert(self, table: str, values: Dict[str, Any]) -> dict:
        pass

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[dict]:
        pass

    def get(self, table: str, record_id: str) -> Optional[dict]:
        pass

    def find(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        iexact: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        pass

    def find_one(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        iexact: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> Optional[dict]:
        pass

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> dict:
        pass

    def delete(self, table: str, record_id: str) -> bool:
        pass


class InMemoryRecordStore:
    storage_name = "memory"

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, dict]] = {table: {} for table in TABLE_COLUMNS}
        self._lock = threading.Lock()

    def _check_unique(self, table: str, row: dict) -> None:
        if table == "users":
            email = (row.get("email") or "").lower()
            if any((other.get("email") or "").lower() == email for other in self._tables[table].values()):
                raise DuplicateRecordError(f"A user with email {row.get('email')} already exists.")
        if table == "investor_details":
            user_id = row.get("user_id")
            if any(other.get("user_id") == user_id for other in self._tables[table].values()):
                raise DuplicateRecordError("Investor details already exist for this user.")

    def _materialize(self, table: str, values: Dict[str, Any]) -> dict:
        row = {column: None for column in TABLE_COLUMNS[table]}
        row.update(_prepare_insert(table, values))
        return row

    def insert(self, table: str, values: Dict[str, Any]) -> dict:
        return self.insert_many(table, [values])[0]

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[dict]:
        prepared = [self._materialize(table, values) for values in rows]
        with self._lock:
            for row in prepared:
                if row["id"] in self._tables[table]:
                    raise DuplicateRecordError(f"{table} row {row['id']} already exists.")
                self._check_unique(table, row)
            for row in prepared:
                self._tables[table][row["id"]] = copy.deepcopy(row)
        return prepared

    def get(self, table: str, record_id: str) -> Optional[dict]:
        _check_columns(table, ())
        with self._lock:
            row = self._tables[table].get(record_id)
            return copy.deepcopy(row) if row is not None else None

    def find(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        iexact: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        filters = filters or {}
        iexact = iexact or {}
        _check_columns(table, list(filters) + list(iexact) + ([order_by] if order_by else []))

        with self._lock:
            rows = [copy.deepcopy(row) for row in self._tables[table].values()]

        matched = []
        for row in rows:
            if any(row.get(column) != value for column, value in filters.items()):
                continue
            if any(
                (row.get(column) or "").lower() != (value or "").lower()
                for column, value in iexact.items()
            ):
                continue
            matched.append(row)

        if order_by:
            matched = _sort_rows(matched, order_by, descending)
        if limit is not None:
            matched = matched[:limit]
        return matched

    def find_one(self, table: str, **kwargs) -> Optional[dict]:
        rows = self.find(table, limit=1, **kwargs)
        return rows[0] if rows else None

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> dict:
        _check_columns(table, values.keys())
        with self._lock:
            row = self._tables[table].get(record_id)
            if row is None:
                raise KeyError(f"{table} row {record_id} not found.")
            row.update(copy.deepcopy(values))
            if "updated_at" in row:
                row["updated_at"] = utc_now()
            return copy.deepcopy(row)

    def delete(self, table: str, record_id: str) -> bool:
        _check_columns(table, ())
        with self._lock:
            return self._tables[table].pop(record_id, None) is not None


class PostgresRecordStore:
    storage_name = "postgres"

    def __init__(self, database_url: str) -> None:
        if psycopg is None or Jsonb is None:
            raise RuntimeError("psycopg is required when DATABASE_URL is set.")
        self._database_url = normalize_database_url(database_url)
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True, row_factory=dict_row)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)

    def _adapt(self, table: str, column: str, value: Any) -> Any:
        if (table, column) in JSON_COLUMNS and value is not None:
            return Jsonb(value)
        return value

    def _where(self, filters: Dict[str, Any], iexact: Dict[str, str]):
        clauses = []
        values: List[Any] = []
        for column, value in filters.items():
            if value is None:
                clauses.append(sql.SQL("{} IS NULL").format(sql.Identifier(column)))
                continue
            clauses.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            values.append(value)
        for column, value in iexact.items():
            clauses.append(sql.SQL("LOWER({}) = LOWER(%s)").format(sql.Identifier(column)))
            values.append(value)
        if not clauses:
            return sql.SQL(""), values
        return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), values

    def insert(self, table: str, values: Dict[str, Any]) -> dict:
        return self.insert_many(table, [values])[0]

    def insert_many(self, table: str, rows: List[Dict[str, Any]]) -> List[dict]:
        inserted: List[dict] = []
        with self._connect() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    for values in rows:
                        row = _prepare_insert(table, values)
                        columns = list(row.keys())
                        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
                            sql.Identifier(table),
                            sql.SQL(", ").join(sql.Identifier(column) for column in columns),
                            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
                        )
                        try:
                            cur.execute(query, [self._adapt(table, c, row[c]) for c in columns])
                        except psycopg.errors.UniqueViolation as exc:
                            raise DuplicateRecordError(f"{table} row already exists.") from exc
                        inserted.append(cur.fetchone())
        return inserted

    def get(self, table: str, record_id: str) -> Optional[dict]:
        _check_columns(table, ())
        query = sql.SQL("SELECT * FROM {} WHERE id = %s").format(sql.Identifier(table))
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (record_id,))
                return cur.fetchone()

    def find(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        iexact: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[dict]:
        filters = filters or {}
        iexact = iexact or {}
        _check_columns(table, list(filters) + list(iexact) + ([order_by] if order_by else []))

        where, values = self._where(filters, iexact)
        query = sql.SQL("SELECT * FROM {}").format(sql.Identifier(table)) + where
        if order_by:
            direction = sql.SQL(" DESC NULLS LAST") if descending else sql.SQL(" ASC NULLS LAST")
            query += sql.SQL(" ORDER BY {}").format(sql.Identifier(order_by)) + direction
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            values.append(int(limit))

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, values)
                return list(cur.fetchall())

    def find_one(self, table: str, **kwargs) -> Optional[dict]:
        rows = self.find(table, limit=1, **kwargs)
        return rows[0] if rows else None

    def update(self, table: str, record_id: str, values: Dict[str, Any]) -> dict:
        _check_columns(table, values.keys())
        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in values
        ]
        params = [self._adapt(table, column, value) for column, value in values.items()]
        if "updated_at" in TABLE_COLUMNS[table]:
            assignments.append(sql.SQL("updated_at = NOW()"))
        if not assignments:
            row = self.get(table, record_id)
            if row is None:
                raise KeyError(f"{table} row {record_id} not found.")
            return row

        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(assignments),
        )
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params + [record_id])
                row = cur.fetchone()
                if row is None:
                    raise KeyError(f"{table} row {record_id} not found.")
                return row

    def delete(self, table: str, record_id: str) -> bool:
        _check_columns(table, ())
        query = sql.SQL("DELETE FROM {} WHERE id = %s").format(sql.Identifier(table))
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, (record_id,))
                return cur.rowcount > 0


def build_record_store() -> RecordStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresRecordStore(database_url=database_url)
    return InMemoryRecordStore()
