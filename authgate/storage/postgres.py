from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import psycopg
from psycopg import errors, sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from authgate.logging import get_logger
from authgate.storage.errors import ConstraintViolation, StoreError
from authgate.storage.models import (
    IMMUTABLE_USER_FIELDS,
    USER_FIELDS,
    Role,
    User,
    utcnow,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS app_user (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    password TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    phone_number BIGINT NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    address TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    created_by TEXT REFERENCES app_user (id) ON DELETE SET NULL,
    modified_by TEXT REFERENCES app_user (id) ON DELETE SET NULL,
    CONSTRAINT app_user_email_key UNIQUE (email),
    CONSTRAINT app_user_phone_number_key UNIQUE (phone_number)
)
"""

_CONSTRAINT_FIELDS = {
    "app_user_pkey": "id",
    "app_user_email_key": "email",
    "app_user_phone_number_key": "phone_number",
}

# Column order used for inserts
_COLUMNS: Tuple[str, ...] = (
    "id",
    "name",
    "email",
    "password",
    "role",
    "phone_number",
    "is_active",
    "address",
    "created_at",
    "updated_at",
    "created_by",
    "modified_by",
)


def _db_value(key: str, value: Any) -> Any:
    if key == "role" and value is not None:
        return Role.parse(value).value
    if key == "email" and isinstance(value, str):
        return value.strip().lower()
    return value


def _where(flt: Mapping[str, Any]) -> Tuple[sql.Composable, List[Any]]:
    unknown = set(flt) - USER_FIELDS
    if unknown:
        raise ValueError(f"unknown user field(s): {', '.join(sorted(unknown))}")
    if not flt:
        return sql.SQL("TRUE"), []
    clauses = [
        sql.SQL("{} = %s").format(sql.Identifier(key)) for key in flt
    ]
    return sql.SQL(" AND ").join(clauses), [_db_value(k, v) for k, v in flt.items()]


def _set_clause(patch: Mapping[str, Any]) -> Tuple[sql.Composable, List[Any]]:
    unknown = set(patch) - USER_FIELDS
    if unknown:
        raise ValueError(f"unknown user field(s): {', '.join(sorted(unknown))}")
    frozen = set(patch) & IMMUTABLE_USER_FIELDS
    if frozen:
        raise ValueError(f"user field(s) cannot be updated: {', '.join(sorted(frozen))}")
    values: Dict[str, Any] = {k: _db_value(k, v) for k, v in patch.items()}
    values["updated_at"] = utcnow()
    assignments = [
        sql.SQL("{} = %s").format(sql.Identifier(key)) for key in values
    ]
    return sql.SQL(", ").join(assignments), list(values.values())


def _row_to_user(row: Dict[str, Any]) -> User:
    return User.from_record(row)


class PostgresStore:
    """Postgres-backed user store over a shared connection pool."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table if it is missing."""
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def _run(self, query: sql.Composable | str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        try:
            with self._connect() as conn:
                cur = conn.execute(query, params)
                return cur.fetchall() if cur.description else []
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None) or ""
            field = _CONSTRAINT_FIELDS.get(constraint, constraint or "unknown")
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc
        except psycopg.Error as exc:
            self.logger.error("postgres_query_failed", error=str(exc))
            raise StoreError(str(exc)) from exc

    def insert(self, user: User) -> User:
        query = sql.SQL("INSERT INTO app_user ({}) VALUES ({}) RETURNING *").format(
            sql.SQL(", ").join(sql.Identifier(c) for c in _COLUMNS),
            sql.SQL(", ").join(sql.Placeholder() for _ in _COLUMNS),
        )
        rows = self._run(query, [_db_value(c, getattr(user, c)) for c in _COLUMNS])
        return _row_to_user(rows[0])

    def find_matching(self, flt: Mapping[str, Any]) -> List[User]:
        clause, params = _where(flt)
        query = sql.SQL("SELECT * FROM app_user WHERE {} ORDER BY created_at").format(clause)
        return [_row_to_user(row) for row in self._run(query, params)]

    def update_matching(self, flt: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
        where_clause, where_params = _where(flt)
        set_clause, set_params = _set_clause(patch)
        query = sql.SQL("UPDATE app_user SET {} WHERE {} RETURNING id").format(
            set_clause, where_clause
        )
        return len(self._run(query, set_params + where_params))

    def find_by_id(self, user_id: str) -> Optional[User]:
        rows = self._run("SELECT * FROM app_user WHERE id = %s", (user_id,))
        return _row_to_user(rows[0]) if rows else None

    def update_by_id(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        set_clause, set_params = _set_clause(patch)
        query = sql.SQL("UPDATE app_user SET {} WHERE id = %s RETURNING *").format(set_clause)
        rows = self._run(query, set_params + [user_id])
        return _row_to_user(rows[0]) if rows else None

    def close(self) -> None:
        self.pool.close()
