"""Shared constants and helpers for DuckDB store and repository mixins."""
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import config

# Database configuration
DB_PATH = config.database.path

# Query timeout settings
DEFAULT_QUERY_TIMEOUT = config.database.query_timeout  # seconds
LONG_QUERY_TIMEOUT = config.database.long_query_timeout  # for cascades and analytics scans


def new_id() -> str:
    """Primary key for locally owned rows (tenants, stores, users, jobs, events)."""
    return uuid.uuid4().hex


def to_json(value: Any) -> Optional[str]:
    """Serialize a JSON column value; None stays NULL."""
    if value is None:
        return None
    return json.dumps(value, default=str)


def from_json(value: Optional[str], default: Any = None) -> Any:
    if value is None or value == "":
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def fetch_dicts(cursor) -> List[Dict[str, Any]]:
    """All rows of an executed DuckDB cursor as column-name dicts."""
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def fetch_dict(cursor) -> Optional[Dict[str, Any]]:
    columns = [d[0] for d in cursor.description]
    row = cursor.fetchone()
    return dict(zip(columns, row)) if row else None


def upsert_row(conn, table: str, row: Dict[str, Any], immutable: frozenset) -> bool:
    """
    Create-or-update ``row`` in ``table`` keyed by ``row["id"]``.

    On update, columns in ``immutable`` keep their stored values. Must run
    while holding the store connection so check and write are atomic.

    Returns:
        True if the row was created, False if it was updated
    """
    exists = conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", [row["id"]]).fetchone()
    if exists:
        columns = [c for c in row if c not in immutable and c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            [row[c] for c in columns] + [row["id"]],
        )
        return False

    columns = list(row)
    placeholders = ", ".join("?" * len(columns))
    conn.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        [row[c] for c in columns],
    )
    return True
