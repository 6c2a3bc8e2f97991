"""DuckDBStore audit event methods."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from core.duckdb_constants import fetch_dicts, from_json, new_id, to_json
from core.models import utcnow


class EventsMixin:

    async def record_event(
        self,
        event_type: str,
        store_id: str,
        tenant_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> str:
        event_id = new_id()
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO events (id, store_id, tenant_id, type, payload, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [event_id, store_id, tenant_id, event_type, to_json(payload or {}), utcnow()])
        return event_id

    async def list_events(
        self,
        store_id: str,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Newest first."""
        conditions = ["store_id = ?"]
        params: list = [store_id]
        if event_type:
            conditions.append("type = ?")
            params.append(event_type)

        async with self.connection() as conn:
            rows = fetch_dicts(conn.execute(f"""
                SELECT id, store_id, tenant_id, type, payload, created_at
                FROM events
                WHERE {' AND '.join(conditions)}
                ORDER BY created_at DESC
                LIMIT ?
            """, params + [limit]))
        for row in rows:
            row["payload"] = from_json(row["payload"], {})
        return rows
