"""DuckDBStore user management methods."""
from __future__ import annotations

from typing import Any, Dict, Optional

from core.duckdb_constants import fetch_dict, new_id
from core.models import utcnow
from core.observability import get_logger

logger = get_logger(__name__)

USER_COLUMNS = (
    "id, tenant_id, email, username, password_hash, is_verified, "
    "failed_login_attempts, last_login_at, password_changed_at, created_at, updated_at"
)


class UsersMixin:

    async def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        tenant_id: Optional[str] = None,
        is_verified: bool = False,
    ) -> Dict[str, Any]:
        """Insert a user. Email uniqueness is checked by the caller."""
        now = utcnow()
        user_id = new_id()
        async with self.connection() as conn:
            conn.execute(f"""
                INSERT INTO users ({USER_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 0, NULL, NULL, ?, ?)
            """, [user_id, tenant_id, email.lower(), username, password_hash, is_verified, now, now])
            return fetch_dict(conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id]))

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get user by ID."""
        async with self.connection() as conn:
            return fetch_dict(conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id]))

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            return fetch_dict(conn.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE email = ?", [email.strip().lower()]
            ))

    async def mark_user_verified(self, user_id: str) -> None:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE users SET is_verified = TRUE, updated_at = ? WHERE id = ?",
                [utcnow(), user_id],
            )

    async def record_failed_login(self, user_id: str) -> int:
        """Increment the failed login counter and return the new value."""
        async with self.connection() as conn:
            conn.execute(
                "UPDATE users SET failed_login_attempts = failed_login_attempts + 1 WHERE id = ?",
                [user_id],
            )
            row = conn.execute("SELECT failed_login_attempts FROM users WHERE id = ?", [user_id]).fetchone()
        return row[0] if row else 0

    async def record_login(self, user_id: str) -> None:
        """Reset the failure counter and stamp ``last_login_at``."""
        async with self.connection() as conn:
            conn.execute(
                "UPDATE users SET failed_login_attempts = 0, last_login_at = ? WHERE id = ?",
                [utcnow(), user_id],
            )

    async def update_password(self, user_id: str, password_hash: str) -> None:
        now = utcnow()
        async with self.connection() as conn:
            conn.execute("""
                UPDATE users
                SET password_hash = ?, password_changed_at = ?, failed_login_attempts = 0, updated_at = ?
                WHERE id = ?
            """, [password_hash, now, now, user_id])

    async def set_user_tenant(self, user_id: str, tenant_id: Optional[str]) -> None:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE users SET tenant_id = ?, updated_at = ? WHERE id = ?",
                [tenant_id, utcnow(), user_id],
            )
        logger.info("User tenant changed", extra={"user_id": user_id, "tenant_id": tenant_id})
