"""
Password hashing and signed auth tokens.

Passwords are hashed with bcrypt. Auth tokens are itsdangerous
``URLSafeTimedSerializer`` payloads carrying the user id; they are sent back
either as the ``token`` cookie or as an ``Authorization: Bearer`` header.
"""
import re
import secrets
from datetime import datetime
from typing import Any, Dict, Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from core.config import config
from core.observability import get_logger

logger = get_logger(__name__)

TOKEN_SALT = "auth-token"

_PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "one lowercase letter"),
    (re.compile(r"[A-Z]"), "one uppercase letter"),
    (re.compile(r"\d"), "one number"),
    (re.compile(r"[^A-Za-z0-9]"), "one special character"),
)
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, rounds: int = None) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds or config.auth.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a stored bcrypt hash."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def password_problems(password: str) -> Optional[str]:
    """
    Describe what a password is missing, or None if it is strong enough.

    Requires 8+ characters with upper and lower case letters, a number and a
    special character.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    missing = [label for pattern, label in _PASSWORD_RULES if not pattern.search(password)]
    if missing:
        return "Password must contain at least " + ", ".join(missing)
    return None


class TokenSigner:
    """Signs and verifies auth tokens."""

    def __init__(self, secret_key: str = None, max_age: int = None):
        secret_key = secret_key or config.auth.secret_key
        if not secret_key:
            # Tokens stop validating on restart; production refuses to start without SECRET_KEY
            logger.warning("SECRET_KEY is not set, using a random per-process key")
            secret_key = secrets.token_urlsafe(32)
        self.max_age = max_age or config.auth.token_max_age_seconds
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    def sign(self, user_id: str) -> str:
        return self._serializer.dumps({"user_id": user_id})

    def load(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        Return the token payload, or None if it is missing, forged or expired.

        The payload gains ``issued_at`` (naive UTC, whole seconds) so callers
        can reject tokens signed before a password change.
        """
        if not token:
            return None
        try:
            payload, issued_at = self._serializer.loads(token, max_age=self.max_age, return_timestamp=True)
        except SignatureExpired:
            logger.debug("Auth token expired")
            return None
        except BadSignature:
            logger.debug("Auth token signature invalid")
            return None
        if not isinstance(payload, dict) or not payload.get("user_id"):
            return None
        payload["issued_at"] = issued_at.replace(tzinfo=None)
        return payload


def issued_before(token_issued_at: datetime, changed_at: Optional[datetime]) -> bool:
    """Whether a token predates ``changed_at`` (compared at second precision)."""
    if changed_at is None:
        return False
    return token_issued_at < changed_at.replace(microsecond=0)
