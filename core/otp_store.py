"""
Redis-backed one-time passwords for email verification and password reset.

Codes are 6 digits, stored only as SHA-256 hashes under a TTL (SETEX), and
consumed on first successful use. Each code tolerates a limited number of
wrong guesses before it is discarded.

Keys:
    otp:{purpose}:{email}           -> sha256(code)
    otp:{purpose}:{email}:attempts  -> wrong guesses so far
"""
import hashlib
import hmac
import secrets
from enum import Enum
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import config
from core.exceptions import AppError
from core.observability import get_logger

logger = get_logger(__name__)

OTP_LENGTH = 6


class OTPPurpose(str, Enum):
    VERIFY_EMAIL = "verify"
    RESET_PASSWORD = "reset"


class OTPUnavailableError(AppError):
    """Redis is not reachable, so codes can be neither issued nor checked."""
    status_code = 503


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Random numeric code, zero padded."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def _hash(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class OTPStore:
    """Issues and verifies one-time codes."""

    def __init__(
        self,
        client: Optional[redis.Redis],
        max_attempts: int = None,
    ):
        self._client = client
        self.max_attempts = max_attempts or config.auth.otp_max_attempts

    @staticmethod
    def _key(purpose: OTPPurpose, email: str) -> str:
        return f"otp:{OTPPurpose(purpose).value}:{email.strip().lower()}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise OTPUnavailableError("Verification codes are temporarily unavailable", is_operational=True)
        return self._client

    async def issue(self, purpose: OTPPurpose, email: str, ttl_seconds: int) -> str:
        """
        Create a new code for ``email``, replacing any previous one.

        Returns:
            The plain code (to be emailed, never stored)
        """
        client = self._require_client()
        code = generate_otp()
        key = self._key(purpose, email)
        try:
            await client.setex(key, ttl_seconds, _hash(code))
            await client.delete(f"{key}:attempts")
        except (RedisError, OSError) as e:
            logger.error(f"Failed to store OTP: {e}", extra={"purpose": OTPPurpose(purpose).value})
            raise OTPUnavailableError("Verification codes are temporarily unavailable") from e
        return code

    async def verify(self, purpose: OTPPurpose, email: str, code: str) -> bool:
        """
        Check ``code`` and consume it on success.

        A wrong guess counts against the code; once ``max_attempts`` wrong
        guesses are reached the code is deleted and a new one must be issued.
        """
        client = self._require_client()
        key = self._key(purpose, email)
        attempts_key = f"{key}:attempts"

        try:
            stored = await client.get(key)
            if stored is None:
                return False

            if hmac.compare_digest(stored, _hash(str(code).strip())):
                await client.delete(key, attempts_key)
                return True

            attempts = await client.incr(attempts_key)
            ttl = await client.ttl(key)
            if ttl and ttl > 0:
                await client.expire(attempts_key, ttl)
            if attempts >= self.max_attempts:
                logger.warning(
                    "OTP discarded after too many wrong attempts",
                    extra={"purpose": OTPPurpose(purpose).value, "attempts": attempts},
                )
                await client.delete(key, attempts_key)
            return False
        except (RedisError, OSError) as e:
            logger.error(f"Failed to verify OTP: {e}", extra={"purpose": OTPPurpose(purpose).value})
            raise OTPUnavailableError("Verification codes are temporarily unavailable") from e

    async def discard(self, purpose: OTPPurpose, email: str) -> None:
        client = self._require_client()
        key = self._key(purpose, email)
        await client.delete(key, f"{key}:attempts")
