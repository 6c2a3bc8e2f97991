"""
Email/password authentication service.

Accounts are created unverified and must confirm their email with a one-time
code before they can log in. Password reset uses the same code mechanism and
never reveals whether an account exists.
"""
import secrets
from typing import Any, Dict, Optional, Tuple

from core.config import AuthConfig, config
from core.duckdb_store import DuckDBStore
from core.email_service import EmailService
from core.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from core.observability import get_logger
from core.otp_store import OTPPurpose, OTPStore
from core.security import TokenSigner, hash_password, issued_before, verify_password
from core.validators import (
    validate_email,
    validate_otp,
    validate_password,
    validate_password_confirm,
    validate_username,
)

logger = get_logger(__name__)

FORGOT_PASSWORD_MESSAGE = "If an account exists with this email, a reset link has been sent"


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """User fields safe to return to the client."""
    return {
        "id": user["id"],
        "email": user["email"],
        "username": user.get("username"),
        "tenantId": user.get("tenant_id"),
        "isVerified": bool(user.get("is_verified")),
        "lastLoginAt": iso(user.get("last_login_at")),
        "createdAt": iso(user.get("created_at")),
    }


class AuthService:
    """Signup, login, verification and password management."""

    def __init__(
        self,
        store: DuckDBStore,
        otp_store: OTPStore,
        email_service: EmailService,
        signer: TokenSigner,
        auth_config: AuthConfig = None,
    ):
        self.store = store
        self.otp_store = otp_store
        self.email_service = email_service
        self.signer = signer
        self.auth_config = auth_config or config.auth

    # ═══════════════════════════════════════════════════════════════════════════
    # TOKENS
    # ═══════════════════════════════════════════════════════════════════════════

    def issue_token(self, user: Dict[str, Any]) -> str:
        return self.signer.sign(user["id"])

    async def authenticate(self, token: str) -> Dict[str, Any]:
        """
        Resolve a token to its user.

        Raises:
            UnauthorizedError: Token invalid or expired, user gone, or the
                password changed after the token was issued
        """
        payload = self.signer.load(token)
        if payload is None:
            raise UnauthorizedError("Invalid token. Please log in again!")

        user = await self.store.get_user(payload["user_id"])
        if user is None:
            raise UnauthorizedError("The user belonging to this token no longer exists.")

        if issued_before(payload["issued_at"], user.get("password_changed_at")):
            raise UnauthorizedError("User recently changed password! Please log in again.")
        return user

    # ═══════════════════════════════════════════════════════════════════════════
    # SIGNUP & VERIFICATION
    # ═══════════════════════════════════════════════════════════════════════════

    async def signup(
        self,
        email: Optional[str],
        username: Optional[str],
        password: Optional[str],
        password_confirm: Optional[str],
    ) -> Dict[str, Any]:
        """
        Create an unverified user in a fresh tenant and email a verification code.

        Raises:
            ValidationError: Invalid input
            ConflictError: Email already registered
        """
        email = validate_email(email)
        username = validate_username(username)
        password = validate_password(password)
        validate_password_confirm(password, password_confirm)

        if await self.store.get_user_by_email(email):
            raise ConflictError("Email already in use")

        tenant = await self.store.create_tenant(f"{username}-{secrets.token_hex(3)}")
        user = await self.store.create_user(
            email=email,
            username=username,
            password_hash=hash_password(password, self.auth_config.bcrypt_rounds),
            tenant_id=tenant["id"],
        )
        logger.info("User signed up", extra={"user_id": user["id"], "tenant_id": tenant["id"]})

        await self._send_verification(email)
        return user

    async def _send_verification(self, email: str) -> None:
        code = await self.otp_store.issue(
            OTPPurpose.VERIFY_EMAIL, email, self.auth_config.verify_otp_ttl_seconds
        )
        if not await self.email_service.send_verification_otp(email, code):
            # Account stays usable; the user can request another code
            logger.warning("Verification email could not be sent", extra={"email": email})

    async def verify_email(self, email: Optional[str], otp: Optional[str]) -> Tuple[Dict[str, Any], str]:
        """
        Confirm an email with its code and log the user in.

        Returns:
            (user, token)
        """
        if not email or not otp:
            raise BadRequestError("Email and OTP are required")
        email = validate_email(email)

        user = await self.store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("No user found with that email")

        if not await self.otp_store.verify(OTPPurpose.VERIFY_EMAIL, email, validate_otp(otp)):
            raise BadRequestError("Invalid or expired OTP")

        await self.store.mark_user_verified(user["id"])
        await self.store.record_login(user["id"])
        user = await self.store.get_user(user["id"])
        logger.info("Email verified", extra={"user_id": user["id"]})
        return user, self.issue_token(user)

    async def send_otp(self, email: Optional[str]) -> None:
        """Email a fresh verification code to an existing user."""
        if not email:
            raise BadRequestError("Email is required")
        email = validate_email(email)

        if await self.store.get_user_by_email(email) is None:
            raise NotFoundError("User not found")
        await self._send_verification(email)

    # ═══════════════════════════════════════════════════════════════════════════
    # LOGIN
    # ═══════════════════════════════════════════════════════════════════════════

    async def login(self, email: Optional[str], password: Optional[str]) -> Tuple[Dict[str, Any], str]:
        if not email or not password:
            raise BadRequestError("Please provide email and password")

        user = await self.store.get_user_by_email(email)
        if user is None:
            raise UnauthorizedError("Incorrect email or password")

        if not verify_password(password, user["password_hash"]):
            attempts = await self.store.record_failed_login(user["id"])
            logger.warning(
                "Failed login attempt",
                extra={"user_id": user["id"], "failed_login_attempts": attempts},
            )
            raise UnauthorizedError("Incorrect email or password")

        allow_list = {e.strip().lower() for e in self.auth_config.allow_unverified_emails}
        if not user["is_verified"] and user["email"] not in allow_list:
            raise ForbiddenError(
                "Please verify your email before logging in. "
                "Check your email for the verification code."
            )

        await self.store.record_login(user["id"])
        user = await self.store.get_user(user["id"])
        logger.info("User logged in", extra={"user_id": user["id"]})
        return user, self.issue_token(user)

    # ═══════════════════════════════════════════════════════════════════════════
    # PASSWORDS
    # ═══════════════════════════════════════════════════════════════════════════

    async def forgot_password(self, email: Optional[str]) -> None:
        """Email a reset code if the account exists. Silent otherwise."""
        if not email:
            raise BadRequestError("Please provide your email address")
        email = validate_email(email)

        user = await self.store.get_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return

        code = await self.otp_store.issue(
            OTPPurpose.RESET_PASSWORD, email, self.auth_config.reset_otp_ttl_seconds
        )
        if not await self.email_service.send_password_reset_otp(email, code):
            logger.warning("Password reset email could not be sent", extra={"user_id": user["id"]})

    async def reset_password(
        self,
        email: Optional[str],
        otp: Optional[str],
        password: Optional[str],
        password_confirm: Optional[str],
    ) -> Tuple[Dict[str, Any], str]:
        """Set a new password with a reset code and log the user in."""
        if not email or not otp:
            raise BadRequestError("Email and OTP are required")
        email = validate_email(email)
        password = validate_password(password)
        validate_password_confirm(password, password_confirm)

        user = await self.store.get_user_by_email(email)
        if user is None or not await self.otp_store.verify(
            OTPPurpose.RESET_PASSWORD, email, validate_otp(otp)
        ):
            raise BadRequestError("Invalid or expired OTP")

        await self.store.update_password(user["id"], hash_password(password, self.auth_config.bcrypt_rounds))
        if not user["is_verified"]:
            # Receiving the reset code proves ownership of the address
            await self.store.mark_user_verified(user["id"])
        await self.store.record_login(user["id"])
        user = await self.store.get_user(user["id"])
        logger.info("Password reset", extra={"user_id": user["id"]})
        return user, self.issue_token(user)

    async def update_password(
        self,
        user: Dict[str, Any],
        current_password: Optional[str],
        new_password: Optional[str],
        password_confirm: Optional[str],
    ) -> Tuple[Dict[str, Any], str]:
        if not current_password:
            raise BadRequestError("Please provide your current password")
        if not verify_password(current_password, user["password_hash"]):
            raise UnauthorizedError("Your current password is incorrect")

        new_password = validate_password(new_password, "newPassword")
        validate_password_confirm(new_password, password_confirm)

        await self.store.update_password(user["id"], hash_password(new_password, self.auth_config.bcrypt_rounds))
        user = await self.store.get_user(user["id"])
        logger.info("Password updated", extra={"user_id": user["id"]})
        return user, self.issue_token(user)
