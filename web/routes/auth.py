"""
Authentication routes: signup, email verification, login and passwords.

Successful logins answer with ``{status, token, data:{user}}`` and also set
the token as an httpOnly cookie.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from web.config import AUTH_RATE_LIMIT, COOKIE_MAX_AGE, COOKIE_NAME, COOKIE_SAMESITE, COOKIE_SECURE
from web.routes.api._deps import get_auth_service, get_current_user, limiter
from web.schemas import (
    EmailOtpRequest,
    EmailRequest,
    LoginRequest,
    ResetPasswordRequest,
    SignupRequest,
    UpdatePasswordRequest,
)
from web.services.auth_service import FORGOT_PASSWORD_MESSAGE, public_user

router = APIRouter(prefix="/auth", tags=["auth"])


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
    )


def token_response(response: Response, user: Dict[str, Any], token: str) -> Dict[str, Any]:
    """Set the cookie and build the login body."""
    set_auth_cookie(response, token)
    return {"status": "success", "token": token, "data": {"user": public_user(user)}}


# ─── Signup & verification ───────────────────────────────────────────────────

@router.post("/signup", status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
async def signup(request: Request, body: SignupRequest, auth=Depends(get_auth_service)):
    """Create an unverified account and email a verification code."""
    user = await auth.signup(body.email, body.username, body.password, body.passwordConfirm)
    return {
        "status": "success",
        "message": "OTP sent to your email. Please verify your account.",
        "data": {"user": public_user(user)},
    }


@router.post("/verify-email")
@limiter.limit(AUTH_RATE_LIMIT)
async def verify_email(
    request: Request,
    response: Response,
    body: EmailOtpRequest,
    auth=Depends(get_auth_service),
):
    user, token = await auth.verify_email(body.email, body.otp)
    return token_response(response, user, token)


# ─── Session ─────────────────────────────────────────────────────────────────

@router.post("/login")
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, response: Response, body: LoginRequest, auth=Depends(get_auth_service)):
    user, token = await auth.login(body.email, body.password)
    return token_response(response, user, token)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(COOKIE_NAME, httponly=True, secure=COOKIE_SECURE, samesite=COOKIE_SAMESITE)
    return {"status": "success", "message": "Successfully logged out"}


@router.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return {"status": "success", "data": {"user": public_user(user)}}


# ─── Passwords ───────────────────────────────────────────────────────────────

@router.post("/forgot-password")
@limiter.limit(AUTH_RATE_LIMIT)
async def forgot_password(request: Request, body: EmailRequest, auth=Depends(get_auth_service)):
    """Same answer whether or not the account exists."""
    await auth.forgot_password(body.email)
    return {"status": "success", "message": FORGOT_PASSWORD_MESSAGE}


@router.post("/reset-password")
@limiter.limit(AUTH_RATE_LIMIT)
async def reset_password(
    request: Request,
    response: Response,
    body: ResetPasswordRequest,
    auth=Depends(get_auth_service),
):
    user, token = await auth.reset_password(body.email, body.otp, body.password, body.passwordConfirm)
    return token_response(response, user, token)


@router.patch("/update-password")
@limiter.limit(AUTH_RATE_LIMIT)
async def update_password(
    request: Request,
    response: Response,
    body: UpdatePasswordRequest,
    user: dict = Depends(get_current_user),
    auth=Depends(get_auth_service),
):
    user, token = await auth.update_password(user, body.currentPassword, body.newPassword, body.passwordConfirm)
    return token_response(response, user, token)
