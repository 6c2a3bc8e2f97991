"""One-time code endpoints used by the verification screens."""
from fastapi import APIRouter, Depends, Request, Response

from web.config import OTP_RATE_LIMIT
from web.routes.auth import set_auth_cookie
from web.schemas import EmailOtpRequest, EmailRequest
from web.services.auth_service import public_user
from ._deps import get_auth_service, limiter

router = APIRouter(prefix="/otp", tags=["otp"])


@router.post("/send")
@limiter.limit(OTP_RATE_LIMIT)
async def send_otp(request: Request, body: EmailRequest, auth=Depends(get_auth_service)):
    """Email a new verification code to an existing user."""
    await auth.send_otp(body.email)
    return {"success": True, "message": "OTP sent successfully"}


@router.post("/verify")
@limiter.limit(OTP_RATE_LIMIT)
async def verify_otp(request: Request, response: Response, body: EmailOtpRequest, auth=Depends(get_auth_service)):
    """Verify the code, mark the email verified and log the user in."""
    user, token = await auth.verify_email(body.email, body.otp)
    set_auth_cookie(response, token)
    return {
        "success": True,
        "message": "OTP verified successfully",
        "data": {"user": public_user(user), "token": token},
    }
