"""
Pydantic request and response models for API endpoints.

Request fields are all optional: presence and format are checked by the
services with ``core.validators`` so every input problem surfaces as the
same 400 ``{status, message}`` body instead of a schema error.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════

class SignupRequest(BaseModel):
    email: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    passwordConfirm: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class EmailOtpRequest(BaseModel):
    """Email plus the code that was sent to it."""
    email: Optional[str] = None
    otp: Optional[str] = None


class EmailRequest(BaseModel):
    email: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    email: Optional[str] = None
    otp: Optional[str] = None
    password: Optional[str] = None
    passwordConfirm: Optional[str] = None


class UpdatePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None
    passwordConfirm: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# TENANTS
# ═══════════════════════════════════════════════════════════════════════════════

class TenantRequest(BaseModel):
    """Create or rename a tenant."""
    name: Optional[str] = Field(None, description="3-50 characters, unique")


class TenantUserRequest(BaseModel):
    email: Optional[str] = Field(None, description="Email of an existing user without a tenant")


# ═══════════════════════════════════════════════════════════════════════════════
# STORES
# ═══════════════════════════════════════════════════════════════════════════════

class StoreConnectRequest(BaseModel):
    domain: Optional[str] = Field(None, description="shop.myshopify.com or a custom host")
    accessToken: Optional[str] = Field(None, description="Admin API access token")
    name: Optional[str] = None


class StoreUpdateRequest(BaseModel):
    name: Optional[str] = None
    isActive: Optional[bool] = None
    accessToken: Optional[str] = Field(None, description="Verified against Shopify before saving")


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════════

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="ok when the database answers, otherwise degraded")
    message: str
    timestamp: str = Field(description="Current time (ISO format)")
    environment: str
    version: str
    database: str = Field(description="connected or disconnected")


class MetricsResponse(BaseModel):
    """In-process request, timing and sync metrics."""
    uptime_seconds: int
    correlation_id: Optional[str] = None
    requests: Dict[str, int]
    errors: Dict[str, int]
    syncs: Dict[str, int]
    timing: Dict[str, Dict[str, Optional[float]]]
    cache: Dict[str, Any]
    scheduler: List[Dict[str, Any]]
