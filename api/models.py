"""
API request and response models for StarterKit REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

AccountResponse is the only shape an account ever leaves the service in: it
has no password_hash, reset_token or remember_me_token field, so those cannot
leak through a response by accident.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Password strength is checked by auth/policy.py, not here, so the caller
    gets the policy's descriptive message rather than a generic schema error.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(max_length=255)


class LoginRequest(BaseModel):
    username: str = Field(max_length=255)
    password: str = Field(max_length=255)
    remember_me: bool = False


class ForgotPasswordRequest(BaseModel):
    username: str = Field(max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(max_length=128)
    password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    created_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(id=account.id, username=account.username, created_at=account.created_at)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ForgotPasswordResponse(BaseModel):
    """Response for POST /api/v1/auth/forgot-password.

    reset_token is echoed only because this template has no mail transport.
    """

    model_config = ConfigDict(frozen=True)

    message: str = "Password reset token generated"
    reset_token: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
