"""
API request and response models for CyberShield REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (businessName, newPassword, isVerified, ...) to stay
compatible with the existing frontend; Python attributes stay snake_case via
an alias generator.

Request fields are deliberately permissive (Optional, no "required"): the
service decides what is missing so every operation reports missing input
the same way (400 missing_fields) instead of splitting it between Pydantic
and the service.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Account

# Generous caps -- real limits (password length etc.) live in the service.
_NAME_MAX = 255
_EMAIL_MAX = 320
_PASSWORD_MAX = 128
_OTP_MAX = 16


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register."""

    name: Optional[str] = Field(default=None, max_length=_NAME_MAX)
    email: Optional[str] = Field(default=None, max_length=_EMAIL_MAX)
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    role: Optional[str] = Field(default=None, max_length=20)
    business_name: Optional[str] = Field(default=None, max_length=_NAME_MAX)
    business_address: Optional[str] = Field(default=None, max_length=1000)
    business_abn: Optional[str] = Field(default=None, max_length=64)


class LoginRequest(_CamelModel):
    email: Optional[str] = Field(default=None, max_length=_EMAIL_MAX)
    password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)


class VerifyOtpRequest(_CamelModel):
    """Request body for POST /api/v1/auth/verify-otp.

    userId may be omitted when the request carries a session cookie; the
    session's account is used then.
    """

    user_id: Optional[int] = None
    otp: Optional[str] = Field(default=None, max_length=_OTP_MAX)

    @field_validator("otp", mode="before")
    @classmethod
    def otp_as_text(cls, value):
        """Accept codes sent as JSON numbers (123456) as well as strings."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class EmailRequest(_CamelModel):
    email: Optional[str] = Field(default=None, max_length=_EMAIL_MAX)


class ResetPasswordRequest(_CamelModel):
    email: Optional[str] = Field(default=None, max_length=_EMAIL_MAX)
    otp: Optional[str] = Field(default=None, max_length=_OTP_MAX)
    new_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)

    @field_validator("otp", mode="before")
    @classmethod
    def otp_as_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ProfileUpdate(_CamelModel):
    """Request body for PUT /api/v1/user/update. Omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, max_length=_NAME_MAX)
    email: Optional[str] = Field(default=None, max_length=_EMAIL_MAX)
    role: Optional[str] = Field(default=None, max_length=20)
    business_name: Optional[str] = Field(default=None, max_length=_NAME_MAX)
    business_address: Optional[str] = Field(default=None, max_length=1000)
    business_abn: Optional[str] = Field(default=None, max_length=64)


class PasswordUpdate(_CamelModel):
    current_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)
    new_password: Optional[str] = Field(default=None, max_length=_PASSWORD_MAX)


class RoleUpdate(_CamelModel):
    """Request body for PATCH /api/v1/admin/users/{id}/role.

    Business fields are only needed when moving an account to the business
    role and it has no stored business profile yet.
    """

    role: Optional[str] = Field(default=None, max_length=20)
    business_name: Optional[str] = Field(default=None, max_length=_NAME_MAX)
    business_address: Optional[str] = Field(default=None, max_length=1000)
    business_abn: Optional[str] = Field(default=None, max_length=64)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(_CamelModel):
    """Public profile of an account. Never includes the hash or OTP state."""

    model_config = ConfigDict(frozen=True)  # merged with the camelCase base config

    id: int
    name: str
    email: str
    role: str
    is_verified: bool
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    business_abn: Optional[str] = None
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Factory Method -- the domain-to-wire mapping lives beside the wire model."""
        business = account.business
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            role=account.role,
            is_verified=account.is_verified,
            business_name=business.name if business else None,
            business_address=business.address if business else None,
            business_abn=business.abn if business else None,
            created_at=account.created_at or "",
        )


class SessionResponse(_CamelModel):
    """Response for register and login. The token itself is only in the cookie."""

    model_config = ConfigDict(frozen=True)  # merged with the camelCase base config

    message: str
    account: AccountResponse
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


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

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
