"""
API request and response models for slidingauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire names are camelCase (rememberMe, emailVerified, demoPreviewUrl) through
field aliases; Python attributes stay snake_case.
"""

import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints

from auth.models import User
from auth.passwords import PASSWORD_MAX_LENGTH, PASSWORD_MIN_LENGTH, password_strength_error

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_MIN = PASSWORD_MIN_LENGTH
PASSWORD_MAX = PASSWORD_MAX_LENGTH
NAME_MIN = 2
NAME_MAX = 50


def _check_email(value: str) -> str:
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please enter a valid email address")
    return value.lower()


def _check_password_strength(value: str) -> str:
    problem = password_strength_error(value)
    if problem:
        raise ValueError(problem)
    return value


# Annotated types shared by every model that accepts the field.
_Email = Annotated[str, Field(max_length=255), AfterValidator(_check_email)]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=NAME_MIN, max_length=NAME_MAX)]
_NewPassword = Annotated[
    str,
    Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX),
    AfterValidator(_check_password_strength),
]
_Token = Annotated[str, Field(min_length=1, max_length=4096)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""

    name: _Name
    email: _Email
    password: _NewPassword


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    Only presence is checked on password; strength rules apply when a
    password is set, not when one is presented.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: _Email
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    remember_me: bool = Field(default=False, alias="rememberMe")


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /api/auth/forgot."""

    email: _Email


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/auth/reset."""

    token: _Token
    password: _NewPassword


class VerifyEmailRequest(BaseModel):
    """Request body for POST /api/auth/verify."""

    token: _Token


class ProfileUpdate(BaseModel):
    """Request body for POST /api/auth/me. Omitted fields are left unchanged."""

    name: Optional[_Name] = None
    password: Optional[_NewPassword] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries password_hash or salt."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    email: str
    role: str
    email_verified: bool = Field(alias="emailVerified")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls.model_validate(user.to_public())


class UserEnvelope(BaseModel):
    """Response for login and GET/POST /api/auth/me."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse


class RegisterResponse(BaseModel):
    """Response for POST /api/auth/register."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user: UserResponse
    message: str
    demo_preview_url: Optional[str] = Field(default=None, alias="demoPreviewUrl")


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    fields is set only for validation errors: one "field: message" string per
    failed constraint.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health.

    status is "healthy" when every component answers, "degraded" otherwise. The
    app itself keeps serving while degraded: sessions read as logged out.
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
