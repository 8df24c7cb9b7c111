"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

password_hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is proven by the welcome email, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt refuses inputs longer than 72 bytes.
_MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Credentials(BaseModel):
    # No str_strip_whitespace: leading/trailing spaces in a password are significant.
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> object:
        """Lowercase so A@X.com and a@x.com are the same account and cache key."""
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {_MAX_PASSWORD_BYTES} bytes")
        return value


class RegisterRequest(_Credentials):
    """Request body for POST /api/v1/auth/register."""


class LoginRequest(_Credentials):
    """Request body for POST /api/v1/auth/login."""


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: Optional[str] = None


class UserProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    created_at: str
    updated_at: str


class AuthResponse(BaseModel):
    """Response for register and login."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserSummary
    token: str
    token_type: str = "bearer"
    expires_in: int


class ProfileResponse(BaseModel):
    """Response for GET /api/v1/auth/profile."""

    model_config = ConfigDict(frozen=True)

    user: UserProfile


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
