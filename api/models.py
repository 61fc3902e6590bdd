"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

No response model has a password or key-hash field -- there is no code path
that could serialize one by accident.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import BearerToken, Principal, Session
from auth.passwords import MAX_SECRET_BYTES

# bcrypt reads at most 72 bytes. Keep passwords comfortably under that so two
# passwords sharing a 72-byte prefix can never collide.
_PASSWORD_MAX = 64


def _check_password_bytes(v: Optional[str]) -> Optional[str]:
    # max_length counts characters; non-ASCII passwords can still overflow bcrypt.
    if v is not None and len(v.encode("utf-8")) > MAX_SECRET_BYTES:
        raise ValueError(f"password must be at most {MAX_SECRET_BYTES} bytes")
    return v


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    user = "user"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/token.

    No whitespace stripping: passwords are compared byte for byte, same as the
    browser form.
    """

    login: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    name: Optional[str] = Field(default=None, max_length=100, description="Label for the issued token.")


class PrincipalCreate(BaseModel):
    """Request body for POST /api/v1/auth/principals.

    password may be omitted for principals that only sign in through a
    delegated authority.
    """

    login: str = Field(min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=_PASSWORD_MAX)
    role: RoleEnum = RoleEnum.user

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_bytes(v)


class PrincipalPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/principals/{id}. All fields optional."""

    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=_PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: Optional[str]) -> Optional[str]:
        return _check_password_bytes(v)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """The raw token is returned exactly once, here."""

    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = Field(description="Seconds until expiry; null when the token never expires.")
    token_id: str


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    login: str
    role: str
    is_active: bool
    oauth_provider: Optional[str] = None
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id,
            login=principal.login,
            role=principal.role,
            is_active=principal.is_active,
            oauth_provider=principal.oauth_provider,
            created_at=principal.created_at or "",
            last_login=principal.last_login,
        )


class GrantInfo(BaseModel):
    """One session or token as shown to its owner. Never includes the secret."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: Optional[str]
    created_at: str
    expires_at: Optional[str]
    last_used: Optional[str]

    @classmethod
    def from_record(cls, record: Session | BearerToken) -> "GrantInfo":
        return cls(
            id=record.handle,
            label=record.label,
            created_at=_iso(record.created_at),
            expires_at=_iso(record.expires_at),
            last_used=_iso(record.last_used),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error code plus a human-readable message."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every error response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
