"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Boundary validation lives here: phone format, non-empty fields, and the
verification-code purpose enum. Requests that fail it never reach auth/.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import OrgInfo, Purpose, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Mainland China mobile numbers: 11 digits, starting 13x-19x.
PHONE_PATTERN = r"^1[3-9]\d{9}$"

_Phone = Annotated[
    str,
    StringConstraints(strip_whitespace=True, pattern=PHONE_PATTERN),
    Field(description="11-digit mobile number"),
]
_Code = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=16)]
_Identifier = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
# Passwords are hashed exactly as sent; surrounding whitespace is part of the credential.
_Password = Annotated[str, Field(min_length=1, max_length=255)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CodeRequest(BaseModel):
    """Request body for POST /api/v1/auth/code."""

    phone: _Phone
    typ: Purpose


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    phone: _Phone
    code: _Code
    username: _Identifier
    password: _Password


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. The identifier may be a username or a phone."""

    username_or_phone: _Identifier
    password: _Password


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    phone: _Phone
    code: _Code
    new_password: _Password


class GrantRulesRequest(BaseModel):
    """Request body for POST /api/v1/auth/users/{username}/rules."""

    rules: list[Annotated[str, Field(min_length=1, max_length=64)]] = Field(min_length=1, max_length=20)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Response for POST /api/v1/auth/register."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    phone: str
    org_id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "AccountResponse":
        return cls(
            id=user.id,
            username=user.username,
            phone=user.phone,
            org_id=user.org_id,
            created_at=user.created_at,
        )


class AuthInfo(BaseModel):
    """Successful login: the bearer token plus the account it identifies."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    id: str
    username: str
    phone: str
    org_id: str
    rules: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_login(cls, token: str, expires_in: int, user: User, rules: frozenset[str]) -> "AuthInfo":
        return cls(
            token=token,
            expires_in=expires_in,
            id=user.id,
            username=user.username,
            phone=user.phone,
            org_id=user.org_id,
            rules=sorted(rules),
            created_at=user.created_at,
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh-token."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int


class PrincipalResponse(BaseModel):
    """Response for GET /api/v1/auth/ping -- what the presented token says."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    org_id: str
    rules: list[str]


class OrgInfoResponse(BaseModel):
    """Response for GET /api/v1/orgs."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner_id: Optional[str] = None

    @classmethod
    def from_info(cls, info: OrgInfo) -> "OrgInfoResponse":
        return cls(id=info.id, name=info.name, owner_id=info.owner_id)


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
