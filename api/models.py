"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, refreshToken, expiresIn). Python
attributes stay snake_case; the alias generator does the translation and
populate_by_name lets tests and handlers construct models either way.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import AccessClaims, Role, User

# Upper bounds keep request bodies small and passwords below bcrypt's
# 72-byte truncation point for ordinary input.
_EMAIL_MAX = 255
_PASSWORD_MAX = 128
_NAME_MAX = 100
_TOKEN_MAX = 4096


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    email: str = Field(max_length=_EMAIL_MAX)
    password: str = Field(max_length=_PASSWORD_MAX)


class RegisterRequest(_CamelModel):
    email: str = Field(max_length=_EMAIL_MAX)
    password: str = Field(max_length=_PASSWORD_MAX)
    first_name: str = Field(max_length=_NAME_MAX)
    last_name: str = Field(max_length=_NAME_MAX)
    role: Optional[Role] = None


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(max_length=_TOKEN_MAX)


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, max_length=_TOKEN_MAX)


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(max_length=_PASSWORD_MAX)
    new_password: str = Field(max_length=_PASSWORD_MAX)


class ProfileUpdate(_CamelModel):
    first_name: str = Field(max_length=_NAME_MAX)
    last_name: str = Field(max_length=_NAME_MAX)


class AvatarUpdate(_CamelModel):
    avatar_url: str = Field(max_length=2048)


class PasswordResetRequest(_CamelModel):
    email: str = Field(max_length=_EMAIL_MAX)


class PasswordResetConfirm(_CamelModel):
    token: str = Field(max_length=_TOKEN_MAX)
    new_password: str = Field(max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class UserView(_CamelModel):
    """Sanitized user. There is deliberately no password field to leak."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    email_verified: bool
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            email_verified=user.email_verified,
            avatar_url=user.avatar_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
            last_login_at=user.last_login_at,
        )


class LoginResponse(_CamelModel):
    success: bool = True
    token: str
    refresh_token: str
    user: UserView
    expires_in: int


class AuthData(_CamelModel):
    user: UserView
    token: str
    refresh_token: str
    expires_in: int


class RegisterResponse(_CamelModel):
    success: bool = True
    data: AuthData
    message: str = "User created successfully"


class TokenData(_CamelModel):
    token: str
    refresh_token: str
    expires_in: int


class RefreshResponse(_CamelModel):
    success: bool = True
    data: TokenData


class VerifyData(_CamelModel):
    user_id: str
    email: str
    role: Role
    valid: bool = True

    @classmethod
    def from_claims(cls, claims: AccessClaims) -> "VerifyData":
        return cls(user_id=claims.user_id, email=claims.email, role=claims.role)


class VerifyResponse(_CamelModel):
    success: bool = True
    data: VerifyData


class ProfileData(_CamelModel):
    user: UserView


class ProfileResponse(_CamelModel):
    success: bool = True
    data: ProfileData
    message: Optional[str] = None


class MessageResponse(_CamelModel):
    success: bool = True
    message: str


class ErrorResponse(_CamelModel):
    """Envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    success: bool = False
    error: str
    code: str
    details: Optional[list[str]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
