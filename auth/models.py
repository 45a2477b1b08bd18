"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost zero logic). Stores, the
token issuer and the gateway do the work; these types only own shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Coarse role label carried on the access token."""

    ADMIN = "admin"
    VETERINARIAN = "veterinarian"
    NURSE = "nurse"
    RECEPTIONIST = "receptionist"
    MANAGER = "manager"
    STAFF = "staff"
    USER = "user"

    @classmethod
    def parse(cls, value: str | None) -> Role | None:
        """Return the matching Role, or None for empty/unknown strings."""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class User:
    """An identity as the directory exposes it. Never carries a password hash.

    id is an opaque string: the memory directory uses uuid4 hex, the SQL
    directory its integer primary key rendered as text.
    """

    id: str
    email: str
    first_name: str
    last_name: str
    role: Role = Role.USER
    is_active: bool = True
    email_verified: bool = False
    avatar_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    def to_summary(self) -> dict:
        """Small subset mirrored into the SSO user_summary cookie."""
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role.value,
            "avatarUrl": self.avatar_url,
        }


@dataclass
class UserRecord:
    """A User plus its stored credential. Only find_by_email returns this."""

    user: User
    password_hash: str


@dataclass
class NewUser:
    """Input to UserDirectory.create(). password_hash is already bcrypt output."""

    email: str
    first_name: str
    last_name: str
    password_hash: str
    role: Role = Role.USER


@dataclass
class Session:
    """Server-side record that makes a refresh token redeemable."""

    token: str
    user_id: str
    expires_at: datetime


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class ResetClaims:
    email: str
    jti: str
    expires_at: datetime


@dataclass
class AuthResult:
    """What login, register and refresh hand back to the transport layer."""

    user: User
    access_token: str
    refresh_token: str
    expires_in: int
