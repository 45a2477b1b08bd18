"""
auth/tokens.py -- JWT signing and verification for every token class.

Security design decisions:
  JWT: python-jose with HS256. One SECRET_KEY signs three token classes, and
       the "type" claim keeps them apart:
         access          {sub, email, role, type, iat, exp}   default 7 days
         refresh         {sub, type, jti, iat, exp}           30 days
         password-reset  {email, type, jti, iat, exp}         1 hour
       A token of one class never verifies as another.

  Failure collapse: every verification failure (bad signature, malformed
       payload, missing claim, wrong type, expired) raises the same
       TokenInvalid. Callers, and therefore clients, never learn which check
       rejected the token.

  jti: refresh and reset tokens carry a random jti. Two refresh tokens issued
       to one user inside the same second would otherwise be byte-identical,
       which would defeat rotation. The reset jti is what the single-use
       ledger records.

  Clock: expiry is checked here against an injectable clock rather than by
       python-jose, so tests can move time forward without sleeping.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenInvalid
from auth.models import AccessClaims, RefreshClaims, ResetClaims, Role

logger = logging.getLogger("authgate.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
PASSWORD_RESET = "password-reset"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Stateless signer/verifier for access, refresh and password-reset tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key, access_ttl=settings.access_token_expire_seconds)
        token = issuer.issue_access(user.id, user.email, user.role)
        claims = issuer.verify_access(token)   # raises TokenInvalid
    """

    def __init__(
        self,
        secret_key: str,
        *,
        access_ttl: int = 7 * 24 * 60 * 60,
        refresh_ttl: int = 30 * 24 * 60 * 60,
        reset_ttl: int = 60 * 60,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.reset_ttl = reset_ttl
        self._now = now

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access(self, user_id: str, email: str, role: Role) -> str:
        return self._encode(
            {"sub": str(user_id), "email": email, "role": Role(role).value, "type": ACCESS},
            self.access_ttl,
        )

    def issue_refresh(self, user_id: str) -> str:
        return self._encode({"sub": str(user_id), "type": REFRESH, "jti": secrets.token_hex(16)}, self.refresh_ttl)

    def issue_reset(self, email: str) -> str:
        return self._encode({"email": email, "type": PASSWORD_RESET, "jti": secrets.token_hex(16)}, self.reset_ttl)

    def refresh_expiry(self) -> datetime:
        """Expiry instant for a refresh token issued now (used for the session record)."""
        return self._now() + timedelta(seconds=self.refresh_ttl)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, ACCESS)
        role = Role.parse(payload.get("role"))
        if role is None or not payload.get("sub") or not payload.get("email"):
            raise TokenInvalid()
        return AccessClaims(
            user_id=payload["sub"],
            email=payload["email"],
            role=role,
            issued_at=_from_ts(payload.get("iat")),
            expires_at=_from_ts(payload["exp"]),
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, REFRESH)
        if not payload.get("sub") or not payload.get("jti"):
            raise TokenInvalid()
        return RefreshClaims(user_id=payload["sub"], jti=payload["jti"], expires_at=_from_ts(payload["exp"]))

    def verify_reset(self, token: str) -> ResetClaims:
        payload = self._decode(token, PASSWORD_RESET)
        if not payload.get("email") or not payload.get("jti"):
            raise TokenInvalid()
        return ResetClaims(email=payload["email"], jti=payload["jti"], expires_at=_from_ts(payload["exp"]))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, ttl: int) -> str:
        issued = self._now()
        payload = dict(claims)
        payload["iat"] = int(issued.timestamp())
        payload["exp"] = int((issued + timedelta(seconds=ttl)).timestamp())
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def _decode(self, token: str, expected_type: str) -> dict:
        """Verify signature, type and expiry. Any failure is TokenInvalid."""
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as exc:
            logger.debug("JWT rejected: %s", exc)
            raise TokenInvalid() from None
        if payload.get("type") != expected_type:
            raise TokenInvalid()
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._now().timestamp() >= exp:
            raise TokenInvalid()
        return payload


def _from_ts(value) -> datetime:
    if not isinstance(value, (int, float)):
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromtimestamp(value, tz=timezone.utc)
