"""
auth/gateway.py -- Authentication flows.

AuthGateway is the only object the HTTP layer calls. It owns no request
state: every flow reads and writes through the directory, the session store,
the token issuer and the credential verifier it was built with.

Flow summary:
  register                email/password checks -> create -> token pair -> session
  login                   lookup -> active -> password -> token pair -> session (rotates) -> last login
  refresh                 verify token -> session must name the same user -> user active -> rotate
  logout                  verify access -> drop one session or all of the caller's sessions
  change_password         verify access -> current password -> policy -> store hash -> drop all sessions
  verify_token            verify access -> claims
  get/update_profile      verify access -> directory
  update_avatar           verify access -> store a URL produced by the file service
  request_password_reset  active account -> reset token handed to the notifier
  confirm_password_reset  verify reset -> policy -> single use -> store hash -> drop all sessions

Error discipline:
  Wrong password and unknown email raise the identical InvalidCredentials,
  and the unknown-email path still runs one bcrypt verification [C1].
  Session misses inside refresh surface as TokenInvalid, never as their own
  kinds. Directory or store failures (SQLAlchemyError, TimeoutError,
  OSError) become DependencyUnavailable.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from auth import policy
from auth.directory import UserDirectory
from auth.errors import (
    AccountDeactivated,
    DependencyUnavailable,
    InvalidCredentials,
    InvalidInput,
    RegistrationClosed,
    SessionNotFound,
    TokenInvalid,
    UserExists,
    UserNotFound,
)
from auth.models import AccessClaims, AuthResult, NewUser, Role, User
from auth.passwords import CredentialVerifier
from auth.sessions import SessionStore
from auth.tokens import TokenIssuer

logger = logging.getLogger("authgate.auth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _log_reset_token(email: str, token: str) -> None:
    logger.info("Password reset token issued for %s", email)


class AuthGateway:
    """Orchestrates the authentication flows.

    Usage:
        gateway = AuthGateway(directory, sessions, issuer, CredentialVerifier(rounds=12))
        result = gateway.login("alice@example.com", "Passw0rd!")
        claims = gateway.verify_token(result.access_token)
    """

    def __init__(
        self,
        directory: UserDirectory,
        sessions: SessionStore,
        issuer: TokenIssuer,
        verifier: CredentialVerifier,
        *,
        self_registration_enabled: bool = True,
        reset_notifier: Callable[[str, str], None] = _log_reset_token,
    ) -> None:
        self.directory = directory
        self.sessions = sessions
        self.issuer = issuer
        self.verifier = verifier
        self.self_registration_enabled = self_registration_enabled
        self.reset_notifier = reset_notifier

    @property
    def expires_in(self) -> int:
        """Access-token lifetime in seconds, echoed to clients as expiresIn."""
        return self.issuer.access_ttl

    # ------------------------------------------------------------------
    # Credential flows
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role | None = None,
    ) -> AuthResult:
        if not self.self_registration_enabled:
            raise RegistrationClosed()
        email = _normalize_email(email)
        first_name, last_name = (first_name or "").strip(), (last_name or "").strip()
        if not email or not password or not first_name or not last_name:
            raise InvalidInput("All fields are required.")
        if not _EMAIL_RE.match(email):
            raise InvalidInput("Invalid email format.")
        if role is not None and role != Role.USER:
            # Privileged roles are assigned by an administrator, never self-selected.
            raise InvalidInput("Role cannot be chosen at registration.")
        policy.enforce(password)

        with self._guard("find_by_email"):
            existing = self.directory.find_by_email(email)
        if existing is not None:
            raise UserExists()

        password_hash = self.verifier.hash(password)
        with self._guard("create"):
            user = self.directory.create(
                NewUser(email=email, first_name=first_name, last_name=last_name, password_hash=password_hash)
            )
        result = self._start_session(user)
        logger.info("Registered user %s (%s)", user.id, user.email)
        return result

    def login(self, email: str, password: str) -> AuthResult:
        email = _normalize_email(email)
        if not email or not password:
            raise InvalidInput("Email and password are required.")
        if not _EMAIL_RE.match(email):
            raise InvalidInput("Invalid email format.")

        with self._guard("find_by_email"):
            record = self.directory.find_by_email(email)
        if record is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            self.verifier.verify_dummy(password)
            logger.info("Failed login for unknown email")
            raise InvalidCredentials()
        if not record.user.is_active:
            # Same bcrypt cost as the other branches [C1]
            self.verifier.verify_dummy(password)
            logger.warning("Login attempt on deactivated user %s", record.user.id)
            raise AccountDeactivated()
        if not self.verifier.verify(password, record.password_hash):
            logger.info("Failed login for user %s", record.user.id)
            raise InvalidCredentials()

        result = self._start_session(record.user)
        with self._guard("update_last_login"):
            self.directory.update_last_login(record.user.id)
        logger.info("User %s logged in", record.user.id)
        return result

    def refresh(self, refresh_token: str) -> AuthResult:
        if not refresh_token:
            raise InvalidInput("Refresh token is required.")
        claims = self.issuer.verify_refresh(refresh_token)
        try:
            with self._guard("validate"):
                owner = self.sessions.validate(refresh_token)
        except SessionNotFound:
            logger.warning("Refresh with unknown or expired session for user %s", claims.user_id)
            raise TokenInvalid() from None
        if owner != claims.user_id:
            logger.warning("Refresh token subject %s does not own its session", claims.user_id)
            raise TokenInvalid()

        with self._guard("find_by_id"):
            user = self.directory.find_by_id(claims.user_id)
        if user is None:
            raise UserNotFound()
        if not user.is_active:
            raise AccountDeactivated()

        access, new_refresh = self._mint_pair(user)
        try:
            with self._guard("rotate"):
                self.sessions.rotate(refresh_token, user.id, new_refresh, self.issuer.refresh_expiry())
        except SessionNotFound:
            # A concurrent refresh of the same token rotated first.
            logger.warning("Lost refresh race for user %s", user.id)
            raise TokenInvalid() from None
        return AuthResult(user=user, access_token=access, refresh_token=new_refresh, expires_in=self.expires_in)

    def logout(self, access_token: str, refresh_token: str | None = None) -> None:
        claims = self.issuer.verify_access(access_token)
        if refresh_token:
            try:
                owner = self.issuer.verify_refresh(refresh_token).user_id
            except TokenInvalid:
                owner = None
            if owner == claims.user_id:
                with self._guard("remove"):
                    self.sessions.remove(refresh_token)
            else:
                logger.warning("User %s tried to revoke a refresh token it does not own", claims.user_id)
        else:
            with self._guard("remove_all_for"):
                self.sessions.remove_all_for(claims.user_id)
        logger.info("User %s logged out", claims.user_id)

    def change_password(self, access_token: str, current_password: str, new_password: str) -> None:
        claims = self.issuer.verify_access(access_token)
        if not current_password or not new_password:
            raise InvalidInput("Current password and new password are required.")

        with self._guard("find_by_email"):
            record = self.directory.find_by_email(claims.email)
        if record is None or record.user.id != claims.user_id:
            raise UserNotFound()
        if not self.verifier.verify(current_password, record.password_hash):
            logger.info("Wrong current password on change for user %s", claims.user_id)
            raise InvalidCredentials("Current password is incorrect.")
        policy.enforce(new_password)

        self._store_password(claims.user_id, new_password)
        logger.info("User %s changed password; all sessions revoked", claims.user_id)

    # ------------------------------------------------------------------
    # Token introspection and profile
    # ------------------------------------------------------------------

    def verify_token(self, access_token: str) -> AccessClaims:
        return self.issuer.verify_access(access_token)

    def get_profile(self, access_token: str) -> User:
        claims = self.issuer.verify_access(access_token)
        with self._guard("find_by_id"):
            user = self.directory.find_by_id(claims.user_id)
        if user is None:
            raise UserNotFound()
        return user

    def update_profile(self, access_token: str, first_name: str, last_name: str) -> User:
        claims = self.issuer.verify_access(access_token)
        first_name, last_name = (first_name or "").strip(), (last_name or "").strip()
        if not first_name or not last_name:
            raise InvalidInput("First name and last name are required.")
        with self._guard("update"):
            user = self.directory.update(claims.user_id, first_name=first_name, last_name=last_name)
        if user is None:
            raise UserNotFound()
        return user

    def update_avatar(self, access_token: str, avatar_url: str) -> User:
        claims = self.issuer.verify_access(access_token)
        parsed = urlparse(avatar_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidInput("Avatar URL must be an absolute http(s) URL.")
        with self._guard("update"):
            user = self.directory.update(claims.user_id, avatar_url=avatar_url)
        if user is None:
            raise UserNotFound()
        return user

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str | None:
        """Issue a reset token for an active account, else None.

        Callers must answer the client identically in both cases.
        """
        email = _normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise InvalidInput("Invalid email format.")
        with self._guard("find_by_email"):
            record = self.directory.find_by_email(email)
        if record is None or not record.user.is_active:
            return None
        token = self.issuer.issue_reset(record.user.email)
        self.reset_notifier(record.user.email, token)
        return token

    def confirm_password_reset(self, reset_token: str, new_password: str) -> None:
        if not reset_token or not new_password:
            raise InvalidInput("Token and new password are required.")
        claims = self.issuer.verify_reset(reset_token)
        policy.enforce(new_password)
        with self._guard("find_by_email"):
            record = self.directory.find_by_email(claims.email)
        if record is None or not record.user.is_active:
            raise TokenInvalid()
        with self._guard("mark_reset_used"):
            first_use = self.sessions.mark_reset_used(claims.jti, claims.expires_at)
        if not first_use:
            logger.warning("Reused password reset token for user %s", record.user.id)
            raise TokenInvalid()
        self._store_password(record.user.id, new_password)
        logger.info("User %s reset password; all sessions revoked", record.user.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mint_pair(self, user: User) -> tuple[str, str]:
        with self._guard("resolve_role"):
            user.role = self.directory.resolve_role(user.id)
        access = self.issuer.issue_access(user.id, user.email, user.role)
        return access, self.issuer.issue_refresh(user.id)

    def _start_session(self, user: User) -> AuthResult:
        """Mint a token pair and make the refresh token the user's only session."""
        access, refresh = self._mint_pair(user)
        with self._guard("put"):
            self.sessions.put(user.id, refresh, self.issuer.refresh_expiry())
        return AuthResult(user=user, access_token=access, refresh_token=refresh, expires_in=self.expires_in)

    def _store_password(self, user_id: str, new_password: str) -> None:
        password_hash = self.verifier.hash(new_password)
        with self._guard("update_password"):
            updated = self.directory.update_password(user_id, password_hash)
        if not updated:
            raise UserNotFound()
        with self._guard("remove_all_for"):
            self.sessions.remove_all_for(user_id)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate backing-store failures into DependencyUnavailable."""
        try:
            yield
        except (SQLAlchemyError, TimeoutError, OSError) as exc:
            logger.error("Dependency failure during %s: %s", operation, exc)
            raise DependencyUnavailable() from exc


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()
