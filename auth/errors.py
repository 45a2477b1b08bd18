"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every failure a flow can produce is an AuthError subclass carrying the HTTP
status and a stable machine-readable code. Services raise; api/main.py owns
the single handler that turns these into the {success: false, error} envelope.

Token failures are deliberately coarse: bad signature, malformed payload,
expired, wrong purpose and unknown session all end up as TokenInvalid so a
client cannot tell which check rejected it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, details: list[str] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)


class InvalidInput(AuthError):
    status_code = 400
    code = "invalid_input"
    default_message = "Invalid request."


class WeakPassword(AuthError):
    """New password failed the policy. details lists every broken rule."""

    status_code = 400
    code = "weak_password"
    default_message = "Password does not meet requirements."


class InvalidCredentials(AuthError):
    """Wrong password or unknown email. The two cases must stay indistinguishable."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class AccountDeactivated(AuthError):
    status_code = 401
    code = "account_deactivated"
    default_message = "Account is deactivated."


class TokenMissing(AuthError):
    status_code = 401
    code = "token_missing"
    default_message = "No token provided."


class TokenInvalid(AuthError):
    status_code = 401
    code = "token_invalid"
    default_message = "Invalid or expired token."


class SessionNotFound(AuthError):
    """Internal: refresh token has no live session. Surfaced as TokenInvalid."""

    status_code = 401
    code = "token_invalid"
    default_message = "Session not found."


class SessionExpired(SessionNotFound):
    """Internal: session existed but is past expires_at. Surfaced as TokenInvalid."""

    default_message = "Session expired."


class RegistrationClosed(AuthError):
    status_code = 403
    code = "registration_closed"
    default_message = "Self-registration is disabled."


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found."


class UserExists(AuthError):
    status_code = 409
    code = "user_exists"
    default_message = "User with this email already exists."


class DependencyUnavailable(AuthError):
    """Directory or session store timed out or failed."""

    status_code = 500
    code = "dependency_unavailable"
    default_message = "A backing service is unavailable."
