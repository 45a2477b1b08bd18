"""
auth/factory.py -- Build the gateway and its collaborators from Settings.

Shared by the API lifespan and the CLI so both assemble exactly the same
object graph. Importing core/ is allowed here: core/ is the kernel and has no
reverse dependencies.
"""

from __future__ import annotations

import logging

from auth import policy
from auth.directory import build_directory
from auth.errors import UserExists
from auth.gateway import AuthGateway
from auth.models import NewUser, Role, User
from auth.passwords import CredentialVerifier
from auth.sessions import build_session_store
from auth.tokens import TokenIssuer
from core.config import REFRESH_TOKEN_EXPIRE_SECONDS, RESET_TOKEN_EXPIRE_SECONDS, Settings

logger = logging.getLogger("authgate.auth")


def build_gateway(settings: Settings) -> AuthGateway:
    """Construct every collaborator named in settings and wire them together."""
    timeout = settings.dependency_timeout_seconds
    directory = build_directory(settings.directory_backend, settings.directory_db_url, timeout)
    sessions = build_session_store(settings.session_backend, settings.session_db_url, timeout)
    issuer = TokenIssuer(
        settings.secret_key,
        access_ttl=settings.access_token_expire_seconds,
        refresh_ttl=REFRESH_TOKEN_EXPIRE_SECONDS,
        reset_ttl=RESET_TOKEN_EXPIRE_SECONDS,
    )
    return AuthGateway(
        directory,
        sessions,
        issuer,
        CredentialVerifier(rounds=settings.bcrypt_rounds),
        self_registration_enabled=settings.self_registration_enabled,
    )


def create_account(
    gateway: AuthGateway,
    email: str,
    password: str,
    *,
    first_name: str = "Admin",
    last_name: str = "User",
    role: Role = Role.ADMIN,
) -> User | None:
    """Create an account directly in the directory, or return None if the email is taken.

    Operator path (seeding, CLI): skips the self-registration switch and the
    role restriction, but not the password policy.
    """
    if gateway.directory.find_by_email(email) is not None:
        return None
    policy.enforce(password)
    try:
        user = gateway.directory.create(
            NewUser(
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=gateway.verifier.hash(password),
                role=role,
            )
        )
    except UserExists:
        # Another worker created it first.
        return None
    logger.info("Created %s account %s (%s)", role.value, user.id, user.email)
    return user
