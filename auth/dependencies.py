"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive only as "Authorization: Bearer <token>". The SSO cookie
mirrors the token for sibling front-ends to read; it is never accepted as a
credential here, so cookie-borne cross-site requests cannot authenticate.

bearer_token() raises TokenMissing when the header is absent or malformed.
TokenMissing is an AuthError subclass, rendered by the handler in api/main.py.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import TokenMissing
from auth.gateway import AuthGateway

def get_gateway(request: Request) -> AuthGateway:
    """Return the AuthGateway built during lifespan startup."""
    return request.app.state.gateway


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an Authorization header value, or None."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


def bearer_token(request: Request) -> str:
    """Require a Bearer token on the request (not yet verified)."""
    token = extract_bearer(request.headers.get("Authorization"))
    if token is None:
        raise TokenMissing()
    return token
