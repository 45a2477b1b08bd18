"""
auth/cookies.py -- Single sign-on cookies shared with sibling services.

Two cookies are written on login, register and refresh:
  access_token  -- the JWT access token
  user_summary  -- URL-encoded JSON {id, email, firstName, lastName, role, avatarUrl}

Both are readable by JavaScript (httponly=False): sibling front-ends on the
same parent domain read them to show the signed-in user and attach the
Bearer header. samesite="lax" keeps them off cross-site POSTs, secure is
driven by SECURE_COOKIES, and domain by COOKIE_DOMAIN. max_age matches the
access-token lifetime so cookie and token expire together.

Layer rule: no imports from api/. Takes any Starlette-style response.
"""

from __future__ import annotations

import json
from urllib.parse import quote

from auth.models import User

ACCESS_COOKIE = "access_token"
SUMMARY_COOKIE = "user_summary"


def set_sso_cookies(response, token: str, user: User, max_age: int, *, domain: str = "", secure: bool = False) -> None:
    """Mirror the access token and a sanitized user summary into cookies."""
    for name, value in (
        (ACCESS_COOKIE, token),
        (SUMMARY_COOKIE, quote(json.dumps(user.to_summary(), separators=(",", ":")), safe="")),
    ):
        response.set_cookie(
            name,
            value=value,
            max_age=max_age,
            domain=domain or None,
            httponly=False,
            samesite="lax",
            secure=secure,
        )


def clear_sso_cookies(response, *, domain: str = "") -> None:
    for name in (ACCESS_COOKIE, SUMMARY_COOKIE):
        response.delete_cookie(name, domain=domain or None, samesite="lax")
