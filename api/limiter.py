"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/v1/auth.py
(to apply per-route limits with @limiter.limit()). A single shared instance
means every route counts against the same in-memory store; separate
instances per module would each keep isolated counters and never trigger.

Limits are passed as callables reading Settings at request time, so tests
and deployments can change LOGIN_RATE_LIMIT without re-importing routes.
slowapi treats callable limits as dynamic and checks them only in the
decorator wrapper, so @limiter.limit goes directly on the handler, under
@router.post.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit
