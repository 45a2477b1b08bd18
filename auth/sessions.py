"""
auth/sessions.py -- Registry of outstanding refresh tokens.

A refresh token is only redeemable while a Session row for it exists. The
store enforces one live session per user: put() deletes whatever the user
had and inserts the new record in one atomic step, and rotate() swaps an old
token for a new one only if the old one is still the live session. Two
concurrent refreshes of the same token therefore produce exactly one winner.

Backends:
  MemorySessionStore -- dict guarded by a threading.Lock. Single-process
      deployments and tests. Lock waits are bounded by `timeout`.
  SqlSessionStore    -- SQLAlchemy Core. Every mutation runs inside one
      engine.begin() transaction, so multi-instance deployments sharing a
      database keep the same guarantees.

The store also keeps the used-reset-token ledger: a password-reset token's
jti is recorded on first use and kept until the token itself would expire.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Float, MetaData, String, Table, delete, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import make_engine
from auth.errors import SessionExpired, SessionNotFound
from auth.models import Session

logger = logging.getLogger("authgate.sessions")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    def put(self, user_id: str, token: str, expires_at: datetime) -> None: ...

    def validate(self, token: str) -> str: ...

    def remove(self, token: str) -> None: ...

    def remove_all_for(self, user_id: str) -> None: ...

    def rotate(self, old_token: str, user_id: str, new_token: str, expires_at: datetime) -> None: ...

    def count_for(self, user_id: str) -> int: ...

    def purge_expired(self) -> int: ...

    def mark_reset_used(self, jti: str, expires_at: datetime) -> bool: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemorySessionStore:
    """Sessions in a dict keyed by token value.

    Usage:
        store = MemorySessionStore()
        store.put(user.id, refresh_token, issuer.refresh_expiry())
        user_id = store.validate(refresh_token)
    """

    def __init__(self, timeout: float = 5.0, now: Callable[[], datetime] = _utcnow) -> None:
        self._sessions: dict[str, Session] = {}
        self._used_resets: dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._now = now

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._timeout):
            raise TimeoutError("session store lock not acquired")
        try:
            yield
        finally:
            self._lock.release()

    def put(self, user_id: str, token: str, expires_at: datetime) -> None:
        with self._locked():
            self._drop_user(user_id)
            self._sessions[token] = Session(token=token, user_id=user_id, expires_at=expires_at)

    def validate(self, token: str) -> str:
        with self._locked():
            session = self._sessions.get(token)
            if session is None:
                raise SessionNotFound()
            if self._now() >= session.expires_at:
                del self._sessions[token]
                raise SessionExpired()
            return session.user_id

    def remove(self, token: str) -> None:
        with self._locked():
            self._sessions.pop(token, None)

    def remove_all_for(self, user_id: str) -> None:
        with self._locked():
            self._drop_user(user_id)

    def rotate(self, old_token: str, user_id: str, new_token: str, expires_at: datetime) -> None:
        with self._locked():
            current = self._sessions.get(old_token)
            if current is None or current.user_id != user_id:
                raise SessionNotFound()
            self._drop_user(user_id)
            self._sessions[new_token] = Session(token=new_token, user_id=user_id, expires_at=expires_at)

    def count_for(self, user_id: str) -> int:
        with self._locked():
            now = self._now()
            return sum(1 for s in self._sessions.values() if s.user_id == user_id and s.expires_at > now)

    def purge_expired(self) -> int:
        with self._locked():
            now = self._now()
            stale = [t for t, s in self._sessions.items() if s.expires_at <= now]
            for token in stale:
                del self._sessions[token]
            for jti in [j for j, exp in self._used_resets.items() if exp <= now]:
                del self._used_resets[jti]
        return len(stale)

    def mark_reset_used(self, jti: str, expires_at: datetime) -> bool:
        with self._locked():
            if jti in self._used_resets:
                return False
            self._used_resets[jti] = expires_at
            return True

    def close(self) -> None:
        with self._locked():
            self._sessions.clear()
            self._used_resets.clear()

    def _drop_user(self, user_id: str) -> None:
        # Caller holds the lock.
        for token in [t for t, s in self._sessions.items() if s.user_id == user_id]:
            del self._sessions[token]


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "refresh_sessions",
    _metadata,
    Column("token", String(1024), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("expires_at", Float, nullable=False),  # POSIX seconds, UTC
)

_used_resets = Table(
    "used_reset_tokens",
    _metadata,
    Column("jti", String(64), primary_key=True),
    Column("expires_at", Float, nullable=False),
)


class SqlSessionStore:
    """Sessions in a relational table. Same contract as MemorySessionStore.

    Expiry is stored as POSIX seconds so comparisons behave the same on
    SQLite (no native timezone-aware datetime) and on server databases.
    """

    def __init__(
        self,
        db_url: str = "sqlite:///authgate_sessions.db",
        timeout: float = 5.0,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        self._now = now
        _metadata.create_all(self.engine)

    def put(self, user_id: str, token: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_sessions).where(_sessions.c.user_id == user_id))
            conn.execute(insert(_sessions).values(token=token, user_id=user_id, expires_at=expires_at.timestamp()))

    def validate(self, token: str) -> str:
        with self.engine.begin() as conn:
            row = conn.execute(select(_sessions).where(_sessions.c.token == token)).fetchone()
            if row is None:
                raise SessionNotFound()
            if self._now().timestamp() >= row.expires_at:
                conn.execute(delete(_sessions).where(_sessions.c.token == token))
                expired = True
            else:
                expired = False
        # Raised outside the block so the delete above commits.
        if expired:
            raise SessionExpired()
        return row.user_id

    def remove(self, token: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_sessions).where(_sessions.c.token == token))

    def remove_all_for(self, user_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_sessions).where(_sessions.c.user_id == user_id))

    def rotate(self, old_token: str, user_id: str, new_token: str, expires_at: datetime) -> None:
        """Compare-and-swap. The conditional DELETE takes the row lock; a loser sees rowcount 0."""
        with self.engine.begin() as conn:
            claimed = conn.execute(
                delete(_sessions).where((_sessions.c.token == old_token) & (_sessions.c.user_id == user_id))
            ).rowcount
            if claimed != 1:
                raise SessionNotFound()
            conn.execute(delete(_sessions).where(_sessions.c.user_id == user_id))
            conn.execute(insert(_sessions).values(token=new_token, user_id=user_id, expires_at=expires_at.timestamp()))

    def count_for(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > self._now().timestamp()))
            ).scalar()
        return result or 0

    def purge_expired(self) -> int:
        cutoff = self._now().timestamp()
        with self.engine.begin() as conn:
            removed = conn.execute(delete(_sessions).where(_sessions.c.expires_at <= cutoff)).rowcount
            conn.execute(delete(_used_resets).where(_used_resets.c.expires_at <= cutoff))
        return removed

    def mark_reset_used(self, jti: str, expires_at: datetime) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(_used_resets).values(jti=jti, expires_at=expires_at.timestamp()))
        except IntegrityError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def build_session_store(backend: str, db_url: str, timeout: float) -> SessionStore:
    """Pick the session backend named in settings."""
    if backend == "sql":
        logger.info("Session store: SQL")
        return SqlSessionStore(db_url=db_url, timeout=timeout)
    logger.info("Session store: in-memory")
    return MemorySessionStore(timeout=timeout)
