"""
auth/directory.py -- The user directory contract and its two adapters.

The directory owns identities, profile fields, credentials and role
assignments. The rest of the subsystem sees it only through UserDirectory;
which adapter backs it is decided once at startup by build_directory().

  MemoryUserDirectory -- dicts guarded by a lock. Development and tests.
  SqlUserDirectory    -- SQLAlchemy Core repository (users + role_assignments).

Role resolution [resolve_role]:
  1. an explicit row in role assignments (set by an administrator),
  2. otherwise the role stored on the user record,
  3. otherwise Role.USER.
  Unknown role strings at any step fall through to the next one.

Emails are stored lower-cased; every lookup lower-cases its argument, which
gives case-insensitive uniqueness on both backends.

Security:
  All SQL uses bound parameters. The password hash leaves the directory only
  inside a UserRecord returned by find_by_email().

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.db import make_engine
from auth.errors import UserExists
from auth.models import NewUser, Role, User, UserRecord

logger = logging.getLogger("authgate.directory")

# Profile fields callers may change through update(). Credentials have their
# own method; id, email and timestamps are never caller-writable.
UPDATABLE_FIELDS = frozenset({"first_name", "last_name", "avatar_url", "is_active", "email_verified", "role"})


class UserDirectory(Protocol):
    def find_by_email(self, email: str) -> UserRecord | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def create(self, new_user: NewUser) -> User: ...

    def update(self, user_id: str, **fields) -> User | None: ...

    def update_password(self, user_id: str, password_hash: str) -> bool: ...

    def update_last_login(self, user_id: str) -> None: ...

    def resolve_role(self, user_id: str) -> Role: ...

    def assign_role(self, user_id: str, role: Role) -> bool: ...

    def close(self) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


class MemoryUserDirectory:
    """Directory held in process memory.

    Usage:
        directory = MemoryUserDirectory()
        user = directory.create(NewUser(email="a@example.com", first_name="A", last_name="B", password_hash=h))
    """

    def __init__(self, timeout: float = 5.0) -> None:
        self._users: dict[str, User] = {}
        self._hashes: dict[str, str] = {}
        self._by_email: dict[str, str] = {}
        self._assignments: dict[str, str] = {}
        self._lock = threading.RLock()
        self._timeout = timeout

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._timeout):
            raise TimeoutError("user directory lock not acquired")
        try:
            yield
        finally:
            self._lock.release()

    def find_by_email(self, email: str) -> UserRecord | None:
        with self._locked():
            user_id = self._by_email.get(email.strip().lower())
            if user_id is None:
                return None
            return UserRecord(user=replace(self._users[user_id]), password_hash=self._hashes[user_id])

    def find_by_id(self, user_id: str) -> User | None:
        with self._locked():
            user = self._users.get(user_id)
            return replace(user) if user is not None else None

    def create(self, new_user: NewUser) -> User:
        email = new_user.email.strip().lower()
        with self._locked():
            if email in self._by_email:
                raise UserExists()
            now = _now()
            user = User(
                id=uuid.uuid4().hex,
                email=email,
                first_name=new_user.first_name,
                last_name=new_user.last_name,
                role=new_user.role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            self._hashes[user.id] = new_user.password_hash
            self._by_email[email] = user.id
            return replace(user)

    def update(self, user_id: str, **fields) -> User | None:
        _check_fields(fields)
        with self._locked():
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = replace(user, **fields, updated_at=_now())
            self._users[user_id] = updated
            return replace(updated)

    def update_password(self, user_id: str, password_hash: str) -> bool:
        with self._locked():
            if user_id not in self._users:
                return False
            self._hashes[user_id] = password_hash
            self._users[user_id].updated_at = _now()
            return True

    def update_last_login(self, user_id: str) -> None:
        with self._locked():
            user = self._users.get(user_id)
            if user is not None:
                user.last_login_at = _now()
                user.updated_at = user.last_login_at

    def resolve_role(self, user_id: str) -> Role:
        with self._locked():
            assigned = Role.parse(self._assignments.get(user_id))
            if assigned is not None:
                return assigned
            user = self._users.get(user_id)
            if user is not None and isinstance(user.role, Role):
                return user.role
            return Role.USER

    def assign_role(self, user_id: str, role: Role) -> bool:
        with self._locked():
            if user_id not in self._users:
                return False
            self._assignments[user_id] = Role(role).value
            return True

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQL adapter
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_role_assignments = Table(
    "role_assignments",
    _metadata,
    Column("user_id", Integer, primary_key=True),
    Column("role_name", String(30), nullable=False),
    Column("assigned_at", String(32), nullable=False),
)


class SqlUserDirectory:
    """Repository over the users and role_assignments tables.

    _row_to_user is the mapper; nothing outside this class touches SQL.
    """

    def __init__(self, db_url: str = "sqlite:///authgate_users.db", timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    def find_by_email(self, email: str) -> UserRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        if row is None:
            return None
        return UserRecord(user=_row_to_user(row), password_hash=row.password_hash)

    def find_by_id(self, user_id: str) -> User | None:
        pk = _pk(user_id)
        if pk is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == pk)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create(self, new_user: NewUser) -> User:
        """Insert a user. A concurrent duplicate surfaces as UserExists via the UNIQUE index."""
        now = _now().isoformat()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=new_user.email.strip().lower(),
                        first_name=new_user.first_name,
                        last_name=new_user.last_name,
                        password_hash=new_user.password_hash,
                        role=Role(new_user.role).value,
                        is_active=1,
                        email_verified=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
                new_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise UserExists() from exc
        created = self.find_by_id(str(new_id))
        if created is None:
            raise RuntimeError("user vanished after insert")
        return created

    def update(self, user_id: str, **fields) -> User | None:
        """Update profile fields. Returns the fresh User, or None if user_id is unknown."""
        _check_fields(fields)
        pk = _pk(user_id)
        if pk is None:
            return None
        values = dict(fields)
        for flag in ("is_active", "email_verified"):
            if flag in values:
                values[flag] = 1 if values[flag] else 0
        if "role" in values:
            values["role"] = Role(values["role"]).value
        values["updated_at"] = _now().isoformat()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == pk).values(**values))
            conn.commit()
        if result.rowcount == 0:
            return None
        return self.find_by_id(user_id)

    def update_password(self, user_id: str, password_hash: str) -> bool:
        pk = _pk(user_id)
        if pk is None:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == pk)
                .values(password_hash=password_hash, updated_at=_now().isoformat())
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        pk = _pk(user_id)
        if pk is None:
            return
        stamp = _now().isoformat()
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == pk).values(last_login_at=stamp, updated_at=stamp))
            conn.commit()

    def resolve_role(self, user_id: str) -> Role:
        pk = _pk(user_id)
        if pk is None:
            return Role.USER
        with self.engine.connect() as conn:
            assigned = conn.execute(
                select(_role_assignments.c.role_name).where(_role_assignments.c.user_id == pk)
            ).scalar()
            stored = conn.execute(select(_users.c.role).where(_users.c.id == pk)).scalar()
        return Role.parse(assigned) or Role.parse(stored) or Role.USER

    def assign_role(self, user_id: str, role: Role) -> bool:
        pk = _pk(user_id)
        if pk is None or self.find_by_id(user_id) is None:
            return False
        now = _now().isoformat()
        with self.engine.connect() as conn:
            conn.execute(_role_assignments.delete().where(_role_assignments.c.user_id == pk))
            conn.execute(_role_assignments.insert().values(user_id=pk, role_name=Role(role).value, assigned_at=now))
            conn.commit()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers and helpers
# ---------------------------------------------------------------------------


def _pk(user_id: str) -> int | None:
    """SQL ids are integers rendered as text. Anything else cannot match a row."""
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_user(row) -> User:
    return User(
        id=str(row.id),
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role.parse(row.role) or Role.USER,
        is_active=bool(row.is_active),
        email_verified=bool(row.email_verified),
        avatar_url=row.avatar_url,
        created_at=_parse_ts(row.created_at),
        updated_at=_parse_ts(row.updated_at),
        last_login_at=_parse_ts(row.last_login_at),
    )


def build_directory(backend: str, db_url: str, timeout: float) -> UserDirectory:
    """Pick the directory adapter named in settings."""
    if backend == "sql":
        logger.info("User directory: SQL")
        return SqlUserDirectory(db_url=db_url, timeout=timeout)
    logger.info("User directory: in-memory")
    return MemoryUserDirectory(timeout=timeout)
