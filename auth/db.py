"""
auth/db.py -- SQLAlchemy engine construction shared by the SQL-backed stores.

Both SqlUserDirectory and SqlSessionStore go through make_engine() so they
get the same SQLite handling (thread sharing, WAL, busy timeout) and the same
bound on how long a call may wait for the database.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create an engine whose connection and lock waits are bounded by timeout.

    SQLite: timeout is the busy timeout, so a writer blocked by another
    writer gives up with OperationalError instead of hanging.
    Other dialects: timeout bounds how long a checkout waits for the pool.
    """
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        engine_kwargs["pool_timeout"] = timeout
        engine_kwargs["pool_pre_ping"] = True
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine
