"""
core/db.py -- Engine factory and timestamp helper shared by every store.

UserStore, TaskStore and AuditStore each own their tables and their engine
(one Repository per aggregate), but they all need the same SQLite tweaks.
Swapping SQLite for PostgreSQL is a DATABASE_URL change, not a rewrite.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, or tasks/.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url.

    check_same_thread=False because FastAPI runs sync handlers and background
    tasks in a thread pool, so a pooled SQLite connection may cross threads.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    """Current UTC time as ISO 8601. Lexical order equals chronological order."""
    return datetime.now(timezone.utc).isoformat()


def to_utc_iso(value: datetime) -> str:
    """Normalize a client-supplied datetime to a UTC ISO 8601 string.

    Naive values are taken to be UTC already, so they compare correctly
    against now_iso() in SQL.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
