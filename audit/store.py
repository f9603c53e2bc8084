"""
audit/store.py -- SQLAlchemy Core persistence for audit entries.

Pattern: Repository + Data Mapper, insert-and-read only. There is no update
or delete method: an entry is immutable once written.

request_body is serialized as JSON text so the column is portable across
SQLite and PostgreSQL.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from audit.models import AuditEntry
from core.config import get_settings
from core.db import make_engine, now_iso

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(100), nullable=False, index=True),
    Column("user_id", Integer, index=True),  # NULL when no verified identity
    Column("ip_address", String(45)),
    Column("method", String(10), nullable=False),
    Column("path", String(2048), nullable=False),
    Column("request_body", Text),  # JSON
    Column("status_code", Integer, nullable=False),
    Column("created_at", String(32), nullable=False, index=True),
)


class AuditStore:
    """Repository for AuditEntry records.

    Usage:
        store = AuditStore()
        store.record(AuditEntry(action="create_task", user_id=1, ...))
        store.list_entries(user_id=1)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def record(self, entry: AuditEntry) -> int:
        """Persist an entry and return its ID.

        Raises whatever the driver raises. The interceptor is responsible for
        keeping those failures off the request path.
        """
        body = json.dumps(entry.request_body) if entry.request_body is not None else None
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    action=entry.action,
                    user_id=entry.user_id,
                    ip_address=entry.ip_address,
                    method=entry.method,
                    path=entry.path,
                    request_body=body,
                    status_code=entry.status_code,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_entries(
        self,
        action: str | None = None,
        user_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Return entries newest first, optionally filtered by action and/or user."""
        stmt = _audit_logs.select()
        if action is not None:
            stmt = stmt.where(_audit_logs.c.action == action)
        if user_id is not None:
            stmt = stmt.where(_audit_logs.c.user_id == user_id)
        stmt = stmt.order_by(_audit_logs.c.id.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def count(self, action: str | None = None) -> int:
        stmt = select(func.count()).select_from(_audit_logs)
        if action is not None:
            stmt = stmt.where(_audit_logs.c.action == action)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        action=row.action,
        user_id=row.user_id,
        ip_address=row.ip_address,
        method=row.method,
        path=row.path,
        request_body=json.loads(row.request_body) if row.request_body is not None else None,
        status_code=row.status_code,
        created_at=row.created_at,
    )
