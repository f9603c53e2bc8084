"""
tasks/store.py -- SQLAlchemy-backed persistence layer for tasks.

Uses SQLAlchemy Core (not ORM) so the dataclass in tasks/models.py remains
the authoritative domain representation.

Pattern: Repository + Data Mapper. TaskStore is the repository; _row_to_task
is the mapper. Route handlers never touch SQL directly.

Ownership: every per-task method takes user_id and puts it in the WHERE
clause. A task belonging to someone else is indistinguishable from a task
that does not exist (both come back as None / False -> 404 at the route).

Security: all queries use bound parameters. Search terms go through
autoescape so % and _ in user input match literally.

Usage:
    store = TaskStore("sqlite:///:memory:")
    task_id = store.create_task(Task(user_id=1, title="Write report", due_date="2030-01-01T00:00:00+00:00"))
    store.update_task(task_id, 1, completed=True)   # stamps completed_at
    store.list_tasks(1, status="completed")
    store.close()
"""

from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, func, or_, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import make_engine, now_iso
from tasks.models import SORTABLE_FIELDS, Task

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(100), nullable=False),
    Column("description", Text),
    Column("category", String(100)),
    Column("due_date", String(32), nullable=False),
    Column("completed", Integer, nullable=False, server_default="0"),
    Column("completed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_UPDATABLE_FIELDS = frozenset({"title", "description", "category", "due_date", "completed"})


class TaskStore:
    """Repository for Task entities."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_task(self, task_id: int, user_id: int) -> Optional[Task]:
        """Return the task if it exists AND belongs to user_id, else None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _tasks.select().where((_tasks.c.id == task_id) & (_tasks.c.user_id == user_id))
            ).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(
        self,
        user_id: int,
        category: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_dir: str = "asc",
    ) -> list[Task]:
        """Return user_id's tasks, filtered and sorted.

        status:   "completed" | "pending" | None (any)
        search:   case-insensitive substring of title or description
        sort_by:  one of SORTABLE_FIELDS; defaults to due_date ascending
        sort_dir: "asc" | "desc"

        Raises ValueError for a sort_by outside SORTABLE_FIELDS so a column
        name from user input can never reach ORDER BY unchecked.
        """
        stmt = _tasks.select().where(_tasks.c.user_id == user_id)
        if category:
            stmt = stmt.where(_tasks.c.category == category)
        if status == "completed":
            stmt = stmt.where(_tasks.c.completed == 1)
        elif status == "pending":
            stmt = stmt.where(_tasks.c.completed == 0)
        if search:
            needle = search.lower()
            stmt = stmt.where(
                or_(
                    func.lower(_tasks.c.title).contains(needle, autoescape=True),
                    func.lower(_tasks.c.description).contains(needle, autoescape=True),
                )
            )

        column_name = sort_by or "due_date"
        if column_name not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort tasks by {column_name!r}")
        column = _tasks.c[column_name]
        stmt = stmt.order_by(column.desc() if sort_dir == "desc" else column.asc(), _tasks.c.id.asc())

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_task(r) for r in rows]

    def get_stats(self, user_id: int) -> dict[str, int]:
        """Return {"total", "completed", "pending", "overdue"} for user_id.

        overdue = not completed and due_date earlier than now. One aggregate
        query rather than four COUNTs.
        """
        now = now_iso()
        pending = _tasks.c.completed == 0
        stmt = select(
            func.count(_tasks.c.id),
            func.coalesce(func.sum(_tasks.c.completed), 0),
            func.coalesce(func.sum(case((pending & (_tasks.c.due_date < now), 1), else_=0)), 0),
        ).where(_tasks.c.user_id == user_id)
        with self.engine.connect() as conn:
            total, completed, overdue = conn.execute(stmt).one()
        total, completed = int(total), int(completed)
        return {
            "total": total,
            "completed": completed,
            "pending": total - completed,
            "overdue": int(overdue),
        }

    def count_tasks(self, completed: Optional[bool] = None) -> int:
        """Count all tasks across all users. Admin statistics only."""
        stmt = select(func.count()).select_from(_tasks)
        if completed is not None:
            stmt = stmt.where(_tasks.c.completed == (1 if completed else 0))
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def top_categories(self, limit: int = 5) -> list[dict]:
        """Return the most used categories as [{"category", "count"}], most used first."""
        count = func.count(_tasks.c.id).label("count")
        stmt = (
            select(_tasks.c.category, count)
            .where(_tasks.c.category.is_not(None))
            .group_by(_tasks.c.category)
            .order_by(count.desc(), _tasks.c.category.asc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [{"category": r.category, "count": int(r.count)} for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        """Insert a new task and return its ID."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    user_id=task.user_id,
                    title=task.title,
                    description=task.description,
                    category=task.category,
                    due_date=task.due_date,
                    completed=1 if task.completed else 0,
                    completed_at=now if task.completed else None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_task(self, task_id: int, user_id: int, **fields) -> bool:
        """Update a task owned by user_id. Returns False if not found / not owned.

        Accepted fields: title, description, category, due_date, completed.
        When completed changes value, completed_at is stamped (True) or
        cleared (False). Writing the same completed value again leaves
        completed_at untouched.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)!r}")
        owned = (_tasks.c.id == task_id) & (_tasks.c.user_id == user_id)
        now = now_iso()

        with self.engine.begin() as conn:
            current = conn.execute(select(_tasks.c.completed).where(owned)).fetchone()
            if current is None:
                return False
            if "completed" in fields:
                completed = bool(fields["completed"])
                fields["completed"] = 1 if completed else 0
                if completed != bool(current.completed):
                    fields["completed_at"] = now if completed else None
            fields["updated_at"] = now
            conn.execute(_tasks.update().where(owned).values(**fields))
        return True

    def delete_task(self, task_id: int, user_id: int) -> bool:
        """Delete a task owned by user_id. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_tasks.delete().where((_tasks.c.id == task_id) & (_tasks.c.user_id == user_id)))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        category=row.category,
        due_date=row.due_date,
        completed=bool(row.completed),
        completed_at=row.completed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
