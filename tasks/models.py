"""
tasks/models.py -- Domain dataclass for a user's task.

Pure data container. Completion timestamps and ownership checks live in
tasks/store.py.
"""

from dataclasses import dataclass
from typing import Optional

# Columns GET /tasks may sort by. Anything else is rejected at the API layer.
SORTABLE_FIELDS = ("due_date", "title", "category", "completed", "created_at", "updated_at")


@dataclass
class Task:
    """A to-do item owned by exactly one user.

    completed_at is maintained by the store: set when completed flips to
    True, cleared when it flips back to False.

    id is None before the record is written to the database.
    """

    user_id: int
    title: str
    due_date: str  # ISO 8601 UTC
    id: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    completed: bool = False
    completed_at: Optional[str] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
