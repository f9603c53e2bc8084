"""
audit/models.py -- Domain dataclass for an audit trail entry.

Entries are immutable: frozen dataclass here, and AuditStore exposes no
update or delete.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AuditEntry:
    """One successfully completed (2xx) request to an audited route.

    user_id is None when the route ran without a verified identity.
    request_body is the decoded JSON payload with secret fields redacted,
    or None when the body was empty or not JSON.
    """

    action: str
    user_id: int | None
    ip_address: str | None
    method: str
    path: str
    request_body: Any
    status_code: int
    id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
