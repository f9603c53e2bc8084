"""
api/routes/v1/audit.py -- Read-only access to the audit trail. Admin only.

Routes:
  GET /audit                 -- newest entries, optional ?action= filter, paginated
  GET /audit/user/{user_id}  -- newest entries attributed to one user

Only successful (2xx) requests to audited routes ever produce entries; see
audit/interceptor.py.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse
from audit.store import AuditStore
from auth.dependencies import require_admin

# Auth policy:
# - every route requires admin (router-level require_admin)
router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_entries(
    request: Request,
    action: Optional[str] = Query(default=None, max_length=100),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[AuditEntryResponse]:
    store: AuditStore = request.app.state.audit_store
    entries = store.list_entries(action=action, limit=limit, offset=offset)
    return [AuditEntryResponse.from_entry(e) for e in entries]


@router.get("/audit/user/{user_id}", response_model=list[AuditEntryResponse])
def list_user_audit_entries(
    request: Request,
    user_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[AuditEntryResponse]:
    store: AuditStore = request.app.state.audit_store
    entries = store.list_entries(user_id=user_id, limit=limit, offset=offset)
    return [AuditEntryResponse.from_entry(e) for e in entries]
