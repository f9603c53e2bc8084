"""
audit/interceptor.py -- Record an audit entry after a successful response.

Pattern: Decorator over Starlette route handlers. audit_log(action) takes an
`async (Request) -> Response` handler and returns one with identical request
and response behaviour plus a recording side effect:

  1. Read the raw body (Starlette caches it, so FastAPI's own body parsing
     afterwards sees the same bytes).
  2. Await the wrapped handler to completion. The response is returned
     untouched -- body, headers and status code are never altered.
  3. If the final status is 2xx, build an AuditEntry and attach its write to
     the response as a background task. Starlette runs it after the body has
     been sent, so the write never delays the client.
  4. Any other status, or an exception escaping the handler (HTTPException,
     an AuthError from the verifier or gate), records nothing and the
     exception propagates unchanged.

A failing audit write is logged and dropped. It never reaches the client.

Routes opt in declaratively:

    router = APIRouter(route_class=AuditedRoute)

    @router.post("/tasks", status_code=201)
    @audited("create_task")
    def create_task(...): ...

Each @audited tag is an independent wrap; stacking two tags records two
entries for one request.

Layer rule: no imports from api/ or tasks/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fastapi.routing import APIRoute
from starlette.background import BackgroundTask, BackgroundTasks
from starlette.requests import Request
from starlette.responses import Response

from audit.models import AuditEntry
from audit.store import AuditStore

logger = logging.getLogger("taskdesk.audit")

RouteHandler = Callable[[Request], Awaitable[Response]]
EndpointT = TypeVar("EndpointT", bound=Callable[..., Any])

# Request body keys whose values are replaced before an entry is stored.
REDACTED_FIELDS = frozenset({"password", "current_password", "new_password"})
_REDACTED = "***"

_AUDIT_ACTIONS_ATTR = "__audit_actions__"


# ---------------------------------------------------------------------------
# Entry construction
# ---------------------------------------------------------------------------


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: (_REDACTED if k in REDACTED_FIELDS else _redact(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def _decode_body(raw: bytes) -> Any:
    """Return the redacted JSON payload, or None for an empty / non-JSON body."""
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None
    return _redact(payload)


def build_entry(action: str, request: Request, raw_body: bytes, status_code: int) -> AuditEntry:
    """Assemble an AuditEntry from the finished request.

    The subject comes from request.state.user, which get_current_user()
    sets. A route without the verifier in front records user_id=None.
    """
    user = getattr(request.state, "user", None)
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    return AuditEntry(
        action=action,
        user_id=getattr(user, "id", None),
        ip_address=request.client.host if request.client else None,
        method=request.method,
        path=path,
        request_body=_decode_body(raw_body),
        status_code=status_code,
    )


def _record_safely(store: AuditStore, entry: AuditEntry) -> None:
    try:
        store.record(entry)
    except Exception:
        logger.exception("Failed to record audit entry %r for %s %s", entry.action, entry.method, entry.path)


def _append_background(response: Response, task: BackgroundTask) -> None:
    """Run `task` after the response, keeping any background work already attached."""
    if response.background is None:
        response.background = task
    else:
        response.background = BackgroundTasks(tasks=[response.background, task])


# ---------------------------------------------------------------------------
# Handler composition
# ---------------------------------------------------------------------------


def audit_log(action: str) -> Callable[[RouteHandler], RouteHandler]:
    """Return a decorator that records `action` whenever the handler answers 2xx."""

    def wrap(handler: RouteHandler) -> RouteHandler:
        async def audited_handler(request: Request) -> Response:
            raw_body = await request.body()
            response = await handler(request)
            if not 200 <= response.status_code < 300:
                return response

            store: AuditStore | None = getattr(request.app.state, "audit_store", None)
            if store is None:
                logger.error("No audit store configured; dropping %r entry", action)
                return response
            entry = build_entry(action, request, raw_body, response.status_code)
            _append_background(response, BackgroundTask(_record_safely, store, entry))
            return response

        return audited_handler

    return wrap


def audited(action: str) -> Callable[[EndpointT], EndpointT]:
    """Tag a FastAPI endpoint so AuditedRoute wraps it with audit_log(action).

    Place it BELOW the @router.<method> decorator so the tag is already on
    the function when the router registers it.
    """

    def decorator(endpoint: EndpointT) -> EndpointT:
        actions = getattr(endpoint, _AUDIT_ACTIONS_ATTR, ())
        setattr(endpoint, _AUDIT_ACTIONS_ATTR, (*actions, action))
        return endpoint

    return decorator


class AuditedRoute(APIRoute):
    """APIRoute that applies one audit_log wrap per @audited tag on its endpoint.

    Untagged endpoints get FastAPI's handler unchanged.
    """

    def get_route_handler(self) -> RouteHandler:
        handler = super().get_route_handler()
        for action in getattr(self.endpoint, _AUDIT_ACTIONS_ATTR, ()):
            handler = audit_log(action)(handler)
        return handler
