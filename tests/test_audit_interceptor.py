"""
tests/test_audit_interceptor.py -- Unit tests for audit_log() handler composition.

Handlers here are plain `async (Request) -> Response` callables, the same
shape AuditedRoute wraps. Requests are built straight from an ASGI scope with
a stand-in app whose state carries a MagicMock audit store, so every test can
inspect exactly which entries would have been written.

The recording side effect lives on response.background; tests run it
explicitly with asyncio.run() the way Starlette would after sending the body.
"""

from __future__ import annotations

import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse

from audit.interceptor import audit_log, audited
from auth.models import User


def _make_request(
    body: bytes = b"",
    *,
    user: User | None = None,
    store=None,
    method: str = "POST",
    path: str = "/api/v1/tasks",
    query: bytes = b"",
) -> Request:
    state = SimpleNamespace() if store is None else SimpleNamespace(audit_store=store)
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query,
        "headers": [(b"content-type", b"application/json"), (b"host", b"testserver")],
        "client": ("10.0.0.5", 51000),
        "server": ("testserver", 80),
        "app": SimpleNamespace(state=state),
        "state": {},
    }
    messages = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    request = Request(scope, receive)
    if user is not None:
        request.state.user = user
    return request


def _responder(status_code: int = 200, payload=None):
    """Build a handler that reads the body (as FastAPI would) and answers status_code."""
    seen: dict = {}

    async def handler(request: Request):
        seen["body"] = await request.body()
        return JSONResponse(payload if payload is not None else {"ok": True}, status_code=status_code)

    handler.seen = seen
    return handler


def _run(request: Request, handler):
    response = asyncio.run(handler(request))
    if response.background is not None:
        asyncio.run(response.background())
    return response


ALICE = User(id=3, username="alice", email="alice@example.com", hashed_password="x")


class TestRecordsOnSuccess:
    """2xx responses produce exactly one entry per wrap."""

    def test_records_entry_with_subject_and_tag(self) -> None:
        store = MagicMock()
        body = json.dumps({"title": "Write report"}).encode()
        request = _make_request(body, user=ALICE, store=store)

        response = _run(request, audit_log("create_task")(_responder(201)))

        assert response.status_code == 201
        store.record.assert_called_once()
        entry = store.record.call_args.args[0]
        assert entry.action == "create_task"
        assert entry.user_id == 3
        assert entry.ip_address == "10.0.0.5"
        assert entry.method == "POST"
        assert entry.path == "/api/v1/tasks"
        assert entry.request_body == {"title": "Write report"}
        assert entry.status_code == 201

    def test_response_is_returned_untouched(self) -> None:
        store = MagicMock()
        request = _make_request(b"{}", user=ALICE, store=store)
        response = _run(request, audit_log("x")(_responder(200, {"id": 42})))
        assert json.loads(response.body) == {"id": 42}
        assert response.headers["content-type"] == "application/json"

    def test_handler_still_sees_the_body(self) -> None:
        """The wrap consumes the body first; Starlette's cache hands it on."""
        handler = _responder(200)
        request = _make_request(b'{"a": 1}', user=ALICE, store=MagicMock())
        _run(request, audit_log("x")(handler))
        assert handler.seen["body"] == b'{"a": 1}'

    def test_query_string_kept_in_path(self) -> None:
        store = MagicMock()
        request = _make_request(method="DELETE", path="/api/v1/tasks/5", query=b"force=1", user=ALICE, store=store)
        _run(request, audit_log("delete_task")(_responder(200)))
        assert store.record.call_args.args[0].path == "/api/v1/tasks/5?force=1"

    def test_missing_identity_recorded_as_none(self) -> None:
        store = MagicMock()
        _run(_make_request(b"{}", store=store), audit_log("anon")(_responder(200)))
        assert store.record.call_args.args[0].user_id is None

    def test_non_json_body_stored_as_none(self) -> None:
        store = MagicMock()
        _run(_make_request(b"not json", user=ALICE, store=store), audit_log("x")(_responder(200)))
        assert store.record.call_args.args[0].request_body is None

    def test_secrets_are_redacted(self) -> None:
        store = MagicMock()
        body = json.dumps(
            {"username": "alice", "password": "hunter22", "profile": {"current_password": "old", "new_password": "n"}}
        ).encode()
        _run(_make_request(body, user=ALICE, store=store), audit_log("update_profile")(_responder(200)))
        recorded = store.record.call_args.args[0].request_body
        assert recorded == {
            "username": "alice",
            "password": "***",
            "profile": {"current_password": "***", "new_password": "***"},
        }


class TestSkipsOnFailure:
    """Non-2xx outcomes and exceptions leave the trail untouched."""

    @pytest.mark.parametrize("status_code", [301, 400, 401, 403, 404, 500])
    def test_non_2xx_not_recorded(self, status_code: int) -> None:
        store = MagicMock()
        response = _run(_make_request(b"{}", user=ALICE, store=store), audit_log("x")(_responder(status_code)))
        assert response.status_code == status_code
        assert response.background is None
        store.record.assert_not_called()

    def test_exception_propagates_unchanged(self) -> None:
        store = MagicMock()

        async def handler(request: Request):
            raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Task not found."})

        with pytest.raises(HTTPException) as exc_info:
            asyncio.run(audit_log("update_task")(handler)(_make_request(b"{}", user=ALICE, store=store)))
        assert exc_info.value.status_code == 404
        store.record.assert_not_called()

    def test_store_failure_is_logged_not_raised(self, caplog: pytest.LogCaptureFixture) -> None:
        store = MagicMock()
        store.record.side_effect = RuntimeError("disk full")
        request = _make_request(b"{}", user=ALICE, store=store)

        with caplog.at_level(logging.ERROR, logger="taskdesk.audit"):
            response = _run(request, audit_log("create_task")(_responder(201)))

        assert response.status_code == 201
        assert "Failed to record audit entry" in caplog.text

    def test_no_store_configured(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="taskdesk.audit"):
            response = _run(_make_request(b"{}", user=ALICE), audit_log("x")(_responder(200)))
        assert response.status_code == 200
        assert response.background is None
        assert "No audit store configured" in caplog.text


class TestComposition:
    def test_stacked_wraps_record_independently(self) -> None:
        store = MagicMock()
        handler = audit_log("outer")(audit_log("inner")(_responder(200)))
        _run(_make_request(b"{}", user=ALICE, store=store), handler)
        actions = [c.args[0].action for c in store.record.call_args_list]
        assert actions == ["inner", "outer"]

    def test_existing_background_task_preserved(self) -> None:
        store = MagicMock()
        ran: list[str] = []

        def marker() -> None:
            ran.append("marker")

        async def handler(request: Request):
            await request.body()
            return JSONResponse({"ok": True}, background=BackgroundTask(marker))

        _run(_make_request(b"{}", user=ALICE, store=store), audit_log("x")(handler))
        assert ran == ["marker"]
        store.record.assert_called_once()

    def test_audited_tags_accumulate(self) -> None:
        @audited("second")
        @audited("first")
        def endpoint():
            return None

        assert endpoint.__audit_actions__ == ("first", "second")
