"""Tests for API routes."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from sheetlens.api import create_app, set_engine
from sheetlens.api.routes import router
from sheetlens.ops import PreviewOutcome, PreviewState, SheetLensEngine
from sheetlens.snapshot import AISuggestedOperation


@pytest.fixture
def api_engine(memory_host):
    """Engine with a long debounce window, so only explicit flushes start previews."""
    return SheetLensEngine(
        host_factory=lambda workbook_id: memory_host, batch_delay=10, batch_max_wait=10
    )


@pytest.fixture
def client(api_engine):
    """Test client for the full app, backed by the in-memory engine."""
    set_engine(api_engine)
    with TestClient(create_app()) as test_client:
        yield test_client
    set_engine(None)


def _propose(client, mode, operations, **extra):
    return client.post(
        "/api/operations/propose",
        json={"workbook_id": "wb1", "mode": mode, "operations": operations, **extra},
    )


def _write(cell, value):
    return {"tool": "write_range", "input": {"range": cell, "values": [[value]]}}


class TestDiagnostics:
    """Test health and limits endpoints."""

    def test_health(self, client):
        """Test the health endpoint reports the service."""
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "sheetlens"
        assert "host_backend" in data["config"]

    def test_limits(self, client):
        """Test the limits endpoint lists every group."""
        data = client.get("/api/config/limits").json()
        assert set(data) == {"batching", "diff", "autonomy_rules"}
        assert "max_cells_per_change" in data["autonomy_rules"]


class TestPropose:
    """Test the propose endpoint."""

    def test_ask_mode_rejects_writes(self, client, api_engine):
        """Test ask mode answers writes with a rejection."""
        response = _propose(client, "ask", [_write("B2", 1)])

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "ask"
        assert data["responses"][0]["status"] == "rejected"
        assert api_engine.summary().total == 0

    def test_invalid_mode(self, client):
        """Test an unknown mode fails validation."""
        response = _propose(client, "reckless", [_write("B2", 1)])
        assert response.status_code == 422

    def test_yolo_queues_large_change(self, client):
        """Test an over-limit write comes back with an action id."""
        data = _propose(client, "agent-yolo", [_write("B2", 9000)]).json()
        assert data["responses"][0]["status"] == "queued"
        assert data["responses"][0]["action_id"]


class TestPreviewEndpoints:
    """Test the preview lifecycle over HTTP."""

    def test_flush_preview_and_apply(self, client, memory_host):
        """Test propose with flush, inspect the preview, then apply it."""
        responses = _propose(client, "agent-default", [_write("B3", 450)], flush=True).json()["responses"]
        assert responses[0]["status"] == "queued_for_preview"

        preview = client.get("/api/preview/wb1").json()
        assert preview["state"] == "previewing"
        assert [h["key"]["row"] for h in preview["hunks"]] == [2]

        applied = client.post("/api/preview/wb1/apply")
        assert applied.status_code == 200
        assert applied.json()["state"] == "applied"
        assert memory_host.cells["Sheet1!B3"].v == 450
        assert client.get("/api/preview/wb1").json()["state"] == "idle"

    def test_flush_endpoint(self, client):
        """Test the flush endpoint starts a queued preview."""
        _propose(client, "agent-default", [_write("C1", "new")])
        data = client.post("/api/preview/wb1/flush").json()
        assert data["success"]
        assert data["state"] == "previewing"

    def test_apply_without_preview(self, client):
        """Test apply is a conflict when nothing is previewed."""
        response = client.post("/api/preview/wb1/apply")
        assert response.status_code == 409

    def test_cancel_is_idempotent(self, client, memory_host):
        """Test cancel restores the sheet and can be repeated."""
        _propose(client, "agent-default", [_write("B2", 1)], flush=True)

        first = client.post("/api/preview/wb1/cancel")
        second = client.post("/api/preview/wb1/cancel")
        assert first.status_code == second.status_code == 200
        assert first.json()["state"] == "idle"
        assert memory_host.cells["Sheet1!B2"].v == 1200

    def test_preview_with_mock_engine(self):
        """Test the preview route serialises the engine outcome."""
        app = FastAPI()
        app.include_router(router, prefix="/api")
        mock_engine = Mock()
        mock_engine.preview = AsyncMock(
            return_value=PreviewOutcome(success=True, workbook_id="wb9", state=PreviewState.IDLE)
        )

        with patch("sheetlens.api.routes.get_engine", return_value=mock_engine):
            response = TestClient(app).get("/api/preview/wb9")

        assert response.status_code == 200
        assert response.json()["workbook_id"] == "wb9"
        mock_engine.preview.assert_awaited_once_with("wb9")


class TestActionEndpoints:
    """Test the pending action endpoints."""

    @pytest.fixture
    def action_id(self, client):
        """One queued action from an over-limit yolo write."""
        data = _propose(client, "agent-yolo", [_write("B2", 9000)], session_id="chat-1").json()
        return data["responses"][0]["action_id"]

    def test_list_and_get(self, client, action_id):
        """Test listing and fetching actions."""
        listed = client.get("/api/actions").json()
        assert listed["count"] == 1
        assert listed["actions"][0]["id"] == action_id

        action = client.get(f"/api/actions/{action_id}").json()
        assert action["type"] == "write_range"
        assert action["status"] == "pending"

    def test_unknown_action(self, client):
        """Test unknown ids are 404."""
        assert client.get("/api/actions/missing").status_code == 404
        assert client.post("/api/actions/missing/approve").status_code == 404

    def test_approve(self, client, action_id, memory_host):
        """Test approving executes the write; approving again conflicts."""
        response = client.post(f"/api/actions/{action_id}/approve")
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert memory_host.cells["Sheet1!B2"].v == 9000

        assert client.post(f"/api/actions/{action_id}/approve").status_code == 409

    def test_reject_then_retry(self, client, action_id):
        """Test reject with a reason, then retry back to pending."""
        rejected = client.post(f"/api/actions/{action_id}/reject", json={"reason": "too big"})
        assert rejected.json()["error"] == "too big"

        retried = client.post(f"/api/actions/{action_id}/retry")
        assert retried.json()["status"] == "pending"

    def test_reject_without_body(self, client, action_id):
        """Test reject works without a request body."""
        response = client.post(f"/api/actions/{action_id}/reject")
        assert response.json()["error"] == "Rejected by user"

    def test_cancel(self, client, action_id):
        """Test cancelling a pending action."""
        assert client.post(f"/api/actions/{action_id}/cancel").json()["status"] == "cancelled"

    def test_blocked_approval_conflicts(self, client, api_engine, action_id):
        """Test approving an action with an unfinished dependency is a conflict."""
        dependent = api_engine.queue_action(
            "wb1",
            AISuggestedOperation(tool="write_range", input={"range": "B3", "values": [[1]]}),
            "Sheet1",
            dependencies=[action_id],
        )
        response = client.post(f"/api/actions/{dependent.id}/approve")
        assert response.status_code == 409

    def test_approve_all_and_summary(self, client, api_engine, action_id):
        """Test bulk approval and the summary counts."""
        api_engine.queue_action(
            "wb1",
            AISuggestedOperation(tool="write_range", input={"range": "C3", "values": [[2]]}),
            "Sheet1",
            dependencies=[action_id],
        )
        summary = client.get("/api/actions/summary").json()
        assert summary["pending"] == 2
        assert summary["has_blocked"]

        data = client.post("/api/actions/approve-all").json()
        assert data["approved"] == 2
        assert data["failed"] == 0
        assert client.get("/api/actions/summary").json()["completed"] == 2

    def test_clear_session(self, client, action_id):
        """Test deleting a session drops its actions."""
        response = client.delete("/api/sessions/chat-1")
        assert response.json() == {"session_id": "chat-1", "removed": 1}
        assert client.get("/api/actions").json()["count"] == 0

    def test_cleanup(self, client, api_engine, action_id):
        """Test cleanup forgets finished actions older than the cutoff."""
        client.post(f"/api/actions/{action_id}/cancel")
        api_engine.approvals.get(action_id).completed_at = datetime.now(timezone.utc) - timedelta(
            hours=2
        )

        assert client.post("/api/actions/cleanup?max_age_minutes=60").json() == {"removed": 1}
        assert client.get(f"/api/actions/{action_id}").status_code == 404
        assert client.post("/api/actions/cleanup?max_age_minutes=-1").status_code == 422
