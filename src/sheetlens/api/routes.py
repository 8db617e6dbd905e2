"""API routes for SheetLens."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException

from ..modes import ApproveAllRequest, ProposeRequest, RejectRequest
from ..ops.models import ApprovalOutcome, PreviewState

router = APIRouter()


def get_engine():
    """Get the global engine instance."""
    from .app import get_engine as _get_engine

    return _get_engine()


def get_router():
    """Get the global operation router."""
    from .app import get_router as _get_router

    return _get_router()


def _approval_response(outcome: ApprovalOutcome) -> dict:
    if outcome.code == "not_found":
        raise HTTPException(status_code=404, detail=outcome.error)
    if outcome.code in ("blocked", "invalid_state"):
        raise HTTPException(status_code=409, detail=outcome.error)
    return outcome.model_dump(mode="json")


# Proposals and previews


@router.post("/operations/propose")
async def propose_operations(request: ProposeRequest):
    """
    Classify and route a batch of proposed operations.

    Each operation is answered with a status:
    - approved: read-only, or executed immediately in agent-yolo mode
    - queued_for_preview: collected into the next preview batch
    - queued: waiting for single approval under /actions
    - rejected: not allowed in this mode
    """
    responses = await get_router().route(request)
    return {
        "workbook_id": request.workbook_id,
        "mode": request.mode.value,
        "responses": [r.model_dump(mode="json") for r in responses],
    }


@router.get("/preview/{workbook_id}")
async def get_preview(workbook_id: str):
    """Get the active preview (hunks and state) for a workbook."""
    outcome = await get_engine().preview(workbook_id)
    return outcome.model_dump(mode="json")


@router.post("/preview/{workbook_id}/flush")
async def flush_preview(workbook_id: str):
    """Start the preview for queued operations without waiting for the debounce window."""
    outcome = await get_engine().flush(workbook_id)
    return outcome.model_dump(mode="json")


@router.post("/preview/{workbook_id}/apply")
async def apply_preview(workbook_id: str):
    """
    Commit the previewed operations.

    Returns per-operation results. If any operation fails the preview stays
    open so it can be retried or cancelled.
    """
    engine = get_engine()
    if engine.preview_state(workbook_id) != PreviewState.PREVIEWING:
        raise HTTPException(
            status_code=409, detail=f"No preview awaiting approval for {workbook_id}"
        )
    outcome = await engine.apply(workbook_id)
    return outcome.model_dump(mode="json")


@router.post("/preview/{workbook_id}/cancel")
async def cancel_preview(workbook_id: str):
    """Discard the preview and restore highlighted cells. Safe to call repeatedly."""
    outcome = await get_engine().cancel(workbook_id)
    if not outcome.success:
        raise HTTPException(status_code=409, detail=outcome.error)
    return outcome.model_dump(mode="json")


# Pending actions


@router.get("/actions/summary")
async def get_actions_summary(session_id: Optional[str] = None):
    """Counts by status, blocked flag and batch roll-ups."""
    return get_engine().summary(session_id).model_dump(mode="json")


@router.get("/actions")
async def list_actions(session_id: Optional[str] = None):
    """List pending actions in insertion order."""
    actions = get_engine().approvals.list_actions(session_id=session_id)
    return {"actions": [a.model_dump(mode="json") for a in actions], "count": len(actions)}


@router.post("/actions/approve-all")
async def approve_all_actions(request: Optional[ApproveAllRequest] = None):
    """Approve every ready action (or one batch) in dependency order."""
    request = request or ApproveAllRequest()
    outcomes = await get_engine().approve_all(
        batch_id=request.batch_id, session_id=request.session_id
    )
    return {
        "results": [o.model_dump(mode="json") for o in outcomes],
        "approved": sum(1 for o in outcomes if o.success),
        "failed": sum(1 for o in outcomes if not o.success),
    }


@router.post("/actions/cleanup")
async def cleanup_actions(max_age_minutes: int = 60):
    """Forget actions that finished more than ``max_age_minutes`` ago."""
    if max_age_minutes < 0:
        raise HTTPException(status_code=422, detail="max_age_minutes must not be negative")
    removed = get_engine().cleanup(timedelta(minutes=max_age_minutes))
    return {"removed": removed}


@router.get("/actions/{action_id}")
async def get_action(action_id: str):
    """Get one pending action."""
    action = get_engine().approvals.get(action_id)
    if action is None:
        raise HTTPException(status_code=404, detail="Action not found")
    return action.model_dump(mode="json")


@router.post("/actions/{action_id}/approve")
async def approve_action(action_id: str):
    """Approve and execute one action."""
    return _approval_response(await get_engine().approve(action_id))


@router.post("/actions/{action_id}/reject")
async def reject_action(action_id: str, request: Optional[RejectRequest] = None):
    """Reject one action. Actions that depend on it stay blocked."""
    reason = request.reason if request else None
    return _approval_response(get_engine().reject(action_id, reason))


@router.post("/actions/{action_id}/retry")
async def retry_action(action_id: str):
    """Return a failed or rejected action to pending."""
    return _approval_response(get_engine().retry(action_id))


@router.post("/actions/{action_id}/cancel")
async def cancel_action(action_id: str):
    """Withdraw a pending action."""
    return _approval_response(get_engine().cancel_action(action_id))


@router.delete("/sessions/{session_id}")
async def clear_session(session_id: str):
    """Drop every action belonging to a chat session."""
    removed = get_engine().clear_session(session_id)
    return {"session_id": session_id, "removed": removed}


# Diagnostics


@router.get("/health")
async def health_check():
    """Health check endpoint with diagnostics."""
    from ..config import settings

    # Gather non-secret diagnostics
    config = {
        "host_backend": settings.host_backend,
        "default_autonomy_mode": settings.default_autonomy_mode,
        "default_active_sheet": settings.default_active_sheet,
    }
    if settings.host_backend == "gsheets":
        config["google_credentials_configured"] = settings.google_credentials_path.exists()

    return {
        "status": "ok",
        "service": "sheetlens",
        "config": config,
    }


@router.get("/config/limits")
async def get_config_limits():
    """Get batching, diff and autonomy rule limits."""
    from ..config import settings

    return {
        "batching": {
            "debounce_delay_ms": settings.debounce_delay_ms,
            "debounce_max_wait_ms": settings.debounce_max_wait_ms,
            "immediate_flush_threshold": settings.immediate_flush_threshold,
        },
        "diff": {
            "max_diffs": settings.max_diffs,
            "chunk_size": settings.diff_chunk_size,
            "include_styles": settings.include_styles_in_diff,
            "bounding_range_padding": settings.bounding_range_padding,
        },
        "autonomy_rules": {
            "max_cells_per_change": settings.max_cells_per_change,
            "max_value_change_percent": settings.max_value_change_percent,
            "max_formula_complexity": settings.max_formula_complexity,
        },
    }
