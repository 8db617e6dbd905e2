"""Data models for previews, pending actions and transport responses."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..snapshot.models import AISuggestedOperation, DiffHunk


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionStatus(str, Enum):
    """Lifecycle of a pending action."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {
    ActionStatus.REJECTED,
    ActionStatus.COMPLETED,
    ActionStatus.FAILED,
    ActionStatus.CANCELLED,
}


class PendingAction(BaseModel):
    """An operation waiting for explicit user approval."""

    id: str
    type: str  # tool name
    input: dict[str, Any] = Field(default_factory=dict)
    status: ActionStatus = ActionStatus.PENDING
    dependencies: list[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    priority: int = 0
    can_approve: bool = True
    description: Optional[str] = None
    request_id: Optional[str] = None
    session_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def to_operation(self) -> AISuggestedOperation:
        return AISuggestedOperation(
            tool=self.type,
            input=self.input,
            description=self.description,
            request_id=self.request_id,
        )


class BatchRollup(BaseModel):
    """Aggregate state of one batch of pending actions."""

    id: str
    size: int
    ready_count: int
    can_approve_all: bool


class OperationSummary(BaseModel):
    """Counts by status for bulk-action affordances."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    has_blocked: bool = False
    batches: list[BatchRollup] = Field(default_factory=list)


class ToolStatus(str, Enum):
    """Per-operation status reported back to the proposer."""

    QUEUED = "queued"
    QUEUED_FOR_PREVIEW = "queued_for_preview"
    APPROVED = "approved"
    REJECTED = "rejected"


class ToolResponse(BaseModel):
    """Status update for one proposed operation."""

    request_id: Optional[str] = None
    tool: str
    status: ToolStatus
    message: str = ""
    error: Optional[str] = None
    result: Any = None
    action_id: Optional[str] = None


class OperationResult(BaseModel):
    """Outcome of executing one operation against the real host."""

    index: int
    tool: str
    request_id: Optional[str] = None
    success: bool
    result: Any = None
    error: Optional[str] = None


class PreviewState(str, Enum):
    """Preview session lifecycle."""

    IDLE = "idle"
    COMPUTING = "computing"
    PREVIEWING = "previewing"
    APPLYING = "applying"
    APPLIED = "applied"


class PreviewOutcome(BaseModel):
    """Typed result of every public preview entry point."""

    success: bool
    workbook_id: str
    state: PreviewState
    session_id: Optional[str] = None
    hunks: list[DiffHunk] = Field(default_factory=list)
    truncated: bool = False
    queued: bool = False  # batch waits behind the active session
    operation_results: list[OperationResult] = Field(default_factory=list)
    highlight_errors: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    code: Optional[str] = None  # no_changes, snapshot_failed, invalid_state or apply_failed
    message: str = ""


class ApprovalOutcome(BaseModel):
    """Typed result of an approval queue request."""

    action_id: str
    success: bool
    status: Optional[ActionStatus] = None
    result: Any = None
    error: Optional[str] = None
    code: Optional[str] = None  # not_found, blocked or invalid_state when rejected
