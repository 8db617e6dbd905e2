"""Preview orchestration, batching, highlighting and approvals."""

from .engine import SheetLensEngine
from .batch import DebouncedBatchQueue
from .executor import OperationExecutor
from .highlight import HighlightEngine, HighlightReport
from .models import (
    ActionStatus,
    ApprovalOutcome,
    BatchRollup,
    OperationResult,
    OperationSummary,
    PendingAction,
    PreviewOutcome,
    PreviewState,
    ToolResponse,
    ToolStatus,
)
from .preview import PreviewOrchestrator, PreviewSession
from .queue import ApprovalQueue

__all__ = [
    "SheetLensEngine",
    "DebouncedBatchQueue",
    "OperationExecutor",
    "HighlightEngine",
    "HighlightReport",
    "ActionStatus",
    "ApprovalOutcome",
    "BatchRollup",
    "OperationResult",
    "OperationSummary",
    "PendingAction",
    "PreviewOutcome",
    "PreviewState",
    "ToolResponse",
    "ToolStatus",
    "PreviewOrchestrator",
    "PreviewSession",
    "ApprovalQueue",
]
