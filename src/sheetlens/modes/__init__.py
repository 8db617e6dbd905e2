"""Autonomy modes for SheetLens - what the agent may do without asking."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..config import settings
from ..snapshot.models import AISuggestedOperation


class AutonomyMode(str, Enum):
    """How much the agent may change without explicit approval."""

    ASK = "ask"  # Read-only - every write is rejected
    AGENT_DEFAULT = "agent-default"  # Writes are previewed before commit
    AGENT_YOLO = "agent-yolo"  # Writes execute immediately within rule limits


class OperationCategory(str, Enum):
    """Kind of change a tool makes, for permission checks."""

    CELL_VALUE = "cell_value"
    FORMULA = "formula"
    FORMATTING = "formatting"
    ROW_INSERTION = "row_insertion"
    ROW_DELETION = "row_deletion"
    SHEET_CREATION = "sheet_creation"
    DATA_IMPORT = "data_import"


class ApprovalRequirement(str, Enum):
    """Conditions that force single approval even in agent-yolo mode."""

    LARGE_VALUE_CHANGE = "large_value_change"
    FORMULA_MODIFICATION = "formula_modification"
    STRUCTURAL_CHANGE = "structural_change"
    EXTERNAL_DATA_ACCESS = "external_data_access"
    MULTI_CELL_OPERATION = "multi_cell_operation"


class AutonomyPermissions(BaseModel):
    """Categories of change the agent may touch at all."""

    can_modify_values: bool = True
    can_modify_formulas: bool = True
    can_modify_formatting: bool = True
    can_add_rows: bool = True
    can_delete_rows: bool = True
    can_access_external_data: bool = True


class AutonomyRules(BaseModel):
    """Thresholds above which an operation needs explicit approval."""

    max_cells_per_change: int = Field(default_factory=lambda: settings.max_cells_per_change)
    max_value_change_percent: float = Field(
        default_factory=lambda: settings.max_value_change_percent
    )
    max_formula_complexity: int = Field(default_factory=lambda: settings.max_formula_complexity)
    require_approval_for: list[ApprovalRequirement] = Field(default_factory=list)


class AutonomyConfig(BaseModel):
    """Mode plus the rules and permissions that apply to it."""

    mode: AutonomyMode
    rules: AutonomyRules = Field(default_factory=AutonomyRules)
    permissions: AutonomyPermissions = Field(default_factory=AutonomyPermissions)


def preset_for(mode: AutonomyMode) -> AutonomyConfig:
    """Default configuration for a mode."""
    if mode == AutonomyMode.ASK:
        return AutonomyConfig(
            mode=mode,
            rules=AutonomyRules(
                max_cells_per_change=0,
                max_value_change_percent=0,
                max_formula_complexity=0,
                require_approval_for=list(ApprovalRequirement),
            ),
            permissions=AutonomyPermissions(
                can_modify_values=False,
                can_modify_formulas=False,
                can_modify_formatting=False,
                can_add_rows=False,
                can_delete_rows=False,
                can_access_external_data=False,
            ),
        )
    if mode == AutonomyMode.AGENT_DEFAULT:
        return AutonomyConfig(
            mode=mode,
            rules=AutonomyRules(
                require_approval_for=[
                    ApprovalRequirement.STRUCTURAL_CHANGE,
                    ApprovalRequirement.EXTERNAL_DATA_ACCESS,
                ]
            ),
        )
    return AutonomyConfig(mode=mode)


class ProposeRequest(BaseModel):
    """A batch of proposed operations from the agent."""

    workbook_id: str = Field(description="Target workbook (spreadsheet) ID")
    operations: list[AISuggestedOperation] = Field(description="Operations in proposal order")
    mode: AutonomyMode = Field(
        default_factory=lambda: AutonomyMode(settings.default_autonomy_mode),
        description="Autonomy mode for this batch",
    )
    active_sheet: Optional[str] = Field(
        default=None, description="Sheet used by ranges without a sheet prefix"
    )
    session_id: Optional[str] = Field(default=None, description="Chat session ID")
    flush: bool = Field(default=False, description="Start the preview without waiting")


class RejectRequest(BaseModel):
    """Request to reject a pending action."""

    reason: Optional[str] = None


class ApproveAllRequest(BaseModel):
    """Request to approve every ready action, optionally for one batch."""

    batch_id: Optional[str] = None
    session_id: Optional[str] = None


class QueueActionRequest(BaseModel):
    """Extra queueing options carried in an operation's input."""

    dependencies: list[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    priority: int = 0

    @classmethod
    def from_input(cls, payload: dict[str, Any]) -> "QueueActionRequest":
        return cls(
            dependencies=payload.get("depends_on") or [],
            batch_id=payload.get("batch_id"),
            priority=payload.get("priority") or 0,
        )


__all__ = [
    "AutonomyMode",
    "OperationCategory",
    "ApprovalRequirement",
    "AutonomyPermissions",
    "AutonomyRules",
    "AutonomyConfig",
    "preset_for",
    "ProposeRequest",
    "RejectRequest",
    "ApproveAllRequest",
    "QueueActionRequest",
]
