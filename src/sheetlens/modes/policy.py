"""Classifies proposed operations under an autonomy configuration."""

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..engine.simulator import as_value_grid
from ..errors import ParseError
from ..snapshot.models import AISuggestedOperation, CellKey, WorkbookSnapshot
from ..snapshot.refs import RangeRef, parse_range
from . import (
    ApprovalRequirement,
    AutonomyConfig,
    AutonomyMode,
    OperationCategory,
    preset_for,
)

logger = logging.getLogger(__name__)

READ_PREFIXES = ("read_", "get_")

# Tools that are previewed as a batch in agent-default mode
WRITE_TOOLS = frozenset(
    {
        "write_range",
        "write_cell",
        "apply_formula",
        "clear_range",
        "format_range",
        "smart_format_cells",
        "merge_cells",
        "unmerge_cells",
    }
)

TOOL_CATEGORIES = {
    "write_range": OperationCategory.CELL_VALUE,
    "write_cell": OperationCategory.CELL_VALUE,
    "clear_range": OperationCategory.CELL_VALUE,
    "apply_formula": OperationCategory.FORMULA,
    "format_range": OperationCategory.FORMATTING,
    "smart_format_cells": OperationCategory.FORMATTING,
    "merge_cells": OperationCategory.FORMATTING,
    "unmerge_cells": OperationCategory.FORMATTING,
    "insert_rows": OperationCategory.ROW_INSERTION,
    "insert_columns": OperationCategory.ROW_INSERTION,
    "delete_rows": OperationCategory.ROW_DELETION,
    "delete_columns": OperationCategory.ROW_DELETION,
    "create_sheet": OperationCategory.SHEET_CREATION,
    "add_sheet": OperationCategory.SHEET_CREATION,
    "import_data": OperationCategory.DATA_IMPORT,
}

STRUCTURAL_CATEGORIES = {
    OperationCategory.ROW_INSERTION,
    OperationCategory.ROW_DELETION,
    OperationCategory.SHEET_CREATION,
}

# A numeric change of more than this percentage counts as a large value change
LARGE_VALUE_CHANGE_PERCENT = 50.0
MULTI_CELL_THRESHOLD = 10

_FUNCTION_CALL = re.compile(r"[A-Z][A-Z0-9.]*\(")
_OPERATOR = re.compile(r"[+\-*/^&]")


def is_read_tool(tool: str) -> bool:
    return tool.startswith(READ_PREFIXES)


def formula_complexity(formula: str) -> int:
    """
    Rough complexity score for a formula.

    One point per function call, plus the deepest parenthesis nesting, plus
    half a point per arithmetic or concatenation operator, rounded up.
    """
    body = formula[1:] if formula.startswith("=") else formula
    score = float(len(_FUNCTION_CALL.findall(body.upper())))

    depth = max_depth = 0
    for char in body:
        if char == "(":
            depth += 1
            max_depth = max(max_depth, depth)
        elif char == ")":
            depth -= 1
    score += max_depth
    score += len(_OPERATOR.findall(body)) * 0.5
    return math.ceil(score)


def category_for(operation: AISuggestedOperation) -> Optional[OperationCategory]:
    """Permission category of an operation; None for tools outside the known set."""
    category = TOOL_CATEGORIES.get(operation.tool)
    if category == OperationCategory.CELL_VALUE and _formulas_in(operation):
        return OperationCategory.FORMULA
    return category


def _formulas_in(operation: AISuggestedOperation) -> list[str]:
    payload = operation.input or {}
    if operation.tool == "apply_formula":
        formula = payload.get("formula")
        return [formula] if isinstance(formula, str) else []
    values = payload.get("values", payload.get("value"))
    flat = []
    for row in values if isinstance(values, list) else [values]:
        flat.extend(row if isinstance(row, list) else [row])
    return [v for v in flat if isinstance(v, str) and v.startswith("=")]


def _target(operation: AISuggestedOperation, active_sheet: str) -> Optional[RangeRef]:
    payload = operation.input or {}
    target = payload.get("range") or payload.get("cell")
    if not isinstance(target, str):
        return None
    try:
        return parse_range(target, active_sheet)
    except ParseError:
        return None


def cells_affected(operation: AISuggestedOperation, active_sheet: str) -> int:
    """Number of cells an operation touches; 0 when its range is malformed."""
    ref = _target(operation, active_sheet)
    if ref is None:
        return 0
    values = (operation.input or {}).get("values")
    if operation.tool in ("write_range", "write_cell") and isinstance(values, list):
        grid = as_value_grid(values, ref)
        return sum(len(row) if isinstance(row, list) else 1 for row in grid)
    return ref.cell_count


def max_value_change_percent(
    operation: AISuggestedOperation, active_sheet: str, before: WorkbookSnapshot
) -> float:
    """Largest relative change a write makes to an existing numeric cell."""
    ref = _target(operation, active_sheet)
    values = (operation.input or {}).get("values", (operation.input or {}).get("value"))
    if ref is None or values is None or operation.tool not in ("write_range", "write_cell"):
        return 0.0

    largest = 0.0
    for row_offset, row in enumerate(as_value_grid(values, ref)):
        for col_offset, new in enumerate(row if isinstance(row, list) else [row]):
            key = CellKey(
                sheet=ref.sheet, row=ref.start_row + row_offset, col=ref.start_col + col_offset
            ).to_string()
            cell = before.get(key)
            old = cell.v if cell else None
            if not _is_number(old) or not _is_number(new) or old == 0:
                continue
            largest = max(largest, abs((new - old) / old) * 100)
    return largest


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class DecisionKind(str, Enum):
    """What to do with a proposed operation."""

    AUTO_APPROVE = "auto_approve"  # read-only, run straight away
    EXECUTE = "execute"  # write immediately
    PREVIEW = "preview"  # send to the batch queue for a preview
    QUEUE = "queue"  # needs single approval
    REJECT = "reject"


@dataclass
class Decision:
    kind: DecisionKind
    reason: str = ""
    violations: list[str] = field(default_factory=list)


class AutonomyPolicy:
    """Applies an AutonomyConfig to individual operations."""

    def __init__(self, config: Optional[AutonomyConfig] = None, mode: Optional[AutonomyMode] = None):
        if config is None:
            config = preset_for(mode or AutonomyMode.AGENT_DEFAULT)
        self.config = config

    @property
    def mode(self) -> AutonomyMode:
        return self.config.mode

    def evaluate(
        self,
        operation: AISuggestedOperation,
        active_sheet: str,
        before: Optional[WorkbookSnapshot] = None,
    ) -> Decision:
        """
        Classify one operation.

        Args:
            operation: The proposed operation
            active_sheet: Sheet used by ranges without a sheet prefix
            before: Current cell state, used for the value change rule
        """
        tool = operation.tool
        if is_read_tool(tool):
            return Decision(DecisionKind.AUTO_APPROVE, "Read-only tool")

        if self.mode == AutonomyMode.ASK:
            return Decision(
                DecisionKind.REJECT,
                f"Ask mode is read-only; {tool} was not applied. "
                "Switch to an agent mode to let the assistant make changes.",
            )

        denied = self.check_permissions(operation)
        if denied:
            return Decision(DecisionKind.REJECT, f"Permission denied: {denied}")

        if self.mode == AutonomyMode.AGENT_DEFAULT:
            if tool in WRITE_TOOLS:
                return Decision(DecisionKind.PREVIEW, "Queued for preview")
            return Decision(DecisionKind.QUEUE, f"{tool} needs approval")

        violations = self.check_rules(operation, active_sheet, before)
        if violations:
            logger.info(f"{tool} needs approval: {'; '.join(violations)}")
            return Decision(DecisionKind.QUEUE, "Needs approval: " + "; ".join(violations), violations)
        return Decision(DecisionKind.EXECUTE, "Executed immediately")

    def check_permissions(self, operation: AISuggestedOperation) -> Optional[str]:
        """Return why the operation's category is off limits, or None."""
        perms = self.config.permissions
        category = category_for(operation)
        if category == OperationCategory.CELL_VALUE and not perms.can_modify_values:
            return "Cannot modify values"
        if category == OperationCategory.FORMULA and not perms.can_modify_formulas:
            return "Cannot modify formulas"
        if category == OperationCategory.FORMATTING and not perms.can_modify_formatting:
            return "Cannot modify formatting"
        if category in (OperationCategory.ROW_INSERTION, OperationCategory.SHEET_CREATION):
            if not perms.can_add_rows:
                return "Cannot add rows"
        if category == OperationCategory.ROW_DELETION and not perms.can_delete_rows:
            return "Cannot delete rows"
        if category == OperationCategory.DATA_IMPORT and not perms.can_access_external_data:
            return "Cannot access external data"
        return None

    def check_rules(
        self,
        operation: AISuggestedOperation,
        active_sheet: str,
        before: Optional[WorkbookSnapshot] = None,
    ) -> list[str]:
        """Threshold and approval-requirement violations for an operation."""
        rules = self.config.rules
        violations = []

        cells = cells_affected(operation, active_sheet)
        if cells > rules.max_cells_per_change:
            violations.append(f"Affects {cells} cells, max is {rules.max_cells_per_change}")

        change = max_value_change_percent(operation, active_sheet, before) if before else 0.0
        if change > rules.max_value_change_percent:
            violations.append(
                f"Value change {change:.1f}% exceeds max {rules.max_value_change_percent}%"
            )

        for formula in _formulas_in(operation):
            complexity = formula_complexity(formula)
            if complexity > rules.max_formula_complexity:
                violations.append(
                    f"Formula complexity {complexity} exceeds max {rules.max_formula_complexity}"
                )
                break

        category = category_for(operation)
        for requirement in rules.require_approval_for:
            if requirement == ApprovalRequirement.LARGE_VALUE_CHANGE:
                if change > LARGE_VALUE_CHANGE_PERCENT:
                    violations.append("Large value change")
            elif requirement == ApprovalRequirement.FORMULA_MODIFICATION:
                if category == OperationCategory.FORMULA:
                    violations.append("Formula modification")
            elif requirement == ApprovalRequirement.STRUCTURAL_CHANGE:
                if category in STRUCTURAL_CATEGORIES:
                    violations.append("Structural change")
            elif requirement == ApprovalRequirement.EXTERNAL_DATA_ACCESS:
                if category == OperationCategory.DATA_IMPORT:
                    violations.append("External data access")
            elif requirement == ApprovalRequirement.MULTI_CELL_OPERATION:
                if cells > MULTI_CELL_THRESHOLD:
                    violations.append("Multi-cell operation")
        return violations


__all__ = [
    "READ_PREFIXES",
    "WRITE_TOOLS",
    "AutonomyPolicy",
    "Decision",
    "DecisionKind",
    "is_read_tool",
    "formula_complexity",
    "cells_affected",
    "category_for",
]
