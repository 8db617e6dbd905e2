"""Predicts post-edit workbook state without touching the live document."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..errors import ParseError
from ..snapshot.models import AISuggestedOperation, CellKey, CellSnapshot, WorkbookSnapshot
from ..snapshot.refs import RangeRef, parse_range
from .styles import merge_style, parse_style, resolve_preset, serialize_style, style_from_format_input

logger = logging.getLogger(__name__)


@dataclass
class SkippedOperation:
    """An operation that produced no change, and why."""

    index: int
    tool: str
    reason: str


@dataclass
class SimulationResult:
    """Snapshot after simulation plus per-operation bookkeeping."""

    snapshot: WorkbookSnapshot
    applied: list[int] = field(default_factory=list)
    skipped: list[SkippedOperation] = field(default_factory=list)


def _copy_snapshot(snapshot: WorkbookSnapshot) -> WorkbookSnapshot:
    return {key: cell.model_copy(deep=True) for key, cell in snapshot.items()}


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def as_value_grid(values: Any, ref: RangeRef) -> list[list[Any]]:
    """Normalize a tool's ``values`` payload into a 2-D grid."""
    if not isinstance(values, list):
        # A scalar fills the whole range
        return [[values] * ref.col_count for _ in range(ref.row_count)]
    if all(isinstance(row, list) for row in values):
        return values
    # A flat list runs down a single-column range, otherwise along one row
    if ref.col_count == 1 and ref.row_count > 1:
        return [[value] for value in values]
    return [list(values)]


class OperationSimulator:
    """
    Applies proposed operations to a snapshot copy, in order.

    Simulation is pure: the input snapshot is never mutated and no host
    calls are made. Unknown tools and malformed ranges are no-ops.
    """

    def __init__(self):
        self._handlers: dict[str, Callable[[WorkbookSnapshot, dict, str], None]] = {
            "write_range": self._simulate_write,
            "write_cell": self._simulate_write,
            "apply_formula": self._simulate_formula,
            "clear_range": self._simulate_clear,
            "format_range": self._simulate_format,
            "smart_format_cells": self._simulate_smart_format,
            "merge_cells": self._simulate_merge,
            "unmerge_cells": self._simulate_unmerge,
        }

    @property
    def supported_tools(self) -> set[str]:
        return set(self._handlers)

    def run(
        self,
        before: WorkbookSnapshot,
        operations: list[AISuggestedOperation],
        active_sheet: str,
    ) -> SimulationResult:
        """
        Simulate a batch of operations.

        Args:
            before: Snapshot to start from (not modified)
            operations: Operations applied in list order
            active_sheet: Sheet used by ranges without a sheet prefix

        Returns:
            SimulationResult with the predicted snapshot
        """
        result = SimulationResult(snapshot=_copy_snapshot(before))

        for index, operation in enumerate(operations):
            handler = self._handlers.get(operation.tool)
            if handler is None:
                logger.warning(f"Unknown tool '{operation.tool}' ignored during simulation")
                result.skipped.append(SkippedOperation(index, operation.tool, "unknown tool"))
                continue

            try:
                handler(result.snapshot, operation.input or {}, active_sheet)
                result.applied.append(index)
            except ParseError as e:
                logger.warning(f"Skipping {operation.tool}: {e}")
                result.skipped.append(SkippedOperation(index, operation.tool, str(e)))
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Skipping {operation.tool} with invalid input: {e}")
                result.skipped.append(
                    SkippedOperation(index, operation.tool, f"invalid input: {e}")
                )

        logger.info(
            f"Simulated {len(result.applied)}/{len(operations)} operations; "
            f"{len(before)} -> {len(result.snapshot)} captured cells"
        )
        return result

    def _target(self, payload: dict, active_sheet: str) -> RangeRef:
        target = payload.get("range") or payload.get("cell")
        if not target:
            raise ParseError("", "operation has no range")
        return parse_range(target, active_sheet)

    def _simulate_write(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        values = payload.get("values", payload.get("value"))
        if values is None:
            raise ValueError("write requires 'values'")
        preserve_formatting = payload.get("preserve_formatting", True)

        for row_offset, row in enumerate(as_value_grid(values, ref)):
            if not isinstance(row, list):
                row = [row]
            for col_offset, value in enumerate(row):
                # Blank cells never overwrite: sibling writes in the same batch survive
                if _is_blank(value):
                    continue
                key = CellKey(
                    sheet=ref.sheet,
                    row=ref.start_row + row_offset,
                    col=ref.start_col + col_offset,
                ).to_string()
                cell = snapshot.get(key) or CellSnapshot()
                if isinstance(value, str) and value.startswith("="):
                    cell.f = value
                else:
                    cell.v = value
                    cell.f = None
                if not preserve_formatting:
                    cell.s = None
                snapshot[key] = cell

    def _simulate_formula(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        formula = payload.get("formula")
        if not formula:
            raise ValueError("apply_formula requires 'formula'")
        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = snapshot.get(key) or CellSnapshot()
            cell.f = formula
            snapshot[key] = cell

    def _simulate_clear(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        for cell_key in ref.iter_keys():
            snapshot.pop(cell_key.to_string(), None)

    def _apply_style(self, snapshot: WorkbookSnapshot, ref: RangeRef, patch: dict) -> None:
        if not patch:
            return
        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = snapshot.get(key) or CellSnapshot()
            cell.s = serialize_style(merge_style(parse_style(cell.s), patch))
            snapshot[key] = cell

    def _simulate_format(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        self._apply_style(snapshot, ref, style_from_format_input(payload))

    def _simulate_smart_format(
        self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str
    ) -> None:
        ref = self._target(payload, active_sheet)
        self._apply_style(snapshot, ref, resolve_preset(payload))

    def _simulate_merge(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        preserve_content = bool(payload.get("preserve_content", False))
        anchor_key = ref.anchor.to_string()
        area = ref.address()

        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = snapshot.get(key) or CellSnapshot()
            if key == anchor_key:
                cell.merge_area = area
                cell.is_merged = True
            else:
                cell.is_merged = True
                cell.merge_anchor = anchor_key
                if not preserve_content:
                    cell.v = None
                    cell.f = None
            snapshot[key] = cell

    def _simulate_unmerge(self, snapshot: WorkbookSnapshot, payload: dict, active_sheet: str) -> None:
        ref = self._target(payload, active_sheet)
        for cell_key in ref.iter_keys():
            cell = snapshot.get(cell_key.to_string())
            if cell is None:
                continue
            cell.is_merged = False
            cell.merge_anchor = None
            cell.merge_area = None


def simulate(
    before: WorkbookSnapshot,
    operations: list[AISuggestedOperation],
    active_sheet: str,
) -> WorkbookSnapshot:
    """Return the predicted snapshot after applying ``operations`` to ``before``."""
    return OperationSimulator().run(before, operations, active_sheet).snapshot
