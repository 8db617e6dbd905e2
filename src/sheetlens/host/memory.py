"""Dictionary-backed spreadsheet host."""

import logging
from typing import Any, Optional

from ..engine.styles import merge_style, parse_style, serialize_style
from ..snapshot.models import CellKey, CellSnapshot, WorkbookSnapshot
from ..snapshot.refs import RangeRef
from .base import SpreadsheetHost
from .models import NO_BORDER, BorderState, CellVisualState, FormatWrite

logger = logging.getLogger(__name__)


class InMemoryHost(SpreadsheetHost):
    """
    In-process host holding cells and visual state in dictionaries.

    Counts round trips and can be told to fail specific calls, which makes
    it the host of choice for tests and local development.
    """

    def __init__(self, cells: Optional[WorkbookSnapshot] = None):
        self.cells: WorkbookSnapshot = dict(cells or {})
        self.visual: dict[str, CellVisualState] = {}
        self.round_trips = 0
        self.calls: list[str] = []
        self.fail_methods: set[str] = set()
        self.fail_format_cells: set[str] = set()

    def _record(self, method: str) -> None:
        self.round_trips += 1
        self.calls.append(method)
        if method in self.fail_methods:
            raise RuntimeError(f"Host call {method} failed")

    def visual_state(self, key: str) -> CellVisualState:
        """Current visual state of a cell, defaulting for untouched cells."""
        state = self.visual.get(key)
        if state is None:
            state = CellVisualState()
        cell = self.cells.get(key)
        return state.model_copy(
            deep=True,
            update={
                "value": cell.v if cell else None,
                "formula": cell.f if cell else None,
            },
        )

    async def read_range(self, ref: RangeRef) -> WorkbookSnapshot:
        self._record("read_range")
        return {
            key: cell.model_copy(deep=True)
            for key, cell in self.cells.items()
            if ref.contains(CellKey.from_string(key))
        }

    async def write_values(self, ref: RangeRef, values: list[list[Any]]) -> None:
        self._record("write_values")
        for row_offset, row in enumerate(values):
            for col_offset, value in enumerate(row):
                if value is None:
                    continue
                key = CellKey(
                    sheet=ref.sheet,
                    row=ref.start_row + row_offset,
                    col=ref.start_col + col_offset,
                ).to_string()
                cell = self.cells.get(key) or CellSnapshot()
                if isinstance(value, str) and value.startswith("="):
                    cell.f = value
                else:
                    cell.v = value
                    cell.f = None
                self.cells[key] = cell

    async def write_formula(self, ref: RangeRef, formula: str) -> None:
        self._record("write_formula")
        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = self.cells.get(key) or CellSnapshot()
            cell.f = formula
            self.cells[key] = cell

    async def clear_range(self, ref: RangeRef) -> None:
        self._record("clear_range")
        for cell_key in ref.iter_keys():
            self.cells.pop(cell_key.to_string(), None)

    async def write_format(self, ref: RangeRef, style: dict[str, Any]) -> None:
        self._record("write_format")
        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = self.cells.get(key) or CellSnapshot()
            cell.s = serialize_style(merge_style(parse_style(cell.s), style))
            self.cells[key] = cell

    async def merge_cells(self, ref: RangeRef, preserve_content: bool = False) -> None:
        self._record("merge_cells")
        anchor = ref.anchor.to_string()
        for cell_key in ref.iter_keys():
            key = cell_key.to_string()
            cell = self.cells.get(key) or CellSnapshot()
            cell.is_merged = True
            if key == anchor:
                cell.merge_area = ref.address()
            else:
                cell.merge_anchor = anchor
                if not preserve_content:
                    cell.v = None
                    cell.f = None
            self.cells[key] = cell

    async def unmerge_cells(self, ref: RangeRef) -> None:
        self._record("unmerge_cells")
        for cell_key in ref.iter_keys():
            cell = self.cells.get(cell_key.to_string())
            if cell is not None:
                cell.is_merged = False
                cell.merge_anchor = None
                cell.merge_area = None

    async def read_format_properties(self, keys: list[CellKey]) -> dict[str, CellVisualState]:
        self._record("read_format_properties")
        return {key.to_string(): self.visual_state(key.to_string()) for key in keys}

    async def write_format_properties(self, writes: dict[str, FormatWrite]) -> dict[str, str]:
        self._record("write_format_properties")
        errors: dict[str, str] = {}
        for key, write in writes.items():
            if key in self.fail_format_cells:
                errors[key] = "cell is locked"
                continue
            state = self.visual.get(key) or CellVisualState()
            if write.clear_fill:
                state.fill_color = None
            elif write.fill_color is not None:
                state.fill_color = write.fill_color
            if write.font_color is not None:
                state.font_color = write.font_color
            if write.font_italic is not None:
                state.font_italic = write.font_italic
            if write.font_strikethrough is not None:
                state.font_strikethrough = write.font_strikethrough
            if write.number_format is not None:
                state.number_format = write.number_format
            for edge, border in write.borders.items():
                if border.style in (None, NO_BORDER):
                    state.borders[edge] = BorderState()
                else:
                    state.borders[edge] = BorderState(
                        style=border.style,
                        color=border.color or state.borders[edge].color,
                    )
            self.visual[key] = state
        return errors
