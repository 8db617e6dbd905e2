"""Paints diff hunks onto the live grid and restores the original formatting."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..errors import HighlightApplyError
from ..host.base import SpreadsheetHost
from ..host.models import (
    BORDER_EDGES,
    DEFAULT_FONT_COLOR,
    DEFAULT_NUMBER_FORMAT,
    NO_BORDER,
    BorderState,
    CellVisualState,
    FormatWrite,
)
from ..snapshot.models import CellKey, DiffHunk, DiffKind

logger = logging.getLogger(__name__)

HIGHLIGHT_COLORS = {
    DiffKind.ADDED: "#C6EFCE",  # light green
    DiffKind.DELETED: "#FFC7CE",  # light red
    DiffKind.VALUE_CHANGED: "#FFEB9C",  # light yellow
    DiffKind.FORMULA_CHANGED: "#B8CCE4",  # light blue
    DiffKind.STYLE_CHANGED: "#E4DFEC",  # light purple
}


def _edges(edges: tuple[str, ...], style: str, color: str) -> dict[str, BorderState]:
    return {edge: BorderState(style=style, color=color) for edge in edges}


def treatment_for(kind: DiffKind) -> FormatWrite:
    """Visual treatment painted for a hunk of the given kind."""
    fill = HIGHLIGHT_COLORS[kind]
    if kind == DiffKind.ADDED:
        return FormatWrite(
            fill_color=fill, font_italic=True, borders=_edges(("right",), "Thick", "#00B050")
        )
    if kind == DiffKind.DELETED:
        return FormatWrite(
            fill_color=fill,
            font_strikethrough=True,
            borders=_edges(BORDER_EDGES, "Continuous", "#FF0000"),
        )
    if kind == DiffKind.VALUE_CHANGED:
        return FormatWrite(fill_color=fill, borders=_edges(("left",), "Thick", "#FFC000"))
    if kind == DiffKind.FORMULA_CHANGED:
        return FormatWrite(fill_color=fill, borders=_edges(("top", "bottom"), "Double", "#0070C0"))
    return FormatWrite(fill_color=fill, borders=_edges(BORDER_EDGES, "Dot", "#7030A0"))


def restore_write(state: CellVisualState) -> FormatWrite:
    """
    Build the write that puts a cell back to its captured state.

    Null colors are never written back: a null fill becomes "clear fill",
    a null font color becomes the default font color and a null border
    style removes the edge.
    """
    borders = {}
    for edge in BORDER_EDGES:
        captured = state.borders.get(edge) or BorderState()
        borders[edge] = BorderState(style=captured.style or NO_BORDER, color=captured.color)
    return FormatWrite(
        fill_color=state.fill_color,
        clear_fill=state.fill_color is None,
        font_color=state.font_color or DEFAULT_FONT_COLOR,
        font_italic=state.font_italic,
        font_strikethrough=state.font_strikethrough,
        number_format=state.number_format or DEFAULT_NUMBER_FORMAT,
        borders=borders,
    )


def _overlay(base: FormatWrite, treatment: FormatWrite) -> FormatWrite:
    update = treatment.model_dump(exclude_none=True, exclude={"borders", "clear_fill"})
    if treatment.fill_color is not None:
        update["clear_fill"] = False
    update["borders"] = {**base.borders, **treatment.borders}
    return base.model_copy(update=update)


@dataclass
class HighlightReport:
    """Result of a highlight or restore pass."""

    cells: list[str] = field(default_factory=list)
    errors: list[HighlightApplyError] = field(default_factory=list)
    round_trips: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class HighlightEngine:
    """
    Per-session highlight state machine.

    Each cell moves untouched -> captured+highlighted -> restored. The
    original visual state is captured once, on the first highlight of a
    key, and dropped when the key is restored. A pass costs at most one
    batched read and one batched write, whatever the cell count.
    """

    def __init__(self, host: SpreadsheetHost, session_id: Optional[str] = None):
        self.host = host
        self.session_id = session_id
        self._captured: dict[str, CellVisualState] = {}
        self._kinds: dict[str, DiffKind] = {}

    @property
    def captured_keys(self) -> list[str]:
        return sorted(self._captured)

    @property
    def is_active(self) -> bool:
        return bool(self._captured)

    def captured_state(self, key: str) -> Optional[CellVisualState]:
        state = self._captured.get(key)
        return state.model_copy(deep=True) if state else None

    def summary(self) -> dict:
        by_kind = {kind.value: 0 for kind in DiffKind}
        for kind in self._kinds.values():
            by_kind[kind.value] += 1
        return {"total_cells": len(self._captured), "by_kind": by_kind}

    async def apply_highlights(self, hunks: list[DiffHunk]) -> HighlightReport:
        """
        Capture (first time only) and paint every hunk's cell.

        Failures on individual cells are logged and reported; the other
        cells are still painted.
        """
        report = HighlightReport()
        if not hunks:
            return report

        # Last hunk wins if a key appears twice
        targets: dict[str, tuple[CellKey, DiffKind]] = {}
        for hunk in hunks:
            targets[hunk.key.to_string()] = (hunk.key, hunk.kind)

        to_capture = [key for name, (key, _) in targets.items() if name not in self._captured]
        if to_capture:
            report.round_trips += 1
            try:
                states = await self.host.read_format_properties(to_capture)
            except Exception as e:
                logger.error(f"Failed to read formatting for {len(to_capture)} cells: {e}")
                states = {}
            for key in to_capture:
                name = key.to_string()
                state = states.get(name)
                if state is None:
                    # Painting a cell whose original state is unknown would be unrestorable
                    report.errors.append(HighlightApplyError(name, "could not capture original state"))
                    targets.pop(name)
                    continue
                self._captured[name] = state

        writes = {
            name: _overlay(restore_write(self._captured[name]), treatment_for(kind))
            for name, (_, kind) in targets.items()
        }
        failed = await self._write(writes, report)

        for name, (_, kind) in targets.items():
            if name in failed:
                continue
            self._kinds[name] = kind
            report.cells.append(name)

        logger.info(
            f"Highlighted {len(report.cells)} cells with {report.round_trips} host round trips"
            + (f" ({len(report.errors)} failed)" if report.errors else "")
        )
        return report

    async def clear_highlights(self, hunks: Optional[list[DiffHunk]] = None) -> HighlightReport:
        """
        Restore captured cells and drop their captures.

        Args:
            hunks: Restore only these cells; restore everything when omitted
        """
        report = HighlightReport()
        if hunks is None:
            keys = list(self._captured)
        else:
            keys = [h.key.to_string() for h in hunks if h.key.to_string() in self._captured]

        if not keys:
            logger.debug("No captured cells to restore")
            return report

        writes = {key: restore_write(self._captured[key]) for key in keys}
        failed = await self._write(writes, report)

        for key in keys:
            if key in failed:
                continue
            self._captured.pop(key, None)
            self._kinds.pop(key, None)
            report.cells.append(key)

        logger.info(f"Restored {len(report.cells)} cells; {len(self._captured)} still captured")
        return report

    async def dispose(self) -> HighlightReport:
        """Restore everything and drain the capture map at session end."""
        report = await self.clear_highlights()
        if self._captured:
            logger.warning(
                f"Session {self.session_id} ended with {len(self._captured)} cells not restored: "
                f"{', '.join(self.captured_keys)}"
            )
            self._captured.clear()
            self._kinds.clear()
        return report

    async def _write(self, writes: dict[str, FormatWrite], report: HighlightReport) -> set[str]:
        if not writes:
            return set()
        report.round_trips += 1
        try:
            errors = await self.host.write_format_properties(writes)
        except Exception as e:
            errors = {key: str(e) for key in writes}

        for key, reason in errors.items():
            error = HighlightApplyError(key, reason)
            logger.warning(str(error))
            report.errors.append(error)
        return set(errors)
