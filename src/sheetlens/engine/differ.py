"""Cell-level diff between two workbook snapshots."""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import settings
from ..errors import ParseError
from ..snapshot.models import CellKey, CellSnapshot, DiffHunk, DiffKind, WorkbookSnapshot

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    """Outcome of a diff calculation."""

    hunks: list[DiffHunk] = field(default_factory=list)
    truncated: bool = False
    keys_examined: int = 0
    skipped_keys: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.hunks

    def counts_by_kind(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in DiffKind}
        for hunk in self.hunks:
            counts[hunk.kind.value] += 1
        return counts


def _values_differ(a: Any, b: Any) -> bool:
    # True == 1 in Python, but a bool/number swap is a visible change in a cell
    if isinstance(a, bool) != isinstance(b, bool):
        return True
    if type(a) is not type(b) and (isinstance(a, str) or isinstance(b, str)):
        return True
    return a != b


def _parse_style(raw: Optional[str]) -> Any:
    if not raw:
        return {}
    return json.loads(raw)


class DiffCalculator:
    """
    Computes typed, per-cell hunks between two snapshots.

    Keys are visited in sorted order so that the same (before, after) pair always
    yields the same hunk list. At most one hunk is emitted per key, with the
    precedence FormulaChanged > ValueChanged > StyleChanged.
    """

    def __init__(
        self,
        max_diffs: Optional[int] = None,
        include_styles: Optional[bool] = None,
        chunk_size: Optional[int] = None,
    ):
        self.max_diffs = settings.max_diffs if max_diffs is None else max_diffs
        self.include_styles = (
            settings.include_styles_in_diff if include_styles is None else include_styles
        )
        self.chunk_size = settings.diff_chunk_size if chunk_size is None else chunk_size
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    def calculate(self, before: WorkbookSnapshot, after: WorkbookSnapshot) -> DiffResult:
        """
        Calculate the diff synchronously.

        Args:
            before: Snapshot prior to the change
            after: Snapshot after the change

        Returns:
            DiffResult with ordered hunks
        """
        start_time = time.time()
        result = DiffResult()
        keys = self._sorted_keys(before, after)
        self._process_keys(keys, before, after, result)
        result.duration_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Calculated {len(result.hunks)} hunks over {result.keys_examined} keys "
            f"({result.duration_ms:.2f}ms)"
        )
        return result

    async def calculate_async(
        self, before: WorkbookSnapshot, after: WorkbookSnapshot
    ) -> DiffResult:
        """
        Calculate the diff in fixed-size key slices, yielding between slices.

        Produces exactly the same hunks as calculate() for the same inputs.
        """
        start_time = time.time()
        result = DiffResult()
        keys = self._sorted_keys(before, after)

        for offset in range(0, len(keys), self.chunk_size):
            self._process_keys(keys[offset : offset + self.chunk_size], before, after, result)
            if result.truncated:
                break
            await asyncio.sleep(0)

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Calculated {len(result.hunks)} hunks over {result.keys_examined} keys "
            f"in chunks of {self.chunk_size} ({result.duration_ms:.2f}ms)"
        )
        return result

    def detect_change(self, before: CellSnapshot, after: CellSnapshot) -> Optional[DiffKind]:
        """Classify the change between two captured cells, or None if equal."""
        # Formula first: a formula change implies a downstream value change
        if (before.f or None) != (after.f or None):
            return DiffKind.FORMULA_CHANGED

        if _values_differ(before.v, after.v):
            return DiffKind.VALUE_CHANGED

        if self.include_styles and before.s != after.s:
            try:
                if _parse_style(before.s) != _parse_style(after.s):
                    return DiffKind.STYLE_CHANGED
            except (TypeError, ValueError):
                # Unparseable styles that differ as text are treated as changed
                return DiffKind.STYLE_CHANGED

        if self.include_styles and (
            before.is_merged != after.is_merged or before.merge_area != after.merge_area
        ):
            return DiffKind.STYLE_CHANGED

        return None

    def _sorted_keys(self, before: WorkbookSnapshot, after: WorkbookSnapshot) -> list[str]:
        return sorted(set(before) | set(after))

    def _process_keys(
        self,
        keys: list[str],
        before: WorkbookSnapshot,
        after: WorkbookSnapshot,
        result: DiffResult,
    ) -> None:
        for key in keys:
            if len(result.hunks) >= self.max_diffs:
                if not result.truncated:
                    result.truncated = True
                    logger.warning(
                        f"Diff truncated at {self.max_diffs} hunks; remaining keys not examined"
                    )
                return

            result.keys_examined += 1
            try:
                cell_key = CellKey.from_string(key)
            except (ParseError, ValueError) as e:
                logger.warning(f"Skipping malformed snapshot key {key!r}: {e}")
                result.skipped_keys.append(key)
                continue

            before_cell = before.get(key)
            after_cell = after.get(key)

            if before_cell is None and after_cell is not None:
                result.hunks.append(DiffHunk(key=cell_key, kind=DiffKind.ADDED, after=after_cell))
            elif before_cell is not None and after_cell is None:
                result.hunks.append(
                    DiffHunk(key=cell_key, kind=DiffKind.DELETED, before=before_cell)
                )
            elif before_cell is not None and after_cell is not None:
                kind = self.detect_change(before_cell, after_cell)
                if kind is not None:
                    result.hunks.append(
                        DiffHunk(key=cell_key, kind=kind, before=before_cell, after=after_cell)
                    )


def diff(
    before: WorkbookSnapshot,
    after: WorkbookSnapshot,
    max_diffs: Optional[int] = None,
    include_styles: Optional[bool] = None,
) -> list[DiffHunk]:
    """Convenience wrapper returning only the hunks."""
    calculator = DiffCalculator(max_diffs=max_diffs, include_styles=include_styles)
    return calculator.calculate(before, after).hunks
