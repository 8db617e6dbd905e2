"""Workbook snapshot model and A1 reference helpers."""

from .models import (
    CellKey,
    CellSnapshot,
    WorkbookSnapshot,
    DiffKind,
    DiffHunk,
    AISuggestedOperation,
    snapshot_from_dict,
    snapshot_to_dict,
)
from .refs import (
    RangeRef,
    parse_range,
    qualify_range,
    parse_cell_key,
    bounding_ranges,
    col_letter_to_index,
    index_to_col_letter,
)

__all__ = [
    "CellKey",
    "CellSnapshot",
    "WorkbookSnapshot",
    "DiffKind",
    "DiffHunk",
    "AISuggestedOperation",
    "snapshot_from_dict",
    "snapshot_to_dict",
    "RangeRef",
    "parse_range",
    "qualify_range",
    "parse_cell_key",
    "bounding_ranges",
    "col_letter_to_index",
    "index_to_col_letter",
]
