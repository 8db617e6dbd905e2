"""Data models for workbook snapshots and diffs."""

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Scalar = Union[str, int, float, bool, None]


class CellKey(BaseModel):
    """Address of a single cell. Row and column are 0-based."""

    model_config = ConfigDict(frozen=True)

    sheet: str
    row: int = Field(ge=0)
    col: int = Field(ge=0)

    def to_string(self) -> str:
        """Canonical form, e.g. ``Sheet1!B3``."""
        from .refs import cell_key_to_string

        return cell_key_to_string(self)

    @classmethod
    def from_string(cls, key: str) -> "CellKey":
        from .refs import parse_cell_key

        return parse_cell_key(key)

    def __str__(self) -> str:
        return self.to_string()


class CellSnapshot(BaseModel):
    """Captured contents of one cell."""

    v: Scalar = None  # value
    f: Optional[str] = None  # formula
    s: Optional[str] = None  # serialized style (JSON)
    is_merged: bool = False
    merge_anchor: Optional[str] = None
    merge_area: Optional[str] = None

    @property
    def has_formula(self) -> bool:
        return self.f is not None and self.f != ""


# Canonical key string -> cell contents. Absent key means "not captured / empty".
WorkbookSnapshot = dict[str, CellSnapshot]


class DiffKind(str, Enum):
    """Kind of change recorded by a hunk."""

    ADDED = "Added"
    DELETED = "Deleted"
    VALUE_CHANGED = "ValueChanged"
    FORMULA_CHANGED = "FormulaChanged"
    STYLE_CHANGED = "StyleChanged"


class DiffHunk(BaseModel):
    """A single-cell difference between two snapshots."""

    key: CellKey
    kind: DiffKind
    before: Optional[CellSnapshot] = None
    after: Optional[CellSnapshot] = None

    @property
    def cell(self) -> str:
        return self.key.to_string()


class AISuggestedOperation(BaseModel):
    """An edit proposed by the agent."""

    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None
    request_id: Optional[str] = None  # id of the originating tool request

    @property
    def target_range(self) -> Optional[str]:
        target = self.input.get("range")
        return target if isinstance(target, str) else None


def snapshot_from_dict(data: dict[str, Any]) -> WorkbookSnapshot:
    """Build a WorkbookSnapshot from plain JSON-like data."""
    return {
        key: cell if isinstance(cell, CellSnapshot) else CellSnapshot(**cell)
        for key, cell in data.items()
    }


def snapshot_to_dict(snapshot: WorkbookSnapshot) -> dict[str, dict[str, Any]]:
    """Dump a snapshot to plain data, dropping unset fields."""
    return {
        key: cell.model_dump(exclude_defaults=True) for key, cell in sorted(snapshot.items())
    }
