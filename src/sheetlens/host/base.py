"""Spreadsheet host capability interface."""

from abc import ABC, abstractmethod
from typing import Any

from ..snapshot.models import CellKey, WorkbookSnapshot
from ..snapshot.refs import RangeRef
from .models import CellVisualState, FormatWrite


class SpreadsheetHost(ABC):
    """
    Range-oriented access to a live spreadsheet.

    Every method is one round trip to the host. Batched methods take all
    cells at once so callers can bound the number of round trips.
    """

    @abstractmethod
    async def read_range(self, ref: RangeRef) -> WorkbookSnapshot:
        """Read values, formulas and styles of a range. Empty cells are omitted."""
        pass

    @abstractmethod
    async def write_values(self, ref: RangeRef, values: list[list[Any]]) -> None:
        """Write a grid of values anchored at the range origin. None cells are left unchanged."""
        pass

    @abstractmethod
    async def write_formula(self, ref: RangeRef, formula: str) -> None:
        """Set the same formula on every cell in the range."""
        pass

    @abstractmethod
    async def clear_range(self, ref: RangeRef) -> None:
        """Clear contents and formatting of the range."""
        pass

    @abstractmethod
    async def write_format(self, ref: RangeRef, style: dict[str, Any]) -> None:
        """Merge a style patch into every cell of the range."""
        pass

    @abstractmethod
    async def merge_cells(self, ref: RangeRef, preserve_content: bool = False) -> None:
        pass

    @abstractmethod
    async def unmerge_cells(self, ref: RangeRef) -> None:
        pass

    @abstractmethod
    async def read_format_properties(self, keys: list[CellKey]) -> dict[str, CellVisualState]:
        """Read visual state for many cells in one round trip, keyed by canonical key."""
        pass

    @abstractmethod
    async def write_format_properties(self, writes: dict[str, FormatWrite]) -> dict[str, str]:
        """
        Write visual updates for many cells in one round trip.

        Returns:
            Mapping of canonical key -> error message for cells that failed
        """
        pass
