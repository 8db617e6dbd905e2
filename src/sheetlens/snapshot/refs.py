"""A1 reference parsing and cell-key conversion."""

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from ..errors import ParseError
from .models import CellKey

_CELL_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def col_letter_to_index(col: str) -> int:
    """Convert column letter(s) to 0-based index. A=0, B=1, ..., Z=25, AA=26, etc."""
    if not col or not col.isalpha():
        raise ParseError(col, "column letters expected")
    result = 0
    for char in col.upper():
        if not "A" <= char <= "Z":
            raise ParseError(col, "column letters expected")
        result = result * 26 + (ord(char) - ord("A") + 1)
    return result - 1


def index_to_col_letter(index: int) -> str:
    """Convert 0-based index to column letter(s)."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    result = ""
    index += 1
    while index > 0:
        index -= 1
        result = chr(ord("A") + (index % 26)) + result
        index //= 26
    return result


def parse_cell_notation(cell: str) -> tuple[int, int]:
    """Parse A1 notation (with optional ``$`` markers) into 0-based (row, col)."""
    match = _CELL_RE.match(cell.strip())
    if not match:
        raise ParseError(cell, "expected column letters followed by a row number")
    row = int(match.group(2))
    if row < 1:
        raise ParseError(cell, "row numbers start at 1")
    return row - 1, col_letter_to_index(match.group(1))


def split_sheet_prefix(reference: str) -> tuple[Optional[str], str]:
    """Split ``Sheet!A1:B2`` into (sheet, "A1:B2"). Quoted sheet names are unquoted."""
    reference = reference.strip()
    if "!" not in reference:
        return None, reference
    sheet, address = reference.rsplit("!", 1)
    sheet = sheet.strip()
    if len(sheet) >= 2 and sheet.startswith("'") and sheet.endswith("'"):
        sheet = sheet[1:-1].replace("''", "'")
    if not sheet:
        raise ParseError(reference, "empty sheet name")
    return sheet, address


def quote_sheet_name(sheet: str) -> str:
    """Quote a sheet name for use in an A1 prefix when it needs quoting."""
    if re.search(r"[^A-Za-z0-9_]", sheet):
        return "'" + sheet.replace("'", "''") + "'"
    return sheet


def qualify_range(reference: str, active_sheet: str) -> str:
    """
    Prefix a reference with ``active_sheet`` unless it already names a sheet.

    Malformed references are returned unchanged so the caller reports them.
    """
    try:
        sheet, _ = split_sheet_prefix(reference)
    except ParseError:
        return reference
    if sheet is not None:
        return reference
    return f"{quote_sheet_name(active_sheet)}!{reference.strip()}"


def cell_key_to_string(key: CellKey) -> str:
    return f"{key.sheet}!{index_to_col_letter(key.col)}{key.row + 1}"


def parse_cell_key(key: str) -> CellKey:
    """Parse a canonical ``Sheet!A1`` key back into a CellKey."""
    sheet, address = split_sheet_prefix(key)
    if sheet is None:
        raise ParseError(key, "cell keys must include a sheet name")
    row, col = parse_cell_notation(address)
    return CellKey(sheet=sheet, row=row, col=col)


@dataclass(frozen=True)
class RangeRef:
    """A rectangular, inclusive block of cells on one sheet."""

    sheet: str
    start_row: int
    start_col: int
    end_row: int
    end_col: int

    @property
    def row_count(self) -> int:
        return self.end_row - self.start_row + 1

    @property
    def col_count(self) -> int:
        return self.end_col - self.start_col + 1

    @property
    def cell_count(self) -> int:
        return self.row_count * self.col_count

    @property
    def anchor(self) -> CellKey:
        return CellKey(sheet=self.sheet, row=self.start_row, col=self.start_col)

    def iter_keys(self) -> Iterator[CellKey]:
        """Yield every cell key in row-major order."""
        for row in range(self.start_row, self.end_row + 1):
            for col in range(self.start_col, self.end_col + 1):
                yield CellKey(sheet=self.sheet, row=row, col=col)

    def contains(self, key: CellKey) -> bool:
        return (
            key.sheet == self.sheet
            and self.start_row <= key.row <= self.end_row
            and self.start_col <= key.col <= self.end_col
        )

    def address(self) -> str:
        """A1 address without the sheet prefix."""
        start = f"{index_to_col_letter(self.start_col)}{self.start_row + 1}"
        if self.cell_count == 1:
            return start
        end = f"{index_to_col_letter(self.end_col)}{self.end_row + 1}"
        return f"{start}:{end}"

    def to_a1(self) -> str:
        """A1 notation with a sheet prefix, quoting the sheet when needed."""
        return f"{quote_sheet_name(self.sheet)}!{self.address()}"

    def padded(self, padding: int) -> "RangeRef":
        """Grow the range by ``padding`` cells on each side, clamped at row/col 0."""
        return RangeRef(
            sheet=self.sheet,
            start_row=max(0, self.start_row - padding),
            start_col=max(0, self.start_col - padding),
            end_row=self.end_row + padding,
            end_col=self.end_col + padding,
        )


def parse_range(reference: str, active_sheet: str) -> RangeRef:
    """
    Parse a single cell or ``A1:B2`` range, with optional sheet prefix.

    Args:
        reference: Range in A1 notation, e.g. "Sheet1!$A$1:B2"
        active_sheet: Sheet used when the reference has no sheet prefix

    Returns:
        Normalized RangeRef (start <= end)

    Raises:
        ParseError: If the reference is malformed
    """
    if not isinstance(reference, str) or not reference.strip():
        raise ParseError(str(reference), "empty range")

    sheet, address = split_sheet_prefix(reference)
    sheet = sheet or active_sheet

    parts = address.split(":")
    if len(parts) == 1:
        row, col = parse_cell_notation(parts[0])
        return RangeRef(sheet, row, col, row, col)
    if len(parts) != 2:
        raise ParseError(reference, "too many ':' separators")

    # The end of a range may repeat the sheet prefix (Sheet1!A1:Sheet1!B2)
    end_sheet, end_address = split_sheet_prefix(parts[1])
    if end_sheet is not None and end_sheet != sheet:
        raise ParseError(reference, "range spans multiple sheets")

    start_row, start_col = parse_cell_notation(parts[0])
    end_row, end_col = parse_cell_notation(end_address)
    return RangeRef(
        sheet=sheet,
        start_row=min(start_row, end_row),
        start_col=min(start_col, end_col),
        end_row=max(start_row, end_row),
        end_col=max(start_col, end_col),
    )


def bounding_ranges(ranges: Iterable[RangeRef], padding: int = 0) -> list[RangeRef]:
    """
    Compute one bounding range per sheet covering every given range.

    Args:
        ranges: Target ranges, possibly on several sheets
        padding: Cells of padding added on each side

    Returns:
        Bounding ranges sorted by sheet name
    """
    by_sheet: dict[str, RangeRef] = {}
    for ref in ranges:
        current = by_sheet.get(ref.sheet)
        if current is None:
            by_sheet[ref.sheet] = ref
            continue
        by_sheet[ref.sheet] = RangeRef(
            sheet=ref.sheet,
            start_row=min(current.start_row, ref.start_row),
            start_col=min(current.start_col, ref.start_col),
            end_row=max(current.end_row, ref.end_row),
            end_col=max(current.end_col, ref.end_col),
        )
    return [by_sheet[sheet].padded(padding) for sheet in sorted(by_sheet)]
