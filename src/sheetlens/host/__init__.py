"""Spreadsheet host capability and adapters."""

from ..config import settings
from .base import SpreadsheetHost
from .memory import InMemoryHost
from .models import (
    BORDER_EDGES,
    DEFAULT_FONT_COLOR,
    BorderState,
    CellVisualState,
    FormatWrite,
)


def create_host(workbook_id: str, backend: str = None) -> SpreadsheetHost:
    """
    Build the host adapter for a workbook.

    Args:
        workbook_id: Workbook (spreadsheet) identifier
        backend: 'memory' or 'gsheets'; defaults to settings.host_backend
    """
    backend = backend or settings.host_backend
    if backend == "memory":
        return InMemoryHost()
    if backend == "gsheets":
        # Imported here so the memory backend works without Google credentials
        from .gsheets import GoogleSheetsHost

        return GoogleSheetsHost(spreadsheet_id=workbook_id)
    raise ValueError(f"Unknown host backend: {backend}")


__all__ = [
    "SpreadsheetHost",
    "InMemoryHost",
    "create_host",
    "BORDER_EDGES",
    "DEFAULT_FONT_COLOR",
    "BorderState",
    "CellVisualState",
    "FormatWrite",
]
