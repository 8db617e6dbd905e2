"""Executes operations against the real spreadsheet host."""

import logging
from typing import Any

from ..engine.simulator import as_value_grid
from ..engine.styles import resolve_preset, style_from_format_input
from ..errors import ApplyExecutionError, ParseError, UnsupportedToolError
from ..host.base import SpreadsheetHost
from ..snapshot.models import AISuggestedOperation, snapshot_to_dict
from ..snapshot.refs import RangeRef, parse_range

logger = logging.getLogger(__name__)


class OperationExecutor:
    """Translates proposed operations into host writes, one operation at a time."""

    def __init__(self, host: SpreadsheetHost):
        self.host = host

    async def execute(self, operation: AISuggestedOperation, active_sheet: str) -> Any:
        """
        Execute one operation.

        Returns:
            A small result payload describing what was written

        Raises:
            ApplyExecutionError: If the operation is invalid or the host call fails
        """
        handler = getattr(self, f"_execute_{operation.tool}", None)
        if handler is None:
            raise ApplyExecutionError(
                operation.tool, str(UnsupportedToolError(operation.tool)), operation.request_id
            )

        payload = operation.input or {}
        try:
            target = payload.get("range") or payload.get("cell")
            if not target:
                raise ParseError("", "operation has no range")
            ref = parse_range(target, active_sheet)
            result = await handler(ref, payload)
        except ApplyExecutionError:
            raise
        except Exception as e:
            logger.error(f"{operation.tool} failed: {e}")
            raise ApplyExecutionError(operation.tool, str(e), operation.request_id) from e

        logger.info(f"Executed {operation.tool} on {ref.to_a1()}")
        return result

    async def _execute_read_range(self, ref: RangeRef, payload: dict) -> Any:
        snapshot = await self.host.read_range(ref)
        return {"range": ref.to_a1(), "cells": snapshot_to_dict(snapshot)}

    async def _execute_write_range(self, ref: RangeRef, payload: dict) -> Any:
        values = payload.get("values", payload.get("value"))
        if values is None:
            raise ValueError("write requires 'values'")
        # Blank strings are skipped, matching the preview
        grid = [
            [None if value == "" else value for value in (row if isinstance(row, list) else [row])]
            for row in as_value_grid(values, ref)
        ]
        await self.host.write_values(ref, grid)
        return {"range": ref.to_a1(), "cells_written": sum(1 for row in grid for v in row if v is not None)}

    _execute_write_cell = _execute_write_range

    async def _execute_apply_formula(self, ref: RangeRef, payload: dict) -> Any:
        formula = payload.get("formula")
        if not formula:
            raise ValueError("apply_formula requires 'formula'")
        await self.host.write_formula(ref, formula)
        return {"range": ref.to_a1(), "formula": formula}

    async def _execute_clear_range(self, ref: RangeRef, payload: dict) -> Any:
        await self.host.clear_range(ref)
        return {"range": ref.to_a1(), "cells_cleared": ref.cell_count}

    async def _execute_format_range(self, ref: RangeRef, payload: dict) -> Any:
        style = style_from_format_input(payload)
        if style:
            await self.host.write_format(ref, style)
        return {"range": ref.to_a1(), "style": style}

    async def _execute_smart_format_cells(self, ref: RangeRef, payload: dict) -> Any:
        style = resolve_preset(payload)
        if style:
            await self.host.write_format(ref, style)
        return {"range": ref.to_a1(), "style": style}

    async def _execute_merge_cells(self, ref: RangeRef, payload: dict) -> Any:
        await self.host.merge_cells(ref, preserve_content=bool(payload.get("preserve_content", False)))
        return {"range": ref.to_a1(), "merged": True}

    async def _execute_unmerge_cells(self, ref: RangeRef, payload: dict) -> Any:
        await self.host.unmerge_cells(ref)
        return {"range": ref.to_a1(), "merged": False}

    def supports(self, tool: str) -> bool:
        return hasattr(self, f"_execute_{tool}")
