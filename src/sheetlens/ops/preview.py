"""Preview session orchestration: snapshot, simulate, diff, highlight, apply or cancel."""

import hashlib
import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config import settings
from ..engine.differ import DiffCalculator
from ..engine.simulator import OperationSimulator, as_value_grid
from ..errors import ApplyExecutionError, ParseError, PreviewStateError, SimulationNoOpError
from ..host.base import SpreadsheetHost
from ..snapshot.models import AISuggestedOperation, DiffHunk, WorkbookSnapshot
from ..snapshot.refs import RangeRef, bounding_ranges, parse_range, qualify_range
from .executor import OperationExecutor
from .highlight import HighlightEngine
from .models import OperationResult, PreviewOutcome, PreviewState

logger = logging.getLogger(__name__)

ACTIVE_STATES = {PreviewState.COMPUTING, PreviewState.PREVIEWING, PreviewState.APPLYING}


def operation_fingerprint(operation: AISuggestedOperation) -> str:
    """Content hash of tool + range + payload, used for duplicate suppression."""
    payload = {key: value for key, value in (operation.input or {}).items() if key != "range"}
    body = json.dumps(
        {"tool": operation.tool, "range": operation.target_range, "payload": payload},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def bind_to_sheet(operation: AISuggestedOperation, active_sheet: str) -> AISuggestedOperation:
    """Copy of the operation whose target names ``active_sheet`` when it named none."""
    payload = dict(operation.input or {})
    for key in ("range", "cell"):
        if isinstance(payload.get(key), str):
            payload[key] = qualify_range(payload[key], active_sheet)
    return operation.model_copy(update={"input": payload})


def target_extent(operation: AISuggestedOperation, active_sheet: str) -> Optional[RangeRef]:
    """
    The block of cells an operation can touch, or None if its range is malformed.

    Writes may carry more values than their range covers (an anchor cell with
    a 2-D grid), so the extent grows to fit the grid.
    """
    payload = operation.input or {}
    target = payload.get("range") or payload.get("cell")
    if not isinstance(target, str):
        return None
    try:
        ref = parse_range(target, active_sheet)
    except ParseError as e:
        logger.warning(f"Ignoring {operation.tool} with malformed range: {e}")
        return None

    values = payload.get("values", payload.get("value"))
    if operation.tool in ("write_range", "write_cell") and isinstance(values, list):
        grid = as_value_grid(values, ref)
        width = max((len(row) if isinstance(row, list) else 1 for row in grid), default=1)
        ref = RangeRef(
            sheet=ref.sheet,
            start_row=ref.start_row,
            start_col=ref.start_col,
            end_row=max(ref.end_row, ref.start_row + len(grid) - 1),
            end_col=max(ref.end_col, ref.start_col + width - 1),
        )
    return ref


@dataclass
class PreviewSession:
    """State of one preview, from accepted batch to applied or cancelled."""

    id: str
    workbook_id: str
    active_sheet: str
    operations: list[AISuggestedOperation]
    state: PreviewState = PreviewState.COMPUTING
    hunks: list[DiffHunk] = field(default_factory=list)
    truncated: bool = False
    before: WorkbookSnapshot = field(default_factory=dict)
    after: WorkbookSnapshot = field(default_factory=dict)
    completed: set[int] = field(default_factory=set)
    fingerprints: set[str] = field(default_factory=set)
    highlighter: Optional[HighlightEngine] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PreviewOrchestrator:
    """
    Owns the single active preview session per workbook.

    A batch that arrives while a session is active is queued and started
    automatically once the current session is applied or cancelled.
    """

    def __init__(
        self,
        host_for: Callable[[str], SpreadsheetHost],
        simulator: Optional[OperationSimulator] = None,
        calculator: Optional[DiffCalculator] = None,
        padding: Optional[int] = None,
    ):
        """
        Args:
            host_for: Returns the host capability for a workbook id
            simulator: Operation simulator (created if not provided)
            calculator: Diff calculator (created if not provided)
            padding: Cells of padding around the bounding range
        """
        self.host_for = host_for
        self.simulator = simulator or OperationSimulator()
        self.calculator = calculator or DiffCalculator()
        self.padding = settings.bounding_range_padding if padding is None else padding
        self._sessions: dict[str, PreviewSession] = {}
        self._waiting: dict[str, deque] = {}
        self._last_outcome: dict[str, PreviewOutcome] = {}
        self._draining: set[str] = set()

    def state(self, workbook_id: str) -> PreviewState:
        session = self._sessions.get(workbook_id)
        return session.state if session else PreviewState.IDLE

    def session(self, workbook_id: str) -> Optional[PreviewSession]:
        return self._sessions.get(workbook_id)

    def waiting_batches(self, workbook_id: str) -> int:
        return len(self._waiting.get(workbook_id, ()))

    def last_outcome(self, workbook_id: str) -> Optional[PreviewOutcome]:
        return self._last_outcome.get(workbook_id)

    def current_preview(self, workbook_id: str) -> PreviewOutcome:
        """Describe the active session (or Idle) for the UI."""
        session = self._sessions.get(workbook_id)
        if session is None:
            return PreviewOutcome(success=True, workbook_id=workbook_id, state=PreviewState.IDLE)
        return self._outcome(session, success=True)

    async def start_preview(
        self,
        workbook_id: str,
        operations: list[AISuggestedOperation],
        active_sheet: Optional[str] = None,
    ) -> PreviewOutcome:
        """
        Start a preview for a batch of operations.

        If a session is already active for the workbook, the batch is queued
        behind it and the returned outcome has ``queued=True``.
        """
        active_sheet = active_sheet or settings.default_active_sheet
        current = self._sessions.get(workbook_id)
        if current is not None and current.state in ACTIVE_STATES:
            self._waiting.setdefault(workbook_id, deque()).append((operations, active_sheet))
            logger.info(
                f"Preview {current.id} is {current.state.value}; queued batch of "
                f"{len(operations)} operations for {workbook_id}"
            )
            outcome = PreviewOutcome(
                success=True,
                workbook_id=workbook_id,
                state=current.state,
                session_id=current.id,
                queued=True,
                message="Batch queued behind the active preview",
            )
        else:
            outcome = await self._compute(workbook_id, operations, active_sheet)
        self._last_outcome[workbook_id] = outcome
        return outcome

    async def apply_changes(self, workbook_id: str) -> PreviewOutcome:
        """
        Commit the previewed operations to the real host, in order.

        Failed operations are reported individually and the session returns
        to Previewing; a retry only executes operations not yet completed.
        """
        session = self._sessions.get(workbook_id)
        if session is None or session.state != PreviewState.PREVIEWING:
            state = session.state if session else PreviewState.IDLE
            error = PreviewStateError(f"Cannot apply changes while {state.value}")
            logger.warning(f"{workbook_id}: {error}")
            return PreviewOutcome(
                success=False,
                workbook_id=workbook_id,
                state=state,
                error=str(error),
                code="invalid_state",
            )

        session.state = PreviewState.APPLYING
        logger.info(f"Applying {len(session.operations)} operations for preview {session.id}")
        host = self.host_for(workbook_id)
        executor = OperationExecutor(host)

        # Restoring highlights writes formatting, so it has to happen before the
        # commit or it would overwrite committed format changes
        highlight_errors = []
        if session.highlighter is not None:
            report = await session.highlighter.clear_highlights()
            highlight_errors.extend(report.error_messages)

        results: list[OperationResult] = []
        for index, operation in enumerate(session.operations):
            if index in session.completed:
                continue
            try:
                result = await executor.execute(operation, session.active_sheet)
                session.completed.add(index)
                results.append(
                    OperationResult(
                        index=index,
                        tool=operation.tool,
                        request_id=operation.request_id,
                        success=True,
                        result=result,
                    )
                )
            except ApplyExecutionError as e:
                logger.error(f"Preview {session.id}: operation {index} failed: {e}")
                results.append(
                    OperationResult(
                        index=index,
                        tool=operation.tool,
                        request_id=operation.request_id,
                        success=False,
                        error=str(e),
                    )
                )

        failed = [r for r in results if not r.success]
        if failed:
            session.state = PreviewState.PREVIEWING
            if session.highlighter is not None:
                report = await session.highlighter.apply_highlights(session.hunks)
                highlight_errors.extend(report.error_messages)
            outcome = self._outcome(session, success=False)
            outcome.operation_results = results
            outcome.highlight_errors = highlight_errors
            outcome.error = f"{len(failed)} of {len(results)} operations failed"
            outcome.code = "apply_failed"
            self._last_outcome[workbook_id] = outcome
            return outcome

        if session.highlighter is not None:
            await session.highlighter.dispose()
        session.state = PreviewState.APPLIED
        outcome = self._outcome(session, success=True)
        outcome.operation_results = results
        outcome.highlight_errors = highlight_errors
        outcome.message = f"Applied {len(results)} operations"
        logger.info(f"Preview {session.id} applied")

        await self._finish(session)
        outcome.state = PreviewState.APPLIED
        self._last_outcome[workbook_id] = outcome
        return outcome

    async def cancel_preview(self, workbook_id: str) -> PreviewOutcome:
        """
        Discard the previewed operations and restore every highlighted cell.

        Idempotent: cancelling with no active preview is a no-op.
        """
        session = self._sessions.get(workbook_id)
        if session is None:
            return PreviewOutcome(
                success=True,
                workbook_id=workbook_id,
                state=PreviewState.IDLE,
                message="No active preview",
            )
        if session.state != PreviewState.PREVIEWING:
            error = PreviewStateError(f"Cannot cancel while {session.state.value}")
            return PreviewOutcome(
                success=False,
                workbook_id=workbook_id,
                state=session.state,
                session_id=session.id,
                error=str(error),
                code="invalid_state",
            )

        highlight_errors = []
        if session.highlighter is not None:
            report = await session.highlighter.dispose()
            highlight_errors = report.error_messages

        logger.info(f"Preview {session.id} cancelled")
        outcome = self._outcome(session, success=True)
        outcome.state = PreviewState.IDLE
        outcome.highlight_errors = highlight_errors
        outcome.message = "Preview cancelled"
        await self._finish(session)
        self._last_outcome[workbook_id] = outcome
        return outcome

    async def _compute(
        self,
        workbook_id: str,
        operations: list[AISuggestedOperation],
        active_sheet: str,
    ) -> PreviewOutcome:
        session = PreviewSession(
            id=str(uuid.uuid4()),
            workbook_id=workbook_id,
            active_sheet=active_sheet,
            operations=[],
        )
        self._sessions[workbook_id] = session

        for operation in operations:
            fingerprint = operation_fingerprint(operation)
            if fingerprint in session.fingerprints:
                logger.info(f"Suppressed duplicate {operation.tool} in preview {session.id}")
                continue
            session.fingerprints.add(fingerprint)
            session.operations.append(operation)

        extents = [
            ref for ref in (target_extent(op, active_sheet) for op in session.operations) if ref
        ]
        if not extents:
            return await self._fail(session, SimulationNoOpError(len(operations)), "no_changes")

        host = self.host_for(workbook_id)
        try:
            for ref in bounding_ranges(extents, self.padding):
                session.before.update(await host.read_range(ref))
        except Exception as e:
            logger.error(f"Snapshot failed for {workbook_id}: {e}")
            return await self._fail(session, e, "snapshot_failed")

        simulation = self.simulator.run(session.before, session.operations, active_sheet)
        session.after = simulation.snapshot
        diff = await self.calculator.calculate_async(session.before, session.after)
        if diff.is_empty:
            return await self._fail(session, SimulationNoOpError(len(operations)), "no_changes")

        session.hunks = diff.hunks
        session.truncated = diff.truncated
        session.state = PreviewState.PREVIEWING
        session.highlighter = HighlightEngine(host, session_id=session.id)
        report = await session.highlighter.apply_highlights(session.hunks)

        logger.info(
            f"Preview {session.id} ready: {len(session.hunks)} hunks from "
            f"{len(session.operations)} operations"
        )
        outcome = self._outcome(session, success=True)
        outcome.highlight_errors = report.error_messages
        if diff.truncated:
            outcome.message = f"Showing the first {len(diff.hunks)} changes"
        return outcome

    async def _fail(
        self, session: PreviewSession, error: Exception, code: str
    ) -> PreviewOutcome:
        logger.warning(f"Preview {session.id} produced no preview: {error}")
        outcome = PreviewOutcome(
            success=False,
            workbook_id=session.workbook_id,
            state=PreviewState.IDLE,
            session_id=session.id,
            error=str(error),
            code=code,
        )
        await self._finish(session)
        return outcome

    async def _finish(self, session: PreviewSession) -> None:
        """Drop the session and start the next waiting batch, if any."""
        workbook_id = session.workbook_id
        if self._sessions.get(workbook_id) is session:
            del self._sessions[workbook_id]
        session.fingerprints.clear()

        # A waiting batch that fails lands back here; the outer loop moves on
        if workbook_id in self._draining:
            return
        self._draining.add(workbook_id)
        try:
            waiting = self._waiting.get(workbook_id)
            while waiting:
                operations, active_sheet = waiting.popleft()
                outcome = await self._compute(workbook_id, operations, active_sheet)
                self._last_outcome[workbook_id] = outcome
                if self.state(workbook_id) in ACTIVE_STATES:
                    break
            if waiting is not None and not waiting:
                self._waiting.pop(workbook_id, None)
        finally:
            self._draining.discard(workbook_id)

    def prune(self) -> int:
        """Forget bookkeeping for workbooks with no session and nothing waiting."""
        idle = [
            workbook_id
            for workbook_id in set(self._last_outcome) | set(self._waiting)
            if workbook_id not in self._sessions and not self._waiting.get(workbook_id)
        ]
        for workbook_id in idle:
            self._last_outcome.pop(workbook_id, None)
            self._waiting.pop(workbook_id, None)
        return len(idle)

    def _outcome(self, session: PreviewSession, success: bool) -> PreviewOutcome:
        return PreviewOutcome(
            success=success,
            workbook_id=session.workbook_id,
            state=session.state,
            session_id=session.id,
            hunks=session.hunks,
            truncated=session.truncated,
        )
