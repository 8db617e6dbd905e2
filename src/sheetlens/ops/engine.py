"""Main preview and approval engine."""

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from ..config import settings
from ..errors import ApplyExecutionError
from ..host import SpreadsheetHost, create_host
from ..snapshot.models import AISuggestedOperation, WorkbookSnapshot
from ..snapshot.refs import parse_range
from .batch import DebouncedBatchQueue
from .executor import OperationExecutor
from .models import ApprovalOutcome, OperationSummary, PendingAction, PreviewOutcome, PreviewState
from .preview import PreviewOrchestrator, bind_to_sheet
from .queue import ApprovalQueue

logger = logging.getLogger(__name__)


class SheetLensEngine:
    """
    Engine tying together batching, previews and pending approvals.

    One engine serves many workbooks: each workbook gets its own host
    adapter, batch queue and (at most one) active preview session, while
    pending actions live in a shared approval queue.
    """

    def __init__(
        self,
        host_factory: Optional[Callable[[str], SpreadsheetHost]] = None,
        orchestrator: Optional[PreviewOrchestrator] = None,
        approvals: Optional[ApprovalQueue] = None,
        batch_delay: Optional[float] = None,
        batch_max_wait: Optional[float] = None,
    ):
        """
        Initialize the engine.

        Args:
            host_factory: Builds the host adapter for a workbook id
                (defaults to the configured backend)
            orchestrator: Preview orchestrator (created if not provided)
            approvals: Approval queue (created if not provided)
            batch_delay: Debounce window in seconds for batch queues
            batch_max_wait: Max wait in seconds for batch queues
        """
        self.host_factory = host_factory or create_host
        self.orchestrator = orchestrator or PreviewOrchestrator(self.host_for)
        self.approvals = approvals or ApprovalQueue()
        self.batch_delay = batch_delay
        self.batch_max_wait = batch_max_wait

        self._hosts: dict[str, SpreadsheetHost] = {}
        self._batches: dict[str, DebouncedBatchQueue] = {}
        self._action_targets: dict[str, tuple[str, str]] = {}

        logger.info(f"SheetLensEngine initialized with '{settings.host_backend}' host backend")

    def host_for(self, workbook_id: str) -> SpreadsheetHost:
        host = self._hosts.get(workbook_id)
        if host is None:
            host = self.host_factory(workbook_id)
            self._hosts[workbook_id] = host
        return host

    def batch_queue(self, workbook_id: str) -> DebouncedBatchQueue:
        queue = self._batches.get(workbook_id)
        if queue is None:
            queue = DebouncedBatchQueue(
                on_batch=lambda operations: self._start_preview(workbook_id, operations),
                delay=self.batch_delay,
                max_wait=self.batch_max_wait,
            )
            self._batches[workbook_id] = queue
        return queue

    def enqueue_for_preview(
        self, workbook_id: str, operation: AISuggestedOperation, active_sheet: str
    ) -> None:
        """
        Add a write operation to the workbook's batch queue.

        An unprefixed range is bound to ``active_sheet`` here, since one batch
        can hold operations proposed against different sheets.
        """
        self.batch_queue(workbook_id).add(bind_to_sheet(operation, active_sheet))

    async def flush(self, workbook_id: str) -> PreviewOutcome:
        """Flush the batch queue now and wait for the resulting preview."""
        queue = self.batch_queue(workbook_id)
        flushed = queue.flush()
        await queue.drain()
        if not flushed:
            return self.orchestrator.current_preview(workbook_id)
        return self.orchestrator.last_outcome(workbook_id) or self.orchestrator.current_preview(
            workbook_id
        )

    async def preview(self, workbook_id: str) -> PreviewOutcome:
        return self.orchestrator.current_preview(workbook_id)

    async def apply(self, workbook_id: str) -> PreviewOutcome:
        return await self.orchestrator.apply_changes(workbook_id)

    async def cancel(self, workbook_id: str) -> PreviewOutcome:
        return await self.orchestrator.cancel_preview(workbook_id)

    def preview_state(self, workbook_id: str) -> PreviewState:
        return self.orchestrator.state(workbook_id)

    async def execute_now(
        self, workbook_id: str, operation: AISuggestedOperation, active_sheet: str
    ) -> Any:
        """
        Execute one operation against the host without a preview.

        Raises:
            ApplyExecutionError: If the host write fails
        """
        executor = OperationExecutor(self.host_for(workbook_id))
        return await executor.execute(operation, active_sheet)

    def can_execute(self, workbook_id: str, tool: str) -> bool:
        return OperationExecutor(self.host_for(workbook_id)).supports(tool)

    async def read_target(
        self, workbook_id: str, operation: AISuggestedOperation, active_sheet: str
    ) -> WorkbookSnapshot:
        """Current state of the cells an operation targets (empty if unparseable)."""
        target = (operation.input or {}).get("range") or (operation.input or {}).get("cell")
        if not isinstance(target, str):
            return {}
        ref = parse_range(target, active_sheet)
        return await self.host_for(workbook_id).read_range(ref)

    def queue_action(
        self,
        workbook_id: str,
        operation: AISuggestedOperation,
        active_sheet: str,
        session_id: Optional[str] = None,
        dependencies: Optional[list[str]] = None,
        batch_id: Optional[str] = None,
        priority: int = 0,
    ) -> PendingAction:
        """Register an operation that needs single approval."""
        action = self.approvals.queue(
            operation,
            session_id=session_id,
            dependencies=dependencies,
            batch_id=batch_id,
            priority=priority,
        )
        self._action_targets[action.id] = (workbook_id, active_sheet)
        return action

    async def approve(self, action_id: str) -> ApprovalOutcome:
        return await self.approvals.approve(action_id, self._execute_action)

    async def approve_all(
        self, batch_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> list[ApprovalOutcome]:
        return await self.approvals.approve_all_in_order(
            self._execute_action, batch_id=batch_id, session_id=session_id
        )

    def reject(self, action_id: str, reason: Optional[str] = None) -> ApprovalOutcome:
        return self.approvals.reject(action_id, reason)

    def retry(self, action_id: str) -> ApprovalOutcome:
        return self.approvals.retry(action_id)

    def cancel_action(self, action_id: str) -> ApprovalOutcome:
        return self.approvals.cancel(action_id)

    def summary(self, session_id: Optional[str] = None) -> OperationSummary:
        return self.approvals.get_summary(session_id)

    def clear_session(self, session_id: str) -> int:
        removed = [a.id for a in self.approvals.list_actions(session_id=session_id)]
        count = self.approvals.clear_session(session_id)
        for action_id in removed:
            self._action_targets.pop(action_id, None)
        return count

    def cleanup(self, max_age: timedelta) -> int:
        """Forget finished actions older than ``max_age`` and idle preview bookkeeping."""
        removed = self.approvals.cleanup(max_age)
        for action_id in list(self._action_targets):
            if self.approvals.get(action_id) is None:
                del self._action_targets[action_id]
        self.orchestrator.prune()
        return removed

    async def shutdown(self) -> None:
        """Drop queued batches and restore any highlighted cells."""
        for workbook_id, queue in self._batches.items():
            queue.clear()
            await queue.drain()
            while self.orchestrator.state(workbook_id) == PreviewState.PREVIEWING:
                await self.orchestrator.cancel_preview(workbook_id)
        logger.info("SheetLensEngine shut down")

    async def _start_preview(
        self, workbook_id: str, operations: list[AISuggestedOperation]
    ) -> PreviewOutcome:
        return await self.orchestrator.start_preview(workbook_id, operations)

    async def _execute_action(self, action: PendingAction) -> Any:
        target = self._action_targets.get(action.id)
        if target is None:
            raise ApplyExecutionError(action.type, "no workbook recorded for action", action.request_id)
        workbook_id, active_sheet = target
        operation = bind_to_sheet(action.to_operation(), active_sheet)
        if not self.can_execute(workbook_id, operation.tool):
            # Structural tools have no host handler; the caller runs them
            logger.info(f"Approved {operation.tool} for the caller to execute")
            return {"executed_by": "caller", "tool": operation.tool, "input": operation.input}
        return await self.execute_now(workbook_id, operation, active_sheet)


__all__ = ["SheetLensEngine"]
