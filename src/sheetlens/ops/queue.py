"""Pending actions awaiting user approval, with dependency gating."""

import heapq
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from ..errors import ApprovalError
from ..snapshot.models import AISuggestedOperation
from .models import (
    TERMINAL_STATUSES,
    ActionStatus,
    ApprovalOutcome,
    BatchRollup,
    OperationSummary,
    PendingAction,
)

logger = logging.getLogger(__name__)

ActionExecutor = Callable[[PendingAction], Awaitable[Any]]


class ApprovalQueue:
    """
    Registry of pending actions.

    An action can be approved only when every dependency has completed.
    ``can_approve`` is recomputed after every state change. Rejecting or
    failing an action never touches its dependents: they stay blocked until
    they are rejected themselves or the dependency is retried and completes.
    """

    def __init__(self):
        self._actions: dict[str, PendingAction] = {}
        self._sequence: dict[str, int] = {}
        self._next_sequence = 0
        # Final status of actions dropped by cleanup, still used to resolve dependencies
        self._history: dict[str, tuple[Optional[str], ActionStatus]] = {}

    def queue(
        self,
        operation: AISuggestedOperation,
        session_id: Optional[str] = None,
        dependencies: Optional[list[str]] = None,
        batch_id: Optional[str] = None,
        priority: int = 0,
    ) -> PendingAction:
        """Register an operation as a pending action."""
        action = PendingAction(
            id=str(uuid.uuid4()),
            type=operation.tool,
            input=dict(operation.input or {}),
            dependencies=list(dependencies or []),
            batch_id=batch_id,
            priority=priority,
            description=operation.description,
            request_id=operation.request_id,
            session_id=session_id,
        )
        self._actions[action.id] = action
        self._sequence[action.id] = self._next_sequence
        self._next_sequence += 1
        self._refresh()

        logger.info(
            f"Queued {action.type} as action {action.id}"
            + (f" in batch {batch_id}" if batch_id else "")
            + (f" after {len(action.dependencies)} dependencies" if action.dependencies else "")
        )
        return action

    def get(self, action_id: str) -> Optional[PendingAction]:
        return self._actions.get(action_id)

    def list_actions(
        self,
        session_id: Optional[str] = None,
        status: Optional[ActionStatus] = None,
    ) -> list[PendingAction]:
        """Actions in insertion order, optionally filtered."""
        actions = sorted(self._actions.values(), key=lambda a: self._sequence[a.id])
        if session_id is not None:
            actions = [a for a in actions if a.session_id == session_id]
        if status is not None:
            actions = [a for a in actions if a.status == status]
        return actions

    def batch(self, batch_id: str) -> list[PendingAction]:
        return [a for a in self.list_actions() if a.batch_id == batch_id]

    def can_approve(self, action_id: str) -> bool:
        action = self._actions.get(action_id)
        if action is None or action.status != ActionStatus.PENDING:
            return False
        return all(self._status_of(dep) == ActionStatus.COMPLETED for dep in action.dependencies)

    async def approve(self, action_id: str, executor: ActionExecutor) -> ApprovalOutcome:
        """
        Approve and execute one action.

        A failing executor marks only this action failed.
        """
        try:
            action = self._require(action_id)
            if action.status != ActionStatus.PENDING:
                raise ApprovalError(f"Action {action_id} is {action.status.value}")
            if not self.can_approve(action_id):
                return ApprovalOutcome(
                    action_id=action_id,
                    success=False,
                    status=action.status,
                    error=f"Action {action_id} is blocked by unfinished dependencies",
                    code="blocked",
                )
        except ApprovalError as e:
            return self._invalid(action_id, e)

        action.status = ActionStatus.APPROVED
        try:
            action.result = await executor(action)
        except Exception as e:
            logger.error(f"Action {action.id} ({action.type}) failed: {e}")
            action.status = ActionStatus.FAILED
            action.error = str(e)
        else:
            action.status = ActionStatus.COMPLETED
            action.error = None
            logger.info(f"Action {action.id} ({action.type}) completed")
        action.completed_at = datetime.now(timezone.utc)
        self._refresh()

        return ApprovalOutcome(
            action_id=action.id,
            success=action.status == ActionStatus.COMPLETED,
            status=action.status,
            result=action.result,
            error=action.error,
        )

    def reject(self, action_id: str, reason: Optional[str] = None) -> ApprovalOutcome:
        """Reject one pending action. Dependents are left as they are."""
        try:
            action = self._require(action_id)
            if action.status != ActionStatus.PENDING:
                raise ApprovalError(f"Action {action_id} is {action.status.value}")
        except ApprovalError as e:
            return self._invalid(action_id, e)

        action.status = ActionStatus.REJECTED
        action.error = reason or "Rejected by user"
        action.completed_at = datetime.now(timezone.utc)
        self._refresh()
        logger.info(f"Action {action.id} rejected: {action.error}")
        return ApprovalOutcome(
            action_id=action.id, success=True, status=action.status, error=action.error
        )

    def retry(self, action_id: str) -> ApprovalOutcome:
        """Return a failed or rejected action to pending."""
        try:
            action = self._require(action_id)
            if action.status not in (ActionStatus.FAILED, ActionStatus.REJECTED):
                raise ApprovalError(f"Only failed or rejected actions can be retried, not {action.status.value}")
        except ApprovalError as e:
            return self._invalid(action_id, e)

        action.status = ActionStatus.PENDING
        action.error = None
        action.result = None
        action.completed_at = None
        self._refresh()
        logger.info(f"Action {action.id} returned to pending")
        return ApprovalOutcome(action_id=action.id, success=True, status=action.status)

    def cancel(self, action_id: str) -> ApprovalOutcome:
        """Withdraw a pending action without executing it."""
        try:
            action = self._require(action_id)
            if action.status != ActionStatus.PENDING:
                raise ApprovalError(f"Action {action_id} is {action.status.value}")
        except ApprovalError as e:
            return self._invalid(action_id, e)

        action.status = ActionStatus.CANCELLED
        action.completed_at = datetime.now(timezone.utc)
        self._refresh()
        logger.info(f"Action {action.id} cancelled")
        return ApprovalOutcome(action_id=action.id, success=True, status=action.status)

    async def approve_all_in_order(
        self,
        executor: ActionExecutor,
        batch_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> list[ApprovalOutcome]:
        """
        Approve every pending action (or one batch) in dependency order.

        Among actions that are ready at the same time, batches with a higher
        priority go first, then earlier batches, then insertion order within
        a batch. An action whose dependency fails, is rejected or lies
        outside the sweep and is unfinished is left pending.
        """
        candidates = {
            a.id: a
            for a in self.list_actions(session_id=session_id, status=ActionStatus.PENDING)
            if batch_id is None or a.batch_id == batch_id
        }
        if not candidates:
            return []

        group_priority: dict[str, int] = {}
        group_start: dict[str, int] = {}
        for action in candidates.values():
            group = self._group(action)
            group_priority[group] = max(group_priority.get(group, action.priority), action.priority)
            group_start[group] = min(group_start.get(group, self._sequence[action.id]), self._sequence[action.id])

        def sort_key(action: PendingAction) -> tuple:
            group = self._group(action)
            return (-group_priority[group], group_start[group], self._sequence[action.id], action.id)

        # Kahn's algorithm over dependencies inside the sweep
        waiting_on: dict[str, int] = {}
        dependents: dict[str, list[str]] = {}
        blocked: set[str] = set()
        for action in candidates.values():
            count = 0
            for dep in action.dependencies:
                if dep in candidates:
                    count += 1
                    dependents.setdefault(dep, []).append(action.id)
                elif self._status_of(dep) != ActionStatus.COMPLETED:
                    blocked.add(action.id)
            waiting_on[action.id] = count

        ready = [sort_key(a) for a in candidates.values() if waiting_on[a.id] == 0 and a.id not in blocked]
        heapq.heapify(ready)

        outcomes = []
        while ready:
            action_id = heapq.heappop(ready)[-1]
            outcome = await self.approve(action_id, executor)
            outcomes.append(outcome)
            if outcome.status != ActionStatus.COMPLETED:
                continue
            for dependent in dependents.get(action_id, []):
                waiting_on[dependent] -= 1
                if waiting_on[dependent] == 0 and dependent not in blocked:
                    heapq.heappush(ready, sort_key(candidates[dependent]))

        left = len(candidates) - len(outcomes)
        logger.info(
            f"Approved {sum(1 for o in outcomes if o.success)}/{len(outcomes)} actions"
            + (f"; {left} left blocked" if left else "")
        )
        return outcomes

    def get_summary(self, session_id: Optional[str] = None) -> OperationSummary:
        actions = self.list_actions(session_id=session_id)
        summary = OperationSummary(total=len(actions))
        for action in actions:
            field_name = action.status.value
            setattr(summary, field_name, getattr(summary, field_name) + 1)

        summary.has_blocked = any(
            a.status == ActionStatus.PENDING and not a.can_approve for a in actions
        )

        batch_ids = []
        for action in actions:
            if action.batch_id and action.batch_id not in batch_ids:
                batch_ids.append(action.batch_id)
        for batch_id in batch_ids:
            members = [a for a in actions if a.batch_id == batch_id]
            ready = sum(1 for a in members if a.status == ActionStatus.PENDING and a.can_approve)
            summary.batches.append(
                BatchRollup(
                    id=batch_id,
                    size=len(members),
                    ready_count=ready,
                    can_approve_all=ready == len(members),
                )
            )
        return summary

    def clear_session(self, session_id: str) -> int:
        """Drop every action (and remembered status) belonging to a session."""
        removed = [a.id for a in self._actions.values() if a.session_id == session_id]
        for action_id in removed:
            del self._actions[action_id]
            del self._sequence[action_id]
        self._history = {
            action_id: entry for action_id, entry in self._history.items() if entry[0] != session_id
        }
        self._refresh()
        if removed:
            logger.info(f"Cleared {len(removed)} actions for session {session_id}")
        return len(removed)

    def cleanup(self, max_age: timedelta) -> int:
        """Forget actions that finished more than ``max_age`` ago."""
        cutoff = datetime.now(timezone.utc) - max_age
        removed = 0
        for action in list(self._actions.values()):
            if action.status in TERMINAL_STATUSES and action.completed_at and action.completed_at < cutoff:
                self._history[action.id] = (action.session_id, action.status)
                del self._actions[action.id]
                del self._sequence[action.id]
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} finished actions")
        return removed

    def _status_of(self, action_id: str) -> Optional[ActionStatus]:
        action = self._actions.get(action_id)
        if action is not None:
            return action.status
        entry = self._history.get(action_id)
        return entry[1] if entry else None

    def _group(self, action: PendingAction) -> str:
        return action.batch_id or f"action:{action.id}"

    def _require(self, action_id: str) -> PendingAction:
        action = self._actions.get(action_id)
        if action is None:
            raise ApprovalError(f"Action {action_id} not found")
        return action

    def _invalid(self, action_id: str, error: ApprovalError) -> ApprovalOutcome:
        logger.warning(str(error))
        action = self._actions.get(action_id)
        return ApprovalOutcome(
            action_id=action_id,
            success=False,
            status=action.status if action else None,
            error=str(error),
            code="invalid_state" if action else "not_found",
        )

    def _refresh(self) -> None:
        for action in self._actions.values():
            action.can_approve = self.can_approve(action.id)
