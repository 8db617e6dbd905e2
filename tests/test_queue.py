"""Tests for the approval queue."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from sheetlens.ops import ActionStatus, ApprovalQueue
from sheetlens.snapshot import AISuggestedOperation


def _op(cell="A1", value=1):
    return AISuggestedOperation(tool="write_range", input={"range": cell, "values": [[value]]})


@pytest.fixture
def queue():
    """Empty approval queue."""
    return ApprovalQueue()


@pytest.fixture
def executor():
    """Executor that returns the action's range."""
    return AsyncMock(side_effect=lambda action: {"range": action.input["range"]})


class TestQueueing:
    """Test registration and dependency gating."""

    def test_queue_records_operation(self, queue):
        """Test a queued action mirrors its operation."""
        op = AISuggestedOperation(
            tool="write_range", input={"range": "A1", "values": [[1]]}, request_id="r1"
        )
        action = queue.queue(op, session_id="s1")

        assert action.type == "write_range"
        assert action.request_id == "r1"
        assert action.status == ActionStatus.PENDING
        assert action.can_approve
        assert queue.get(action.id) is action

    @pytest.mark.asyncio
    async def test_dependency_gates_approval(self, queue, executor):
        """Test a dependent becomes approvable only after its dependency completes."""
        a = queue.queue(_op("A1"))
        b = queue.queue(_op("A2"), dependencies=[a.id])
        assert not b.can_approve

        blocked = await queue.approve(b.id, executor)
        assert not blocked.success
        assert blocked.code == "blocked"

        await queue.approve(a.id, executor)
        assert b.can_approve
        assert (await queue.approve(b.id, executor)).success

    def test_unknown_dependency_blocks(self, queue):
        """Test a dependency that was never queued blocks the action."""
        action = queue.queue(_op(), dependencies=["missing"])
        assert not action.can_approve

    def test_list_filters(self, queue):
        """Test listing by session and status."""
        a = queue.queue(_op("A1"), session_id="s1")
        queue.queue(_op("A2"), session_id="s2")
        queue.reject(a.id)

        assert [x.id for x in queue.list_actions(session_id="s1")] == [a.id]
        assert queue.list_actions(status=ActionStatus.PENDING)[0].session_id == "s2"


class TestTransitions:
    """Test approve, reject, retry and cancel."""

    @pytest.mark.asyncio
    async def test_approve_completes(self, queue, executor):
        """Test a successful approval records the result."""
        action = queue.queue(_op("B2"))
        outcome = await queue.approve(action.id, executor)

        assert outcome.success
        assert outcome.status == ActionStatus.COMPLETED
        assert outcome.result == {"range": "B2"}
        assert action.completed_at is not None

    @pytest.mark.asyncio
    async def test_executor_failure_marks_failed(self, queue):
        """Test an executor error marks only that action failed."""
        action = queue.queue(_op())
        outcome = await queue.approve(action.id, AsyncMock(side_effect=RuntimeError("host down")))

        assert not outcome.success
        assert action.status == ActionStatus.FAILED
        assert action.error == "host down"

    @pytest.mark.asyncio
    async def test_approve_twice_is_invalid(self, queue, executor):
        """Test approving a completed action is rejected."""
        action = queue.queue(_op())
        await queue.approve(action.id, executor)

        outcome = await queue.approve(action.id, executor)
        assert outcome.code == "invalid_state"
        assert executor.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_action(self, queue, executor):
        """Test requests for unknown ids report not_found."""
        assert (await queue.approve("nope", executor)).code == "not_found"
        assert queue.reject("nope").code == "not_found"
        assert queue.retry("nope").code == "not_found"
        assert queue.cancel("nope").code == "not_found"

    def test_reject_does_not_cascade(self, queue):
        """Test rejecting a dependency leaves dependents pending and blocked."""
        a = queue.queue(_op("A1"))
        b = queue.queue(_op("A2"), dependencies=[a.id])

        outcome = queue.reject(a.id)
        assert outcome.error == "Rejected by user"
        assert b.status == ActionStatus.PENDING
        assert not b.can_approve

    @pytest.mark.asyncio
    async def test_retry_unblocks_dependents(self, queue, executor):
        """Test retrying a rejected dependency lets dependents proceed."""
        a = queue.queue(_op("A1"))
        b = queue.queue(_op("A2"), dependencies=[a.id])
        queue.reject(a.id, "not now")

        assert queue.retry(a.id).status == ActionStatus.PENDING
        await queue.approve(a.id, executor)
        assert b.can_approve

    def test_retry_requires_failed_or_rejected(self, queue):
        """Test pending actions cannot be retried."""
        action = queue.queue(_op())
        assert queue.retry(action.id).code == "invalid_state"

    def test_cancel_pending(self, queue):
        """Test cancel withdraws a pending action."""
        action = queue.queue(_op())
        assert queue.cancel(action.id).status == ActionStatus.CANCELLED
        assert queue.cancel(action.id).code == "invalid_state"


class TestApproveAll:
    """Test ordered bulk approval."""

    @pytest.mark.asyncio
    async def test_dependency_order(self, queue, executor):
        """Test dependents run after their dependencies regardless of insertion order."""
        a = queue.queue(_op("A1"))
        b = queue.queue(_op("A2"))
        c = queue.queue(_op("A3"), dependencies=[b.id])
        queue.get(a.id).dependencies.append(c.id)

        outcomes = await queue.approve_all_in_order(executor)
        assert [o.action_id for o in outcomes] == [b.id, c.id, a.id]

    @pytest.mark.asyncio
    async def test_priority_then_batch_order(self, queue, executor):
        """Test higher priority batches go first, then earlier batches."""
        first = queue.queue(_op("A1"), batch_id="early")
        second = queue.queue(_op("A2"), batch_id="late")
        urgent = queue.queue(_op("A3"), batch_id="urgent", priority=5)
        early_tail = queue.queue(_op("A4"), batch_id="early")

        outcomes = await queue.approve_all_in_order(executor)
        assert [o.action_id for o in outcomes] == [urgent.id, first.id, early_tail.id, second.id]

    @pytest.mark.asyncio
    async def test_failure_leaves_dependents_pending(self, queue):
        """Test a failure stops its dependents but the sweep continues."""
        a = queue.queue(_op("A1"))
        b = queue.queue(_op("A2"), dependencies=[a.id])
        c = queue.queue(_op("A3"))

        async def run(action):
            if action.id == a.id:
                raise RuntimeError("boom")
            return None

        outcomes = await queue.approve_all_in_order(run)
        assert [o.action_id for o in outcomes] == [a.id, c.id]
        assert b.status == ActionStatus.PENDING
        assert c.status == ActionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_single_batch(self, queue, executor):
        """Test restricting the sweep to one batch."""
        a = queue.queue(_op("A1"), batch_id="x")
        b = queue.queue(_op("A2"), batch_id="y")

        outcomes = await queue.approve_all_in_order(executor, batch_id="x")
        assert [o.action_id for o in outcomes] == [a.id]
        assert b.status == ActionStatus.PENDING

    @pytest.mark.asyncio
    async def test_outside_dependency_blocks(self, queue, executor):
        """Test an unfinished dependency outside the sweep keeps the action pending."""
        outside = queue.queue(_op("A1"), batch_id="x")
        inside = queue.queue(_op("A2"), batch_id="y", dependencies=[outside.id])

        assert await queue.approve_all_in_order(executor, batch_id="y") == []
        assert inside.status == ActionStatus.PENDING

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue, executor):
        """Test approving an empty queue does nothing."""
        assert await queue.approve_all_in_order(executor) == []
        executor.assert_not_awaited()


class TestSummary:
    """Test summaries and housekeeping."""

    @pytest.mark.asyncio
    async def test_summary_counts_and_batches(self, queue, executor):
        """Test status counts, blocked flag and batch rollups."""
        a = queue.queue(_op("A1"), batch_id="b1")
        queue.queue(_op("A2"), batch_id="b1", dependencies=[a.id])
        c = queue.queue(_op("A3"))
        await queue.approve(c.id, executor)

        summary = queue.get_summary()
        assert summary.total == 3
        assert summary.pending == 2
        assert summary.completed == 1
        assert summary.has_blocked
        assert len(summary.batches) == 1
        rollup = summary.batches[0]
        assert (rollup.id, rollup.size, rollup.ready_count, rollup.can_approve_all) == ("b1", 2, 1, False)

    def test_clear_session(self, queue):
        """Test clearing a session drops only its actions."""
        queue.queue(_op("A1"), session_id="s1")
        queue.queue(_op("A2"), session_id="s1")
        kept = queue.queue(_op("A3"), session_id="s2")

        assert queue.clear_session("s1") == 2
        assert [a.id for a in queue.list_actions()] == [kept.id]

    @pytest.mark.asyncio
    async def test_cleanup_keeps_dependency_history(self, queue, executor):
        """Test dependents of cleaned-up completed actions stay approvable."""
        a = queue.queue(_op("A1"))
        await queue.approve(a.id, executor)
        a.completed_at = datetime.now(timezone.utc) - timedelta(hours=2)

        assert queue.cleanup(timedelta(hours=1)) == 1
        assert queue.get(a.id) is None

        b = queue.queue(_op("A2"), dependencies=[a.id])
        assert b.can_approve

    def test_cleanup_skips_pending(self, queue):
        """Test pending actions are never cleaned up."""
        queue.queue(_op())
        assert queue.cleanup(timedelta(0)) == 0
