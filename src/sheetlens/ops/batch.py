"""Debounced batching of proposed operations."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from ..config import settings
from ..snapshot.models import AISuggestedOperation

logger = logging.getLogger(__name__)

BatchHandler = Callable[[list[AISuggestedOperation]], Union[None, Awaitable[Any]]]


class DebouncedBatchQueue:
    """
    Coalesces operations that arrive close together into one batch.

    The first operation starts a debounce timer and a max-wait timer. Each
    later operation restarts only the debounce timer, so a steady stream of
    proposals is still flushed once max-wait elapses. Both timers run on
    the current asyncio event loop.
    """

    def __init__(
        self,
        on_batch: BatchHandler,
        delay: Optional[float] = None,
        max_wait: Optional[float] = None,
        flush_threshold: Optional[int] = None,
    ):
        """
        Args:
            on_batch: Called once per flush with every queued operation
            delay: Debounce window in seconds
            max_wait: Upper bound in seconds between first add and flush
            flush_threshold: Batches larger than this bypass the debounce
        """
        self.on_batch = on_batch
        self.delay = delay if delay is not None else settings.debounce_delay_ms / 1000
        self.max_wait = max_wait if max_wait is not None else settings.debounce_max_wait_ms / 1000
        self.flush_threshold = (
            flush_threshold if flush_threshold is not None else settings.immediate_flush_threshold
        )
        self._operations: list[AISuggestedOperation] = []
        self._debounce_timer: Optional[asyncio.TimerHandle] = None
        self._max_wait_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._operations)

    @property
    def is_empty(self) -> bool:
        return not self._operations

    def add(self, operation: AISuggestedOperation) -> None:
        """Queue one operation and (re)arm the timers."""
        self._operations.append(operation)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; operation waits for an explicit flush")
            return

        if self._max_wait_timer is None:
            self._max_wait_timer = loop.call_later(self.max_wait, self._on_timer, "max_wait")

        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
        self._debounce_timer = loop.call_later(self.delay, self._on_timer, "debounce")

    def add_batch(
        self, operations: list[AISuggestedOperation], immediate: Optional[bool] = None
    ) -> None:
        """
        Queue several operations.

        Args:
            operations: Operations to queue, in order
            immediate: Flush right away; defaults to True when the batch is
                larger than flush_threshold
        """
        if immediate is None:
            immediate = len(operations) > self.flush_threshold

        if immediate:
            logger.info(f"Large batch of {len(operations)} operations, flushing immediately")
            self._operations.extend(operations)
            self.flush()
            return

        for operation in operations:
            self.add(operation)

    def flush(self) -> list[AISuggestedOperation]:
        """
        Hand every queued operation to the batch handler.

        Returns:
            The operations that were flushed (empty if nothing was queued)
        """
        self._cancel_timers()
        if not self._operations:
            return []

        batch = self._operations
        self._operations = []
        logger.info(f"Flushing batch of {len(batch)} operations")

        try:
            result = self.on_batch(batch)
        except Exception:
            logger.exception("Batch handler failed")
            return batch

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
        return batch

    def clear(self) -> None:
        """Drop queued operations without flushing."""
        dropped = len(self._operations)
        self._operations = []
        self._cancel_timers()
        if dropped:
            logger.info(f"Cleared {dropped} queued operations")

    async def drain(self) -> None:
        """Wait for batch handlers scheduled by earlier flushes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_timer(self, reason: str) -> None:
        logger.debug(f"Batch timer fired ({reason})")
        self.flush()

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Batch handler raised: {task.exception()}")

    def _cancel_timers(self) -> None:
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None
        if self._max_wait_timer is not None:
            self._max_wait_timer.cancel()
            self._max_wait_timer = None
