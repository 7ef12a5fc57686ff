"""Request Queue — bounded concurrency for network operations.

Admits submitted tasks in FIFO order and keeps at most ``max_concurrent`` of
them running. Whenever a running task finishes (success or failure) the next
waiting task is started. Each outcome goes only to its own submitter, and a
submitter that is cancelled takes its task with it (queued or running).
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 3


@dataclass
class _QueueItem:
    """A submitted task waiting for a slot."""

    sequence: int
    factory: Callable[[], Awaitable[Any]]
    future: asyncio.Future = field(repr=False)


class RequestQueue:
    """FIFO admission queue with a concurrency cap.

    Usage:
        queue = RequestQueue(max_concurrent=3)
        result = await queue.submit(lambda: client.fetch(...))
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self._waiting: deque[_QueueItem] = deque()
        self._running: set[asyncio.Task] = set()
        self._sequence: int = 0

    @property
    def running(self) -> int:
        """Number of tasks currently running."""
        return len(self._running)

    @property
    def pending(self) -> int:
        """Number of tasks waiting for a slot."""
        return len(self._waiting)

    async def submit(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Queue ``factory`` and wait for its result.

        ``factory`` is called only once a slot is free, so the underlying
        operation does not start before admission.
        """
        loop = asyncio.get_running_loop()
        self._sequence += 1
        item = _QueueItem(sequence=self._sequence, factory=factory, future=loop.create_future())
        self._waiting.append(item)

        logger.debug(
            "Queued task #%d (running=%d, waiting=%d)",
            item.sequence,
            self.running,
            self.pending,
        )
        self._process()
        return await item.future

    def _process(self) -> None:
        """Start waiting tasks from the head while slots are free."""
        while self._waiting and len(self._running) < self.max_concurrent:
            item = self._waiting.popleft()
            if item.future.done():
                # Submitter went away (cancelled) before admission
                continue
            task = asyncio.ensure_future(self._run(item))
            self._running.add(task)
            task.add_done_callback(self._on_done)
            item.future.add_done_callback(partial(self._on_submitter_done, task=task, sequence=item.sequence))

    async def _run(self, item: _QueueItem) -> None:
        try:
            result = await item.factory()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)

    @staticmethod
    def _on_submitter_done(future: asyncio.Future, task: asyncio.Task, sequence: int) -> None:
        # Nobody waits for the result any more; free the slot
        if future.cancelled() and not task.done():
            logger.debug("Cancelling task #%d, submitter went away", sequence)
            task.cancel()

    def _on_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        self._process()

    def get_stats(self) -> dict:
        """Get queue statistics."""
        return {
            "running": self.running,
            "waiting": self.pending,
            "max_concurrent": self.max_concurrent,
        }
