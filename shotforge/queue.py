"""Concurrency-limited submission queue for generation requests.

This module bounds the number of generation calls in flight at once. The
orchestrators above it process work items one at a time; any parallelism
in the system lives here.

Scheduling Logic:
    - Operations with priority > 0 go ahead of every lower-priority entry
    - All other operations are appended to the tail
    - FIFO order is preserved within each tier
    - A slot is released when an operation settles (success or failure),
      at which point the next pending operation is dispatched

Usage:
    from shotforge.queue import ConcurrencyLimitedQueue

    queue = ConcurrencyLimitedQueue(max_concurrent=2, name="image")
    result = await queue.add(lambda: generate(prompt))
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from shotforge.config import get_max_concurrent_image_gen, get_max_concurrent_video_gen
from shotforge.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class _QueuedOperation(Generic[T]):
    operation: Callable[[], Awaitable[T]]
    future: "asyncio.Future[T]"
    priority: int


class ConcurrencyLimitedQueue:
    """Admits queued operations into execution up to a fixed ceiling.

    Invariant: active <= max_concurrent at all times.

    Attributes:
        max_concurrent: Maximum number of operations running at once (>= 1)
        name: Queue name used in log events

    Example:
        >>> queue = ConcurrencyLimitedQueue(max_concurrent=2)
        >>> futures = [queue.add(op) for op in operations]
        >>> results = await asyncio.gather(*futures)
    """

    def __init__(self, max_concurrent: int = 2, name: str = "default"):
        """Initialize the queue.

        Args:
            max_concurrent: Concurrency ceiling, must be at least 1
            name: Queue name for logging

        Raises:
            ValueError: If max_concurrent is below 1
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        self.max_concurrent = max_concurrent
        self.name = name
        self._pending: deque[_QueuedOperation[Any]] = deque()
        self._running = 0
        self._paused = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of operations waiting for a slot."""
        return len(self._pending)

    @property
    def active(self) -> int:
        """Number of operations currently executing."""
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    def add(self, operation: Callable[[], Awaitable[T]], priority: int = 0) -> "asyncio.Future[T]":
        """Enqueue an operation and return a future for its result.

        Must be called from within a running event loop.

        Args:
            operation: Zero-argument coroutine function to execute
            priority: > 0 places the operation ahead of lower-priority entries

        Returns:
            Future resolved with the operation's result or exception.
            Cancelled if the queue is cleared before dispatch.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        entry = _QueuedOperation(operation=operation, future=future, priority=priority)

        if priority > 0:
            # Ahead of every lower-priority entry, behind its own tier
            position = next(
                (i for i, queued in enumerate(self._pending) if queued.priority < priority),
                len(self._pending),
            )
            self._pending.insert(position, entry)
        else:
            self._pending.append(entry)

        log.debug(
            "queue_operation_added",
            queue=self.name,
            priority=priority,
            pending=len(self._pending),
            active=self._running,
        )
        self._dispatch_next()
        return future

    def pause(self) -> None:
        """Stop dispatching pending operations. In-flight operations continue."""
        self._paused = True
        log.info("queue_paused", queue=self.name, pending=len(self._pending))

    def resume(self) -> None:
        """Resume dispatching pending operations."""
        self._paused = False
        log.info("queue_resumed", queue=self.name, pending=len(self._pending))
        self._dispatch_next()

    def clear(self) -> int:
        """Cancel every pending operation.

        Running operations are not interrupted.

        Returns:
            Number of pending operations that were cancelled.
        """
        count = 0
        while self._pending:
            entry = self._pending.popleft()
            if entry.future.cancel():
                count += 1
        log.info("queue_cleared", queue=self.name, cancelled=count)
        return count

    def _dispatch_next(self) -> None:
        while not self._paused and self._running < self.max_concurrent and self._pending:
            entry = self._pending.popleft()
            if entry.future.done():
                # Caller cancelled before dispatch
                continue
            self._running += 1
            task = asyncio.ensure_future(self._execute(entry))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _execute(self, entry: _QueuedOperation[Any]) -> None:
        try:
            result = await entry.operation()
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            if not entry.future.done():
                entry.future.set_exception(e)
        else:
            if not entry.future.done():
                entry.future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch_next()


def create_image_queue() -> ConcurrencyLimitedQueue:
    """Create the image generation queue with the configured ceiling."""
    return ConcurrencyLimitedQueue(max_concurrent=get_max_concurrent_image_gen(), name="image")


def create_video_queue() -> ConcurrencyLimitedQueue:
    """Create the video generation queue with the configured ceiling."""
    return ConcurrencyLimitedQueue(max_concurrent=get_max_concurrent_video_gen(), name="video")
