"""Per-destination delivery pacing.

Actions for one destination run one at a time, in submission order, with
at least ``interval`` seconds between the end of one and the start of the
next. Each destination has its own worker, so destinations never wait on
each other.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console

from unfurl_cleaner.config import get_settings
from unfurl_cleaner.errors import QueueCancelledError

console = Console()

Action = Callable[[], Awaitable[Any]]

DEFAULT_INTERVAL = 3.0  # 1 message per 3 seconds per destination


class _DestinationQueue:
    """Pending actions and pacing state for one destination."""

    def __init__(self):
        self.pending: deque[tuple[Action, asyncio.Future]] = deque()
        self.worker: Optional[asyncio.Task] = None
        self.last_finished: Optional[float] = None  # loop.time() of last completion


class DeliveryQueue:
    """Serializes and paces delivery actions per destination id."""

    def __init__(self, interval: float = DEFAULT_INTERVAL):
        self.interval = interval
        self._queues: dict[str, _DestinationQueue] = {}

    def _queue_for(self, destination_id: str) -> _DestinationQueue:
        if destination_id not in self._queues:
            self._queues[destination_id] = _DestinationQueue()
        return self._queues[destination_id]

    def enqueue(self, destination_id: str, action: Action) -> asyncio.Future:
        """Schedule ``action`` for a destination.

        Returns a future resolved with the action's result, or rejected with
        its exception. It is rejected with QueueCancelledError if the queue is
        cleared first or the action is cancelled.
        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        queue = self._queue_for(destination_id)
        queue.pending.append((action, future))
        console.print(
            f"[dim]Enqueued task for {destination_id}, queue length: {len(queue.pending)}[/dim]"
        )

        if queue.worker is None or queue.worker.done():
            queue.worker = loop.create_task(self._drain(destination_id, queue))
        return future

    async def _drain(self, destination_id: str, queue: _DestinationQueue) -> None:
        loop = asyncio.get_running_loop()

        while queue.pending:
            if queue.last_finished is not None:
                wait = queue.last_finished + self.interval - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
                # Cleared while we were waiting
                if not queue.pending:
                    break

            action, future = queue.pending.popleft()
            if future.done():
                continue

            try:
                # Its own task: a cancellation raised inside the action stays inside it
                running = asyncio.ensure_future(action())
            except Exception as e:
                queue.last_finished = loop.time()
                self._settle_failure(destination_id, future, e)
                continue

            try:
                await asyncio.wait({running})
            except asyncio.CancelledError:
                # The worker itself is being cancelled
                running.cancel()
                if not future.done():
                    future.cancel()
                raise
            finally:
                queue.last_finished = loop.time()

            if running.cancelled():
                self._settle_failure(
                    destination_id, future, QueueCancelledError(f"Delivery action for {destination_id} was cancelled")
                )
            elif running.exception() is not None:
                self._settle_failure(destination_id, future, running.exception())
            elif not future.done():
                future.set_result(running.result())

    @staticmethod
    def _settle_failure(destination_id: str, future: asyncio.Future, error: BaseException) -> None:
        if not future.done():
            future.set_exception(error)
        console.print(f"[yellow]Delivery action for {destination_id} failed: {error}[/yellow]")

    def queue_length(self, destination_id: str) -> int:
        """Number of actions waiting (not counting one in progress)."""
        queue = self._queues.get(destination_id)
        return len(queue.pending) if queue else 0

    def clear_queue(self, destination_id: str) -> int:
        """Reject every not-yet-started action for one destination.

        Returns the number of actions dropped. An action already running is
        left alone, as are other destinations.
        """
        queue = self._queues.get(destination_id)
        if queue is None:
            return 0

        dropped = 0
        while queue.pending:
            _, future = queue.pending.popleft()
            if not future.done():
                future.set_exception(QueueCancelledError(f"Queue cleared for {destination_id}"))
                dropped += 1

        if dropped:
            console.print(f"[dim]Cleared {dropped} pending deliveries for {destination_id}[/dim]")
        return dropped

    def clear_all(self) -> int:
        return sum(self.clear_queue(destination_id) for destination_id in list(self._queues))


_default_queue: Optional[DeliveryQueue] = None


def get_delivery_queue() -> DeliveryQueue:
    global _default_queue
    if _default_queue is None:
        _default_queue = DeliveryQueue(interval=get_settings().pacing_interval)
    return _default_queue


def enqueue_delivery(destination_id: str, action: Action) -> asyncio.Future:
    """Enqueue on the process-wide delivery queue."""
    return get_delivery_queue().enqueue(destination_id, action)
