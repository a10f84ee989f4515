"""Tests for per-destination delivery pacing."""

import asyncio

import pytest

from unfurl_cleaner.delivery.queue import DeliveryQueue
from unfurl_cleaner.errors import QueueCancelledError

INTERVAL = 0.05
# asyncio may wake a timer up to its clock resolution early
TOLERANCE = 0.005


def recorder(log: list, value):
    async def action():
        log.append((value, asyncio.get_running_loop().time()))
        return value

    return action


class TestOrdering:
    """Tests for FIFO execution and results."""

    @pytest.mark.asyncio
    async def test_fifo_and_results(self):
        queue = DeliveryQueue(interval=INTERVAL)
        log = []
        futures = [queue.enqueue("c1", recorder(log, i)) for i in range(3)]

        results = await asyncio.gather(*futures)

        assert results == [0, 1, 2]
        assert [value for value, _ in log] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_pacing_between_actions(self):
        queue = DeliveryQueue(interval=INTERVAL)
        log = []
        await asyncio.gather(*(queue.enqueue("c1", recorder(log, i)) for i in range(3)))

        starts = [t for _, t in log]
        for earlier, later in zip(starts, starts[1:]):
            assert later - earlier >= INTERVAL - TOLERANCE

    @pytest.mark.asyncio
    async def test_pacing_survives_empty_queue(self):
        """An action enqueued right after the queue drains still waits."""
        queue = DeliveryQueue(interval=INTERVAL)
        log = []
        await queue.enqueue("c1", recorder(log, "a"))
        await queue.enqueue("c1", recorder(log, "b"))

        assert log[1][1] - log[0][1] >= INTERVAL - TOLERANCE

    @pytest.mark.asyncio
    async def test_failure_does_not_block(self):
        queue = DeliveryQueue(interval=INTERVAL)

        async def broken():
            raise ValueError("send failed")

        async def fine():
            return "ok"

        first = queue.enqueue("c1", broken)
        second = queue.enqueue("c1", fine)

        with pytest.raises(ValueError):
            await first
        assert await second == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_action_does_not_block(self):
        queue = DeliveryQueue(interval=INTERVAL)
        log = []

        async def cancelled():
            raise asyncio.CancelledError()

        first = queue.enqueue("c1", cancelled)
        second = queue.enqueue("c1", recorder(log, "later"))

        with pytest.raises(QueueCancelledError):
            await asyncio.wait_for(first, timeout=1)
        assert await asyncio.wait_for(second, timeout=1) == "later"
        assert [value for value, _ in log] == ["later"]

    @pytest.mark.asyncio
    async def test_cancelled_worker_cancels_running_action(self):
        queue = DeliveryQueue(interval=INTERVAL)
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        future = queue.enqueue("c1", slow)
        await started.wait()
        queue._queues["c1"].worker.cancel()

        with pytest.raises(asyncio.CancelledError):
            await future


class TestDestinations:
    """Tests for isolation between destinations."""

    @pytest.mark.asyncio
    async def test_destinations_run_concurrently(self):
        """A stalled destination does not hold up another one."""
        queue = DeliveryQueue(interval=INTERVAL)
        released = asyncio.Event()

        async def stalled():
            await released.wait()
            return "c1 done"

        async def releaser():
            released.set()
            return "c2 done"

        a = queue.enqueue("c1", stalled)
        b = queue.enqueue("c2", releaser)

        results = await asyncio.wait_for(asyncio.gather(a, b), timeout=1)
        assert results == ["c1 done", "c2 done"]


class TestClearing:
    """Tests for dropping pending work."""

    @pytest.mark.asyncio
    async def test_clear_queue_rejects_pending(self):
        queue = DeliveryQueue(interval=INTERVAL)
        released = asyncio.Event()
        ran = []

        async def blocker():
            await released.wait()
            return "first"

        async def later():
            ran.append("later")

        running = queue.enqueue("c1", blocker)
        pending = [queue.enqueue("c1", later), queue.enqueue("c1", later)]
        await asyncio.sleep(0)

        assert queue.queue_length("c1") == 2
        assert queue.clear_queue("c1") == 2
        assert queue.queue_length("c1") == 0

        for future in pending:
            with pytest.raises(QueueCancelledError):
                await future

        released.set()
        assert await running == "first"
        assert ran == []

    @pytest.mark.asyncio
    async def test_clear_all(self):
        queue = DeliveryQueue(interval=INTERVAL)
        released = asyncio.Event()

        async def blocker():
            await released.wait()

        running = [queue.enqueue("c1", blocker), queue.enqueue("c2", blocker)]
        pending = [queue.enqueue("c1", blocker), queue.enqueue("c2", blocker)]
        await asyncio.sleep(0)

        assert queue.clear_all() == 2
        for future in pending:
            with pytest.raises(QueueCancelledError):
                await future

        released.set()
        await asyncio.gather(*running)

    def test_unknown_destination(self):
        queue = DeliveryQueue()
        assert queue.queue_length("nope") == 0
        assert queue.clear_queue("nope") == 0
