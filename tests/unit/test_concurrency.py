"""
Unit tests for the concurrency limiter
"""
import asyncio
import math

import pytest

from finsync.utils.concurrency import ConcurrencyLimiter, gather_limited


@pytest.mark.unit
class TestConcurrencyLimiter:
    """Test suite for ConcurrencyLimiter"""

    async def test_never_exceeds_width(self):
        """
        Given: 20 tasks and a limiter of width 5
        When: All are scheduled at once
        Then: At most 5 bodies run simultaneously and all complete
        """
        # Arrange
        limit = ConcurrencyLimiter(5)
        running = 0
        peak = 0

        async def body(i):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return i

        # Act
        results = await asyncio.gather(*(limit(lambda i=i: body(i)) for i in range(20)))

        # Assert
        assert peak == 5
        assert results == list(range(20))
        assert limit.active_count == 0
        assert limit.pending_count == 0

    async def test_fifo_admission(self):
        """
        Given: A limiter of width 1
        When: Several calls queue behind a running one
        Then: They start in submission order
        """
        limit = ConcurrencyLimiter(1)
        started = []

        async def body(i):
            started.append(i)
            await asyncio.sleep(0)

        await asyncio.gather(*(limit(lambda i=i: body(i)) for i in range(6)))

        assert started == [0, 1, 2, 3, 4, 5]

    async def test_failure_releases_slot_and_keeps_other_outcomes(self):
        """
        Given: A limiter of width 1 and a failing first call
        When: Further calls are queued behind it
        Then: The failure is raised only to its caller and the others still run
        """
        limit = ConcurrencyLimiter(1)

        async def fail():
            raise RuntimeError("boom")

        async def ok(value):
            return value

        results = await asyncio.gather(
            limit(fail),
            limit(lambda: ok("a")),
            limit(lambda: ok("b")),
            return_exceptions=True,
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1:] == ["a", "b"]
        assert limit.active_count == 0

    async def test_cancelled_waiter_does_not_leak_slot(self):
        """
        Given: A width-1 limiter with one running and one waiting call
        When: The waiting call is cancelled
        Then: Later calls still get the slot once the running call finishes
        """
        limit = ConcurrencyLimiter(1)
        gate = asyncio.Event()

        async def blocked():
            await gate.wait()
            return "first"

        first = asyncio.ensure_future(limit(blocked))
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(limit(lambda: asyncio.sleep(0)))
        await asyncio.sleep(0)
        assert limit.pending_count == 1

        waiter.cancel()
        await asyncio.sleep(0)
        third = asyncio.ensure_future(limit(lambda: asyncio.sleep(0, result="third")))
        gate.set()

        assert await first == "first"
        assert await third == "third"
        assert waiter.cancelled()
        assert limit.active_count == 0

    async def test_unbounded(self):
        """
        Given: concurrency=math.inf
        When: Many calls run
        Then: All run at once
        """
        limit = ConcurrencyLimiter(math.inf)
        running = 0
        peak = 0

        async def body():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        await asyncio.gather(*(limit(body) for _ in range(30)))

        assert peak == 30

    @pytest.mark.parametrize("value", [0, -1, 1.5, "3", None, True])
    def test_invalid_concurrency_rejected(self, value):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(value)

    async def test_gather_limited_preserves_order(self):
        """
        Given: Factories that finish in reverse order
        When: gather_limited() runs them
        Then: Results come back in input order
        """
        async def delayed(i):
            await asyncio.sleep(0.001 * (5 - i))
            return i

        results = await gather_limited([lambda i=i: delayed(i) for i in range(5)], concurrency=2)

        assert results == [0, 1, 2, 3, 4]
