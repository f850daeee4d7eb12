"""
Tests for fanout.py - settled concurrent fan-out.
"""
import asyncio

import pytest

from pulse.services.fanout import gather_settled


class TestGatherSettled:
    @pytest.mark.asyncio
    async def test_collects_successes_in_input_order(self):
        async def double(x):
            # Later inputs finish first
            await asyncio.sleep(0.01 * (5 - x))
            return x * 2

        settled = await gather_settled(double, [1, 2, 3, 4])

        assert settled.succeeded == [2, 4, 6, 8]
        assert settled.failed == []

    @pytest.mark.asyncio
    async def test_failures_do_not_cancel_siblings(self):
        finished = []

        async def work(x):
            if x == 2:
                raise ValueError("bad input")
            await asyncio.sleep(0)
            finished.append(x)
            return x

        settled = await gather_settled(work, [1, 2, 3])

        assert settled.succeeded == [1, 3]
        assert sorted(finished) == [1, 3]
        assert len(settled.failed) == 1
        assert settled.failed[0].input == 2
        assert isinstance(settled.failed[0].error, ValueError)

    @pytest.mark.asyncio
    async def test_empty_input(self):
        async def never(x):
            raise AssertionError("should not run")

        settled = await gather_settled(never, [])

        assert settled.succeeded == []
        assert settled.failed == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        async def cancelled(x):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await gather_settled(cancelled, [1])
