"""Cancellation controller tests."""

import asyncio

import pytest

from assetgen.jobs.cancellation import CANCELLED_BY_USER, CancellationController
from assetgen.providers.base import GenerationCancelledError


class TestCancellationController:

    @pytest.mark.asyncio
    async def test_sleep_completes_when_not_cancelled(self):
        token = CancellationController("job-1")
        await token.sleep(0.01)
        assert token.pending_waits == 0

    @pytest.mark.asyncio
    async def test_cancel_wakes_pending_sleep(self):
        token = CancellationController("job-1")
        sleeper = asyncio.create_task(token.sleep(60))
        await asyncio.sleep(0)
        assert token.pending_waits == 1

        token.cancel()
        with pytest.raises(GenerationCancelledError, match=CANCELLED_BY_USER):
            await asyncio.wait_for(sleeper, timeout=1.0)
        assert token.pending_waits == 0

    @pytest.mark.asyncio
    async def test_sleep_after_cancel_raises_at_once(self):
        token = CancellationController()
        token.cancel("stopping")
        with pytest.raises(GenerationCancelledError, match="stopping"):
            await token.sleep(60)

    def test_first_reason_wins(self):
        token = CancellationController()
        token.cancel("first")
        token.cancel("second")
        assert token.cancelled is True
        assert token.reason == "first"

    @pytest.mark.asyncio
    async def test_close_drops_pending_waits(self):
        token = CancellationController()
        sleeper = asyncio.create_task(token.sleep(60))
        await asyncio.sleep(0)

        token.close()
        assert token.pending_waits == 0
        # The wait ends early without a cancellation error
        await asyncio.wait_for(sleeper, timeout=1.0)
        assert token.cancelled is False
