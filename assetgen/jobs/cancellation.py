"""Cancellation token for one in-flight generation run.

Pollers wait through ``sleep`` rather than ``asyncio.sleep``: the wait races
the timer against the token, so a cancellation ends a pending wait at once.
An HTTP request already in flight is never interrupted; the poller sees the
cancellation at its next wait.
"""

import asyncio
import logging
from typing import Optional, Set

from assetgen.providers.base import GenerationCancelledError

logger = logging.getLogger(__name__)

CANCELLED_BY_USER = "Generation cancelled by user"


class CancellationController:
    """Owns the cancellation token and pending wait timers of a single run."""

    def __init__(self, job_id: str = ""):
        self.job_id = job_id
        self.reason: Optional[str] = None
        self._event = asyncio.Event()
        self._pending: Set[asyncio.Future] = set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = CANCELLED_BY_USER) -> None:
        if self.cancelled:
            return
        self.reason = reason
        self._event.set()
        logger.info("Run %s cancelled: %s", self.job_id, reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelledError(self.reason or CANCELLED_BY_USER)

    async def sleep(self, delay: float) -> None:
        """Wait ``delay`` seconds unless the token fires first."""
        self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self._event.wait())
        self._pending.add(waiter)
        try:
            await asyncio.wait({waiter}, timeout=max(delay, 0.0))
        finally:
            self._pending.discard(waiter)
            if not waiter.done():
                waiter.cancel()
        self.raise_if_cancelled()

    def close(self) -> None:
        """Drop any wait timers still pending once the run is over."""
        for waiter in list(self._pending):
            waiter.cancel()
        self._pending.clear()

    @property
    def pending_waits(self) -> int:
        return len(self._pending)
