"""Admission control for transport calls.

Bounds the number of simultaneously executing calls. Callers that find no
free permit wait in a FIFO queue; a released permit is handed directly to
the head of the queue so later arrivals can never overtake earlier ones.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Deque, Set

from apiorch.domain.models.errors import GateReleaseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 4

_permit_ids = itertools.count(1)

@dataclass(eq=False)
class Permit:
    """Admission token. Must be released exactly once."""
    permit_id: int = field(default_factory=lambda: next(_permit_ids))
    granted_at: float = field(default_factory=time.monotonic)
    released: bool = False

class ConcurrencyGate:
    """FIFO semaphore with explicit permits and double-release detection."""

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT, strict: bool = False):
        """Initializes the gate.

        Args:
            max_concurrent: Ceiling on simultaneously granted permits.
            strict: Raise `GateReleaseError` on double release instead of logging it.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.strict = strict
        self._active: Set[int] = set()
        self._waiters: Deque[asyncio.Future] = deque()
        logger.info(f"ConcurrencyGate initialized: max_concurrent={max_concurrent}, strict={strict}")

    @property
    def active(self) -> int:
        """Number of permits currently held."""
        return len(self._active)

    @property
    def queued(self) -> int:
        """Number of callers waiting for a permit."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    def _grant(self) -> Permit:
        permit = Permit()
        self._active.add(permit.permit_id)
        return permit

    async def acquire(self) -> Permit:
        """Waits (FIFO) until a permit is free and returns it."""
        if not self._waiters and len(self._active) < self.max_concurrent:
            return self._grant()

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"Gate full ({self.active}/{self.max_concurrent}), queued at position {len(self._waiters)}")
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Granted just before the cancellation landed; pass it on
                self.release(waiter.result())
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self, permit: Permit) -> None:
        """Returns a permit to the gate. Never blocks."""
        if permit.released or permit.permit_id not in self._active:
            message = f"Permit {permit.permit_id} released more than once"
            if self.strict:
                raise GateReleaseError(message)
            logger.error(message)
            return
        permit.released = True
        self._active.discard(permit.permit_id)
        self._wake_next()

    def _wake_next(self) -> None:
        while self._waiters and len(self._active) < self.max_concurrent:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(self._grant())

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[Permit]:
        """`async with gate.permit():` acquires and always releases."""
        permit = await self.acquire()
        try:
            yield permit
        finally:
            self.release(permit)
