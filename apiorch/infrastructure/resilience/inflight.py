"""Registry of physical calls currently executing, keyed by signature.

The first caller for a signature becomes the owner of the entry; later
callers attach as waiters. Settling the entry fans the single outcome out to
every waiter and removes the entry in one step, so a caller arriving after
settlement never sees a stale entry.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from apiorch.domain.models.common import Signature

logger = logging.getLogger(__name__)

@dataclass
class InFlightEntry:
    """One physical transport call in progress."""
    signature: Signature
    started_at: float = field(default_factory=time.monotonic)
    waiters: List[asyncio.Future] = field(default_factory=list)
    # Per-caller context (the orchestrator stores each caller's CallOptions)
    contexts: List[Any] = field(default_factory=list)

    def attach(self, context: Any = None) -> asyncio.Future:
        """Registers a waiter and returns the future it should await."""
        waiter = asyncio.get_running_loop().create_future()
        self.waiters.append(waiter)
        if context is not None:
            self.contexts.append(context)
        return waiter

    @property
    def listening(self) -> int:
        return sum(1 for waiter in self.waiters if not waiter.done())

class InFlightRegistry:
    """Join-or-become-owner bookkeeping for request coalescing."""

    def __init__(self) -> None:
        self._entries: Dict[Signature, InFlightEntry] = {}

    def begin_or_join(self, signature: Signature) -> Tuple[InFlightEntry, bool]:
        """Returns the entry for `signature` and whether the caller owns it."""
        entry = self._entries.get(signature)
        if entry is not None:
            logger.debug(f"Joining in-flight request: {signature}")
            return entry, False
        entry = InFlightEntry(signature=signature)
        self._entries[signature] = entry
        return entry, True

    def settle(self, signature: Signature, result: Any = None, error: Optional[BaseException] = None) -> int:
        """Delivers the outcome to every waiter and removes the entry.

        Returns:
            The number of waiters that received the outcome.
        """
        entry = self._entries.pop(signature, None)
        if entry is None:
            logger.warning(f"Settle called for unknown or already settled signature: {signature}")
            return 0
        delivered = 0
        for waiter in entry.waiters:
            if waiter.done():
                # Waiter stopped listening (cancelled or timed out)
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(result)
            delivered += 1
        return delivered

    def signatures(self) -> List[Signature]:
        return list(self._entries)

    def __contains__(self, signature: Signature) -> bool:
        return signature in self._entries

    def __len__(self) -> int:
        return len(self._entries)
