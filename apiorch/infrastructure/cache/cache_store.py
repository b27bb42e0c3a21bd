"""Concrete in-memory TTL cache keyed by request signature.

Entries expire after a fixed TTL (overridable per entry). Expired entries are
never returned; they are evicted lazily on access and by `sweep()`. The store
is bounded: once full, the oldest inserted entry is evicted first.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from apiorch.domain.interfaces.cache import CacheStore, SignaturePredicate
from apiorch.domain.models.common import CacheEntry, Signature

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 200

class TTLCacheStore(CacheStore):
    """Bounded TTL cache (insertion-ordered eviction)."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the cache store.

        Args:
            default_ttl: TTL in seconds for entries stored without an override.
            max_entries: Upper bound on the number of entries kept.
            clock: Monotonic time source (injectable for tests).
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Signature, CacheEntry] = {}
        self._lock = threading.RLock()
        logger.info(f"TTLCacheStore initialized (ttl={default_ttl}s, max={max_entries})")

    def _evict_overflow(self) -> None:
        """Drops the oldest insertions until the size bound holds."""
        while len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug(f"Cache full, evicted oldest entry: {oldest}")

    # --- CacheStore Interface Implementation ---

    def get(self, signature: Signature) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(signature)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[signature]
                logger.debug(f"Cache entry expired: {signature}")
                return None
            return entry.value

    def put(self, signature: Signature, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        now = self._clock()
        entry = CacheEntry(signature=signature, value=value, stored_at=now, expires_at=now + effective_ttl)
        with self._lock:
            # Re-insert so a refreshed entry counts as the newest for eviction
            self._entries.pop(signature, None)
            self._entries[signature] = entry
            self._evict_overflow()
        logger.debug(f"Stored cache entry: {signature} (ttl={effective_ttl}s)")

    def invalidate(self, predicate: SignaturePredicate) -> int:
        with self._lock:
            doomed = [sig for sig in self._entries if predicate(sig)]
            for sig in doomed:
                del self._entries[sig]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries")
        return len(doomed)

    def delete(self, signature: Signature) -> bool:
        with self._lock:
            return self._entries.pop(signature, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cleared response cache.")

    def sweep(self) -> int:
        """Removes all expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [sig for sig, entry in self._entries.items() if entry.is_expired(now)]
            for sig in expired:
                del self._entries[sig]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def entry(self, signature: Signature) -> Optional[CacheEntry]:
        """Returns the raw live entry (with timestamps), if any."""
        with self._lock:
            entry = self._entries.get(signature)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, signature: Signature) -> bool:
        return self.get(signature) is not None
