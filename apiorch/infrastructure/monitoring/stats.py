"""Counters and the rate-limit event log consumed by the monitor.

Recording is best-effort: any failure inside the recorder is logged and
swallowed so it can never change the outcome of a request.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, List, Optional

from apiorch.domain.models.common import RateLimitEvent, StatsSnapshot

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_MAX_EVENTS = 500

Gauge = Callable[[], int]

def _zero() -> int:
    return 0

class StatsRecorder:
    """Collects cache/coalescing counters and recent rate-limit events."""

    def __init__(
        self,
        cache_size: Gauge = _zero,
        active_requests: Gauge = _zero,
        queued_requests: Gauge = _zero,
        in_flight: Gauge = _zero,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_events: int = DEFAULT_MAX_EVENTS,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the recorder.

        Args:
            cache_size: Gauge returning the current cache size.
            active_requests: Gauge returning permits currently held.
            queued_requests: Gauge returning callers queued at the gate.
            in_flight: Gauge returning signatures currently in flight.
            window_seconds: Reporting window for rate-limit events.
            max_events: Bound on the retained event log.
            clock: Wall-clock source used for event timestamps.
        """
        self._gauges = {
            "cache_size": cache_size,
            "active_requests": active_requests,
            "queued_requests": queued_requests,
            "in_flight": in_flight,
        }
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: Deque[RateLimitEvent] = deque(maxlen=max_events)
        self.cache_hits = 0
        self.cache_misses = 0
        self.coalesced_requests = 0

    def record_cache_hit(self) -> None:
        self.cache_hits += 1

    def record_cache_miss(self) -> None:
        self.cache_misses += 1

    def record_coalesced(self) -> None:
        self.coalesced_requests += 1

    def record_rate_limit(
        self,
        attempt_number: int,
        delay_applied: float,
        resource_name: Optional[str] = None,
        operation_kind: Optional[str] = None,
    ) -> None:
        try:
            self._events.append(RateLimitEvent(
                attempt_number=attempt_number,
                delay_applied=delay_applied,
                resource_name=resource_name,
                operation_kind=operation_kind,
                timestamp=self._clock(),
            ))
        except Exception as e:
            logger.warning(f"Failed to record rate-limit event: {e}")

    def recent_rate_limit_events(self) -> List[RateLimitEvent]:
        """Events inside the reporting window, oldest first."""
        cutoff = self._clock() - self.window_seconds
        return [event for event in self._events if event.timestamp > cutoff]

    def _read_gauge(self, name: str) -> int:
        try:
            return int(self._gauges[name]())
        except Exception as e:
            logger.warning(f"Stats gauge '{name}' failed: {e}")
            return 0

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            cache_size=self._read_gauge("cache_size"),
            active_requests=self._read_gauge("active_requests"),
            queued_requests=self._read_gauge("queued_requests"),
            rate_limit_events_last_minute=len(self.recent_rate_limit_events()),
            cache_hits=self.cache_hits,
            cache_misses=self.cache_misses,
            coalesced_requests=self.coalesced_requests,
            in_flight=self._read_gauge("in_flight"),
        )
