"""Domain Events related to orchestrated API calls.

Examples include events for when calls are queued at the gate, retried,
coalesced, fail, or succeed, and when cached reads are invalidated.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Optional

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when a physical transport call is about to be made."""
    resource: str
    operation: str
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a transport call succeeds."""
    resource: str
    operation: str
    latency_ms: float
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively (after retries)."""
    resource: str
    operation: str
    error_type: str
    error_message: str
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when a call has to queue for a gate permit."""
    resource: str
    operation: str
    queue_position: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a rate-limited call."""
    resource: str
    operation: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestCoalesced(DomainEvent):
    """Event triggered when a caller joins an identical in-flight request."""
    resource: str
    operation: str
    waiters: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class CacheInvalidated(DomainEvent):
    """Event triggered when a mutation purges cached reads."""
    resource: str
    tenant_scope: Optional[str]
    entries_removed: int
    reason: Any = None
    timestamp: float = field(default_factory=time.time)
