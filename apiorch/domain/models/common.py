"""Defines common Value Objects used across the orchestrator.

These objects represent the identity of a logical API call (its signature),
cache and in-flight bookkeeping, and the statistics exposed to monitoring.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, NewType, Optional, TypedDict

# === Core Value Objects ===

OperationKind = NewType("OperationKind", str)   # 'get', 'list', 'create', ...
ResourceName = NewType("ResourceName", str)     # Entity/collection name, e.g. 'Orders'
TenantScope = NewType("TenantScope", str)       # Tenant/workspace identifier
Parameters = Dict[str, Any]

# === Operation classes ===

READ_OPERATIONS = frozenset({"get", "list", "filter"})
MUTATING_OPERATIONS = frozenset({"create", "update", "delete", "bulk_create"})
INVOKE_OPERATION = "invoke"

DEFAULT_TENANT_KEY = "tenant"
# Nested parameter sections that may carry the tenant key
_TENANT_SECTIONS = ("filters", "data")


def is_read(operation_kind: str) -> bool:
    """True for cacheable/coalescable operation kinds."""
    return operation_kind in READ_OPERATIONS


def is_mutation(operation_kind: str) -> bool:
    """True for operations that change backend state and trigger invalidation."""
    return operation_kind in MUTATING_OPERATIONS


def serialize_parameters(parameters: Optional[Parameters]) -> str:
    """Canonical JSON encoding; independent of dict key ordering."""
    return json.dumps(parameters or {}, sort_keys=True, separators=(",", ":"), default=str)


def extract_tenant(parameters: Optional[Parameters], tenant_key: str = DEFAULT_TENANT_KEY) -> Optional[TenantScope]:
    """Finds the tenant scope of a call, looking at the top level first."""
    if not parameters:
        return None
    if parameters.get(tenant_key) is not None:
        return TenantScope(str(parameters[tenant_key]))
    for section in _TENANT_SECTIONS:
        nested = parameters.get(section)
        if isinstance(nested, dict) and nested.get(tenant_key) is not None:
            return TenantScope(str(nested[tenant_key]))
    return None


@dataclass(frozen=True)
class Signature:
    """Canonical key identifying a logical API call.

    Two calls with equal signatures are cache and coalescing equivalent.
    `tenant_scope` is derived from the parameters and takes no part in equality.
    """
    operation_kind: str
    resource_name: str
    serialized_parameters: str
    tenant_scope: Optional[str] = field(default=None, compare=False)

    @classmethod
    def build(
        cls,
        operation_kind: str,
        resource_name: str,
        parameters: Optional[Parameters] = None,
        tenant_key: str = DEFAULT_TENANT_KEY,
    ) -> "Signature":
        return cls(
            operation_kind=operation_kind,
            resource_name=resource_name,
            serialized_parameters=serialize_parameters(parameters),
            tenant_scope=extract_tenant(parameters, tenant_key),
        )

    def short(self, limit: int = 80) -> str:
        """Truncated, human readable form for log lines."""
        text = f"{self.resource_name}.{self.operation_kind}:{self.serialized_parameters}"
        return text[:limit]

    def __str__(self) -> str:
        return self.short()


@dataclass(frozen=True)
class CacheEntry:
    """A cached response. Replaced, never mutated, on refresh."""
    signature: Signature
    value: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class RetryState:
    """Retry bookkeeping scoped to one logical call."""
    signature: Signature
    attempt_count: int = 0
    next_delay: float = 0.0


@dataclass(frozen=True)
class RateLimitEvent:
    """One observed rate-limit response, kept for observability only."""
    attempt_number: int
    delay_applied: float
    resource_name: Optional[str] = None
    operation_kind: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MutationTag:
    """Scope affected by a mutating call."""
    resource_name: str
    tenant_scope: Optional[str] = None


@dataclass(frozen=True)
class CallOptions:
    """Per-call knobs accepted by `ApiOrchestrator.call`."""
    ttl_override: Optional[float] = None
    skip_cache: bool = False
    force_invalidate: bool = False

    @classmethod
    def merge(cls, options: Iterable["CallOptions"]) -> "CallOptions":
        """Cache policy for a call shared by several callers.

        The result is stored if any caller wants caching, with the shortest
        TTL override among those callers.
        """
        caching = [o for o in options if not o.skip_cache]
        if not caching:
            return cls(skip_cache=True)
        overrides = [o.ttl_override for o in caching if o.ttl_override is not None]
        return cls(ttl_override=min(overrides) if overrides else None)


# --- Structured Data ---

class StatsSnapshot(TypedDict):
    """Live statistics for the monitoring view."""
    cache_size: int
    active_requests: int
    queued_requests: int
    rate_limit_events_last_minute: int
    cache_hits: int
    cache_misses: int
    coalesced_requests: int
    in_flight: int
