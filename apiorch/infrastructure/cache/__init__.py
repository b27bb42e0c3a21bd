"""Response Cache Implementations.

Provides the TTL cache store keyed by request signature and the invalidation
bus that purges stale reads after mutations.
Bounded Context: Cache Management
"""
