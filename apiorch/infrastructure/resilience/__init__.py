"""API Resilience Implementations.

Contains the concurrency gate (admission control), the in-flight registry
(request coalescing) and the retry policy with exponential backoff.
Bounded Context: API Resilience
"""
