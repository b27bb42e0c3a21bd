"""apiorch: client-side API request orchestration.

Caches backend responses, coalesces concurrent identical reads, bounds
request concurrency and retries rate-limited calls with backoff.
"""

from apiorch.core.orchestrator import ApiOrchestrator
from apiorch.domain.models.common import CallOptions, Signature
from apiorch.domain.models.errors import (
    ClientError, Failed, OrchestratorError, RateLimited, ServerError, TransientNetworkError,
)

__version__ = "0.1.0"

__all__ = [
    "ApiOrchestrator", "CallOptions", "Signature",
    "OrchestratorError", "RateLimited", "TransientNetworkError", "ClientError", "ServerError", "Failed",
]
