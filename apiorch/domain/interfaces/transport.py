"""Interface for the backend transport.

The transport performs one physical call per invocation. It signals rate
limiting with `RateLimited` (or any exception the error taxonomy maps to it,
such as one carrying status 429) and other failures with the remaining
error kinds.
"""

import abc
from typing import Any

from ..models.common import Parameters

class Transport(abc.ABC):
    """Abstract Base Class for backend access."""

    @abc.abstractmethod
    async def execute(self, operation_kind: str, resource_name: str, parameters: Parameters) -> Any:
        """Executes one physical call against the backend.

        Args:
            operation_kind: e.g. 'list', 'get', 'create', 'invoke'.
            resource_name: Entity collection or function name.
            parameters: Call parameters (filters, ids, payload).

        Returns:
            The backend response.

        Raises:
            RateLimited: The backend asked us to slow down.
            OrchestratorError: Any other categorised failure.
        """
        pass
