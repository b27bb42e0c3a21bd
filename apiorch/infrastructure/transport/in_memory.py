"""In-memory backend implementing the Transport interface.

Holds entity collections in dictionaries and mimics the managed backend's
entity API (list/filter/get/create/update/delete/bulk_create) plus function
invocation. Latency and rate limiting can be simulated, which makes it the
backend for the CLI demo and the integration tests.
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apiorch.domain.interfaces.transport import Transport
from apiorch.domain.models.common import Parameters
from apiorch.domain.models.errors import ClientError, RateLimited

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
FunctionHandler = Callable[[Parameters], Awaitable[Any]]

class InMemoryTransport(Transport):
    """Entity store with optional latency and injected rate limits."""

    def __init__(
        self,
        latency_s: float = 0.0,
        rate_limit_every: int = 0,
        seed: Optional[Dict[str, List[Record]]] = None,
    ):
        """Initializes the backend.

        Args:
            latency_s: Simulated latency per call.
            rate_limit_every: Reject every n-th call with `RateLimited` (0 disables).
            seed: Initial records per resource.
        """
        self.latency_s = latency_s
        self.rate_limit_every = rate_limit_every
        self._ids = itertools.count(1)
        self._collections: Dict[str, Dict[str, Record]] = {}
        self._functions: Dict[str, FunctionHandler] = {}
        self.calls: List[tuple] = []
        self.active = 0
        self.peak_active = 0
        for resource_name, records in (seed or {}).items():
            for record in records:
                self._insert(resource_name, dict(record))

    def register_function(self, name: str, handler: FunctionHandler) -> None:
        self._functions[name] = handler

    def _insert(self, resource_name: str, record: Record) -> Record:
        record.setdefault("id", str(next(self._ids)))
        record["id"] = str(record["id"])
        self._collections.setdefault(resource_name, {})[record["id"]] = record
        return dict(record)

    def _collection(self, resource_name: str) -> Dict[str, Record]:
        return self._collections.setdefault(resource_name, {})

    def _require(self, resource_name: str, record_id: Any) -> Record:
        record = self._collection(resource_name).get(str(record_id))
        if record is None:
            raise ClientError(f"{resource_name} {record_id} not found", status=404)
        return record

    async def execute(self, operation_kind: str, resource_name: str, parameters: Parameters) -> Any:
        self.calls.append((operation_kind, resource_name, parameters))
        call_number = len(self.calls)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.latency_s:
                await asyncio.sleep(self.latency_s)
            if self.rate_limit_every and call_number % self.rate_limit_every == 0:
                logger.debug(f"Simulated rate limit on call #{call_number}")
                raise RateLimited("Rate limit exceeded, too many requests")
            return await self._dispatch(operation_kind, resource_name, parameters)
        finally:
            self.active -= 1

    async def _dispatch(self, operation_kind: str, resource_name: str, parameters: Parameters) -> Any:
        if operation_kind in ("list", "filter"):
            return self._query(resource_name, parameters)
        if operation_kind == "get":
            return dict(self._require(resource_name, parameters.get("id")))
        if operation_kind == "create":
            return self._insert(resource_name, dict(parameters.get("data") or {}))
        if operation_kind == "bulk_create":
            return [self._insert(resource_name, dict(item)) for item in parameters.get("data") or []]
        if operation_kind == "update":
            record = self._require(resource_name, parameters.get("id"))
            record.update(parameters.get("data") or {})
            return dict(record)
        if operation_kind == "delete":
            self._require(resource_name, parameters.get("id"))
            del self._collection(resource_name)[str(parameters["id"])]
            return {"id": str(parameters["id"]), "deleted": True}
        if operation_kind == "invoke":
            handler = self._functions.get(resource_name)
            if handler is None:
                raise ClientError(f"Unknown function '{resource_name}'", status=404)
            return await handler(parameters)
        raise ClientError(f"Unsupported operation '{operation_kind}'", status=400)

    def _query(self, resource_name: str, parameters: Parameters) -> List[Record]:
        filters = parameters.get("filters") or {}
        records = [
            dict(record) for record in self._collection(resource_name).values()
            if all(record.get(key) == value for key, value in filters.items())
        ]
        sort = parameters.get("sort")
        if sort:
            descending = sort.startswith("-")
            field_name = sort.lstrip("-")
            records.sort(key=lambda r: (r.get(field_name) is None, r.get(field_name)), reverse=descending)
        limit = parameters.get("limit")
        return records[:limit] if limit else records
