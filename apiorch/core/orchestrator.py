"""API request orchestrator.

The single entry point for every data-fetching call. A logical call moves
through: cache check -> coalescing -> gate admission -> transport ->
(retry on rate limit) -> cache write / invalidation -> settlement.

Reads (`get`, `list`, `filter`) are cached and coalesced. Mutations and
function invocations are neither (two identical creates are two creates) but
share the gate and the retry policy, and successful mutations invalidate
cached reads of the affected resource.

Physical calls run in tasks owned by the orchestrator. Callers only await
their own waiter future, so a caller that is cancelled or times out never
cancels work that other callers are still waiting on.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from apiorch.domain.events.api_events import (
    ApiCallDeferred, ApiCallFailed, ApiCallInitiated, ApiCallSucceeded,
    RequestCoalesced, RetryScheduled,
)
from apiorch.domain.events.dispatcher import EventDispatcher
from apiorch.domain.interfaces.transport import Transport
from apiorch.domain.models.common import (
    DEFAULT_TENANT_KEY, INVOKE_OPERATION, CallOptions, Parameters, RateLimitEvent,
    RetryState, Signature, StatsSnapshot, is_mutation, is_read,
)
from apiorch.domain.models.errors import (
    ErrorKind, OrchestratorClosedError, OrchestratorError, classify_error, normalize_error,
)
from apiorch.infrastructure.cache.cache_store import TTLCacheStore
from apiorch.infrastructure.cache.invalidation import InvalidationBus
from apiorch.infrastructure.config.settings import OrchestratorSettings
from apiorch.infrastructure.monitoring.stats import StatsRecorder
from apiorch.infrastructure.resilience.concurrency_gate import ConcurrencyGate, Permit
from apiorch.infrastructure.resilience.inflight import InFlightEntry, InFlightRegistry
from apiorch.infrastructure.resilience.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_SWEEP_INTERVAL_S = 30.0
DEFAULT_LIST_LIMIT = 50

class ApiOrchestrator:
    """Caching, coalescing, admission control and retry around a Transport."""

    def __init__(
        self,
        transport: Transport,
        cache: Optional[TTLCacheStore] = None,
        gate: Optional[ConcurrencyGate] = None,
        retry_policy: Optional[RetryPolicy] = None,
        registry: Optional[InFlightRegistry] = None,
        stats: Optional[StatsRecorder] = None,
        dispatcher: Optional[EventDispatcher] = None,
        invalidation: Optional[InvalidationBus] = None,
        tenant_key: str = DEFAULT_TENANT_KEY,
        sweep_interval_s: Optional[float] = DEFAULT_SWEEP_INTERVAL_S,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initializes the orchestrator. Every collaborator is optional and
        defaults to the standard implementation with default tuning.

        Args:
            transport: Backend adapter performing physical calls.
            cache: Response cache.
            gate: Admission control for transport calls.
            retry_policy: Backoff policy for rate-limited calls.
            registry: In-flight registry for coalescing.
            stats: Stats recorder; built around this instance's gauges if None.
            dispatcher: Event dispatcher for domain events.
            invalidation: Invalidation bus bound to `cache`.
            tenant_key: Parameter name holding the tenant scope.
            sweep_interval_s: Period of the background expiry sweep (None disables it).
            sleep: Awaitable used for backoff delays (injectable for tests).
        """
        self.transport = transport
        self.cache = cache if cache is not None else TTLCacheStore()
        self.gate = gate if gate is not None else ConcurrencyGate()
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.registry = registry if registry is not None else InFlightRegistry()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.invalidation = invalidation if invalidation is not None else InvalidationBus(self.cache, dispatcher=self.dispatcher)
        self.stats = stats if stats is not None else StatsRecorder(
            cache_size=lambda: len(self.cache),
            active_requests=lambda: self.gate.active,
            queued_requests=lambda: self.gate.queued,
            in_flight=lambda: len(self.registry),
        )
        self.tenant_key = tenant_key
        self.sweep_interval_s = sweep_interval_s
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self._detached: Set[asyncio.Future] = set()
        self._generations: Dict[str, int] = {}
        self._cache_epoch = 0
        self._sweeper: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_settings(cls, transport: Transport, settings: OrchestratorSettings, **overrides: Any) -> "ApiOrchestrator":
        """Builds an orchestrator wired from `OrchestratorSettings`."""
        cache = TTLCacheStore(default_ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
        gate = ConcurrencyGate(max_concurrent=settings.max_concurrent, strict=settings.strict_release)
        retry_policy = RetryPolicy(
            max_retries=settings.max_retries,
            base_delay_s=settings.base_delay_seconds,
            max_delay_s=settings.max_delay_seconds,
            retry_transient=settings.retry_transient,
        )
        registry = InFlightRegistry()
        stats = StatsRecorder(
            cache_size=lambda: len(cache),
            active_requests=lambda: gate.active,
            queued_requests=lambda: gate.queued,
            in_flight=lambda: len(registry),
            window_seconds=settings.stats_window_seconds,
            max_events=settings.stats_max_events,
        )
        kwargs: Dict[str, Any] = dict(
            cache=cache, gate=gate, retry_policy=retry_policy, registry=registry, stats=stats,
            tenant_key=settings.tenant_key, sweep_interval_s=settings.sweep_interval_seconds,
        )
        kwargs.update(overrides)
        return cls(transport, **kwargs)

    # --- Lifecycle ---

    async def __aenter__(self) -> "ApiOrchestrator":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Starts the background expiry sweep (requires a running loop)."""
        if self._closed:
            raise OrchestratorClosedError("Orchestrator is closed")
        if self.sweep_interval_s and self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.debug(f"Cache sweeper started (interval={self.sweep_interval_s}s)")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            self.cache.sweep()

    async def close(self) -> None:
        """Cancels pending calls, stops the sweeper and drops all state."""
        if self._closed:
            return
        self._closed = True
        pending: List[asyncio.Task] = list(self._tasks)
        if self._sweeper is not None:
            pending.append(self._sweeper)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        # Tasks cancelled before their first step never settled anything
        closed_error = OrchestratorClosedError("Orchestrator closed before the call completed")
        for signature in self.registry.signatures():
            self.registry.settle(signature, error=closed_error)
        for waiter in list(self._detached):
            if not waiter.done():
                waiter.set_exception(closed_error)
        self._detached.clear()
        self.cache.clear()
        logger.info(f"Orchestrator closed ({len(pending)} background tasks cancelled)")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # --- Main entry point ---

    async def call(
        self,
        operation_kind: str,
        resource_name: str,
        parameters: Optional[Parameters] = None,
        options: Optional[CallOptions] = None,
    ) -> Any:
        """Executes a logical API call.

        Args:
            operation_kind: 'get', 'list', 'filter', 'create', 'update',
                'delete', 'bulk_create' or 'invoke'.
            resource_name: Entity collection or function name.
            parameters: Call parameters; the tenant scope is read from them.
            options: Per-call TTL override, cache bypass, forced invalidation.

        Returns:
            The transport result (possibly served from cache or shared with
            concurrent identical callers).

        Raises:
            OrchestratorError: Terminal failure, carrying the attempt count.
            OrchestratorClosedError: The orchestrator is (or got) closed.
        """
        if self._closed:
            raise OrchestratorClosedError("Orchestrator is closed")
        options = options or CallOptions()
        parameters = dict(parameters or {})
        signature = Signature.build(operation_kind, resource_name, parameters, tenant_key=self.tenant_key)

        if options.force_invalidate:
            self._invalidate(resource_name, signature.tenant_scope, reason="forced")

        if not is_read(operation_kind):
            return await self._call_detached(signature, parameters)

        if not options.skip_cache:
            cached = self.cache.get(signature)
            if cached is not None:
                self.stats.record_cache_hit()
                logger.debug(f"[cache] HIT {signature}")
                return cached
            self.stats.record_cache_miss()
            logger.debug(f"[cache] MISS {signature}")

        entry, is_owner = self.registry.begin_or_join(signature)
        waiter = entry.attach(options)
        if is_owner:
            self._spawn(self._run_owned(entry, parameters))
        else:
            self.stats.record_coalesced()
            self.dispatcher.dispatch(RequestCoalesced(
                resource=resource_name, operation=operation_kind, waiters=len(entry.waiters),
            ))
        return await waiter

    async def _run_owned(self, entry: InFlightEntry, parameters: Parameters) -> None:
        """Executes the physical call for a coalesced read and settles it."""
        signature = entry.signature
        generation = self._generation(signature.resource_name)
        try:
            result = await self._execute_with_retry(signature, parameters)
        except asyncio.CancelledError:
            self.registry.settle(signature, error=OrchestratorClosedError("Orchestrator closed before the call completed"))
            raise
        except Exception as e:
            self.registry.settle(signature, error=e)
            return
        # Callers may have joined with their own options while the call ran
        options = CallOptions.merge(entry.contexts)
        if not options.skip_cache:
            if self._generation(signature.resource_name) == generation:
                self.cache.put(signature, result, ttl=options.ttl_override)
            else:
                logger.debug(f"Cache invalidated while reading, not caching: {signature}")
        self.registry.settle(signature, result=result)

    async def _call_detached(self, signature: Signature, parameters: Parameters) -> Any:
        """Runs a mutation or invocation in an owned task and awaits its outcome."""
        waiter = asyncio.get_running_loop().create_future()
        self._detached.add(waiter)
        waiter.add_done_callback(self._detached.discard)

        async def runner() -> None:
            try:
                result = await self._execute_with_retry(signature, parameters)
            except asyncio.CancelledError:
                if not waiter.done():
                    waiter.set_exception(OrchestratorClosedError("Orchestrator closed before the call completed"))
                raise
            except Exception as e:
                if not waiter.done():
                    waiter.set_exception(e)
                return
            if is_mutation(signature.operation_kind):
                self._invalidate(signature.resource_name, signature.tenant_scope, reason=signature.operation_kind)
            if not waiter.done():
                waiter.set_result(result)

        self._spawn(runner())
        return await waiter

    def _generation(self, resource_name: str) -> Tuple[int, int]:
        return self._cache_epoch, self._generations.get(resource_name, 0)

    def _invalidate(self, resource_name: str, tenant_scope: Optional[str], reason: str) -> int:
        self._generations[resource_name] = self._generations.get(resource_name, 0) + 1
        return self.invalidation.on_mutation(resource_name, tenant_scope, reason=reason)

    # --- Admission, execution, retry ---

    async def _admit(self, signature: Signature) -> Permit:
        if self.gate.active >= self.gate.max_concurrent or self.gate.queued:
            self.dispatcher.dispatch(ApiCallDeferred(
                resource=signature.resource_name, operation=signature.operation_kind,
                queue_position=self.gate.queued + 1,
            ))
        return await self.gate.acquire()

    async def _execute_with_retry(self, signature: Signature, parameters: Parameters) -> Any:
        """Runs the transport call, re-queueing at the gate after each backoff."""
        state = RetryState(signature=signature)
        while True:
            permit = await self._admit(signature)
            attempt_number = state.attempt_count + 1
            self.dispatcher.dispatch(ApiCallInitiated(
                resource=signature.resource_name, operation=signature.operation_kind,
                attempt_number=attempt_number,
            ))
            start_time = time.perf_counter()
            try:
                result = await self.transport.execute(signature.operation_kind, signature.resource_name, parameters)
            except Exception as raw:
                error: Optional[Exception] = normalize_error(raw)
            else:
                error = None
            finally:
                # Never hold the permit across a backoff sleep
                self.gate.release(permit)

            if error is None:
                latency_ms = (time.perf_counter() - start_time) * 1000
                self.dispatcher.dispatch(ApiCallSucceeded(
                    resource=signature.resource_name, operation=signature.operation_kind,
                    latency_ms=latency_ms, attempts=attempt_number,
                ))
                return result

            kind = classify_error(error)
            decision = self.retry_policy.should_retry(kind, state.attempt_count)
            if not decision.retry:
                self._fail(signature, error, attempt_number)
                raise error

            state.attempt_count += 1
            state.next_delay = decision.delay
            if kind is ErrorKind.RATE_LIMITED:
                self.stats.record_rate_limit(
                    attempt_number=state.attempt_count, delay_applied=decision.delay,
                    resource_name=signature.resource_name, operation_kind=signature.operation_kind,
                )
            logger.warning(
                f"[retry] {kind.value} on {signature.resource_name}.{signature.operation_kind}, "
                f"retry {state.attempt_count}/{self.retry_policy.max_retries} after {decision.delay:.2f}s"
            )
            self.dispatcher.dispatch(RetryScheduled(
                resource=signature.resource_name, operation=signature.operation_kind,
                attempt_number=state.attempt_count, delay_seconds=decision.delay,
            ))
            await self._sleep(decision.delay)

    def _fail(self, signature: Signature, error: Exception, attempts: int) -> None:
        if isinstance(error, OrchestratorError):
            error.attempts = attempts
            error.signature = signature
        logger.error(
            f"Call {signature.resource_name}.{signature.operation_kind} failed after "
            f"{attempts} attempt(s): {type(error).__name__}: {error}"
        )
        self.dispatcher.dispatch(ApiCallFailed(
            resource=signature.resource_name, operation=signature.operation_kind,
            error_type=type(error).__name__, error_message=str(error), attempts=attempts,
        ))

    # --- Convenience wrappers ---

    @staticmethod
    def _options(ttl_override: Optional[float] = None, skip_cache: bool = False, force_invalidate: bool = False) -> CallOptions:
        return CallOptions(ttl_override=ttl_override, skip_cache=skip_cache, force_invalidate=force_invalidate)

    async def get(self, resource_name: str, record_id: Any, parameters: Optional[Parameters] = None, **options: Any) -> Any:
        params = dict(parameters or {})
        params["id"] = record_id
        return await self.call("get", resource_name, params, self._options(**options))

    async def list(
        self,
        resource_name: str,
        filters: Optional[Parameters] = None,
        sort: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
        **options: Any,
    ) -> Any:
        params = {"filters": dict(filters or {}), "sort": sort, "limit": limit}
        return await self.call("list", resource_name, params, self._options(**options))

    async def filter(
        self,
        resource_name: str,
        filters: Parameters,
        sort: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
        **options: Any,
    ) -> Any:
        params = {"filters": dict(filters), "sort": sort, "limit": limit}
        return await self.call("filter", resource_name, params, self._options(**options))

    async def create(self, resource_name: str, data: Parameters, **options: Any) -> Any:
        return await self.call("create", resource_name, {"data": data}, self._options(**options))

    async def update(self, resource_name: str, record_id: Any, data: Parameters, **options: Any) -> Any:
        return await self.call("update", resource_name, {"id": record_id, "data": data}, self._options(**options))

    async def delete(self, resource_name: str, record_id: Any, tenant: Optional[str] = None, **options: Any) -> Any:
        params: Parameters = {"id": record_id}
        if tenant is not None:
            params[self.tenant_key] = tenant
        return await self.call("delete", resource_name, params, self._options(**options))

    async def bulk_create(self, resource_name: str, records: List[Parameters], tenant: Optional[str] = None, **options: Any) -> Any:
        params: Parameters = {"data": list(records)}
        if tenant is not None:
            params[self.tenant_key] = tenant
        return await self.call("bulk_create", resource_name, params, self._options(**options))

    async def invoke_function(self, function_name: str, parameters: Optional[Parameters] = None, **options: Any) -> Any:
        return await self.call(INVOKE_OPERATION, function_name, parameters, self._options(**options))

    # --- Cache management ---

    def clear_cache(self) -> None:
        self._cache_epoch += 1
        self.cache.clear()

    def clear_resource_cache(self, resource_name: str) -> int:
        self._generations[resource_name] = self._generations.get(resource_name, 0) + 1
        return self.invalidation.clear_resource(resource_name)

    # --- Monitoring ---

    def get_stats(self) -> StatsSnapshot:
        return self.stats.snapshot()

    def get_recent_rate_limit_events(self) -> List[RateLimitEvent]:
        """Rate-limit events from the last window, in chronological order."""
        return self.stats.recent_rate_limit_events()
