import asyncio
from typing import Any, Callable, List, Optional

import pytest
from typer.testing import CliRunner

from apiorch.core.orchestrator import ApiOrchestrator
from apiorch.domain.interfaces.transport import Transport
from apiorch.infrastructure.cache.cache_store import TTLCacheStore
from apiorch.infrastructure.config.settings import clear_test_config
from apiorch.infrastructure.monitoring.stats import StatsRecorder
from apiorch.infrastructure.resilience.concurrency_gate import ConcurrencyGate
from apiorch.infrastructure.resilience.inflight import InFlightRegistry
from apiorch.infrastructure.resilience.retry_policy import RetryPolicy


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep: records delays and only yields once."""

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(delay)
        await asyncio.sleep(0)


def echo_handler(kind: str, resource: str, params: dict) -> Any:
    return {"kind": kind, "resource": resource, "params": params}


class ControlledTransport(Transport):
    """Transport double: records calls, can hold them open, can be scripted.

    `script` entries are consumed one per call before falling back to
    `handler`. An entry (or handler result) that is an exception is raised.
    """

    def __init__(self, handler: Callable[[str, str, dict], Any] = echo_handler, script: Optional[list] = None):
        self.handler = handler
        self.script = list(script or [])
        self.calls: List[tuple] = []
        self.completed = 0
        self.active = 0
        self.peak_active = 0
        self._held = set()
        self._release_event: Optional[asyncio.Event] = None

    def hold(self, *kinds: str) -> None:
        self._held = set(kinds) or {"*"}

    def release(self) -> None:
        self._held = set()
        if self._release_event is not None:
            self._release_event.set()

    async def execute(self, operation_kind, resource_name, parameters):
        self.calls.append((operation_kind, resource_name, parameters))
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if "*" in self._held or operation_kind in self._held:
                if self._release_event is None or self._release_event.is_set():
                    self._release_event = asyncio.Event()
                await self._release_event.wait()
            outcome = self.script.pop(0) if self.script else self.handler(operation_kind, resource_name, parameters)
            if isinstance(outcome, BaseException):
                raise outcome
            self.completed += 1
            return outcome
        finally:
            self.active -= 1


async def spin(times: int = 10) -> None:
    """Lets scheduled tasks run until they block."""
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def transport() -> ControlledTransport:
    return ControlledTransport()


@pytest.fixture
def orchestrator(transport, clock, recording_sleep) -> ApiOrchestrator:
    """Orchestrator with fake time, default tuning and no background sweeper."""
    cache = TTLCacheStore(clock=clock)
    gate = ConcurrencyGate(max_concurrent=4, strict=True)
    registry = InFlightRegistry()
    stats = StatsRecorder(
        cache_size=lambda: len(cache),
        active_requests=lambda: gate.active,
        queued_requests=lambda: gate.queued,
        in_flight=lambda: len(registry),
        clock=clock,
    )
    return ApiOrchestrator(
        transport,
        cache=cache,
        gate=gate,
        retry_policy=RetryPolicy(),
        registry=registry,
        stats=stats,
        sweep_interval_s=None,
        sleep=recording_sleep,
    )


@pytest.fixture(autouse=True)
def reset_test_config():
    """Drop configuration overrides between tests."""
    yield
    clear_test_config()
