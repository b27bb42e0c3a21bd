"""End-to-end behaviour against the in-memory backend."""

import asyncio

import pytest
import pytest_asyncio

from apiorch.core.orchestrator import ApiOrchestrator
from apiorch.domain.models.errors import ClientError, RateLimited
from apiorch.infrastructure.config.settings import OrchestratorSettings
from apiorch.infrastructure.transport.in_memory import InMemoryTransport

pytestmark = pytest.mark.asyncio


def seeded_transport(**kwargs) -> InMemoryTransport:
    seed = {
        "Orders": [{"tenant": "t1", "total": n} for n in range(50)]
        + [{"tenant": "t2", "total": n} for n in range(5)],
    }
    return InMemoryTransport(seed=seed, **kwargs)


@pytest.fixture
def backend() -> InMemoryTransport:
    return seeded_transport(latency_s=0.001)


@pytest_asyncio.fixture
async def orchestrator(backend, recording_sleep):
    async with ApiOrchestrator.from_settings(
        backend, OrchestratorSettings(), sleep=recording_sleep, sweep_interval_s=None,
    ) as orch:
        yield orch


async def test_burst_of_identical_lists_is_one_backend_call(orchestrator, backend):
    results = await asyncio.gather(*[orchestrator.list("Orders", {"tenant": "t1"}) for _ in range(10)])

    assert len(backend.calls) == 1
    assert all(len(r) == 50 for r in results)
    assert orchestrator.get_stats()["coalesced_requests"] == 9

    await orchestrator.list("Orders", {"tenant": "t1"})
    assert len(backend.calls) == 1
    assert orchestrator.get_stats()["cache_hits"] == 1


async def test_create_refreshes_only_the_mutated_tenant(orchestrator, backend):
    await orchestrator.list("Orders", {"tenant": "t1"}, limit=None)
    t2_orders = await orchestrator.list("Orders", {"tenant": "t2"}, limit=None)
    calls_before = len(backend.calls)

    created = await orchestrator.create("Orders", {"tenant": "t1", "total": 999})
    t1_after = await orchestrator.list("Orders", {"tenant": "t1"}, limit=None)
    t2_after = await orchestrator.list("Orders", {"tenant": "t2"}, limit=None)

    # create + one refreshed t1 list; the t2 list is still cached
    assert len(backend.calls) == calls_before + 2
    assert len(t1_after) == 51
    assert created in t1_after
    assert t2_after == t2_orders


async def test_update_and_delete_are_visible_on_next_read(orchestrator):
    first = await orchestrator.get("Orders", "1", {"tenant": "t1"})
    assert first["total"] == 0

    await orchestrator.update("Orders", "1", {"tenant": "t1", "total": 10})
    assert (await orchestrator.get("Orders", "1", {"tenant": "t1"}))["total"] == 10

    await orchestrator.delete("Orders", "1", tenant="t1")
    with pytest.raises(ClientError) as excinfo:
        await orchestrator.get("Orders", "1", {"tenant": "t1"})
    assert excinfo.value.status == 404
    assert excinfo.value.attempts == 1


async def test_filter_sort_and_limit(orchestrator):
    top = await orchestrator.filter("Orders", {"tenant": "t1"}, sort="-total", limit=3)
    assert [o["total"] for o in top] == [49, 48, 47]


async def test_bulk_create_invalidates_lists(orchestrator, backend):
    await orchestrator.list("Orders", {"tenant": "t2"}, limit=None)
    created = await orchestrator.bulk_create("Orders", [{"tenant": "t2", "total": 100}, {"tenant": "t2", "total": 101}], tenant="t2")
    refreshed = await orchestrator.list("Orders", {"tenant": "t2"}, limit=None)

    assert len(created) == 2
    assert len(refreshed) == 7


async def test_concurrency_ceiling_holds_under_load(orchestrator, backend):
    await asyncio.gather(*[orchestrator.get("Orders", str(n), {"tenant": "t1"}) for n in range(1, 31)])

    assert len(backend.calls) == 30
    assert backend.peak_active <= 4
    assert backend.peak_active == 4


async def test_invoke_function_is_never_cached(orchestrator, backend):
    async def order_report(params):
        return {"tenant": params["tenant"], "count": 50}

    backend.register_function("orderReport", order_report)
    first = await orchestrator.invoke_function("orderReport", {"tenant": "t1"})
    second = await orchestrator.invoke_function("orderReport", {"tenant": "t1"})

    assert first == second == {"tenant": "t1", "count": 50}
    assert len(backend.calls) == 2


async def test_injected_rate_limits_are_retried_and_logged(orchestrator, backend, recording_sleep):
    backend.rate_limit_every = 3

    results = await asyncio.gather(*[orchestrator.get("Orders", str(n), {"tenant": "t1"}) for n in range(1, 9)])

    assert [r["id"] for r in results] == [str(n) for n in range(1, 9)]
    assert recording_sleep.delays
    events = orchestrator.get_recent_rate_limit_events()
    assert len(events) == len(recording_sleep.delays)
    assert orchestrator.get_stats()["rate_limit_events_last_minute"] == len(events)
    assert [e.timestamp for e in events] == sorted(e.timestamp for e in events)


async def test_persistent_rate_limit_surfaces_after_all_retries(backend, recording_sleep):
    backend.rate_limit_every = 1
    settings = OrchestratorSettings(max_retries=3)
    async with ApiOrchestrator.from_settings(backend, settings, sleep=recording_sleep, sweep_interval_s=None) as orch:
        with pytest.raises(RateLimited) as excinfo:
            await orch.list("Orders", {"tenant": "t1"})

    assert excinfo.value.attempts == 4
    assert recording_sleep.delays == [1.0, 2.0, 4.0]
    assert len(backend.calls) == 4
