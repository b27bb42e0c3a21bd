import pytest

from apiorch.domain.models.common import Signature
from apiorch.infrastructure.cache.cache_store import TTLCacheStore


def sig(resource="Orders", **params):
    return Signature.build("list", resource, params)


@pytest.fixture
def cache(clock):
    return TTLCacheStore(default_ttl=60.0, max_entries=3, clock=clock)


def test_get_returns_stored_value(cache):
    cache.put(sig(tenant="t1"), [1, 2])
    assert cache.get(sig(tenant="t1")) == [1, 2]
    assert sig(tenant="t1") in cache


def test_entry_is_gone_exactly_at_ttl(cache, clock):
    cache.put(sig(), "v")
    clock.advance(59)
    assert cache.get(sig()) == "v"
    clock.advance(1)
    assert cache.get(sig()) is None
    assert len(cache) == 0


def test_ttl_override(cache, clock):
    cache.put(sig(), "short", ttl=5)
    clock.advance(5)
    assert cache.get(sig()) is None


def test_put_replaces_entry_and_restarts_ttl(cache, clock):
    cache.put(sig(), "old")
    clock.advance(50)
    cache.put(sig(), "new")
    clock.advance(50)
    assert cache.get(sig()) == "new"
    assert cache.entry(sig()).stored_at == 1050.0


def test_oldest_insertion_is_evicted_when_full(cache):
    for n in range(4):
        cache.put(sig(page=n), n)
    assert len(cache) == 3
    assert cache.get(sig(page=0)) is None
    assert cache.get(sig(page=3)) == 3


def test_refresh_moves_entry_to_newest(cache):
    for n in range(3):
        cache.put(sig(page=n), n)
    cache.put(sig(page=0), "again")
    cache.put(sig(page=3), 3)
    assert cache.get(sig(page=0)) == "again"
    assert cache.get(sig(page=1)) is None


def test_invalidate_by_predicate(cache):
    cache.put(sig("Orders", tenant="t1"), 1)
    cache.put(sig("Orders", tenant="t2"), 2)
    cache.put(sig("Invoices", tenant="t1"), 3)

    removed = cache.invalidate(lambda s: s.resource_name == "Orders")

    assert removed == 2
    assert len(cache) == 1


def test_sweep_removes_only_expired(cache, clock):
    cache.put(sig(page=1), 1, ttl=10)
    cache.put(sig(page=2), 2, ttl=100)
    clock.advance(10)
    assert cache.sweep() == 1
    assert len(cache) == 1


def test_delete_and_clear(cache):
    cache.put(sig(page=1), 1)
    cache.put(sig(page=2), 2)
    assert cache.delete(sig(page=1)) is True
    assert cache.delete(sig(page=1)) is False
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("kwargs", [{"default_ttl": 0}, {"max_entries": 0}])
def test_rejects_invalid_bounds(kwargs):
    with pytest.raises(ValueError):
        TTLCacheStore(**kwargs)
