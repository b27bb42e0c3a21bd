from apiorch.infrastructure.monitoring.stats import StatsRecorder


def test_snapshot_reads_gauges_and_counters(clock):
    stats = StatsRecorder(
        cache_size=lambda: 3,
        active_requests=lambda: 4,
        queued_requests=lambda: 2,
        in_flight=lambda: 1,
        clock=clock,
    )
    stats.record_cache_hit()
    stats.record_cache_hit()
    stats.record_cache_miss()
    stats.record_coalesced()
    stats.record_rate_limit(1, 1.0, "Orders", "list")

    assert stats.snapshot() == {
        "cache_size": 3,
        "active_requests": 4,
        "queued_requests": 2,
        "rate_limit_events_last_minute": 1,
        "cache_hits": 2,
        "cache_misses": 1,
        "coalesced_requests": 1,
        "in_flight": 1,
    }


def test_events_outside_window_are_not_reported(clock):
    stats = StatsRecorder(clock=clock)
    stats.record_rate_limit(1, 1.0)
    clock.advance(30)
    stats.record_rate_limit(2, 2.0)
    clock.advance(30)

    events = stats.recent_rate_limit_events()

    assert [e.attempt_number for e in events] == [2]
    assert stats.snapshot()["rate_limit_events_last_minute"] == 1


def test_events_are_chronological_with_call_details(clock):
    stats = StatsRecorder(clock=clock)
    for n in range(1, 4):
        stats.record_rate_limit(n, float(2 ** (n - 1)), "Orders", "get")
        clock.advance(1)

    events = stats.recent_rate_limit_events()

    assert [e.delay_applied for e in events] == [1.0, 2.0, 4.0]
    assert [e.timestamp for e in events] == [1000.0, 1001.0, 1002.0]
    assert events[0].resource_name == "Orders"
    assert events[0].operation_kind == "get"


def test_event_log_is_bounded(clock):
    stats = StatsRecorder(max_events=5, clock=clock)
    for n in range(20):
        stats.record_rate_limit(n, 1.0)
    assert [e.attempt_number for e in stats.recent_rate_limit_events()] == [15, 16, 17, 18, 19]


def test_failing_gauge_reports_zero(clock):
    def broken():
        raise RuntimeError("gauge down")

    stats = StatsRecorder(cache_size=broken, clock=clock)
    assert stats.snapshot()["cache_size"] == 0

