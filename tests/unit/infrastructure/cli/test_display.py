import pytest
from unittest.mock import MagicMock

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from apiorch.domain.models.common import RateLimitEvent
from apiorch.infrastructure.cli.display import StatsDisplay

STATS = {
    "cache_size": 12,
    "active_requests": 4,
    "queued_requests": 3,
    "rate_limit_events_last_minute": 2,
    "cache_hits": 40,
    "cache_misses": 12,
    "coalesced_requests": 9,
    "in_flight": 4,
}


@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()


@pytest.fixture
def stats_display(mock_console: MagicMock):
    return StatsDisplay(console=mock_console)


def test_stats_table_has_one_row_with_counts(stats_display: StatsDisplay):
    table = stats_display.stats_table(STATS)
    assert isinstance(table, Table)
    assert table.row_count == 1
    assert [column.header for column in table.columns][:4] == ["Cache Size", "Active", "Queued", "Rate Limits (1m)"]


def test_empty_event_list_shows_all_clear(stats_display: StatsDisplay):
    rendered = stats_display.events_table([])
    assert isinstance(rendered, Text)
    assert "No rate limits" in rendered.plain


def test_events_table_lists_each_event(stats_display: StatsDisplay):
    events = [
        RateLimitEvent(attempt_number=1, delay_applied=1.0, resource_name="Orders", operation_kind="list"),
        RateLimitEvent(attempt_number=2, delay_applied=2.0, resource_name="Orders", operation_kind="list"),
    ]
    table = stats_display.events_table(events)
    assert isinstance(table, Table)
    assert table.row_count == 2


def test_show_prints_monitor_panel(stats_display: StatsDisplay, mock_console: MagicMock):
    stats_display.show(STATS, [])
    mock_console.print.assert_called_once()
    panel = mock_console.print.call_args.args[0]
    assert isinstance(panel, Panel)
    assert panel.title == "Rate Limit Monitor"


def test_display_info(stats_display: StatsDisplay, mock_console: MagicMock):
    stats_display.display_info("Cache cleared")
    mock_console.print.assert_called_once_with("[bold cyan]ℹ[/] Cache cleared")


def test_show_settings_prints_table(stats_display: StatsDisplay, mock_console: MagicMock):
    stats_display.show_settings({"max_concurrent": 4, "max_retries": 5})
    table = mock_console.print.call_args.args[0]
    assert table.row_count == 2
