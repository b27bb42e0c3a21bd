import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from rich.box import ROUNDED, SIMPLE
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from apiorch.domain.models.common import RateLimitEvent, StatsSnapshot

logger = logging.getLogger(__name__)

class StatsDisplay:
    """Renders orchestrator statistics with rich, in the layout of the monitor page."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def stats_table(self, stats: StatsSnapshot) -> Table:
        table = Table(title="API Orchestrator", box=ROUNDED, expand=False)
        table.add_column("Cache Size", justify="right", style="bold")
        table.add_column("Active", justify="right", style="bold blue")
        table.add_column("Queued", justify="right", style="bold yellow")
        table.add_column("Rate Limits (1m)", justify="right", style="bold red")
        table.add_column("Hits / Misses", justify="right")
        table.add_column("Coalesced", justify="right")
        table.add_row(
            str(stats["cache_size"]),
            str(stats["active_requests"]),
            str(stats["queued_requests"]),
            str(stats["rate_limit_events_last_minute"]),
            f"{stats['cache_hits']} / {stats['cache_misses']}",
            str(stats["coalesced_requests"]),
        )
        return table

    def events_table(self, events: Iterable[RateLimitEvent]) -> Any:
        events = list(events)
        if not events:
            return Text("No rate limits in the last minute ✓", style="green")
        table = Table(title="Recent Rate Limit Events", box=SIMPLE)
        table.add_column("Time")
        table.add_column("Call")
        table.add_column("Retry", justify="right")
        table.add_column("Delay", justify="right", style="red")
        for event in events:
            table.add_row(
                datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S"),
                f"{event.resource_name or '?'}.{event.operation_kind or '?'}",
                str(event.attempt_number),
                f"{event.delay_applied:.1f}s",
            )
        return table

    def render(self, stats: StatsSnapshot, events: Iterable[RateLimitEvent]) -> Panel:
        return Panel(Group(self.stats_table(stats), self.events_table(events)), title="Rate Limit Monitor", border_style="cyan")

    def show(self, stats: StatsSnapshot, events: Iterable[RateLimitEvent]) -> None:
        self._console.print(self.render(stats, events))

    def show_settings(self, settings: Dict[str, Any]) -> None:
        table = Table(title="Orchestrator Settings", box=ROUNDED)
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        for key, value in settings.items():
            table.add_row(key, str(value))
        self._console.print(table)

    def display_info(self, message: str) -> None:
        self._console.print(f"[bold cyan]ℹ[/] {message}")

    def display_error(self, message: str) -> None:
        self._console.print(Panel(Text(message, style="red"), title="Error", border_style="red"))
