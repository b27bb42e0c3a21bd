"""Main entry point for the apiorch CLI.

Sets up the Typer application, wires the orchestrator from configuration
(Composition Root) and provides commands to exercise and monitor it against
the in-memory backend.
"""

import asyncio
import dataclasses
import logging
import random
import time
from typing import Any, Coroutine, Dict, Optional

import typer
from rich.live import Live
from typing_extensions import Annotated

from apiorch.core.orchestrator import ApiOrchestrator
from apiorch.domain.models.errors import OrchestratorError
from apiorch.infrastructure.cli.display import StatsDisplay
from apiorch.infrastructure.config.settings import get_config, get_orchestrator_settings, load_configuration
from apiorch.infrastructure.monitoring.logger_setup import setup_logging
from apiorch.infrastructure.transport.in_memory import InMemoryTransport

logger = logging.getLogger(__name__)

DEMO_RESOURCE = "Orders"
DEMO_TENANT = "t1"

# --- Dependency wiring ---

def create_dependencies(
    latency_s: float = 0.05,
    rate_limit_every: int = 0,
    base_delay_s: Optional[float] = None,
) -> Dict[str, Any]:
    """Creates and wires the orchestrator and its collaborators.

    This acts as the Composition Root.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_file=get_config('logging.file'),
        log_format=get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
    )
    settings = get_orchestrator_settings()
    if base_delay_s is not None:
        settings = dataclasses.replace(
            settings, base_delay_seconds=base_delay_s, max_delay_seconds=max(base_delay_s, settings.max_delay_seconds * base_delay_s)
        )
    seed = {DEMO_RESOURCE: [{"tenant": DEMO_TENANT, "total": n} for n in range(50)]}
    transport = InMemoryTransport(latency_s=latency_s, rate_limit_every=rate_limit_every, seed=seed)
    orchestrator = ApiOrchestrator.from_settings(transport, settings)
    logger.info("Orchestrator dependencies initialized.")
    return {
        'settings': settings,
        'transport': transport,
        'orchestrator': orchestrator,
        'display': StatsDisplay(),
    }

# --- Typer App Definition ---
app = typer.Typer(
    name="apiorch",
    help="API request orchestrator: caching, coalescing, admission control and rate-limit retries.",
    add_completion=False,
)

def run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Runs an async command body from a sync Typer command."""
    try:
        asyncio.run(coro)
    except OrchestratorError as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        StatsDisplay().display_error(f"Command failed: {e}")
        raise typer.Exit(code=1)

# --- Command bodies ---

async def _run_demo(deps: Dict[str, Any], requests: int) -> None:
    orchestrator: ApiOrchestrator = deps['orchestrator']
    transport: InMemoryTransport = deps['transport']
    display: StatsDisplay = deps['display']

    async with orchestrator:
        results = await asyncio.gather(*[
            orchestrator.list(DEMO_RESOURCE, {"tenant": DEMO_TENANT}) for _ in range(requests)
        ])
        display.display_info(
            f"{requests} concurrent identical list calls -> {len(results[0])} orders, "
            f"{len(transport.calls)} transport call(s)"
        )
        before = len(transport.calls)
        await orchestrator.list(DEMO_RESOURCE, {"tenant": DEMO_TENANT})
        display.display_info(f"Repeat list served from cache: {len(transport.calls) == before}")

        await orchestrator.create(DEMO_RESOURCE, {"tenant": DEMO_TENANT, "total": 999})
        before = len(transport.calls)
        refreshed = await orchestrator.list(DEMO_RESOURCE, {"tenant": DEMO_TENANT}, limit=None)
        display.display_info(
            f"After create: list hit the backend again ({len(transport.calls) - before} call(s)), "
            f"{len(refreshed)} orders"
        )

        await asyncio.gather(*[
            orchestrator.get(DEMO_RESOURCE, str(n), {"tenant": DEMO_TENANT}) for n in range(1, requests + 1)
        ])
        display.display_info(f"Peak concurrent transport calls: {transport.peak_active}/{orchestrator.gate.max_concurrent}")
        display.show(orchestrator.get_stats(), orchestrator.get_recent_rate_limit_events())

async def _run_monitor(deps: Dict[str, Any], duration: float, interval: float) -> None:
    orchestrator: ApiOrchestrator = deps['orchestrator']
    display: StatsDisplay = deps['display']

    async def load() -> None:
        while True:
            record_id = str(random.randint(1, 50))
            try:
                await orchestrator.get(DEMO_RESOURCE, record_id, {"tenant": DEMO_TENANT})
            except OrchestratorError as e:
                logger.info(f"Synthetic call failed: {e}")
            await asyncio.sleep(0.01)

    async with orchestrator:
        workers = [asyncio.create_task(load()) for _ in range(8)]
        deadline = time.monotonic() + duration
        try:
            with Live(display.render(orchestrator.get_stats(), []), console=display.console, refresh_per_second=4) as live:
                while time.monotonic() < deadline:
                    await asyncio.sleep(interval)
                    live.update(display.render(orchestrator.get_stats(), orchestrator.get_recent_rate_limit_events()))
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

# --- CLI Commands ---

@app.command()
def demo(
    requests: Annotated[int, typer.Option("--requests", "-n", help="Concurrent callers per phase.")] = 10,
    rate_limit_every: Annotated[int, typer.Option(help="Inject a rate limit every n-th backend call (0 = never).")] = 4,
    latency: Annotated[float, typer.Option(help="Simulated backend latency in seconds.")] = 0.05,
    backoff_unit: Annotated[float, typer.Option(help="Backoff base delay in seconds (scaled cap).")] = 0.05,
):
    """Runs the caching / coalescing / invalidation scenario and prints stats."""
    deps = create_dependencies(latency_s=latency, rate_limit_every=rate_limit_every, base_delay_s=backoff_unit)
    run_async(_run_demo(deps, requests))

@app.command()
def monitor(
    duration: Annotated[float, typer.Option(help="Seconds to run the synthetic load.")] = 10.0,
    interval: Annotated[float, typer.Option(help="Refresh interval in seconds.")] = 2.0,
    rate_limit_every: Annotated[int, typer.Option(help="Inject a rate limit every n-th backend call (0 = never).")] = 7,
    backoff_unit: Annotated[float, typer.Option(help="Backoff base delay in seconds (scaled cap).")] = 0.1,
):
    """Drives synthetic load and shows live orchestrator statistics."""
    deps = create_dependencies(rate_limit_every=rate_limit_every, base_delay_s=backoff_unit)
    run_async(_run_monitor(deps, duration, interval))

@app.command(name="show-config")
def show_config():
    """Prints the effective orchestrator settings."""
    load_configuration()
    StatsDisplay().show_settings(get_orchestrator_settings().as_dict())

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
