# telemetry-metrics-sdk/telemetry_metrics_sdk/cli/main.py
"""
Command Line Interface for Telemetry Metrics SDK.

``telemetry-metrics run`` is the sample program: it wires an exporter and
a collection controller, increments a counter every second (optionally
also an observable counter and runtime metrics) and shuts down cleanly on
SIGINT, SIGQUIT or SIGTERM.
"""

import asyncio
import logging
import signal
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..version import get_build_info
from ..observability.config import MetricsConfig
from ..observability.metrics import (
    CollectionController,
    InstrumentRegistry,
    ObservationContext,
    ShutdownTimeoutError,
    SystemMetricsCollector,
    create_exporter,
)

app = typer.Typer(
    name="telemetry-metrics",
    help="Telemetry Metrics SDK sample program",
    add_completion=False
)
console = Console()
logger = logging.getLogger("telemetry_metrics_sdk.cli")

COUNTER_NAME = "MyCounter_1"
OBSERVER_NAME = "some.prefix.counter_observer"


async def count_every_second(counter, stop_event: asyncio.Event, interval: float = 1.0) -> None:
    """Add 1 to ``counter`` every ``interval`` seconds until stopped."""
    while not stop_event.is_set():
        counter.add(1)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, getattr(signal, "SIGQUIT", None), signal.SIGTERM):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug(f"Cannot install handler for {sig!r} in this context")


async def run_sample(
    config: MetricsConfig,
    exporter_kind: str = "otlp",
    observer: bool = False,
    system_metrics: bool = False,
    duration: float = 0.0,
    stop_event: Optional[asyncio.Event] = None,
    count_interval: float = 1.0
) -> CollectionController:
    """Run the sample until ``stop_event`` is set, a signal arrives or ``duration`` elapses."""
    stop_event = stop_event or asyncio.Event()
    registry = InstrumentRegistry()
    exporter = create_exporter(exporter_kind, config)
    controller = CollectionController(registry, exporter, config, name="sample")

    counter = registry.counter(
        COUNTER_NAME,
        unit="1",
        description="This is a sample counter that increments by 1 every second."
    )

    if observer:
        observed = {'number': 0}
        observable = registry.observable_counter(
            OBSERVER_NAME,
            unit="1",
            description="Sample observable counter incremented on every collection."
        )

        def observe_number(context: ObservationContext) -> None:
            observed['number'] += 1
            context.observe(observable, observed['number'])

        registry.register_observer([observable], observe_number)

    if system_metrics:
        SystemMetricsCollector(registry).register()

    await controller.start()
    counting = asyncio.create_task(count_every_second(counter, stop_event, count_interval))
    install_signal_handlers(stop_event)

    target = "console" if exporter_kind == "console" else config.parsed_endpoint.address
    console.print(f"reporting measurements to {target}... (press Ctrl+C to stop)")

    try:
        if duration > 0:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
        else:
            await stop_event.wait()
    finally:
        stop_event.set()
        await counting
        await controller.stop()

    return controller


def print_statistics(controller: CollectionController) -> None:
    stats = controller.get_statistics()
    table = Table(title="Metrics controller")
    table.add_column("Statistic", style="cyan")
    table.add_column("Value", style="green")
    for key in ('state', 'temporality', 'period', 'collections_total', 'exports_total', 'export_errors'):
        table.add_row(key, str(stats[key]))
    console.print(table)


@app.command()
def run(
    endpoint: Optional[str] = typer.Option(None, help="Collector endpoint as host:port or URL"),
    insecure: Optional[bool] = typer.Option(None, "--insecure/--secure", help="Send over plaintext HTTP or HTTPS"),
    period: Optional[float] = typer.Option(None, help="Collection period in seconds"),
    temporality: Optional[str] = typer.Option(None, help="cumulative or delta"),
    exporter: str = typer.Option("otlp", help="Exporter to use: otlp or console"),
    observer: bool = typer.Option(False, "--observer/--no-observer", help="Also report an observable counter"),
    system_metrics: bool = typer.Option(False, "--system-metrics/--no-system-metrics", help="Report CPU and network counters"),
    duration: float = typer.Option(0.0, help="Stop after this many seconds (0 waits for a signal)"),
    log_level: str = typer.Option("INFO", help="Logging level")
):
    """Report sample measurements until interrupted."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = MetricsConfig.from_env(
            endpoint=endpoint,
            insecure=insecure,
            period=period,
            temporality=temporality
        )
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=2)

    if exporter not in ("otlp", "console"):
        console.print(f"[red]Unsupported exporter:[/red] {exporter}")
        raise typer.Exit(code=2)

    try:
        controller = asyncio.run(run_sample(config, exporter, observer, system_metrics, duration))
    except ShutdownTimeoutError as e:
        console.print(f"[yellow]Shutdown timed out:[/yellow] {e.message}")
        raise typer.Exit(code=1)

    print_statistics(controller)


@app.command()
def version():
    """Show SDK version information."""
    info = get_build_info()
    console.print(f"Telemetry Metrics SDK [bold]{info['version']}[/bold]")
    console.print(f"Python {info['python_version']} (requires >= {info['min_python']})")


def main():
    app()


if __name__ == "__main__":
    main()
