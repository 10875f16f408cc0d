"""
OTLP Metrics Example

This example demonstrates the metrics pipeline: instruments with
attributes, observable counters fed by an observer callback, cumulative
and delta collection, and export to the console or to an OpenTelemetry
collector over OTLP/HTTP.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import asyncio
import logging
import random

from telemetry_metrics_sdk.observability.config import MetricsConfig
from telemetry_metrics_sdk.observability.metrics import (
    CollectionController,
    ConsoleMetricsExporter,
    InMemoryMetricsExporter,
    InstrumentRegistry,
    KindConflictError,
    ObservationContext,
    OTLPMetricsExporter,
    Temporality,
    create_system_metrics_collector,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def demonstrate_basic_instruments():
    """Demonstrate instrument kinds and attribute sets."""
    logger.info("=== Basic Instruments Demo ===")

    registry = InstrumentRegistry()

    request_counter = registry.counter(
        'http.server.requests',
        unit='1',
        description='Total HTTP requests'
    )
    active_requests = registry.up_down_counter(
        'http.server.active_requests',
        unit='1',
        description='Requests currently in flight'
    )
    latency = registry.histogram(
        'http.server.duration',
        unit='ms',
        description='HTTP response time distribution',
        boundaries=[5, 10, 25, 50, 100, 250, 500, 1000]
    )

    for i in range(100):
        method = random.choice(['GET', 'POST', 'PUT', 'DELETE'])
        status = random.choice([200, 201, 400, 404, 500])

        active_requests.add(1)
        request_counter.add(1, {'http.method': method, 'http.status_code': status})
        latency.record(random.uniform(1.0, 800.0), {'http.method': method})
        active_requests.add(-1)

        if i % 20 == 0:
            logger.info(f"Processed {i + 1} requests")

    # Same name, different kind
    try:
        registry.histogram('http.server.requests')
    except KindConflictError as e:
        logger.info(f"Kind conflict detected (expected): {e.message}")

    snapshot = registry.snapshot(Temporality.CUMULATIVE)
    requests = snapshot.get('http.server.requests')
    logger.info(f"Request series: {len(requests.points)}, total: {sum(p.value for p in requests.points)}")

    get_latency = snapshot.get('http.server.duration').find({'http.method': 'GET'})
    if get_latency is not None:
        logger.info(f"GET latency: count={get_latency.count}, mean={get_latency.mean:.1f}ms")

    logger.info(f"Registry statistics: {registry.get_statistics()}")
    return registry


async def demonstrate_delta_collection():
    """Demonstrate delta temporality with an observable counter."""
    logger.info("=== Delta Collection Demo ===")

    registry = InstrumentRegistry()
    exporter = InMemoryMetricsExporter()
    config = MetricsConfig(period=0.5, temporality=Temporality.DELTA)

    processed = {'jobs': 0}
    jobs = registry.observable_counter('jobs.processed', unit='{job}')

    def observe_jobs(context: ObservationContext) -> None:
        context.observe(jobs, processed['jobs'], {'queue': 'default'})

    registry.register_observer([jobs], observe_jobs)

    async with CollectionController(registry, exporter, config, name="delta_demo"):
        for _ in range(6):
            processed['jobs'] += random.randint(1, 10)
            await asyncio.sleep(0.3)

    for snapshot in exporter.snapshots:
        point = snapshot.get('jobs.processed').find({'queue': 'default'})
        logger.info(f"Jobs since previous collection: {point.value}")

    logger.info(f"Total jobs: {processed['jobs']}")


async def demonstrate_console_export():
    """Demonstrate periodic export with runtime metrics."""
    logger.info("=== Console Export Demo ===")

    registry = InstrumentRegistry()
    create_system_metrics_collector(registry, {'collect_network': False})
    counter = registry.counter('demo.ticks')

    controller = CollectionController(
        registry,
        ConsoleMetricsExporter(),
        MetricsConfig(period=1.0)
    )
    await controller.start()
    for _ in range(3):
        counter.add(1)
        await asyncio.sleep(1.0)
    await controller.stop()

    logger.info(f"Controller statistics: {controller.get_statistics()}")


async def demonstrate_otlp_export():
    """Demonstrate export to a local collector; failures are logged, not raised."""
    logger.info("=== OTLP Export Demo ===")

    config = MetricsConfig.from_env(endpoint="localhost:4318", insecure=True, period=1.0)
    registry = InstrumentRegistry()
    counter = registry.counter('MyCounter_1', unit='1')

    errors = []
    controller = CollectionController(
        registry,
        OTLPMetricsExporter(config),
        config,
        error_handler=errors.append
    )

    async with controller:
        for _ in range(3):
            counter.add(1)
            await asyncio.sleep(1.0)

    if errors:
        logger.warning(f"{len(errors)} exports failed, is a collector listening on {config.metrics_url}?")
    else:
        logger.info(f"Exported to {config.metrics_url}")


async def main():
    """Run all demonstrations."""
    await demonstrate_basic_instruments()
    await demonstrate_delta_collection()
    await demonstrate_console_export()
    await demonstrate_otlp_export()


if __name__ == "__main__":
    asyncio.run(main())
