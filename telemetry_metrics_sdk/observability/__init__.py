"""
Observability package for Telemetry Metrics SDK.

Metrics are the only signal implemented: instruments are recorded through
an ``InstrumentRegistry`` and shipped by a ``CollectionController`` to a
``MetricsExporter``. There is no process-wide default registry; callers
create and pass their own handles.

Example usage:
    from telemetry_metrics_sdk.observability import (
        CollectionController, InstrumentRegistry, MetricsConfig, OTLPMetricsExporter
    )

    config = MetricsConfig.from_env(insecure=True)
    registry = InstrumentRegistry()
    requests = registry.counter("requests", unit="1")

    async with CollectionController(registry, OTLPMetricsExporter(config), config):
        requests.add(1, {"route": "/"})
"""

# metrics must be imported before config, which depends on metrics.types
from .metrics import (
    CollectionController,
    ControllerState,
    InstrumentRegistry,
    InstrumentKind,
    Temporality,
    Snapshot,
    MetricsExporter,
    InMemoryMetricsExporter,
    ConsoleMetricsExporter,
    OTLPMetricsExporter,
    SystemMetricsCollector,
)
from .config import MetricsConfig, MetricsSettings, Endpoint
from .exceptions import ObservabilityError, ConfigurationError

__all__ = [
    'CollectionController',
    'ControllerState',
    'InstrumentRegistry',
    'InstrumentKind',
    'Temporality',
    'Snapshot',
    'MetricsExporter',
    'InMemoryMetricsExporter',
    'ConsoleMetricsExporter',
    'OTLPMetricsExporter',
    'SystemMetricsCollector',
    'MetricsConfig',
    'MetricsSettings',
    'Endpoint',
    'ObservabilityError',
    'ConfigurationError',
]
