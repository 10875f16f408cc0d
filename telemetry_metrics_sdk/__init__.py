# telemetry-metrics-sdk/telemetry_metrics_sdk/__init__.py
"""
Telemetry Metrics SDK

A small metrics SDK: instruments aggregated per attribute set, a periodic
collection controller with cumulative or delta temporality, and exporters
that ship snapshots to an OpenTelemetry collector over OTLP/HTTP.

Example usage:
    from telemetry_metrics_sdk import (
        CollectionController, InstrumentRegistry, MetricsConfig, create_exporter
    )

    config = MetricsConfig(endpoint="localhost:4318", insecure=True)
    registry = InstrumentRegistry()
    counter = registry.counter("MyCounter_1", unit="1")

    controller = CollectionController(registry, create_exporter("otlp", config), config)
    await controller.start()
    counter.add(1)
    await controller.stop()
"""

from .version import __version__
from .exceptions import SDKError, ConfigurationError
from .observability import (
    CollectionController,
    ControllerState,
    InstrumentRegistry,
    InstrumentKind,
    Temporality,
    Snapshot,
    MetricsConfig,
    MetricsExporter,
    InMemoryMetricsExporter,
    ConsoleMetricsExporter,
    OTLPMetricsExporter,
    SystemMetricsCollector,
    ObservabilityError,
)
from .observability.metrics import create_exporter

# Package metadata
__title__ = "telemetry-metrics-sdk"
__author__ = "Telemetry Metrics Team"

__all__ = [
    '__version__',
    'SDKError',
    'ConfigurationError',
    'ObservabilityError',
    'CollectionController',
    'ControllerState',
    'InstrumentRegistry',
    'InstrumentKind',
    'Temporality',
    'Snapshot',
    'MetricsConfig',
    'MetricsExporter',
    'InMemoryMetricsExporter',
    'ConsoleMetricsExporter',
    'OTLPMetricsExporter',
    'SystemMetricsCollector',
    'create_exporter',
]
