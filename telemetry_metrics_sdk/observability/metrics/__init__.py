"""
Metrics collection and export for Telemetry Metrics SDK.

This module provides the instrument registry (counters, up-down counters,
histograms and observable counters aggregated per attribute set), the
collection controller that periodically snapshots the registry under a
cumulative or delta temporality, and the exporters that receive those
snapshots.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

from .types import (
    InstrumentKind,
    Temporality,
    NumberDataPoint,
    HistogramDataPoint,
    MetricData,
    Snapshot,
    DEFAULT_HISTOGRAM_BOUNDARIES
)
from .exceptions import (
    MetricsError,
    MetricRegistrationError,
    KindConflictError,
    MetricValidationError,
    InvalidValueError,
    InvalidObservationError,
    MetricsCollectionError,
    MetricsExportError,
    ControllerError,
    AlreadyStartedError,
    ShutdownTimeoutError
)
from .instruments import (
    Instrument,
    Counter,
    UpDownCounter,
    Histogram,
    ObservableCounter
)
from .registry import (
    InstrumentRegistry,
    ObservationContext,
    ObserverRegistration
)
from .exporter import (
    MetricsExporter,
    InMemoryMetricsExporter,
    ConsoleMetricsExporter,
    OTLPMetricsExporter,
    create_exporter,
    encode_snapshot
)
from .controller import (
    CollectionController,
    ControllerState
)
from .collector import (
    SystemMetricsCollector,
    create_system_metrics_collector
)

__all__ = [
    # Types
    'InstrumentKind',
    'Temporality',
    'NumberDataPoint',
    'HistogramDataPoint',
    'MetricData',
    'Snapshot',
    'DEFAULT_HISTOGRAM_BOUNDARIES',

    # Instruments
    'Instrument',
    'Counter',
    'UpDownCounter',
    'Histogram',
    'ObservableCounter',

    # Registry
    'InstrumentRegistry',
    'ObservationContext',
    'ObserverRegistration',

    # Exporters
    'MetricsExporter',
    'InMemoryMetricsExporter',
    'ConsoleMetricsExporter',
    'OTLPMetricsExporter',
    'create_exporter',
    'encode_snapshot',

    # Controller
    'CollectionController',
    'ControllerState',

    # Collectors
    'SystemMetricsCollector',
    'create_system_metrics_collector',

    # Exceptions
    'MetricsError',
    'MetricRegistrationError',
    'KindConflictError',
    'MetricValidationError',
    'InvalidValueError',
    'InvalidObservationError',
    'MetricsCollectionError',
    'MetricsExportError',
    'ControllerError',
    'AlreadyStartedError',
    'ShutdownTimeoutError',
]
