"""
Metrics exporters.

This module provides the exporter interface consumed by the collection
controller together with three implementations: an in-memory exporter for
tests, a console exporter writing a readable text rendering, and an
OTLP/HTTP exporter that ships snapshots to an OpenTelemetry collector.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import logging
import sys
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Dict, List, Optional, TextIO

import httpx
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import ExportMetricsServiceRequest
from opentelemetry.proto.common.v1.common_pb2 import AnyValue, InstrumentationScope, KeyValue
from opentelemetry.proto.metrics.v1 import metrics_pb2
from opentelemetry.proto.resource.v1.resource_pb2 import Resource

from ..config import MetricsConfig
from .exceptions import MetricsExportError
from .types import (
    HistogramDataPoint,
    InstrumentKind,
    MetricData,
    Number,
    Snapshot,
    Temporality,
)
from ...version import __version__


class MetricsExporter(ABC):
    """Sink that receives snapshots from a collection controller.

    ``export`` is best effort: it raises on failure and the controller never
    retries the same snapshot.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"observability.metrics.exporter.{name}")

        # Export statistics
        self.exports_total = 0
        self.export_errors = 0
        self.last_export_time = 0.0
        self.export_duration_seconds = 0.0

    @abstractmethod
    async def export(self, snapshot: Snapshot) -> None:
        """Deliver one snapshot."""

    async def shutdown(self) -> None:
        """Release exporter resources. Called once by the controller on stop."""

    def _record_export(self, started: float, failed: bool = False) -> None:
        self.export_duration_seconds = time.time() - started
        self.last_export_time = time.time()
        self.exports_total += 1
        if failed:
            self.export_errors += 1

    def get_export_statistics(self) -> Dict[str, Any]:
        """Get export statistics."""
        return {
            'exporter': self.name,
            'exports_total': self.exports_total,
            'export_errors': self.export_errors,
            'error_rate': self.export_errors / max(1, self.exports_total),
            'last_export_time': self.last_export_time,
            'export_duration_seconds': self.export_duration_seconds
        }


class InMemoryMetricsExporter(MetricsExporter):
    """Keeps exported snapshots in memory."""

    def __init__(self, max_snapshots: int = 1000):
        super().__init__("in_memory")
        self._snapshots: deque = deque(maxlen=max_snapshots)
        self._lock = threading.Lock()
        self.is_shutdown = False

    async def export(self, snapshot: Snapshot) -> None:
        started = time.time()
        with self._lock:
            self._snapshots.append(snapshot)
        self._record_export(started)

    async def shutdown(self) -> None:
        self.is_shutdown = True

    @property
    def snapshots(self) -> List[Snapshot]:
        with self._lock:
            return list(self._snapshots)

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()


class SnapshotTextFormatter:
    """Formatter for a line-oriented text rendering of snapshots."""

    @staticmethod
    def format_attribute_value(value: Any) -> str:
        if isinstance(value, str):
            escaped = value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
            return f'"{escaped}"'
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def format_attributes(attributes: Dict[str, Any]) -> str:
        if not attributes:
            return ""
        formatted = [
            f"{key}={SnapshotTextFormatter.format_attribute_value(value)}"
            for key, value in sorted(attributes.items())
        ]
        return "{" + ",".join(formatted) + "}"

    @staticmethod
    def format_value(value: Optional[Number]) -> str:
        if value is None:
            return "-"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)

    def format_metric(self, metric: MetricData) -> List[str]:
        lines = []
        header = f"# {metric.kind.value} {metric.name}"
        if metric.unit:
            header += f" [{metric.unit}]"
        if metric.description:
            header += f" {metric.description}"
        lines.append(header)

        for point in metric.points:
            attrs = self.format_attributes(point.attributes)
            if isinstance(point, HistogramDataPoint):
                buckets = ",".join(str(c) for c in point.bucket_counts)
                lines.append(
                    f"{metric.name}{attrs} count={point.count} sum={self.format_value(point.sum)} "
                    f"min={self.format_value(point.min)} max={self.format_value(point.max)} "
                    f"buckets=[{buckets}]"
                )
            else:
                lines.append(f"{metric.name}{attrs} {self.format_value(point.value)}")
        return lines

    def format_snapshot(self, snapshot: Snapshot) -> str:
        lines = [f"# snapshot temporality={snapshot.temporality.value} time={snapshot.time_unix_nano}"]
        for metric in snapshot.metrics:
            lines.extend(self.format_metric(metric))
        return "\n".join(lines) + "\n"


class ConsoleMetricsExporter(MetricsExporter):
    """Writes each snapshot as text to a stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        super().__init__("console")
        self.stream = stream or sys.stdout
        self.formatter = SnapshotTextFormatter()

    async def export(self, snapshot: Snapshot) -> None:
        started = time.time()
        try:
            self.stream.write(self.formatter.format_snapshot(snapshot))
            self.stream.flush()
        except Exception as e:
            self._record_export(started, failed=True)
            raise MetricsExportError(
                message=f"Failed to write metrics to console: {e}",
                export_destination="console",
                export_format="text",
                original_error=e
            )
        self._record_export(started)
        self.logger.debug(f"Exported {snapshot.point_count} points to console")


# OTLP encoding

_OTLP_TEMPORALITY = {
    Temporality.CUMULATIVE: metrics_pb2.AGGREGATION_TEMPORALITY_CUMULATIVE,
    Temporality.DELTA: metrics_pb2.AGGREGATION_TEMPORALITY_DELTA,
}

# int fields in OTLP are signed 64-bit
_INT64_MIN = -2 ** 63
_INT64_MAX = 2 ** 63 - 1


def _fits_int64(value: int) -> bool:
    return _INT64_MIN <= value <= _INT64_MAX


def _any_value(value: Any) -> AnyValue:
    if isinstance(value, bool):
        return AnyValue(bool_value=value)
    if isinstance(value, int):
        if _fits_int64(value):
            return AnyValue(int_value=value)
        return AnyValue(string_value=str(value))
    if isinstance(value, float):
        return AnyValue(double_value=value)
    return AnyValue(string_value=str(value))


def _key_values(attributes: Dict[str, Any]) -> List[KeyValue]:
    return [KeyValue(key=key, value=_any_value(value)) for key, value in sorted(attributes.items())]


def _encode_metric(metric: MetricData, temporality: Temporality) -> metrics_pb2.Metric:
    encoded = metrics_pb2.Metric(name=metric.name, description=metric.description, unit=metric.unit)
    aggregation_temporality = _OTLP_TEMPORALITY[temporality]

    if metric.kind is InstrumentKind.HISTOGRAM:
        encoded.histogram.aggregation_temporality = aggregation_temporality
        for point in metric.points:
            data_point = encoded.histogram.data_points.add(
                attributes=_key_values(point.attributes),
                start_time_unix_nano=point.start_time_unix_nano,
                time_unix_nano=point.time_unix_nano,
                count=point.count,
                sum=float(point.sum),
                bucket_counts=list(point.bucket_counts),
                explicit_bounds=list(point.explicit_bounds)
            )
            if point.min is not None:
                data_point.min = float(point.min)
            if point.max is not None:
                data_point.max = float(point.max)
        return encoded

    encoded.sum.aggregation_temporality = aggregation_temporality
    encoded.sum.is_monotonic = metric.is_monotonic
    for point in metric.points:
        data_point = encoded.sum.data_points.add(
            attributes=_key_values(point.attributes),
            start_time_unix_nano=point.start_time_unix_nano,
            time_unix_nano=point.time_unix_nano
        )
        if isinstance(point.value, int) and _fits_int64(point.value):
            data_point.as_int = point.value
        else:
            data_point.as_double = float(point.value)
    return encoded


def encode_snapshot(
    snapshot: Snapshot,
    service_name: str,
    scope_name: str = "telemetry_metrics_sdk"
) -> ExportMetricsServiceRequest:
    """Encode a snapshot as an OTLP ExportMetricsServiceRequest."""
    request = ExportMetricsServiceRequest()
    resource_metrics = request.resource_metrics.add(
        resource=Resource(attributes=_key_values({'service.name': service_name}))
    )
    scope_metrics = resource_metrics.scope_metrics.add(
        scope=InstrumentationScope(name=scope_name, version=__version__)
    )
    for metric in snapshot.metrics:
        # instruments that never recorded carry no points
        if metric.points:
            scope_metrics.metrics.append(_encode_metric(metric, snapshot.temporality))
    return request


class OTLPMetricsExporter(MetricsExporter):
    """Exports snapshots to an OpenTelemetry collector over OTLP/HTTP protobuf."""

    CONTENT_TYPE = "application/x-protobuf"

    def __init__(
        self,
        config: Optional[MetricsConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__("otlp")
        self.config = config or MetricsConfig()
        self.url = self.config.metrics_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.export_timeout)
        self._headers = {'Content-Type': self.CONTENT_TYPE, **self.config.headers}

    async def export(self, snapshot: Snapshot) -> None:
        started = time.time()
        request = encode_snapshot(snapshot, self.config.service_name)
        if not request.resource_metrics[0].scope_metrics[0].metrics:
            self.logger.debug("Nothing to export")
            return

        try:
            response = await self._client.post(
                self.url,
                content=request.SerializeToString(),
                headers=self._headers,
                timeout=self.config.export_timeout
            )
        except httpx.HTTPError as e:
            self._record_export(started, failed=True)
            raise MetricsExportError(
                message=f"Failed to send metrics to {self.url}: {e}",
                export_destination=self.url,
                export_format="otlp_proto",
                original_error=e
            )

        if not response.is_success:
            self._record_export(started, failed=True)
            raise MetricsExportError(
                message=f"Collector at {self.url} rejected metrics with HTTP {response.status_code}",
                export_destination=self.url,
                export_format="otlp_proto",
                status_code=response.status_code
            )

        self._record_export(started)
        self.logger.debug(f"Exported {snapshot.point_count} points to {self.url}")

    async def shutdown(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# Factory functions

def create_exporter(kind: str, config: Optional[MetricsConfig] = None) -> MetricsExporter:
    """Create an exporter by name: ``otlp``, ``console`` or ``memory``."""
    config = config or MetricsConfig()
    kind = kind.lower()
    if kind == "otlp":
        return OTLPMetricsExporter(config)
    if kind == "console":
        return ConsoleMetricsExporter()
    if kind in ("memory", "in_memory"):
        return InMemoryMetricsExporter(config.max_in_memory_snapshots)
    raise MetricsExportError(
        message=f"Unsupported exporter: {kind}",
        export_format=kind
    )
