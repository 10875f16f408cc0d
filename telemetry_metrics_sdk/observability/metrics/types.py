"""
Metric types and value containers.

This module defines the instrument kinds and temporalities understood by
the SDK, attribute-set normalization, and the immutable data points and
snapshots produced by a collection pass.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import math
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from .exceptions import MetricValidationError, InvalidValueError


Number = Union[int, float]
AttributeValue = Union[str, bool, int, float]
AttributeKey = Tuple[Tuple[str, AttributeValue], ...]

# Default explicit bucket boundaries used by OpenTelemetry histograms
DEFAULT_HISTOGRAM_BOUNDARIES: Tuple[float, ...] = (
    0.0, 5.0, 10.0, 25.0, 50.0, 75.0, 100.0, 250.0, 500.0,
    750.0, 1000.0, 2500.0, 5000.0, 7500.0, 10000.0
)


class InstrumentKind(Enum):
    """Kinds of instruments supported by the registry."""
    COUNTER = "counter"
    UP_DOWN_COUNTER = "up_down_counter"
    HISTOGRAM = "histogram"
    OBSERVABLE_COUNTER = "observable_counter"

    @property
    def is_monotonic(self) -> bool:
        return self in (InstrumentKind.COUNTER, InstrumentKind.OBSERVABLE_COUNTER)


class Temporality(str, Enum):
    """Aggregation temporality applied by a collection controller."""
    CUMULATIVE = "cumulative"
    DELTA = "delta"


def normalize_attributes(attributes: Optional[Mapping[str, Any]]) -> AttributeKey:
    """Convert an attribute mapping into a hashable, order-independent key."""
    if not attributes:
        return ()

    items = []
    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            raise MetricValidationError(
                message=f"Attribute keys must be non-empty strings, got {key!r}",
                validation_rule="attribute_key",
                attributes=dict(attributes)
            )
        if not isinstance(value, (str, bool, int, float)):
            raise MetricValidationError(
                message=f"Attribute '{key}' has unsupported value type {type(value).__name__}",
                validation_rule="attribute_value",
                attributes=dict(attributes)
            )
        items.append((key, value))

    return tuple(sorted(items, key=lambda item: item[0]))


def check_number(value: Any, metric_name: Optional[str] = None) -> Number:
    """Validate that a measurement is a finite real number."""
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValueError(
            message=f"Measurement must be numeric, got {type(value).__name__}",
            value=value,
            validation_rule="numeric_value",
            metric_name=metric_name
        )
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidValueError(
            message=f"Measurement must be finite, got {value}",
            value=value,
            validation_rule="finite_value",
            metric_name=metric_name
        )
    return value


@dataclass(frozen=True)
class NumberDataPoint:
    """Aggregated sum for one series."""
    attributes: Dict[str, AttributeValue]
    start_time_unix_nano: int
    time_unix_nano: int
    value: Number


@dataclass(frozen=True)
class HistogramDataPoint:
    """Aggregated distribution for one series."""
    attributes: Dict[str, AttributeValue]
    start_time_unix_nano: int
    time_unix_nano: int
    count: int
    sum: Number
    bucket_counts: Tuple[int, ...]
    explicit_bounds: Tuple[float, ...]
    min: Optional[Number] = None
    max: Optional[Number] = None

    @property
    def mean(self) -> float:
        return self.sum / self.count if self.count else 0.0


DataPoint = Union[NumberDataPoint, HistogramDataPoint]


@dataclass(frozen=True)
class MetricData:
    """All data points of a single instrument in a snapshot."""
    name: str
    kind: InstrumentKind
    unit: str = ""
    description: str = ""
    points: Tuple[DataPoint, ...] = field(default_factory=tuple)

    @property
    def is_monotonic(self) -> bool:
        return self.kind.is_monotonic

    def find(self, attributes: Optional[Mapping[str, Any]] = None) -> Optional[DataPoint]:
        """Return the point recorded for exactly this attribute set."""
        wanted = normalize_attributes(attributes)
        for point in self.points:
            if normalize_attributes(point.attributes) == wanted:
                return point
        return None


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time view of every series in a registry."""
    temporality: Temporality
    time_unix_nano: int
    metrics: Tuple[MetricData, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[MetricData]:
        return iter(self.metrics)

    def __len__(self) -> int:
        return len(self.metrics)

    def get(self, name: str) -> Optional[MetricData]:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None

    @property
    def point_count(self) -> int:
        return sum(len(metric.points) for metric in self.metrics)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict rendering, convenient for logging and debugging."""
        metrics = []
        for metric in self.metrics:
            points = []
            for point in metric.points:
                if isinstance(point, HistogramDataPoint):
                    points.append({
                        'attributes': dict(point.attributes),
                        'count': point.count,
                        'sum': point.sum,
                        'min': point.min,
                        'max': point.max,
                        'bucket_counts': list(point.bucket_counts),
                        'explicit_bounds': list(point.explicit_bounds),
                    })
                else:
                    points.append({
                        'attributes': dict(point.attributes),
                        'value': point.value,
                    })
            metrics.append({
                'name': metric.name,
                'kind': metric.kind.value,
                'unit': metric.unit,
                'description': metric.description,
                'points': points,
            })
        return {
            'temporality': self.temporality.value,
            'time_unix_nano': self.time_unix_nano,
            'metrics': metrics,
        }
