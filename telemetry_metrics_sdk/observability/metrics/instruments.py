"""
Instruments and their per-attribute-set series.

Every instrument owns a map of series keyed by normalized attribute set.
Each series carries its own lock, so recording on independent attribute
sets never contends, and a snapshot of one series is atomic with respect
to concurrent updates of that series.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import re
import threading
import time
from abc import ABC, abstractmethod
from bisect import bisect_left
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from .exceptions import InvalidValueError, MetricValidationError
from .types import (
    AttributeKey,
    DataPoint,
    DEFAULT_HISTOGRAM_BOUNDARIES,
    HistogramDataPoint,
    InstrumentKind,
    MetricData,
    Number,
    NumberDataPoint,
    Temporality,
    check_number,
)

if TYPE_CHECKING:
    from .registry import InstrumentRegistry


_INSTRUMENT_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_.\-/]{0,254}$")


def validate_instrument_name(name: str) -> None:
    """Validate an instrument name against OpenTelemetry naming rules."""
    if not isinstance(name, str) or not name:
        raise MetricValidationError(
            message="Instrument name cannot be empty",
            validation_rule="non_empty_name",
            metric_name=name if isinstance(name, str) else None
        )
    if not _INSTRUMENT_NAME_RE.match(name):
        raise MetricValidationError(
            message=f"Invalid instrument name '{name}'. Must start with a letter and contain "
                    f"only alphanumerics, '_', '.', '-' or '/' (max 255 characters)",
            validation_rule="valid_characters",
            metric_name=name
        )


# Series

class Series(ABC):
    """Aggregation state for one instrument at one attribute set."""

    __slots__ = ("key", "_lock", "_start_time")

    def __init__(self, key: AttributeKey, start_time_unix_nano: int):
        self.key = key
        self._lock = threading.Lock()
        self._start_time = start_time_unix_nano

    @abstractmethod
    def update(self, value: Number) -> None:
        """Fold a measurement into the series."""

    @abstractmethod
    def collect(self, temporality: Temporality, now: int) -> DataPoint:
        """Capture the series; under DELTA also reset it in the same critical section."""


class SumSeries(Series):
    """Running sum for counters and up-down counters."""

    __slots__ = ("_value",)

    def __init__(self, key: AttributeKey, start_time_unix_nano: int):
        super().__init__(key, start_time_unix_nano)
        self._value: Number = 0

    def update(self, value: Number) -> None:
        with self._lock:
            self._value += value

    def collect(self, temporality: Temporality, now: int) -> NumberDataPoint:
        with self._lock:
            point = NumberDataPoint(
                attributes=dict(self.key),
                start_time_unix_nano=self._start_time,
                time_unix_nano=now,
                value=self._value
            )
            if temporality is Temporality.DELTA:
                self._value = 0
                self._start_time = now
        return point


class ObservedSumSeries(Series):
    """Last observed total of an observable counter."""

    __slots__ = ("_value", "_last_reported")

    def __init__(self, key: AttributeKey, start_time_unix_nano: int):
        super().__init__(key, start_time_unix_nano)
        self._value: Number = 0
        self._last_reported: Number = 0

    def update(self, value: Number) -> None:
        with self._lock:
            self._value = value

    def collect(self, temporality: Temporality, now: int) -> NumberDataPoint:
        with self._lock:
            value = self._value
            if temporality is Temporality.DELTA:
                # a total below the last report means the source restarted
                value = value - self._last_reported if value >= self._last_reported else value
            point = NumberDataPoint(
                attributes=dict(self.key),
                start_time_unix_nano=self._start_time,
                time_unix_nano=now,
                value=value
            )
            if temporality is Temporality.DELTA:
                self._last_reported = self._value
                self._start_time = now
        return point


class HistogramSeries(Series):
    """Count, sum, min, max and explicit-bucket counts."""

    __slots__ = ("_bounds", "_bucket_counts", "_count", "_sum", "_min", "_max")

    def __init__(self, key: AttributeKey, start_time_unix_nano: int, bounds: Tuple[float, ...]):
        super().__init__(key, start_time_unix_nano)
        self._bounds = bounds
        self._reset()

    def _reset(self) -> None:
        self._bucket_counts: List[int] = [0] * (len(self._bounds) + 1)
        self._count = 0
        self._sum: Number = 0
        self._min: Optional[Number] = None
        self._max: Optional[Number] = None

    def update(self, value: Number) -> None:
        # bucket i holds bounds[i-1] < value <= bounds[i]
        index = bisect_left(self._bounds, value)
        with self._lock:
            self._bucket_counts[index] += 1
            self._count += 1
            self._sum += value
            if self._min is None or value < self._min:
                self._min = value
            if self._max is None or value > self._max:
                self._max = value

    def collect(self, temporality: Temporality, now: int) -> HistogramDataPoint:
        with self._lock:
            point = HistogramDataPoint(
                attributes=dict(self.key),
                start_time_unix_nano=self._start_time,
                time_unix_nano=now,
                count=self._count,
                sum=self._sum,
                bucket_counts=tuple(self._bucket_counts),
                explicit_bounds=self._bounds,
                min=self._min,
                max=self._max
            )
            if temporality is Temporality.DELTA:
                self._reset()
                self._start_time = now
        return point


# Instruments

class Instrument(ABC):
    """Named, typed handle through which measurements are recorded."""

    kind: InstrumentKind

    def __init__(
        self,
        name: str,
        registry: "InstrumentRegistry",
        unit: str = "",
        description: str = ""
    ):
        validate_instrument_name(name)
        self.name = name
        self.unit = unit
        self.description = description
        self.created_at = time.time()
        self._registry = registry
        self._series: Dict[AttributeKey, Series] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, unit={self.unit!r})"

    @property
    def registry(self) -> "InstrumentRegistry":
        return self._registry

    @abstractmethod
    def _new_series(self, key: AttributeKey, start_time_unix_nano: int) -> Series:
        pass

    def validate_value(self, value: Any) -> Number:
        """Check a measurement against this instrument's contract."""
        return check_number(value, self.name)

    def get_series(self, key: AttributeKey) -> Series:
        """Return the series for ``key``, creating it on first use."""
        series = self._series.get(key)
        if series is None:
            with self._lock:
                series = self._series.get(key)
                if series is None:
                    series = self._new_series(key, time.time_ns())
                    self._series[key] = series
        return series

    def series_count(self) -> int:
        with self._lock:
            return len(self._series)

    def collect(self, temporality: Temporality, now: int) -> MetricData:
        """Capture every series of this instrument."""
        with self._lock:
            series = list(self._series.values())
        return MetricData(
            name=self.name,
            kind=self.kind,
            unit=self.unit,
            description=self.description,
            points=tuple(s.collect(temporality, now) for s in series)
        )

    def get_metadata(self) -> Dict[str, Any]:
        """Get instrument metadata."""
        return {
            'name': self.name,
            'kind': self.kind.value,
            'unit': self.unit,
            'description': self.description,
            'created_at': self.created_at,
            'series': self.series_count()
        }


def _check_non_negative(instrument: Instrument, value: Number) -> None:
    if value < 0:
        raise InvalidValueError(
            message=f"{instrument.kind.value} '{instrument.name}' only accepts non-negative values, got {value}",
            value=value,
            validation_rule="non_negative_value",
            metric_name=instrument.name,
            metric_kind=instrument.kind.value
        )


class Counter(Instrument):
    """Monotonic sum of non-negative increments."""

    kind = InstrumentKind.COUNTER

    def _new_series(self, key: AttributeKey, start_time_unix_nano: int) -> Series:
        return SumSeries(key, start_time_unix_nano)

    def validate_value(self, value: Any) -> Number:
        value = super().validate_value(value)
        _check_non_negative(self, value)
        return value

    def add(self, amount: Number = 1, attributes: Optional[Mapping[str, Any]] = None) -> None:
        """Increment the counter."""
        self._registry.record(self, amount, attributes)


class UpDownCounter(Instrument):
    """Sum of signed increments."""

    kind = InstrumentKind.UP_DOWN_COUNTER

    def _new_series(self, key: AttributeKey, start_time_unix_nano: int) -> Series:
        return SumSeries(key, start_time_unix_nano)

    def add(self, amount: Number, attributes: Optional[Mapping[str, Any]] = None) -> None:
        """Add a signed amount."""
        self._registry.record(self, amount, attributes)


class Histogram(Instrument):
    """Distribution of recorded values over explicit bucket boundaries."""

    kind = InstrumentKind.HISTOGRAM

    def __init__(
        self,
        name: str,
        registry: "InstrumentRegistry",
        unit: str = "",
        description: str = "",
        boundaries: Optional[Sequence[float]] = None
    ):
        super().__init__(name, registry, unit, description)
        bounds = tuple(float(b) for b in (DEFAULT_HISTOGRAM_BOUNDARIES if boundaries is None else boundaries))
        if list(bounds) != sorted(set(bounds)):
            raise MetricValidationError(
                message=f"Histogram boundaries for '{name}' must be strictly increasing",
                validation_rule="sorted_boundaries",
                metric_name=name
            )
        self.boundaries = bounds

    def _new_series(self, key: AttributeKey, start_time_unix_nano: int) -> Series:
        return HistogramSeries(key, start_time_unix_nano, self.boundaries)

    def record(self, value: Number, attributes: Optional[Mapping[str, Any]] = None) -> None:
        """Record a value in the histogram."""
        self._registry.record(self, value, attributes)

    def get_metadata(self) -> Dict[str, Any]:
        data = super().get_metadata()
        data['boundaries'] = list(self.boundaries)
        return data


class ObservableCounter(Instrument):
    """Monotonic total reported by an observer callback on every collection."""

    kind = InstrumentKind.OBSERVABLE_COUNTER

    def _new_series(self, key: AttributeKey, start_time_unix_nano: int) -> Series:
        return ObservedSumSeries(key, start_time_unix_nano)

    def validate_value(self, value: Any) -> Number:
        value = super().validate_value(value)
        _check_non_negative(self, value)
        return value


INSTRUMENT_CLASSES = {
    InstrumentKind.COUNTER: Counter,
    InstrumentKind.UP_DOWN_COUNTER: UpDownCounter,
    InstrumentKind.HISTOGRAM: Histogram,
    InstrumentKind.OBSERVABLE_COUNTER: ObservableCounter,
}
