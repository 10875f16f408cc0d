"""
Instrument registry with kind-conflict detection and observer callbacks.

This module provides the registry through which instruments are created
and measurements are recorded, the observer mechanism that feeds
observable instruments once per collection cycle, and the snapshot
operation that captures every series under a temporality policy.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .exceptions import (
    InvalidObservationError,
    KindConflictError,
    MetricsCollectionError,
    MetricValidationError,
    handle_observer_error,
)
from .instruments import (
    INSTRUMENT_CLASSES,
    Counter,
    Histogram,
    Instrument,
    ObservableCounter,
    UpDownCounter,
)
from .types import InstrumentKind, Number, Snapshot, Temporality, normalize_attributes


ObserverCallback = Callable[["ObservationContext"], Any]


class ObservationContext:
    """Handle passed to an observer callback; valid only while it runs."""

    def __init__(self, registry: "InstrumentRegistry", instruments: Sequence[Instrument]):
        self._registry = registry
        self._allowed = {id(instrument) for instrument in instruments}
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def observe(
        self,
        instrument: Instrument,
        value: Number,
        attributes: Optional[Mapping[str, Any]] = None
    ) -> None:
        """Report a value for one of the instruments the observer was registered with."""
        with self._lock:
            if not self._active:
                raise InvalidObservationError(
                    message=f"Observation of '{instrument.name}' outside of its callback invocation",
                    metric_name=instrument.name,
                    metric_kind=instrument.kind.value
                )
            if id(instrument) not in self._allowed:
                raise InvalidObservationError(
                    message=f"Instrument '{instrument.name}' was not registered with this observer",
                    metric_name=instrument.name,
                    metric_kind=instrument.kind.value
                )
            self._registry._apply(instrument, value, attributes)

    def close(self) -> None:
        with self._lock:
            self._active = False


@dataclass
class ObserverRegistration:
    """A registered observer callback and the instruments it may observe."""
    callback: ObserverCallback
    instruments: List[Instrument]
    registry: "InstrumentRegistry"
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    invocations: int = 0
    failures: int = 0

    @property
    def name(self) -> str:
        return getattr(self.callback, "__qualname__", repr(self.callback))

    def unregister(self) -> bool:
        """Stop invoking this callback on future collections."""
        return self.registry.unregister_observer(self)


class InstrumentRegistry:
    """Registry for creating instruments and aggregating their measurements."""

    def __init__(self):
        self._instruments: Dict[str, Instrument] = {}
        self._observers: List[ObserverRegistration] = []
        self._lock = threading.RLock()
        self.logger = logging.getLogger("observability.metrics.registry")

        # Statistics
        self._registration_count = 0
        self._conflict_count = 0
        self._rejected_measurements = 0
        self._snapshot_count = 0

    # Instruments

    def get_or_create(
        self,
        name: str,
        kind: InstrumentKind,
        unit: str = "",
        description: str = "",
        boundaries: Optional[Sequence[float]] = None
    ) -> Instrument:
        """Return the instrument called ``name``, creating it on first request.

        Unit, description and histogram boundaries are fixed by the first
        registration; later requests for the same name get that instrument
        unchanged, with a warning if they asked for different boundaries.
        """
        instrument = self._instruments.get(name)
        if instrument is None:
            with self._lock:
                instrument = self._instruments.get(name)
                if instrument is None:
                    instrument = self._create(name, kind, unit, description, boundaries)
                    self._instruments[name] = instrument
                    self._registration_count += 1
                    self.logger.debug(f"Registered {kind.value} '{name}'")
                    return instrument

        if instrument.kind is not kind:
            with self._lock:
                self._conflict_count += 1
            raise KindConflictError(
                message=f"Instrument '{name}' already registered as {instrument.kind.value}, "
                        f"cannot re-register as {kind.value}",
                existing_kind=instrument.kind.value,
                requested_kind=kind.value,
                metric_name=name,
                metric_kind=kind.value
            )
        if boundaries is not None and isinstance(instrument, Histogram):
            requested = tuple(float(b) for b in boundaries)
            if requested != instrument.boundaries:
                self.logger.warning(
                    f"Histogram '{name}' already registered with boundaries {list(instrument.boundaries)}, "
                    f"ignoring requested boundaries {list(requested)}"
                )
        return instrument

    def _create(
        self,
        name: str,
        kind: InstrumentKind,
        unit: str,
        description: str,
        boundaries: Optional[Sequence[float]]
    ) -> Instrument:
        if kind is InstrumentKind.HISTOGRAM:
            return Histogram(name, self, unit=unit, description=description, boundaries=boundaries)
        return INSTRUMENT_CLASSES[kind](name, self, unit=unit, description=description)

    def counter(self, name: str, unit: str = "", description: str = "") -> Counter:
        return self.get_or_create(name, InstrumentKind.COUNTER, unit, description)

    def up_down_counter(self, name: str, unit: str = "", description: str = "") -> UpDownCounter:
        return self.get_or_create(name, InstrumentKind.UP_DOWN_COUNTER, unit, description)

    def histogram(
        self,
        name: str,
        unit: str = "",
        description: str = "",
        boundaries: Optional[Sequence[float]] = None
    ) -> Histogram:
        return self.get_or_create(name, InstrumentKind.HISTOGRAM, unit, description, boundaries)

    def observable_counter(
        self,
        name: str,
        unit: str = "",
        description: str = "",
        callback: Optional[ObserverCallback] = None
    ) -> ObservableCounter:
        """Create an observable counter, optionally registering its observer."""
        instrument = self.get_or_create(name, InstrumentKind.OBSERVABLE_COUNTER, unit, description)
        if callback is not None:
            self.register_observer([instrument], callback)
        return instrument

    def get(self, name: str) -> Optional[Instrument]:
        with self._lock:
            return self._instruments.get(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._instruments

    def list_instruments(self) -> List[str]:
        with self._lock:
            return list(self._instruments.keys())

    # Recording

    def record(
        self,
        instrument: Instrument,
        value: Number,
        attributes: Optional[Mapping[str, Any]] = None
    ) -> None:
        """Fold a measurement into the series for (instrument, attributes)."""
        if instrument.kind is InstrumentKind.OBSERVABLE_COUNTER:
            raise InvalidObservationError(
                message=f"Observable counter '{instrument.name}' can only be reported from an observer callback",
                metric_name=instrument.name,
                metric_kind=instrument.kind.value
            )
        self._apply(instrument, value, attributes)

    def _apply(
        self,
        instrument: Instrument,
        value: Number,
        attributes: Optional[Mapping[str, Any]]
    ) -> None:
        if instrument.registry is not self or self._instruments.get(instrument.name) is not instrument:
            raise MetricValidationError(
                message=f"Instrument '{instrument.name}' does not belong to this registry",
                validation_rule="foreign_instrument",
                metric_name=instrument.name
            )
        try:
            value = instrument.validate_value(value)
            key = normalize_attributes(attributes)
        except Exception:
            with self._lock:
                self._rejected_measurements += 1
            raise
        instrument.get_series(key).update(value)

    # Observers

    def register_observer(
        self,
        instruments: Iterable[Instrument],
        callback: ObserverCallback
    ) -> ObserverRegistration:
        """Register a callback invoked once per collection, before the snapshot."""
        instruments = list(instruments)
        if not instruments:
            raise MetricValidationError(
                message="An observer must be registered with at least one instrument",
                validation_rule="observer_instruments"
            )
        for instrument in instruments:
            if instrument.registry is not self:
                raise MetricValidationError(
                    message=f"Instrument '{instrument.name}' does not belong to this registry",
                    validation_rule="foreign_instrument",
                    metric_name=instrument.name
                )
        if not callable(callback):
            raise MetricValidationError(
                message="Observer callback must be callable",
                validation_rule="callable_observer"
            )

        registration = ObserverRegistration(callback=callback, instruments=instruments, registry=self)
        with self._lock:
            self._observers.append(registration)
        self.logger.debug(
            f"Registered observer {registration.name} for {[i.name for i in instruments]}"
        )
        return registration

    def unregister_observer(self, registration: ObserverRegistration) -> bool:
        with self._lock:
            if registration in self._observers:
                self._observers.remove(registration)
                return True
            return False

    def list_observers(self) -> List[ObserverRegistration]:
        with self._lock:
            return list(self._observers)

    async def run_observers(
        self,
        error_handler: Optional[Callable[[MetricsCollectionError], None]] = None
    ) -> int:
        """Invoke every observer callback sequentially; returns the number that failed.

        Coroutine callbacks are awaited on the calling task; plain callables
        run in a worker thread so that a stuck callback can be abandoned by
        cancelling the caller. The context is closed once the invocation ends
        or is abandoned.
        """
        failures = 0
        for registration in self.list_observers():
            context = ObservationContext(self, registration.instruments)
            registration.invocations += 1
            try:
                if inspect.iscoroutinefunction(registration.callback):
                    await registration.callback(context)
                else:
                    result = await asyncio.to_thread(registration.callback, context)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                failures += 1
                registration.failures += 1
                error = handle_observer_error(e, registration.name)
                self.logger.error(error.message)
                if error_handler is not None:
                    error_handler(error)
            finally:
                context.close()
        return failures

    # Collection

    def snapshot(self, temporality: Temporality = Temporality.CUMULATIVE) -> Snapshot:
        """Capture every series; under DELTA the captured state is reset atomically."""
        with self._lock:
            instruments = list(self._instruments.values())
            self._snapshot_count += 1
        now = time.time_ns()
        return Snapshot(
            temporality=temporality,
            time_unix_nano=now,
            metrics=tuple(instrument.collect(temporality, now) for instrument in instruments)
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Get registry statistics."""
        with self._lock:
            by_kind: Dict[str, int] = {}
            for instrument in self._instruments.values():
                by_kind[instrument.kind.value] = by_kind.get(instrument.kind.value, 0) + 1
            return {
                'total_instruments': len(self._instruments),
                'total_series': sum(i.series_count() for i in self._instruments.values()),
                'instruments_by_kind': by_kind,
                'observers': len(self._observers),
                'registration_count': self._registration_count,
                'conflict_count': self._conflict_count,
                'rejected_measurements': self._rejected_measurements,
                'snapshot_count': self._snapshot_count
            }
