"""
Unit tests for CollectionController lifecycle, periodic export and shutdown.
"""

import asyncio
import threading
import time
from unittest.mock import MagicMock

import pytest

from telemetry_metrics_sdk.exceptions import ConfigurationError
from telemetry_metrics_sdk.observability.config import MetricsConfig
from telemetry_metrics_sdk.observability.metrics import (
    AlreadyStartedError,
    CollectionController,
    ControllerState,
    InMemoryMetricsExporter,
    InstrumentRegistry,
    InvalidObservationError,
    MetricsExporter,
    MetricsExportError,
    ShutdownTimeoutError,
    Temporality,
)


class SlowExporter(MetricsExporter):
    """Exporter whose export takes ``delay`` seconds."""

    def __init__(self, delay: float):
        super().__init__("slow")
        self.delay = delay
        self.calls = 0
        self.completed = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def export(self, snapshot):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.completed += 1
        finally:
            self.in_flight -= 1


class FlakyExporter(InMemoryMetricsExporter):
    """In-memory exporter that fails its first ``failures`` exports."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def export(self, snapshot):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("collector unavailable")
        await super().export(snapshot)


async def wait_for_exports(exporter, count, timeout=2.0):
    deadline = time.monotonic() + timeout
    while len(exporter.snapshots) < count:
        if time.monotonic() > deadline:
            raise AssertionError(f"expected {count} exports, got {len(exporter.snapshots)}")
        await asyncio.sleep(0.01)


@pytest.fixture
def registry():
    return InstrumentRegistry()


@pytest.fixture
def exporter():
    return InMemoryMetricsExporter()


def make_config(period=0.05, temporality=Temporality.CUMULATIVE, **kwargs):
    return MetricsConfig(period=period, temporality=temporality, **kwargs)


class TestLifecycle:
    """Test controller state transitions."""

    def test_rejects_wrong_collaborators(self, registry, exporter):
        with pytest.raises(ConfigurationError):
            CollectionController(object(), exporter)
        with pytest.raises(ConfigurationError):
            CollectionController(registry, object())

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config())
        assert controller.state is ControllerState.IDLE

        await controller.start()
        assert controller.is_running

        await controller.stop()
        assert controller.state is ControllerState.STOPPED
        assert exporter.is_shutdown is True

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config())
        await controller.start()

        with pytest.raises(AlreadyStartedError) as exc_info:
            await controller.start()
        assert exc_info.value.state == "running"

        await controller.stop()
        with pytest.raises(AlreadyStartedError):
            await controller.start()

    @pytest.mark.asyncio
    async def test_stop_twice_is_noop(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config(period=10))
        await controller.start()

        await controller.stop()
        exported = len(exporter.snapshots)
        await controller.stop()

        assert controller.state is ControllerState.STOPPED
        assert len(exporter.snapshots) == exported

    @pytest.mark.asyncio
    async def test_concurrent_stops_share_shutdown(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config(period=10))
        await controller.start()

        await asyncio.gather(controller.stop(), controller.stop())

        assert controller.state is ControllerState.STOPPED
        assert len(exporter.snapshots) == 1

    @pytest.mark.asyncio
    async def test_stop_idle_controller(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config())

        await controller.stop()

        assert controller.state is ControllerState.STOPPED
        assert exporter.snapshots == []
        assert exporter.is_shutdown is False

    @pytest.mark.asyncio
    async def test_async_context_manager(self, registry, exporter):
        counter = registry.counter("requests")
        async with CollectionController(registry, exporter, make_config(period=10)) as controller:
            counter.add(2)
            assert controller.is_running

        assert controller.state is ControllerState.STOPPED
        assert exporter.snapshots[-1].get("requests").find().value == 2


class TestPeriodicExport:
    """Test the background collection loop."""

    @pytest.mark.asyncio
    async def test_exports_every_period(self, registry, exporter):
        counter = registry.counter("requests")
        counter.add(5)
        controller = CollectionController(registry, exporter, make_config(period=0.05))

        await controller.start()
        await wait_for_exports(exporter, 3)
        await controller.stop()

        values = [s.get("requests").find().value for s in exporter.snapshots]
        assert all(value == 5 for value in values)
        assert all(s.temporality is Temporality.CUMULATIVE for s in exporter.snapshots)

    @pytest.mark.asyncio
    async def test_no_export_before_first_period(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config(period=0.5))

        await controller.start()
        await asyncio.sleep(0.1)

        assert exporter.snapshots == []
        await controller.stop()

    @pytest.mark.asyncio
    async def test_delta_totals_match_recorded(self, registry, exporter):
        counter = registry.counter("requests")
        controller = CollectionController(
            registry, exporter, make_config(period=0.02, temporality=Temporality.DELTA)
        )

        await controller.start()
        for _ in range(50):
            counter.add(1)
            await asyncio.sleep(0.002)
        await controller.stop()

        total = sum(s.get("requests").find().value for s in exporter.snapshots)
        assert total == 50

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_measurements(self, registry, exporter):
        counter = registry.counter("requests")
        controller = CollectionController(registry, exporter, make_config(period=10))

        await controller.start()
        counter.add(7)
        await controller.stop()

        assert len(exporter.snapshots) == 1
        assert exporter.snapshots[0].get("requests").find().value == 7

    @pytest.mark.asyncio
    async def test_exports_never_overlap(self, registry):
        exporter = SlowExporter(delay=0.05)
        registry.counter("requests").add(1)
        controller = CollectionController(registry, exporter, make_config(period=0.01))

        await controller.start()
        await asyncio.gather(
            asyncio.sleep(0.3),
            controller.force_flush(),
            controller.force_flush()
        )
        await controller.stop(timeout=2)

        assert exporter.calls >= 3
        assert exporter.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_slow_observer_delays_collection(self, registry, exporter):
        observable = registry.observable_counter("observed")
        running = {'now': 0, 'max': 0, 'calls': 0}

        async def slow_observer(context):
            running['now'] += 1
            running['max'] = max(running['max'], running['now'])
            running['calls'] += 1
            await asyncio.sleep(0.05)
            context.observe(observable, running['calls'])
            running['now'] -= 1

        registry.register_observer([observable], slow_observer)
        controller = CollectionController(registry, exporter, make_config(period=0.01))

        await controller.start()
        await asyncio.sleep(0.3)
        await controller.stop(timeout=2)

        assert running['max'] == 1
        values = [s.get("observed").find().value for s in exporter.snapshots]
        assert values == sorted(values)


class TestErrorHandling:
    """Test export failures and shutdown timeouts."""

    @pytest.mark.asyncio
    async def test_export_failure_is_not_fatal(self, registry):
        exporter = FlakyExporter(failures=2)
        handler = MagicMock()
        registry.counter("requests").add(1)
        controller = CollectionController(registry, exporter, make_config(period=0.02), error_handler=handler)

        await controller.start()
        await wait_for_exports(exporter, 2)
        await controller.stop()

        assert controller.export_errors == 2
        assert handler.call_count == 2
        error = handler.call_args_list[0].args[0]
        assert isinstance(error, MetricsExportError)
        assert isinstance(error.original_error, RuntimeError)
        assert exporter.snapshots[0].get("requests").find().value == 1

    @pytest.mark.asyncio
    async def test_failing_error_handler_is_contained(self, registry):
        exporter = FlakyExporter(failures=1)
        handler = MagicMock(side_effect=ValueError("handler bug"))
        controller = CollectionController(registry, exporter, make_config(period=0.02), error_handler=handler)

        await controller.start()
        await wait_for_exports(exporter, 1)
        await controller.stop()

        assert handler.called
        assert controller.state is ControllerState.STOPPED

    @pytest.mark.asyncio
    async def test_observer_failure_reported(self, registry, exporter):
        observable = registry.observable_counter("observed")

        def broken(context):
            raise RuntimeError("probe failed")

        registry.register_observer([observable], broken)
        handler = MagicMock()
        controller = CollectionController(registry, exporter, make_config(period=10), error_handler=handler)

        snapshot = await controller.collect()

        assert handler.call_count == 1
        assert snapshot.get("observed").points == ()

    @pytest.mark.asyncio
    async def test_force_flush_raises_export_errors(self, registry):
        exporter = FlakyExporter(failures=1)
        controller = CollectionController(registry, exporter, make_config(period=10))

        with pytest.raises(MetricsExportError):
            await controller.force_flush()

        snapshot = await controller.force_flush()
        assert exporter.snapshots == [snapshot]

    @pytest.mark.asyncio
    async def test_stop_timeout_with_slow_exporter(self, registry):
        exporter = SlowExporter(delay=5)
        registry.counter("requests").add(1)
        controller = CollectionController(registry, exporter, make_config(period=10))

        await controller.start()
        started = time.monotonic()
        with pytest.raises(ShutdownTimeoutError) as exc_info:
            await controller.stop(timeout=1)
        elapsed = time.monotonic() - started

        assert exc_info.value.timeout == 1
        assert elapsed < 2
        assert controller.state is ControllerState.STOPPED
        assert exporter.calls == 1
        assert exporter.completed == 0

        await asyncio.sleep(0.2)
        assert exporter.calls == 1

    @pytest.mark.asyncio
    async def test_stop_timeout_abandons_stuck_observer(self, registry, exporter):
        observable = registry.observable_counter("observed")
        release = threading.Event()
        finished = threading.Event()
        late_errors = []

        def stuck_observer(context):
            release.wait(5)
            try:
                context.observe(observable, 1)
            except InvalidObservationError as e:
                late_errors.append(e)
            finally:
                finished.set()

        registry.register_observer([observable], stuck_observer)
        controller = CollectionController(registry, exporter, make_config(period=10))

        await controller.start()
        started = time.monotonic()
        try:
            with pytest.raises(ShutdownTimeoutError):
                await controller.stop(timeout=0.5)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 1.5
        assert controller.state is ControllerState.STOPPED
        assert controller._task is None
        assert exporter.snapshots == []

        assert await asyncio.to_thread(finished.wait, 2)
        assert len(late_errors) == 1
        assert registry.snapshot().get("observed").points == ()

    @pytest.mark.asyncio
    async def test_statistics(self, registry, exporter):
        controller = CollectionController(registry, exporter, make_config(period=10))
        await controller.force_flush()

        stats = controller.get_statistics()
        assert stats['collections_total'] == 1
        assert stats['exports_total'] == 1
        assert stats['state'] == "idle"
        assert stats['exporter']['exporter'] == "in_memory"
