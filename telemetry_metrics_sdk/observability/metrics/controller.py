"""
Collection controller.

The controller owns one background asyncio task that, every ``period``
seconds, runs the registry's observer callbacks, takes a snapshot under
the configured temporality and hands it to the exporter. Stopping performs
one last collect-and-export pass bounded by a timeout.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..config import MetricsConfig
from ...exceptions import ConfigurationError
from .exceptions import (
    AlreadyStartedError,
    MetricsError,
    ShutdownTimeoutError,
    handle_export_error,
)
from .exporter import MetricsExporter
from .registry import InstrumentRegistry
from .types import Snapshot, Temporality


ErrorHandler = Callable[[MetricsError], None]


class ControllerState(Enum):
    """Lifecycle states of a collection controller."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class CollectionController:
    """Periodically collects a registry and exports the snapshot."""

    def __init__(
        self,
        registry: InstrumentRegistry,
        exporter: MetricsExporter,
        config: Optional[MetricsConfig] = None,
        error_handler: Optional[ErrorHandler] = None,
        name: str = "metrics_controller"
    ):
        if not isinstance(registry, InstrumentRegistry):
            raise ConfigurationError(f"Controller {name} requires an InstrumentRegistry, got {type(registry).__name__}")
        if not isinstance(exporter, MetricsExporter):
            raise ConfigurationError(f"Controller {name} requires a MetricsExporter, got {type(exporter).__name__}")

        self.name = name
        self.registry = registry
        self.exporter = exporter
        self.config = config or MetricsConfig()
        self.error_handler = error_handler
        self.logger = logging.getLogger("observability.metrics.controller")

        self._state = ControllerState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._collect_lock: Optional[asyncio.Lock] = None

        # Collection statistics
        self.collections_total = 0
        self.collection_errors = 0
        self.exports_total = 0
        self.export_errors = 0
        self.last_export_time = 0.0
        self.export_duration_seconds = 0.0

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def period(self) -> float:
        return self.config.period

    @property
    def temporality(self) -> Temporality:
        return self.config.temporality

    @property
    def is_running(self) -> bool:
        return self._state is ControllerState.RUNNING

    async def __aenter__(self) -> "CollectionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def _lock(self) -> asyncio.Lock:
        if self._collect_lock is None:
            self._collect_lock = asyncio.Lock()
        return self._collect_lock

    # Lifecycle

    async def start(self) -> None:
        """Start periodic collection."""
        if self._state is not ControllerState.IDLE:
            raise AlreadyStartedError(
                message=f"Controller {self.name} cannot start from state {self._state.value}",
                state=self._state.value
            )

        self._stop_event = asyncio.Event()
        self._state = ControllerState.RUNNING
        self._task = asyncio.create_task(self._collection_loop(), name=f"{self.name}-collector")
        self.logger.info(
            f"Controller {self.name} started (period={self.period}s, "
            f"temporality={self.temporality.value}, exporter={self.exporter.name})"
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop collection after one final flush bounded by ``timeout`` seconds.

        Raises ShutdownTimeoutError if the flush did not finish in time; the
        controller is STOPPED either way and no further tick fires.
        """
        if self._state is ControllerState.STOPPED:
            return
        if self._state is ControllerState.IDLE:
            self._state = ControllerState.STOPPED
            self.logger.info(f"Controller {self.name} stopped before it was started")
            return

        if self._stop_task is None:
            self._state = ControllerState.STOPPING
            timeout = self.config.shutdown_timeout if timeout is None else timeout
            self._stop_task = asyncio.create_task(self._shutdown(timeout), name=f"{self.name}-shutdown")

        # shield so a cancelled caller does not abort a shutdown other callers wait on
        await asyncio.shield(self._stop_task)

    async def _shutdown(self, timeout: float) -> None:
        self.logger.info(f"Stopping controller {self.name} (timeout={timeout}s)")
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._final_flush(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._join_collection_task(cancel=True)
            self._state = ControllerState.STOPPED
            self.logger.warning(f"Controller {self.name} final flush abandoned after {timeout}s")
            raise ShutdownTimeoutError(
                message=f"Controller {self.name} did not flush within {timeout}s",
                timeout=timeout,
                state=self._state.value
            )
        finally:
            if self._state is not ControllerState.STOPPED:
                await self._join_collection_task(cancel=True)
                self._state = ControllerState.STOPPED
        self.logger.info(f"Controller {self.name} stopped")

    async def _final_flush(self) -> None:
        # let an in-flight tick finish, then collect once more
        await self._join_collection_task(cancel=False)
        await self._collect_and_export(raise_errors=False)
        try:
            await self.exporter.shutdown()
        except Exception as e:
            self.logger.error(f"Exporter {self.exporter.name} shutdown failed: {e}")

    async def _join_collection_task(self, cancel: bool) -> None:
        task = self._task
        if task is None:
            return
        try:
            if cancel:
                task.cancel()
                await task
            else:
                await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
        finally:
            if task.done():
                self._task = None

    # Collection

    async def _collection_loop(self) -> None:
        """Main collection loop; a slow tick delays the next one."""
        deadline = time.monotonic() + self.period
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=max(0.0, deadline - time.monotonic())
                )
                break
            except asyncio.TimeoutError:
                if self._stop_event.is_set():
                    break

            try:
                await self._collect_and_export(raise_errors=False)
            except Exception as e:
                self.collection_errors += 1
                self.logger.error(f"Metrics collection error in {self.name}: {e}")
            deadline = max(deadline + self.period, time.monotonic())

    async def collect(self) -> Snapshot:
        """Run observers and take a snapshot without exporting it."""
        async with self._lock():
            return await self._collect()

    async def force_flush(self) -> Snapshot:
        """Collect and export immediately; export errors propagate."""
        return await self._collect_and_export(raise_errors=True)

    async def _collect(self) -> Snapshot:
        await self.registry.run_observers(self._report)
        snapshot = self.registry.snapshot(self.temporality)
        self.collections_total += 1
        return snapshot

    async def _collect_and_export(self, raise_errors: bool) -> Snapshot:
        async with self._lock():
            snapshot = await self._collect()
            started = time.time()
            try:
                await self.exporter.export(snapshot)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.export_errors += 1
                error = handle_export_error(e, destination=self.exporter.name)
                if raise_errors:
                    raise error
                self.logger.error(f"Export by {self.exporter.name} failed: {error.message}")
                self._report(error)
            else:
                self.exports_total += 1
                self.last_export_time = time.time()
                self.export_duration_seconds = self.last_export_time - started
                self.logger.debug(
                    f"Exported {snapshot.point_count} points from {len(snapshot)} instruments"
                )
            return snapshot

    def _report(self, error: MetricsError) -> None:
        if self.error_handler is None:
            return
        try:
            self.error_handler(error)
        except Exception as e:
            self.logger.error(f"Error handler of controller {self.name} failed: {e}")

    def get_statistics(self) -> Dict[str, Any]:
        """Get controller statistics."""
        return {
            'name': self.name,
            'state': self._state.value,
            'period': self.period,
            'temporality': self.temporality.value,
            'collections_total': self.collections_total,
            'collection_errors': self.collection_errors,
            'exports_total': self.exports_total,
            'export_errors': self.export_errors,
            'error_rate': self.export_errors / max(1, self.collections_total),
            'last_export_time': self.last_export_time,
            'export_duration_seconds': self.export_duration_seconds,
            'exporter': self.exporter.get_export_statistics()
        }
