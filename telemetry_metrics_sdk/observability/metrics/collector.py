"""
Runtime metrics collector.

This module feeds process and host counters (CPU time, network I/O) into
observable counters of an instrument registry. The values are read with
psutil once per collection cycle, from the observer callback the
collector registers.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

import logging
from typing import Any, Dict, List, Optional

import psutil

from .exceptions import MetricsCollectionError
from .instruments import ObservableCounter
from .registry import InstrumentRegistry, ObservationContext, ObserverRegistration


class SystemMetricsCollector:
    """Collector for process CPU time and network counters."""

    def __init__(self, registry: InstrumentRegistry, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.registry = registry
        self.logger = logging.getLogger("observability.metrics.system")

        # Collection settings
        self.collect_cpu = config.get('collect_cpu', True)
        self.collect_network = config.get('collect_network', True)

        # Network interface filter
        self.network_interfaces: Optional[List[str]] = config.get('network_interfaces')  # None = all interfaces

        self.cpu_time_counter: Optional[ObservableCounter] = None
        self.network_bytes_counter: Optional[ObservableCounter] = None
        self.network_packets_counter: Optional[ObservableCounter] = None

        self._process = psutil.Process()
        self._registration: Optional[ObserverRegistration] = None

    @property
    def registered(self) -> bool:
        return self._registration is not None

    def register(self) -> ObserverRegistration:
        """Create the instruments and register the observer callback."""
        if self._registration is not None:
            return self._registration

        instruments = []
        if self.collect_cpu:
            self.cpu_time_counter = self.registry.observable_counter(
                'process.cpu.time',
                unit='s',
                description='CPU seconds consumed by this process'
            )
            instruments.append(self.cpu_time_counter)

        if self.collect_network:
            self.network_bytes_counter = self.registry.observable_counter(
                'system.network.io',
                unit='By',
                description='Bytes transferred per network interface'
            )
            self.network_packets_counter = self.registry.observable_counter(
                'system.network.packets',
                unit='{packet}',
                description='Packets transferred per network interface'
            )
            instruments.extend([self.network_bytes_counter, self.network_packets_counter])

        if not instruments:
            raise MetricsCollectionError(
                message="System metrics collector has nothing to collect",
                collection_source="system"
            )

        self._registration = self.registry.register_observer(instruments, self.observe)
        self.logger.info(f"System metrics collector registered {[i.name for i in instruments]}")
        return self._registration

    def unregister(self) -> None:
        if self._registration is not None:
            self._registration.unregister()
            self._registration = None

    def observe(self, context: ObservationContext) -> None:
        """Observer callback: read psutil counters and report them."""
        if self.cpu_time_counter is not None:
            cpu_times = self._process.cpu_times()
            context.observe(self.cpu_time_counter, cpu_times.user, {'cpu.mode': 'user'})
            context.observe(self.cpu_time_counter, cpu_times.system, {'cpu.mode': 'system'})

        if self.network_bytes_counter is not None:
            for interface, stats in psutil.net_io_counters(pernic=True).items():
                if self.network_interfaces is not None and interface not in self.network_interfaces:
                    continue
                context.observe(self.network_bytes_counter, stats.bytes_sent,
                                {'device': interface, 'direction': 'transmit'})
                context.observe(self.network_bytes_counter, stats.bytes_recv,
                                {'device': interface, 'direction': 'receive'})
                context.observe(self.network_packets_counter, stats.packets_sent,
                                {'device': interface, 'direction': 'transmit'})
                context.observe(self.network_packets_counter, stats.packets_recv,
                                {'device': interface, 'direction': 'receive'})


def create_system_metrics_collector(
    registry: InstrumentRegistry,
    config: Optional[Dict[str, Any]] = None
) -> SystemMetricsCollector:
    """Create and register a system metrics collector."""
    collector = SystemMetricsCollector(registry, config)
    collector.register()
    return collector
