"""
Unit tests for the telemetry-metrics command line interface.
"""

import asyncio

import pytest
from typer.testing import CliRunner

from telemetry_metrics_sdk import __version__
from telemetry_metrics_sdk.cli import app, run_sample
from telemetry_metrics_sdk.cli.main import COUNTER_NAME, OBSERVER_NAME
from telemetry_metrics_sdk.observability.config import MetricsConfig
from telemetry_metrics_sdk.observability.metrics import ControllerState, Temporality


runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_METRIC_EXPORT_INTERVAL",
                 "OTEL_EXPORTER_OTLP_METRICS_TEMPORALITY_PREFERENCE"):
        monkeypatch.delenv(name, raising=False)


class TestCommands:
    """Test CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_run_with_console_exporter(self):
        result = runner.invoke(app, [
            "run", "--exporter", "console", "--period", "0.1", "--duration", "0.3", "--observer"
        ])

        assert result.exit_code == 0, result.output
        assert "reporting measurements to console" in result.output
        assert COUNTER_NAME in result.output
        assert OBSERVER_NAME in result.output

    def test_run_rejects_bad_temporality(self):
        result = runner.invoke(app, ["run", "--temporality", "sideways", "--duration", "0.1"])
        assert result.exit_code == 2
        assert "Invalid configuration" in result.output

    def test_run_rejects_unknown_exporter(self):
        result = runner.invoke(app, ["run", "--exporter", "zipkin", "--duration", "0.1"])
        assert result.exit_code == 2


class TestRunSample:
    """Test the sample program end to end with the in-memory exporter."""

    @pytest.mark.asyncio
    async def test_counts_and_observes(self):
        config = MetricsConfig(period=0.05, temporality=Temporality.DELTA)
        stop_event = asyncio.Event()

        async def stop_later():
            await asyncio.sleep(0.25)
            stop_event.set()

        stopper = asyncio.create_task(stop_later())
        controller = await run_sample(
            config,
            exporter_kind="memory",
            observer=True,
            stop_event=stop_event,
            count_interval=0.02
        )
        await stopper

        assert controller.state is ControllerState.STOPPED
        snapshots = controller.exporter.snapshots
        counted = sum(s.get(COUNTER_NAME).find().value for s in snapshots)
        assert counted >= 5
        observed = sum(s.get(OBSERVER_NAME).find().value for s in snapshots)
        assert observed == len(snapshots)
