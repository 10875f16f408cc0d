"""
Unit tests for metrics exporters and OTLP encoding.
"""

import io

import httpx
import pytest
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import ExportMetricsServiceRequest
from opentelemetry.proto.metrics.v1 import metrics_pb2

from telemetry_metrics_sdk.observability.config import MetricsConfig
from telemetry_metrics_sdk.observability.metrics import (
    ConsoleMetricsExporter,
    InMemoryMetricsExporter,
    InstrumentRegistry,
    MetricsExportError,
    OTLPMetricsExporter,
    Temporality,
    create_exporter,
)
from telemetry_metrics_sdk.observability.metrics.exporter import encode_snapshot


@pytest.fixture
def registry():
    registry = InstrumentRegistry()
    registry.counter("MyCounter_1", unit="1", description="sample counter").add(3, {"host": "a"})
    registry.up_down_counter("queue_depth").add(-2)
    histogram = registry.histogram("latency", unit="ms", boundaries=[10, 50])
    histogram.record(24)
    histogram.record(25)
    registry.counter("unused")
    return registry


def parse_request(body: bytes) -> ExportMetricsServiceRequest:
    request = ExportMetricsServiceRequest()
    request.ParseFromString(body)
    return request


def metrics_by_name(request: ExportMetricsServiceRequest):
    scope_metrics = request.resource_metrics[0].scope_metrics[0]
    return {metric.name: metric for metric in scope_metrics.metrics}


class TestInMemoryExporter:
    """Test InMemoryMetricsExporter."""

    @pytest.mark.asyncio
    async def test_keeps_snapshots(self, registry):
        exporter = InMemoryMetricsExporter(max_snapshots=2)
        for _ in range(3):
            await exporter.export(registry.snapshot())

        assert len(exporter.snapshots) == 2
        assert exporter.get_export_statistics()['exports_total'] == 3

        exporter.clear()
        assert exporter.snapshots == []

    @pytest.mark.asyncio
    async def test_shutdown(self):
        exporter = InMemoryMetricsExporter()
        await exporter.shutdown()
        assert exporter.is_shutdown is True


class TestConsoleExporter:
    """Test ConsoleMetricsExporter text output."""

    @pytest.mark.asyncio
    async def test_writes_text(self, registry):
        stream = io.StringIO()
        exporter = ConsoleMetricsExporter(stream=stream)

        await exporter.export(registry.snapshot(Temporality.DELTA))
        output = stream.getvalue()

        assert "# snapshot temporality=delta" in output
        assert "# counter MyCounter_1 [1] sample counter" in output
        assert 'MyCounter_1{host="a"} 3' in output
        assert "queue_depth -2" in output
        assert "latency count=2 sum=49 min=24 max=25 buckets=[0,2,0]" in output

    @pytest.mark.asyncio
    async def test_write_failure(self, registry):
        stream = io.StringIO()
        stream.close()
        exporter = ConsoleMetricsExporter(stream=stream)

        with pytest.raises(MetricsExportError):
            await exporter.export(registry.snapshot())
        assert exporter.export_errors == 1


class TestOTLPEncoding:
    """Test snapshot to OTLP protobuf encoding."""

    def test_resource_and_scope(self, registry):
        request = encode_snapshot(registry.snapshot(), service_name="billing")
        resource_metrics = request.resource_metrics[0]

        attributes = {kv.key: kv.value.string_value for kv in resource_metrics.resource.attributes}
        assert attributes == {"service.name": "billing"}
        assert resource_metrics.scope_metrics[0].scope.name == "telemetry_metrics_sdk"

    def test_skips_instruments_without_points(self, registry):
        metrics = metrics_by_name(encode_snapshot(registry.snapshot(), "svc"))
        assert set(metrics) == {"MyCounter_1", "queue_depth", "latency"}

    def test_sum_encoding(self, registry):
        metrics = metrics_by_name(encode_snapshot(registry.snapshot(Temporality.DELTA), "svc"))

        counter = metrics["MyCounter_1"]
        assert counter.unit == "1"
        assert counter.sum.is_monotonic is True
        assert counter.sum.aggregation_temporality == metrics_pb2.AGGREGATION_TEMPORALITY_DELTA
        point = counter.sum.data_points[0]
        assert point.as_int == 3
        assert point.attributes[0].key == "host"
        assert point.attributes[0].value.string_value == "a"

        assert metrics["queue_depth"].sum.is_monotonic is False
        assert metrics["queue_depth"].sum.data_points[0].as_int == -2

    def test_int_beyond_int64_encoded_as_double(self):
        registry = InstrumentRegistry()
        registry.counter("big").add(2 ** 63, {"shard": 2 ** 64})
        registry.counter("small").add(2 ** 63 - 1)

        metrics = metrics_by_name(encode_snapshot(registry.snapshot(), "svc"))

        point = metrics["big"].sum.data_points[0]
        assert point.WhichOneof("value") == "as_double"
        assert point.as_double == float(2 ** 63)
        assert point.attributes[0].value.string_value == str(2 ** 64)
        assert metrics["small"].sum.data_points[0].as_int == 2 ** 63 - 1

    @pytest.mark.asyncio
    async def test_export_continues_after_int64_overflow(self, registry):
        registry.counter("MyCounter_1").add(2 ** 63)
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        exporter = OTLPMetricsExporter(MetricsConfig(insecure=True), client=client)

        await exporter.export(registry.snapshot())
        await exporter.export(registry.snapshot())

        assert exporter.exports_total == 2
        assert exporter.export_errors == 0
        await client.aclose()

    def test_histogram_encoding(self, registry):
        metrics = metrics_by_name(encode_snapshot(registry.snapshot(), "svc"))
        histogram = metrics["latency"].histogram

        assert histogram.aggregation_temporality == metrics_pb2.AGGREGATION_TEMPORALITY_CUMULATIVE
        point = histogram.data_points[0]
        assert point.count == 2
        assert point.sum == 49.0
        assert list(point.bucket_counts) == [0, 2, 0]
        assert list(point.explicit_bounds) == [10.0, 50.0]
        assert (point.min, point.max) == (24.0, 25.0)


class TestOTLPExporter:
    """Test OTLPMetricsExporter against a mock transport."""

    @pytest.fixture
    def config(self):
        return MetricsConfig(endpoint="collector:4318", insecure=True, headers={"x-api-key": "secret"})

    @pytest.mark.asyncio
    async def test_posts_protobuf(self, registry, config):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured['url'] = str(request.url)
            captured['headers'] = request.headers
            captured['body'] = request.content
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        exporter = OTLPMetricsExporter(config, client=client)

        await exporter.export(registry.snapshot())

        assert captured['url'] == "http://collector:4318/v1/metrics"
        assert captured['headers']['content-type'] == "application/x-protobuf"
        assert captured['headers']['x-api-key'] == "secret"
        assert "latency" in metrics_by_name(parse_request(captured['body']))
        assert exporter.exports_total == 1

        await exporter.shutdown()
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status_raises(self, registry, config):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        exporter = OTLPMetricsExporter(config, client=client)

        with pytest.raises(MetricsExportError) as exc_info:
            await exporter.export(registry.snapshot())

        assert exc_info.value.status_code == 503
        assert exporter.export_errors == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, registry, config):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        exporter = OTLPMetricsExporter(config, client=client)

        with pytest.raises(MetricsExportError) as exc_info:
            await exporter.export(registry.snapshot())

        assert isinstance(exc_info.value.original_error, httpx.ConnectError)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_empty_snapshot_not_sent(self, config):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        exporter = OTLPMetricsExporter(config, client=client)

        await exporter.export(InstrumentRegistry().snapshot())

        assert calls == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed_on_shutdown(self, config):
        exporter = OTLPMetricsExporter(config)
        await exporter.shutdown()
        assert exporter._client.is_closed


class TestCreateExporter:
    """Test exporter factory."""

    def test_known_kinds(self):
        config = MetricsConfig(max_in_memory_snapshots=5)
        assert isinstance(create_exporter("otlp", config), OTLPMetricsExporter)
        assert isinstance(create_exporter("console", config), ConsoleMetricsExporter)
        memory = create_exporter("memory", config)
        assert isinstance(memory, InMemoryMetricsExporter)
        assert memory._snapshots.maxlen == 5

    def test_unknown_kind(self):
        with pytest.raises(MetricsExportError):
            create_exporter("zipkin")
