"""
Configuration management for the metrics pipeline.

This module provides the explicit configuration structure read once when a
collection controller and its exporter are constructed, the collector
endpoint descriptor, and the environment loader that applies the standard
OpenTelemetry variables on top of the defaults.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

from typing import Dict, Any, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from .metrics.types import Temporality


DEFAULT_ENDPOINT = "localhost:4318"
DEFAULT_OTLP_HTTP_PORT = 4318
OTLP_METRICS_PATH = "/v1/metrics"


class Endpoint(BaseModel):
    """Collector address parsed from ``host:port`` or a full URL."""

    original: str
    host: str
    port: int
    scheme: Optional[str] = None
    path: str = ""

    @classmethod
    def parse(cls, value: str, default_port: int = DEFAULT_OTLP_HTTP_PORT) -> "Endpoint":
        raw = value.strip()
        if not raw:
            raise ValueError("Endpoint cannot be empty")

        parts = urlsplit(raw if "://" in raw else f"//{raw}")
        if not parts.hostname:
            raise ValueError(f"Endpoint '{value}' has no host")
        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"Endpoint '{value}' has an invalid port") from e

        return cls(
            original=value,
            host=parts.hostname,
            port=port or default_port,
            scheme=parts.scheme or None,
            path=parts.path.rstrip("/")
        )

    @property
    def address(self) -> str:
        """``host:port``, bracketing IPv6 literals."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    def url(self, insecure: bool = False) -> str:
        """URL of the OTLP/HTTP metrics route on this endpoint."""
        scheme = self.scheme or ("http" if insecure else "https")
        path = self.path if self.path.endswith(OTLP_METRICS_PATH) else f"{self.path}{OTLP_METRICS_PATH}"
        return f"{scheme}://{self.address}{path}"


class MetricsConfig(BaseModel):
    """Configuration for metrics collection and export."""

    # Collection settings
    period: float = Field(
        default=3.0,
        description="Collection period in seconds"
    )

    temporality: Temporality = Field(
        default=Temporality.CUMULATIVE,
        description="Aggregation temporality applied to every instrument"
    )

    # Exporter transport settings
    endpoint: str = Field(
        default=DEFAULT_ENDPOINT,
        description="Collector endpoint as host:port or URL"
    )

    insecure: bool = Field(
        default=False,
        description="Use plaintext HTTP instead of HTTPS"
    )

    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers sent with every export request"
    )

    export_timeout: float = Field(
        default=10.0,
        description="Timeout for a single export request in seconds"
    )

    shutdown_timeout: float = Field(
        default=5.0,
        description="Default bound on the final flush performed by stop()"
    )

    # Resource
    service_name: str = Field(
        default="telemetry-metrics-sdk",
        description="Value of the service.name resource attribute"
    )

    # In-memory exporter retention
    max_in_memory_snapshots: int = Field(
        default=1000,
        description="Snapshots kept by the in-memory exporter"
    )

    @field_validator('period', 'export_timeout', 'shutdown_timeout')
    @classmethod
    def validate_positive_float(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('max_in_memory_snapshots')
    @classmethod
    def validate_positive_int(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('temporality', mode='before')
    @classmethod
    def normalize_temporality(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('endpoint')
    @classmethod
    def validate_endpoint(cls, v):
        Endpoint.parse(v)
        return v.strip()

    @property
    def parsed_endpoint(self) -> Endpoint:
        return Endpoint.parse(self.endpoint)

    @property
    def metrics_url(self) -> str:
        return self.parsed_endpoint.url(self.insecure)

    @classmethod
    def from_env(cls, **overrides: Any) -> "MetricsConfig":
        """Build a config from the OTEL_* environment, then apply non-None overrides."""
        settings = MetricsSettings()
        values: Dict[str, Any] = settings.to_config_values()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class MetricsSettings(BaseSettings):
    """Standard OpenTelemetry environment variables understood by the SDK."""

    OTEL_EXPORTER_OTLP_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_INSECURE: Optional[bool] = None
    OTEL_METRIC_EXPORT_INTERVAL: Optional[float] = None  # milliseconds
    OTEL_EXPORTER_OTLP_METRICS_TEMPORALITY_PREFERENCE: Optional[str] = None
    OTEL_SERVICE_NAME: Optional[str] = None

    class Config:
        case_sensitive = True
        extra = "ignore"

    def to_config_values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if self.OTEL_EXPORTER_OTLP_ENDPOINT:
            values['endpoint'] = self.OTEL_EXPORTER_OTLP_ENDPOINT
        if self.OTEL_EXPORTER_OTLP_INSECURE is not None:
            values['insecure'] = self.OTEL_EXPORTER_OTLP_INSECURE
        if self.OTEL_METRIC_EXPORT_INTERVAL is not None:
            values['period'] = self.OTEL_METRIC_EXPORT_INTERVAL / 1000.0
        if self.OTEL_EXPORTER_OTLP_METRICS_TEMPORALITY_PREFERENCE:
            values['temporality'] = self.OTEL_EXPORTER_OTLP_METRICS_TEMPORALITY_PREFERENCE
        if self.OTEL_SERVICE_NAME:
            values['service_name'] = self.OTEL_SERVICE_NAME
        return values
