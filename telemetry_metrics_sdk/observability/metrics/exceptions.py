"""
Metrics-specific exceptions.

This module defines custom exceptions for instrument registration,
measurement recording, collection and export, providing detailed
error information for debugging and monitoring.

Author: Telemetry Metrics SDK
Version: 0.1.0
"""

from typing import Optional, Dict, Any

from ..exceptions import ObservabilityError


class MetricsError(ObservabilityError):
    """Base exception for metrics-related errors."""

    def __init__(
        self,
        message: str,
        metric_name: Optional[str] = None,
        metric_kind: Optional[str] = None,
        attributes: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        kwargs.setdefault("component", "metrics")
        super().__init__(message, **kwargs)
        self.metric_name = metric_name
        self.metric_kind = metric_kind
        self.attributes = attributes or {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'metric_name': self.metric_name,
            'metric_kind': self.metric_kind,
            'attributes': self.attributes
        })
        return data


class MetricRegistrationError(MetricsError):
    """Exception raised during instrument registration."""

    def __init__(
        self,
        message: str,
        registration_type: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="register", **kwargs)
        self.registration_type = registration_type


class KindConflictError(MetricRegistrationError):
    """Raised when a name is re-registered with a different instrument kind."""

    def __init__(
        self,
        message: str,
        existing_kind: Optional[str] = None,
        requested_kind: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, registration_type="kind_conflict", **kwargs)
        self.existing_kind = existing_kind
        self.requested_kind = requested_kind


class MetricValidationError(MetricsError):
    """Exception raised when an instrument name or attribute set is invalid."""

    def __init__(
        self,
        message: str,
        validation_rule: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="validate", **kwargs)
        self.validation_rule = validation_rule


class InvalidValueError(MetricsError):
    """Exception raised when a measurement value violates the instrument contract."""

    def __init__(
        self,
        message: str,
        value: Any = None,
        validation_rule: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="record", **kwargs)
        self.value = value
        self.validation_rule = validation_rule


class InvalidObservationError(MetricsError):
    """Exception raised for observations made outside a valid observer invocation."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="observe", **kwargs)


class MetricsCollectionError(MetricsError):
    """Exception raised when an observer callback fails during collection."""

    def __init__(
        self,
        message: str,
        collection_source: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="collect", **kwargs)
        self.collection_source = collection_source


class MetricsExportError(MetricsError):
    """Exception raised during metrics export."""

    def __init__(
        self,
        message: str,
        export_destination: Optional[str] = None,
        export_format: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, operation="export", **kwargs)
        self.export_destination = export_destination
        self.export_format = export_format
        self.status_code = status_code


class ControllerError(MetricsError):
    """Base exception for collection controller lifecycle errors."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        kwargs.setdefault("operation", "lifecycle")
        super().__init__(message, **kwargs)
        self.state = state


class AlreadyStartedError(ControllerError):
    """Exception raised when starting a controller that is not idle."""
    pass


class ShutdownTimeoutError(ControllerError):
    """Exception raised when the final flush does not finish within the stop timeout."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, operation="shutdown", **kwargs)
        self.timeout = timeout


# Utility functions for error handling

def handle_export_error(
    error: BaseException,
    destination: Optional[str] = None,
    export_format: Optional[str] = None
) -> MetricsExportError:
    """Convert an exporter failure to our exception format."""
    if isinstance(error, MetricsExportError):
        return error
    return MetricsExportError(
        message=f"Metrics export failed: {error}",
        export_destination=destination,
        export_format=export_format,
        original_error=error
    )


def handle_observer_error(error: BaseException, callback_name: str) -> MetricsCollectionError:
    """Convert an observer callback failure to our exception format."""
    return MetricsCollectionError(
        message=f"Observer callback {callback_name} failed: {error}",
        collection_source=callback_name,
        original_error=error
    )
