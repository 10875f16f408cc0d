"""
Observability Exceptions - Custom exceptions for observability components

This module defines the base exception shared by the observability system.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone

from ..exceptions import SDKError, ConfigurationError


class ObservabilityError(SDKError):
    """Base exception for observability-related errors."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component
        self.operation = operation
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': type(self).__name__,
            'message': self.message,
            'component': self.component,
            'operation': self.operation,
            'original_error': repr(self.original_error) if self.original_error else None,
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }


__all__ = ['ObservabilityError', 'ConfigurationError']
