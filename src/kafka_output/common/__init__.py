"""Shared error types and logging helpers for kafka_output."""

from kafka_output.common.exceptions import (
    ConfigurationError,
    ConnectivityError,
    ErrorCategory,
    FatalScope,
    OutputError,
    PublisherStateError,
    RoutingError,
    SchemaError,
    SendError,
    TaskError,
    UnsupportedOperationError,
)

__all__ = [
    "ConfigurationError",
    "ConnectivityError",
    "ErrorCategory",
    "FatalScope",
    "OutputError",
    "PublisherStateError",
    "RoutingError",
    "SchemaError",
    "SendError",
    "TaskError",
    "UnsupportedOperationError",
]
