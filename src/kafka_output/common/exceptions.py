"""
Exception types and error classification for kafka_output.

Provides:
- ErrorCategory enum naming the failure class reported to the operator
- FatalScope enum telling whether an error ends the whole job or one task
- Typed exception hierarchy for output errors
- wrap_send_exception() to convert client failures into SendError
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of output errors.

    Categories:
        CONFIGURATION: Bad or contradictory options, detected before any row
        CONNECTIVITY: Broker or registry unreachable during pre-flight
        SCHEMA: Unparsable target schema or row/schema type mismatch
        ROUTING: Missing topic, bad key or out-of-range partition for a row
        SEND: Delivery failed after the client's retries were exhausted
        UNSUPPORTED: Operation the output never supports (resume)
    """

    CONFIGURATION = "configuration"
    CONNECTIVITY = "connectivity"
    SCHEMA = "schema"
    ROUTING = "routing"
    SEND = "send"
    UNSUPPORTED = "unsupported"


class FatalScope(Enum):
    """How far an error propagates."""

    JOB = "job"
    TASK = "task"


class OutputError(Exception):
    """
    Base exception for all output errors.

    Attributes:
        message: Human-readable error description
        category: Error classification
        fatal_scope: Whether the error aborts the job or the current task
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.CONFIGURATION
    fatal_scope: FatalScope = FatalScope.JOB

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def aborts_job(self) -> bool:
        """Whether this error aborts the whole run before any task starts."""
        return self.fatal_scope == FatalScope.JOB

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Job-level Errors
# =============================================================================


class ConfigurationError(OutputError):
    """Invalid or contradictory configuration."""

    category = ErrorCategory.CONFIGURATION


class ConnectivityError(OutputError):
    """Brokers unreachable or destination topic missing at pre-flight."""

    category = ErrorCategory.CONNECTIVITY


class UnsupportedOperationError(OutputError):
    """Requested operation is never supported (e.g. resuming a run)."""

    category = ErrorCategory.UNSUPPORTED


class PublisherStateError(ConfigurationError):
    """Publisher operation called in a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            f"Cannot {operation} while publisher is {state}",
            context={"operation": operation, "state": state},
        )
        self.operation = operation
        self.state = state


# =============================================================================
# Task-level Errors
# =============================================================================


class TaskError(OutputError):
    """Base class for errors that abort only the task encountering them."""

    fatal_scope = FatalScope.TASK


class SchemaError(TaskError):
    """Target schema invalid, or a row does not fit it."""

    category = ErrorCategory.SCHEMA


class RoutingError(TaskError):
    """Row cannot be routed to a topic/partition."""

    category = ErrorCategory.ROUTING


class SendError(TaskError):
    """Message delivery failed after retries were exhausted."""

    category = ErrorCategory.SEND

    def __init__(
        self,
        message: str,
        failed_count: int = 0,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.failed_count = failed_count


def is_retriable_send_error(exc: BaseException) -> bool:
    """
    Check whether a delivery failure may succeed on resubmission.

    aiokafka marks transient broker errors with a ``retriable`` class attribute
    (NotLeaderForPartition, RequestTimedOut, NotEnoughReplicas, ...).
    """
    return bool(getattr(exc, "retriable", False))


def wrap_send_exception(
    exc: BaseException,
    topic: Optional[str] = None,
    failed_count: int = 1,
) -> SendError:
    """
    Wrap a delivery failure in SendError.

    Args:
        exc: Exception reported by the delivery future
        topic: Destination topic, if known
        failed_count: Number of sends that failed in total

    Returns:
        SendError carrying the original exception as cause
    """
    if isinstance(exc, SendError):
        return exc

    context = {"error_type": type(exc).__name__}
    if topic:
        context["topic"] = topic

    return SendError(
        f"{failed_count} message(s) failed to send",
        failed_count=failed_count,
        cause=exc if isinstance(exc, Exception) else None,
        context=context,
    )
