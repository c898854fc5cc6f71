"""
Prometheus metrics for output monitoring.

Provides instrumentation for:
- Message production rates and bytes per topic
- Producer errors by type
- Task outcomes
"""

from prometheus_client import Counter

messages_produced_total = Counter(
    "kafka_output_messages_produced_total",
    "Total number of messages produced to Kafka topics",
    ["topic", "status"],  # status: success, error
)

messages_produced_bytes = Counter(
    "kafka_output_messages_produced_bytes_total",
    "Total bytes of message data produced to Kafka topics",
    ["topic"],
)

producer_errors_total = Counter(
    "kafka_output_producer_errors_total",
    "Total number of producer errors",
    ["topic", "error_type"],
)

tasks_total = Counter(
    "kafka_output_tasks_total",
    "Total number of output tasks by outcome",
    ["outcome"],  # outcome: committed, aborted
)


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    """
    Record a message delivery outcome.

    Args:
        topic: Kafka topic name
        message_bytes: Size of the message value in bytes
        success: Whether the broker acknowledged the message
    """
    status = "success" if success else "error"
    messages_produced_total.labels(topic=topic, status=status).inc()
    if success:
        messages_produced_bytes.labels(topic=topic).inc(message_bytes)


def record_producer_error(topic: str, error_type: str) -> None:
    """
    Record a producer error.

    Args:
        topic: Kafka topic name
        error_type: Exception class name
    """
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def record_task_outcome(committed: bool) -> None:
    tasks_total.labels(outcome="committed" if committed else "aborted").inc()


__all__ = [
    "messages_produced_bytes",
    "messages_produced_total",
    "producer_errors_total",
    "record_message_produced",
    "record_producer_error",
    "record_task_outcome",
    "tasks_total",
]
