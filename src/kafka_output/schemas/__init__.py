"""Pydantic models exchanged between the publisher and the transaction runner."""

from kafka_output.schemas.results import TaskReport

__all__ = [
    "TaskReport",
]
