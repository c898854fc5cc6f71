"""
kafka_output: publish table rows to Kafka topics.

Rows are converted to JSON (plain) or Confluent-framed Avro (registry_binary),
routed to a topic/key/partition per row, and sent through one asynchronous
producer per parallel task.
"""

from kafka_output.columns import Column, ColumnType, TableSchema
from kafka_output.config import OutputConfig, SerializeFormat, load_config, parse_config
from kafka_output.schemas.results import TaskReport
from kafka_output.transaction import resume, run_transaction

__version__ = "0.1.0"

__all__ = [
    "Column",
    "ColumnType",
    "OutputConfig",
    "SerializeFormat",
    "TableSchema",
    "TaskReport",
    "load_config",
    "parse_config",
    "resume",
    "run_transaction",
]
