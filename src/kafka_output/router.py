"""
Per-row destination routing.

RecordRouter derives (topic, key, partition) for a row from the optional
topic/key/partition columns, falling back to the static topic. Column
references are checked against the input schema once, when the router is
built.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from kafka_output.columns import Column, ColumnType, Row, TableSchema
from kafka_output.common.exceptions import ConfigurationError, RoutingError
from kafka_output.config import OutputConfig
from kafka_output.visitors import compact_json, to_iso8601


@dataclass(frozen=True)
class RoutingConfig:
    """Routing options, fixed for the run."""

    topic: str
    topic_column: Optional[str] = None
    key_column: Optional[str] = None
    partition_column: Optional[str] = None

    @classmethod
    def from_output_config(cls, config: OutputConfig) -> "RoutingConfig":
        return cls(
            topic=config.topic,
            topic_column=config.topic_column,
            key_column=config.key_column_name,
            partition_column=config.partition_column_name,
        )


@dataclass(frozen=True)
class Destination:
    topic: str
    key: Optional[bytes] = None
    partition: Optional[int] = None


def encode_key(value: Any) -> Optional[bytes]:
    """
    Encode a raw column value as a message key.

    Strings are UTF-8 encoded, JSON values become compact JSON text and
    timestamps ISO-8601; a null value means no key.
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, bool):
        return b"true" if value else b"false"
    if isinstance(value, (dict, list)):
        return compact_json(value).encode("utf-8")
    if isinstance(value, date):
        return to_iso8601(value).encode("utf-8")
    return str(value).encode("utf-8")


class RecordRouter:
    """Computes the destination of each row."""

    def __init__(self, routing: RoutingConfig, schema: TableSchema):
        self.routing = routing
        self._topic_column = self._resolve(
            schema, routing.topic_column, "topic_column", ColumnType.STRING
        )
        self._key_column = self._resolve(schema, routing.key_column, "key_column_name")
        self._partition_column = self._resolve(
            schema, routing.partition_column, "partition_column_name", ColumnType.LONG
        )

    @staticmethod
    def _resolve(
        schema: TableSchema,
        name: Optional[str],
        option: str,
        required_type: Optional[ColumnType] = None,
    ) -> Optional[Column]:
        if name is None:
            return None
        column = schema.lookup(name)
        if column is None:
            raise ConfigurationError(
                f"{option} '{name}' is not a column of the input schema",
                context={"option": option},
            )
        if required_type is not None and column.type != required_type:
            raise ConfigurationError(
                f"{option} '{name}' must be a {required_type.value} column, "
                f"got {column.type.value}",
                context={"option": option},
            )
        return column

    def route(self, row: Row) -> Destination:
        """
        Compute the destination of a row.

        The partition is not range-checked here; see check_partition().

        Raises:
            RoutingError: If the topic column is null/empty or the partition
                value is not an integer
        """
        topic = self.routing.topic
        if self._topic_column is not None:
            value = row[self._topic_column.index]
            if not isinstance(value, str) or not value:
                raise RoutingError(
                    f"Topic column '{self._topic_column.name}' is null or empty",
                    context={"column": self._topic_column.name},
                )
            topic = value

        key = None
        if self._key_column is not None:
            key = encode_key(row[self._key_column.index])

        partition = None
        if self._partition_column is not None:
            value = row[self._partition_column.index]
            if value is not None:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise RoutingError(
                        f"Partition column '{self._partition_column.name}' "
                        f"holds non-integer {value!r}",
                        context={"column": self._partition_column.name},
                    )
                partition = value

        return Destination(topic=topic, key=key, partition=partition)

    @property
    def assigns_partitions(self) -> bool:
        return self._partition_column is not None

    @staticmethod
    def check_partition(destination: Destination, partition_count: int) -> None:
        """
        Reject explicit partitions outside [0, partition_count).

        Raises:
            RoutingError: If the partition is out of range
        """
        partition = destination.partition
        if partition is None:
            return
        if not 0 <= partition < partition_count:
            raise RoutingError(
                f"Partition {partition} is out of range for topic "
                f"'{destination.topic}' with {partition_count} partition(s)",
                context={"topic": destination.topic, "partition": partition},
            )


__all__ = [
    "Destination",
    "RecordRouter",
    "RoutingConfig",
    "encode_key",
]
