"""
Pytest fixtures for kafka_output tests.

Provides:
- FakeProducer: in-memory stand-in for AIOKafkaProducer with controllable
  delivery outcomes
- Input schemas and output configurations for both serialize formats
- A mocked schema registry client
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import MagicMock

import pytest

from kafka_output.avro_schema import resolve_target_schema
from kafka_output.columns import ColumnType, TableSchema
from kafka_output.config import parse_config
from kafka_output.producer import ProducerFactory

ORDERS_AVSC = {
    "type": "record",
    "name": "Order",
    "namespace": "com.example",
    "fields": [
        {"name": "id", "type": "long"},
        {"name": "name", "type": ["null", "string"], "default": None},
        {"name": "price", "type": ["null", "double"], "default": None},
        {"name": "paid", "type": "boolean"},
        {
            "name": "created_at",
            "type": {"type": "long", "logicalType": "timestamp-millis"},
        },
        {
            "name": "meta",
            "type": ["null", {"type": "map", "values": "string"}],
            "default": None,
        },
    ],
}


class FakeProducer:
    """
    Minimal AIOKafkaProducer double.

    send() returns a pending future, like the real client; flush() settles
    them. Outcomes are taken from ``outcomes`` in send order: None means
    acknowledged, an exception means the delivery fails with it.
    """

    def __init__(
        self,
        partitions: Optional[Dict[str, int]] = None,
        outcomes: Iterable[Optional[BaseException]] = (),
        send_error: Optional[BaseException] = None,
        flush_error: Optional[BaseException] = None,
    ):
        self.partitions = partitions or {}
        self.outcomes = deque(outcomes)
        self.send_error = send_error
        self.flush_error = flush_error
        self.pending: List[Any] = []
        self.sent: List[Dict[str, Any]] = []
        self.attempts: List[Dict[str, Any]] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        if self.flush_error is None:
            await self.flush()
        self.stopped = True

    async def send(self, topic, value=None, key=None, partition=None):
        if self.send_error is not None:
            raise self.send_error
        record = {"topic": topic, "value": value, "key": key, "partition": partition}
        self.attempts.append(record)
        future = asyncio.get_running_loop().create_future()
        self.pending.append((future, record))
        return future

    async def flush(self) -> None:
        if self.flush_error is not None:
            raise self.flush_error
        pending, self.pending = self.pending, []
        for future, record in pending:
            outcome = self.outcomes.popleft() if self.outcomes else None
            if outcome is None:
                self.sent.append(record)
                future.set_result(record)
            else:
                future.set_exception(outcome)

    async def partitions_for(self, topic):
        return set(range(self.partitions.get(topic, 0)))


@pytest.fixture
def orders_avsc() -> Dict[str, Any]:
    return ORDERS_AVSC


@pytest.fixture
def orders_schema() -> TableSchema:
    """Input schema matching ORDERS_AVSC."""
    return TableSchema(
        [
            ("id", ColumnType.LONG),
            ("name", ColumnType.STRING),
            ("price", ColumnType.DOUBLE),
            ("paid", ColumnType.BOOLEAN),
            ("created_at", ColumnType.TIMESTAMP),
            ("meta", ColumnType.JSON),
        ]
    )


@pytest.fixture
def orders_row():
    return (
        1,
        "a",
        9.5,
        True,
        datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc),
        {"source": "web"},
    )


@pytest.fixture
def plain_options() -> Dict[str, Any]:
    return {
        "brokers": ["localhost:9092"],
        "topic": "orders",
        "serialize_format": "plain",
    }


@pytest.fixture
def registry_options() -> Dict[str, Any]:
    return {
        "brokers": ["localhost:9092"],
        "topic": "orders",
        "serialize_format": "registry_binary",
        "schema_registry_url": "http://localhost:8081",
        "avsc": ORDERS_AVSC,
    }


@pytest.fixture
def registry_client() -> MagicMock:
    """
    Mocked SchemaRegistryClient that assigns schema id 42.

    AvroSerializer registers through register_schema() or, in newer client
    releases, register_schema_full_response(); both are answered.
    """
    client = MagicMock()
    client.register_schema.return_value = 42
    client.register_schema_full_response.return_value = MagicMock(schema_id=42, guid=None)
    return client


def registry_calls(client: MagicMock) -> List[Any]:
    """Every registration call made on a mocked registry client, in order."""
    return (
        client.register_schema.call_args_list
        + client.register_schema_full_response.call_args_list
    )


@pytest.fixture
def registered_subjects():
    """Returns the subjects registered on a mocked registry client."""
    return lambda client: [c.args[0] for c in registry_calls(client)]


def _make_factory(options, registry_client=None, producers=None):
    """
    Build a ProducerFactory whose create_producer() hands out FakeProducers.

    ``producers`` collects every producer created so tests can inspect them;
    pre-filled entries are handed out first.
    """
    config = parse_config(options)
    factory = ProducerFactory(
        config,
        resolve_target_schema(config),
        registry_client_factory=(lambda: registry_client) if registry_client else None,
    )
    created = producers if producers is not None else []
    queued = deque(created)

    def create_producer(task_index=0):
        producer = queued.popleft() if queued else FakeProducer()
        if producer not in created:
            created.append(producer)
        return producer

    factory.create_producer = create_producer
    return factory


@pytest.fixture
def make_factory():
    """Factory-building helper; see _make_factory()."""
    return _make_factory


@pytest.fixture
def fake_producer():
    """The FakeProducer class, for tests that script delivery outcomes."""
    return FakeProducer
