"""
End-to-end tests for run_transaction().

The pre-flight gate is mocked; every task gets its own
FakeProducer so per-task clients can be inspected.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.errors import KafkaError

from kafka_output.columns import ColumnType, TableSchema
from kafka_output.common.exceptions import (
    ConfigurationError,
    ConnectivityError,
    SchemaError,
    SendError,
    UnsupportedOperationError,
)
from kafka_output.common.logging import get_log_context
from kafka_output.config import parse_config
from kafka_output.preflight import TopicInfo
from kafka_output.schemas import TaskReport
from kafka_output.transaction import cleanup, resume, run_task, run_transaction


class RejectedError(KafkaError):
    retriable = False


def _preflight(partition_count=3, error=None):
    gate = MagicMock()
    gate.check = AsyncMock(
        return_value=TopicInfo(name="orders", partition_count=partition_count),
        side_effect=error,
    )
    return gate


@pytest.fixture
def id_name_schema():
    return TableSchema([("id", ColumnType.LONG), ("name", ColumnType.STRING)])


class TestRunTransaction:
    """Whole-job behaviour across parallel tasks."""

    @pytest.mark.asyncio
    async def test_single_row_plain(self, make_factory, plain_options, id_name_schema):
        producers = []
        factory = make_factory(plain_options, producers=producers)

        reports = await run_transaction(
            factory.config,
            id_name_schema,
            [[(1, "a")]],
            preflight=_preflight(),
            factory=factory,
        )

        assert [r.state for r in reports] == ["committed"]
        assert producers[0].sent == [
            {"topic": "orders", "value": b'{"id":1,"name":"a"}', "key": None, "partition": None}
        ]

    @pytest.mark.asyncio
    async def test_topic_column_routing(self, make_factory, plain_options):
        plain_options["topic_column"] = "region"
        schema = TableSchema([("region", ColumnType.STRING), ("id", ColumnType.LONG)])
        producers = []
        factory = make_factory(plain_options, producers=producers)

        await run_transaction(
            factory.config, schema, [[("eu", 2)]], preflight=_preflight(), factory=factory
        )

        assert producers[0].sent[0]["topic"] == "eu"

    @pytest.mark.asyncio
    async def test_schema_mismatch_aborts_task(
        self, make_factory, registry_options, registry_client
    ):
        schema = TableSchema([("id", ColumnType.LONG), ("extra", ColumnType.STRING)])
        producers = []
        factory = make_factory(registry_options, registry_client, producers)

        with pytest.raises(SchemaError, match="'extra'"):
            await run_transaction(
                factory.config,
                schema,
                [[(1, "x"), (2, "y")]],
                preflight=_preflight(),
                factory=factory,
            )

        assert all(p.attempts == [] for p in producers)

    @pytest.mark.asyncio
    async def test_missing_topic_aborts_before_tasks(
        self, make_factory, plain_options, id_name_schema
    ):
        producers = []
        factory = make_factory(plain_options, producers=producers)
        gate = _preflight(error=ConnectivityError("target topic 'orders' is not found"))

        with pytest.raises(ConnectivityError, match="is not found"):
            await run_transaction(
                factory.config, id_name_schema, [[(1, "a")]], preflight=gate, factory=factory
            )

        assert producers == []

    @pytest.mark.asyncio
    async def test_tasks_use_separate_producers(self, make_factory, plain_options, id_name_schema):
        producers = []
        factory = make_factory(plain_options, producers=producers)

        reports = await run_transaction(
            factory.config,
            id_name_schema,
            [[(1, "a"), (2, "b")], [(3, "c")], []],
            preflight=_preflight(),
            factory=factory,
        )

        assert [r.task_index for r in reports] == [0, 1, 2]
        assert [r.rows_processed for r in reports] == [2, 1, 0]
        assert len(producers) == 3
        assert all(p.stopped for p in producers)

    @pytest.mark.asyncio
    async def test_failed_task_does_not_stop_siblings(
        self, fake_producer, make_factory, plain_options, id_name_schema
    ):
        failing = fake_producer(outcomes=[RejectedError("rejected")])
        healthy = fake_producer()
        factory = make_factory(plain_options, producers=[failing, healthy])

        with pytest.raises(SendError):
            await run_transaction(
                factory.config,
                id_name_schema,
                [[(1, "a")], [(2, "b"), (3, "c")]],
                preflight=_preflight(),
                factory=factory,
            )

        assert len(healthy.sent) == 2
        assert failing.sent == []
        assert failing.stopped and healthy.stopped

    @pytest.mark.asyncio
    async def test_builds_default_gate(self, plain_options, id_name_schema, monkeypatch):
        gate = _preflight()
        gate_cls = MagicMock(return_value=gate)
        report = TaskReport(task_index=0, state="committed")
        monkeypatch.setattr("kafka_output.transaction.PreflightGate", gate_cls)
        monkeypatch.setattr(
            "kafka_output.transaction.run_task", AsyncMock(return_value=report)
        )
        config = parse_config(plain_options)

        reports = await run_transaction(config, id_name_schema, [[]])

        assert reports == [report]
        assert gate_cls.call_args.args == (("localhost:9092",),)
        gate.check.assert_awaited_once_with("orders")

    @pytest.mark.asyncio
    async def test_unknown_producer_option_fails_before_preflight(
        self, plain_options, id_name_schema
    ):
        plain_options["other_producer_configs"] = {"buffer.memory": "33554432"}
        gate = _preflight()

        with pytest.raises(ConfigurationError, match="Unknown producer option"):
            await run_transaction(
                parse_config(plain_options), id_name_schema, [[(1, "a")]], preflight=gate
            )

        gate.check.assert_not_awaited()


class TestRunTask:
    @pytest.mark.asyncio
    async def test_sets_log_context(self, make_factory, plain_options, id_name_schema):
        factory = make_factory(plain_options)

        report = await run_task(factory, id_name_schema, [(1, "a")], task_index=2)

        assert report.committed
        assert get_log_context() == {"task_index": 2, "topic": "orders"}

class TestResumeAndCleanup:
    def test_resume_unsupported(self):
        with pytest.raises(UnsupportedOperationError, match="does not support resuming"):
            resume({"task_reports": []})

    def test_cleanup_is_noop(self):
        assert cleanup([]) is None
