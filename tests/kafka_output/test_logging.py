"""Tests for structured logging helpers and error classification."""

import asyncio
import json
import logging

import pytest

from kafka_output.common.exceptions import (
    ConnectivityError,
    ErrorCategory,
    SchemaError,
    SendError,
    wrap_send_exception,
)
from kafka_output.common.logging import (
    ConsoleFormatter,
    JSONFormatter,
    get_log_context,
    log_exception,
    set_log_context,
)


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("kafka_output.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "kafka_output.test"
        assert entry["msg"] == "hello"
        assert entry["ts"].endswith("Z")
        assert "file" not in entry

    def test_extra_fields_included(self):
        record = _record(topic="orders", messages_acknowledged=3, unrelated="x")

        entry = json.loads(JSONFormatter().format(record))

        assert entry["topic"] == "orders"
        assert entry["messages_acknowledged"] == 3
        assert "unrelated" not in entry

    def test_error_records_carry_location(self):
        entry = json.loads(JSONFormatter().format(_record(level=logging.ERROR)))
        assert entry["file"].endswith(":10")


class TestLogContext:
    @pytest.mark.asyncio
    async def test_context_is_per_task(self):
        async def task(index):
            set_log_context(task_index=index)
            await asyncio.sleep(0)
            return get_log_context()["task_index"]

        assert await asyncio.gather(task(0), task(1)) == [0, 1]

    @pytest.mark.asyncio
    async def test_console_prefix(self):
        async def task():
            set_log_context(task_index=4)
            return ConsoleFormatter().format(_record())

        line = await asyncio.create_task(task())

        assert "[task-4]" in line
        assert line.endswith("hello")


class TestLogException:
    def test_category_extracted(self, caplog):
        logger = logging.getLogger("kafka_output.test")
        error = SchemaError("bad row")

        with caplog.at_level(logging.ERROR, logger="kafka_output.test"):
            log_exception(logger, error, "Task failed", include_traceback=False)

        record = caplog.records[-1]
        assert record.error_category == "schema"
        assert record.error_message == "bad row"


class TestErrorClassification:
    def test_scopes(self):
        assert ConnectivityError("down").aborts_job
        assert not SchemaError("bad").aborts_job
        assert SendError("lost").category == ErrorCategory.SEND

    def test_wrap_send_exception(self):
        cause = OSError("broken pipe")

        error = wrap_send_exception(cause, topic="orders", failed_count=2)

        assert error.failed_count == 2
        assert error.cause is cause
        assert error.context == {"error_type": "OSError", "topic": "orders"}
        assert str(error) == "2 message(s) failed to send | Caused by: broken pipe"

    def test_wrap_keeps_send_error(self):
        error = SendError("lost", failed_count=1)
        assert wrap_send_exception(error) is error
