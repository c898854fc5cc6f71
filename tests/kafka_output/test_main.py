"""Tests for the command line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from kafka_output.__main__ import main, read_table
from kafka_output.common.exceptions import ConfigurationError, ConnectivityError
from kafka_output.schemas import TaskReport


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "out.yml"
    path.write_text(
        "out:\n"
        "  type: kafka\n"
        "  brokers: localhost:9092\n"
        "  topic: orders\n"
        "  serialize_format: plain\n"
    )
    return path


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text("id,name\n1,a\n2,b\n3,c\n")
    return path


class TestReadTable:
    def test_format_from_extension(self, csv_file):
        frame = read_table(csv_file)
        assert frame.columns == ["id", "name"]
        assert frame.height == 3

    def test_unknown_extension(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot infer input format"):
            read_table(tmp_path / "rows.xlsx")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read input"):
            read_table(tmp_path / "rows.csv")


class TestMain:
    def test_success(self, config_file, csv_file):
        reports = [TaskReport(task_index=0, state="committed", rows_processed=3)]

        with patch(
            "kafka_output.__main__.run_transaction", AsyncMock(return_value=reports)
        ) as run, patch("kafka_output.__main__.setup_logging"):
            code = main(["--config", str(config_file), "--input", str(csv_file), "--tasks", "2"])

        assert code == 0
        config, schema, task_rows = run.call_args.args
        assert config.topic == "orders"
        assert schema.column_names == ["id", "name"]
        assert [len(rows) for rows in task_rows] == [2, 1]

    def test_output_error_exit_code(self, config_file, csv_file):
        failure = AsyncMock(side_effect=ConnectivityError("target topic 'orders' is not found"))

        with patch("kafka_output.__main__.run_transaction", failure), patch(
            "kafka_output.__main__.setup_logging"
        ):
            code = main(["--config", str(config_file), "--input", str(csv_file)])

        assert code == 1
