"""
Entry point for publishing a table file to Kafka.

Usage:
    # Publish a CSV file with the options in out.yml
    python -m kafka_output --config out.yml --input rows.csv

    # Four parallel tasks, parquet input, metrics on :8000
    python -m kafka_output --config out.yml --input rows.parquet --tasks 4 \\
        --metrics-port 8000

Configuration:
    out.yml holds the output options, optionally under a top-level ``out:``
    key. KAFKA_BOOTSTRAP_SERVERS, KAFKA_OUTPUT_TOPIC and SCHEMA_REGISTRY_URL
    override the file.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import polars as pl
from prometheus_client import start_http_server

from kafka_output.columns import schema_from_polars, split_rows
from kafka_output.common.exceptions import ConfigurationError, OutputError
from kafka_output.common.logging import log_exception, setup_logging
from kafka_output.config import load_config
from kafka_output.transaction import run_transaction

logger = logging.getLogger(__name__)

READERS = {
    "csv": pl.read_csv,
    "parquet": pl.read_parquet,
    "ndjson": pl.read_ndjson,
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Publish table rows to Kafka",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="YAML file with output options",
    )
    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="Table file to publish",
    )
    parser.add_argument(
        "--format",
        choices=sorted(READERS),
        default=None,
        help="Input format (default: from file extension)",
    )
    parser.add_argument(
        "--tasks",
        type=int,
        default=1,
        help="Number of parallel output tasks (default: 1)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log lines",
    )
    return parser.parse_args(argv)


def read_table(path: Path, input_format: Optional[str] = None) -> pl.DataFrame:
    """
    Read the input table with polars.

    Raises:
        ConfigurationError: If the format is unknown or the file unreadable
    """
    fmt = input_format or path.suffix.lstrip(".").lower()
    if fmt == "jsonl":
        fmt = "ndjson"
    reader = READERS.get(fmt)
    if reader is None:
        raise ConfigurationError(
            f"Cannot infer input format of {path}; use --format "
            f"({', '.join(sorted(READERS))})"
        )
    try:
        return reader(path)
    except (OSError, pl.exceptions.PolarsError) as e:
        raise ConfigurationError(f"Cannot read input {path}", cause=e) from e


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level), json_format=args.json_logs)

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info(f"Metrics server started on port {args.metrics_port}")

    try:
        config = load_config(args.config)
        frame = read_table(args.input, args.format)
        schema = schema_from_polars(frame.schema)
        task_rows = split_rows(frame.rows(), args.tasks)
        reports = asyncio.run(run_transaction(config, schema, task_rows))
    except OutputError as e:
        log_exception(logger, e, f"Output failed: {type(e).__name__}", include_traceback=False)
        return 1

    logger.info(
        "Published %d rows in %d task(s)",
        sum(r.rows_processed for r in reports),
        len(reports),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
