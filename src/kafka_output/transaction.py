"""
Run-level orchestration of an output job.

run_transaction() performs the whole-job checks once (target schema
resolution, producer option validation, pre-flight topic check) and only then
starts one TransactionalPublisher per task. Tasks run concurrently and never
share a client. A failing task does not cancel its siblings; once all tasks
are done the first failure is re-raised unchanged.

A run is a single attempt: resume() always fails.
"""

import asyncio
import logging
import time
from typing import Any, Iterable, List, Optional, Sequence

from kafka_output.avro_schema import resolve_target_schema
from kafka_output.columns import Row, TableSchema
from kafka_output.common.exceptions import OutputError, UnsupportedOperationError
from kafka_output.common.logging import log_exception, set_log_context
from kafka_output.config import OutputConfig
from kafka_output.preflight import PreflightGate, TopicInfo
from kafka_output.producer import ProducerFactory
from kafka_output.publisher import TransactionalPublisher
from kafka_output.schemas.results import TaskReport

logger = logging.getLogger(__name__)


async def run_task(
    factory: ProducerFactory,
    schema: TableSchema,
    rows: Iterable[Row],
    task_index: int,
    topic_info: Optional[TopicInfo] = None,
) -> TaskReport:
    """
    Publish the rows of one task.

    Raises:
        OutputError: The error that aborted the task
    """
    set_log_context(task_index=task_index, topic=factory.config.topic)
    async with TransactionalPublisher(factory, schema, task_index, topic_info) as publisher:
        for row in rows:
            await publisher.add(row)
        await publisher.finish()
        return publisher.commit()


async def run_transaction(
    config: OutputConfig,
    schema: TableSchema,
    task_rows: Sequence[Iterable[Row]],
    preflight: Optional[PreflightGate] = None,
    factory: Optional[ProducerFactory] = None,
) -> List[TaskReport]:
    """
    Run an output job over pre-split task inputs.

    Args:
        config: Validated output configuration
        schema: Input table schema
        task_rows: One row iterable per parallel task
        preflight: Pre-flight gate (default: built from config)
        factory: Producer factory (default: built from config)

    Returns:
        One TaskReport per task, in task order

    Raises:
        ConfigurationError, SchemaError: Before any task opens
        ConnectivityError: If the pre-flight check fails
        OutputError: The first task failure, after every task has finished
    """
    started = time.perf_counter()
    if factory is None:
        factory = ProducerFactory(config, resolve_target_schema(config))
    if preflight is None:
        preflight = PreflightGate(config.brokers, producer_options=factory.producer_options)

    topic_info = await preflight.check(config.topic)

    logger.info(
        "Starting output tasks",
        extra={"task_count": len(task_rows), "topic": config.topic},
    )
    results: List[Any] = await asyncio.gather(
        *(
            run_task(factory, schema, rows, index, topic_info)
            for index, rows in enumerate(task_rows)
        ),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, BaseException)]
    duration_ms = int((time.perf_counter() - started) * 1000)
    if failures:
        for failure in failures:
            if not isinstance(failure, OutputError):
                log_exception(logger, failure, "Output task failed unexpectedly")
        logger.error(
            "Output run failed",
            extra={
                "task_count": len(task_rows),
                "failed_tasks": len(failures),
                "duration_ms": duration_ms,
            },
        )
        raise failures[0]

    logger.info(
        "Output run committed",
        extra={
            "task_count": len(results),
            "messages_acknowledged": sum(r.messages_acknowledged for r in results),
            "duration_ms": duration_ms,
        },
    )
    return results


def resume(*args: Any, **kwargs: Any) -> None:
    """Resuming a failed run is not supported; nothing is modified."""
    raise UnsupportedOperationError("kafka output does not support resuming")


def cleanup(reports: Sequence[TaskReport]) -> None:
    """Nothing to clean up: no state is kept between runs."""
    logger.debug("Cleanup requested", extra={"task_count": len(reports)})


__all__ = [
    "cleanup",
    "resume",
    "run_task",
    "run_transaction",
]
